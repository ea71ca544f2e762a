"""
HTTP Control Plane Client - Generic REST control plane over aiohttp.

Resources live under ``{base_url}/{kind}``:

    POST   /{kind}        create, returns {"id": ...}
    GET    /{kind}/{id}   read, returns {"status": ..., "fields": {...}}
    PATCH  /{kind}/{id}   update with the changed fields
    DELETE /{kind}/{id}   delete
"""

import asyncio
import logging
from typing import Any, Dict, Optional
from urllib.parse import quote

import aiohttp

from clients.base import ControlPlaneClient
from config import HTTPConfig
from errors import ControlPlaneError
from resources import RemoteObject

logger = logging.getLogger(__name__)

# Statuses whose meaning does not depend on the error body.
_STATUS_CODES = {404, 408, 429, 500, 502, 503, 504}


class HTTPControlPlane(ControlPlaneClient):
    """Control plane client for a JSON REST API."""

    def __init__(self, config: Optional[HTTPConfig] = None):
        self.config = config or HTTPConfig()
        self.base_url = self.config.base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)

    @property
    def name(self) -> str:
        return "http"

    async def create(self, kind: str, fields: Dict[str, Any]) -> str:
        data = await self._request("POST", self._url(kind), json=fields)
        handle_id = (data or {}).get("id")
        if not handle_id:
            raise ControlPlaneError("InvalidResponse", f"create {kind}: missing id")
        logger.info(f"Created {kind}/{handle_id}")
        return str(handle_id)

    async def read(self, kind: str, handle_id: str) -> RemoteObject:
        data = await self._request("GET", self._url(kind, handle_id))
        data = data or {}
        return RemoteObject(
            fields=data.get("fields", {}), status=data.get("status", "")
        )

    async def update(
        self, kind: str, handle_id: str, changed_fields: Dict[str, Any]
    ) -> None:
        await self._request("PATCH", self._url(kind, handle_id), json=changed_fields)
        logger.info(f"Updated {kind}/{handle_id}: {sorted(changed_fields)}")

    async def delete(self, kind: str, handle_id: str) -> None:
        await self._request("DELETE", self._url(kind, handle_id))
        logger.info(f"Deleted {kind}/{handle_id}")

    # Private helper methods

    def _url(self, kind: str, handle_id: Optional[str] = None) -> str:
        url = f"{self.base_url}/{quote(kind, safe='')}"
        if handle_id is not None:
            url += f"/{quote(handle_id, safe='')}"
        return url

    def _get_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    async def _request(
        self, method: str, url: str, json: Optional[Dict[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Issue one request, converting failures into ControlPlaneError."""
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.request(
                    method, url, headers=self._get_headers(), json=json
                ) as response:
                    if response.status == 204:
                        return None
                    if response.status < 400:
                        return await response.json()
                    raise await self._error_from_response(response)
        except (aiohttp.ClientConnectionError, asyncio.TimeoutError) as e:
            raise ControlPlaneError("NetworkError", f"{method} {url}: {e}") from e

    async def _error_from_response(
        self, response: aiohttp.ClientResponse
    ) -> ControlPlaneError:
        body: Dict[str, Any] = {}
        try:
            body = await response.json(content_type=None) or {}
        except ValueError:
            body = {"message": await response.text()}
        if not isinstance(body, dict):
            body = {"message": str(body)}

        if response.status in _STATUS_CODES or not body.get("code"):
            code = f"HTTP_{response.status}"
        else:
            code = body["code"]
        message = body.get("message") or response.reason or ""
        logger.debug(f"Control plane error {code}: {message}")
        return ControlPlaneError(code, message)
