"""
AWS Control Plane Client - boto3 backed client for the built-in kinds.

Each kind has an operations adapter that expands flat fields into API
parameters and flattens describe output back into fields. boto3 calls
block, so they run in worker threads.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import boto3
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from clients.base import ControlPlaneClient
from config import AWSConfig
from errors import ControlPlaneError
from kinds.qbusiness import parse_composite_id
from kinds.qbusiness_user import USER_ACTIVE
from resources import RemoteObject

logger = logging.getLogger(__name__)

NOT_FOUND = "ResourceNotFoundException"


class AWSControlPlane(ControlPlaneClient):
    """
    Control plane client for AWS.

    Args:
        session: Pre-configured ``boto3.Session``. When omitted a session
            is created from ``config``.
        config: Region, profile and endpoint override.
    """

    def __init__(
        self,
        session: Optional[boto3.Session] = None,
        config: Optional[AWSConfig] = None,
    ):
        self.config = config or AWSConfig()
        self._session = session
        self._clients: Dict[str, Any] = {}
        self._operations: Dict[str, "_KindOperations"] = {
            "batch_job_queue": _JobQueueOperations(self),
            "rds_snapshot": _DBSnapshotOperations(self),
            "qbusiness_index": _IndexOperations(self),
            "qbusiness_retriever": _RetrieverOperations(self),
            "qbusiness_user": _UserOperations(self),
        }

    @property
    def name(self) -> str:
        return "aws"

    def client(self, service_name: str):
        """Lazy-loaded boto3 client for ``service_name``."""
        if service_name not in self._clients:
            if self._session is None:
                self._session = boto3.Session(
                    profile_name=self.config.profile,
                    region_name=self.config.region,
                )
            self._clients[service_name] = self._session.client(
                service_name,
                region_name=self.config.region,
                endpoint_url=self.config.endpoint_url,
            )
            logger.debug(
                f"Created {service_name} client in "
                f"{self._clients[service_name].meta.region_name} region"
            )
        return self._clients[service_name]

    async def call(
        self, fn: Callable[..., Dict[str, Any]], **kwargs: Any
    ) -> Dict[str, Any]:
        """Run a boto3 call in a thread, translating botocore errors."""
        try:
            return await asyncio.to_thread(fn, **kwargs)
        except ClientError as e:
            error = e.response.get("Error", {})
            raise ControlPlaneError(
                error.get("Code", "Unknown"), error.get("Message", str(e))
            ) from e
        except (
            EndpointConnectionError,
            ConnectionClosedError,
            ConnectTimeoutError,
            ReadTimeoutError,
        ) as e:
            raise ControlPlaneError("NetworkError", str(e)) from e

    def _operations_for(self, kind: str) -> "_KindOperations":
        if kind not in self._operations:
            raise ControlPlaneError(
                "UnsupportedKind", f"AWS control plane does not manage {kind}"
            )
        return self._operations[kind]

    async def create(self, kind: str, fields: Dict[str, Any]) -> str:
        handle_id = await self._operations_for(kind).create(fields)
        logger.info(f"Submitted creation of {kind} {handle_id}")
        return handle_id

    async def read(self, kind: str, handle_id: str) -> RemoteObject:
        return await self._operations_for(kind).read(handle_id)

    async def update(
        self, kind: str, handle_id: str, changed_fields: Dict[str, Any]
    ) -> None:
        await self._operations_for(kind).update(handle_id, changed_fields)
        logger.info(
            f"Submitted update of {kind} {handle_id}: {sorted(changed_fields)}"
        )

    async def delete(self, kind: str, handle_id: str) -> None:
        await self._operations_for(kind).delete(handle_id)
        logger.info(f"Submitted deletion of {kind} {handle_id}")


class _KindOperations:
    """API mapping for one kind."""

    service_name = ""

    def __init__(self, plane: AWSControlPlane):
        self.plane = plane

    @property
    def conn(self):
        return self.plane.client(self.service_name)

    async def call(self, method: str, **kwargs) -> Dict[str, Any]:
        return await self.plane.call(getattr(self.conn, method), **kwargs)

    async def create(self, fields: Dict[str, Any]) -> str:
        raise NotImplementedError

    async def read(self, handle_id: str) -> RemoteObject:
        raise NotImplementedError

    async def update(self, handle_id: str, changed_fields: Dict[str, Any]) -> None:
        raise NotImplementedError

    async def delete(self, handle_id: str) -> None:
        raise NotImplementedError


def _expand_compute_environment_order(items: List[Dict[str, Any]]) -> List[Dict]:
    return [
        {"computeEnvironment": item["compute_environment"], "order": item["order"]}
        for item in items or []
    ]


def _flatten_compute_environment_order(items: List[Dict[str, Any]]) -> List[Dict]:
    return [
        {"compute_environment": item["computeEnvironment"], "order": item["order"]}
        for item in items or []
    ]


class _JobQueueOperations(_KindOperations):
    service_name = "batch"

    async def create(self, fields: Dict[str, Any]) -> str:
        params = {
            "jobQueueName": fields["name"],
            "state": fields["state"],
            "priority": fields["priority"],
            "computeEnvironmentOrder": _expand_compute_environment_order(
                fields["compute_environment_order"]
            ),
        }
        if fields.get("scheduling_policy_arn"):
            params["schedulingPolicyArn"] = fields["scheduling_policy_arn"]

        output = await self.call("create_job_queue", **params)
        return output["jobQueueArn"]

    async def _describe(self, handle_id: str) -> Dict[str, Any]:
        output = await self.call("describe_job_queues", jobQueues=[handle_id])
        queues = output.get("jobQueues") or []
        if not queues or queues[0].get("status") == "DELETED":
            raise ControlPlaneError(
                NOT_FOUND, f"Batch job queue {handle_id} not found"
            )
        return queues[0]

    async def read(self, handle_id: str) -> RemoteObject:
        queue = await self._describe(handle_id)
        return RemoteObject(
            fields={
                "name": queue["jobQueueName"],
                "arn": queue["jobQueueArn"],
                "priority": queue["priority"],
                "state": queue["state"],
                "compute_environment_order": _flatten_compute_environment_order(
                    queue.get("computeEnvironmentOrder")
                ),
                "scheduling_policy_arn": queue.get("schedulingPolicyArn"),
                "status_reason": queue.get("statusReason"),
            },
            status=queue.get("status", ""),
        )

    async def update(self, handle_id: str, changed_fields: Dict[str, Any]) -> None:
        params: Dict[str, Any] = {"jobQueue": handle_id}
        if "priority" in changed_fields:
            params["priority"] = changed_fields["priority"]
        if "state" in changed_fields:
            params["state"] = changed_fields["state"]
        if "compute_environment_order" in changed_fields:
            params["computeEnvironmentOrder"] = _expand_compute_environment_order(
                changed_fields["compute_environment_order"]
            )
        await self.call("update_job_queue", **params)

    async def delete(self, handle_id: str) -> None:
        # The reconciler disables the queue and waits for it to settle first.
        await self.call("delete_job_queue", jobQueue=handle_id)


class _DBSnapshotOperations(_KindOperations):
    service_name = "rds"

    async def create(self, fields: Dict[str, Any]) -> str:
        output = await self.call(
            "create_db_snapshot",
            DBInstanceIdentifier=fields["db_instance_identifier"],
            DBSnapshotIdentifier=fields["db_snapshot_identifier"],
        )
        return output["DBSnapshot"]["DBSnapshotIdentifier"]

    async def _shared_accounts(self, handle_id: str) -> List[str]:
        output = await self.call(
            "describe_db_snapshot_attributes", DBSnapshotIdentifier=handle_id
        )
        result = output.get("DBSnapshotAttributesResult", {})
        for attribute in result.get("DBSnapshotAttributes", []):
            if attribute.get("AttributeName") == "restore":
                return sorted(attribute.get("AttributeValues", []))
        return []

    async def read(self, handle_id: str) -> RemoteObject:
        output = await self.call(
            "describe_db_snapshots", DBSnapshotIdentifier=handle_id
        )
        snapshots = output.get("DBSnapshots") or []

        # Eventual consistency check.
        if not snapshots or snapshots[0].get("DBSnapshotIdentifier") != handle_id:
            raise ControlPlaneError(
                NOT_FOUND, f"RDS DB snapshot {handle_id} not found"
            )
        snapshot = snapshots[0]

        fields = {
            "db_snapshot_identifier": snapshot["DBSnapshotIdentifier"],
            "db_instance_identifier": snapshot.get("DBInstanceIdentifier"),
            "db_snapshot_arn": snapshot.get("DBSnapshotArn"),
            "allocated_storage": snapshot.get("AllocatedStorage"),
            "availability_zone": snapshot.get("AvailabilityZone"),
            "encrypted": snapshot.get("Encrypted"),
            "engine": snapshot.get("Engine"),
            "engine_version": snapshot.get("EngineVersion"),
            "kms_key_id": snapshot.get("KmsKeyId"),
            "snapshot_type": snapshot.get("SnapshotType"),
            "vpc_id": snapshot.get("VpcId"),
            "shared_accounts": [],
        }
        if snapshot.get("Status") == "available":
            fields["shared_accounts"] = await self._shared_accounts(handle_id)

        return RemoteObject(fields=fields, status=snapshot.get("Status", ""))

    async def update(self, handle_id: str, changed_fields: Dict[str, Any]) -> None:
        if "shared_accounts" not in changed_fields:
            return

        current = set(await self._shared_accounts(handle_id))
        desired = set(changed_fields["shared_accounts"] or [])
        await self.call(
            "modify_db_snapshot_attribute",
            DBSnapshotIdentifier=handle_id,
            AttributeName="restore",
            ValuesToAdd=sorted(desired - current),
            ValuesToRemove=sorted(current - desired),
        )

    async def delete(self, handle_id: str) -> None:
        await self.call("delete_db_snapshot", DBSnapshotIdentifier=handle_id)


def _split_handle(handle_id: str, noun: str) -> Tuple[str, str]:
    try:
        return parse_composite_id(handle_id, noun)
    except ValueError as e:
        raise ControlPlaneError("ValidationException", str(e)) from e


def _expand_retriever_configuration(fields: Dict[str, Any]) -> Dict[str, Any]:
    if fields.get("kendra_index_configuration"):
        index_id = fields["kendra_index_configuration"]["index_id"]
        return {"kendraIndexConfiguration": {"indexId": index_id}}
    index_id = fields["native_index_configuration"]["index_id"]
    return {"nativeIndexConfiguration": {"indexId": index_id}}


class _RetrieverOperations(_KindOperations):
    service_name = "qbusiness"

    async def create(self, fields: Dict[str, Any]) -> str:
        application_id = fields["application_id"]
        params = {
            "applicationId": application_id,
            "displayName": fields["display_name"],
            "type": (
                "KENDRA_INDEX"
                if fields.get("kendra_index_configuration")
                else "NATIVE_INDEX"
            ),
            "configuration": _expand_retriever_configuration(fields),
        }
        if fields.get("iam_service_role_arn"):
            params["roleArn"] = fields["iam_service_role_arn"]

        output = await self.call("create_retriever", **params)
        return f"{application_id}/{output['retrieverId']}"

    async def read(self, handle_id: str) -> RemoteObject:
        application_id, retriever_id = _split_handle(handle_id, "retriever")
        output = await self.call(
            "get_retriever", applicationId=application_id, retrieverId=retriever_id
        )

        configuration = output.get("configuration") or {}
        fields: Dict[str, Any] = {
            "application_id": output.get("applicationId"),
            "retriever_id": output.get("retrieverId"),
            "arn": output.get("retrieverArn"),
            "display_name": output.get("displayName"),
            "iam_service_role_arn": output.get("roleArn"),
        }
        if output.get("type") == "KENDRA_INDEX":
            fields["kendra_index_configuration"] = {
                "index_id": configuration["kendraIndexConfiguration"]["indexId"]
            }
        if output.get("type") == "NATIVE_INDEX":
            fields["native_index_configuration"] = {
                "index_id": configuration["nativeIndexConfiguration"]["indexId"]
            }
        return RemoteObject(fields=fields, status=output.get("status", ""))

    async def update(self, handle_id: str, changed_fields: Dict[str, Any]) -> None:
        application_id, retriever_id = _split_handle(handle_id, "retriever")
        params: Dict[str, Any] = {
            "applicationId": application_id,
            "retrieverId": retriever_id,
        }
        if "display_name" in changed_fields:
            params["displayName"] = changed_fields["display_name"]
        if "iam_service_role_arn" in changed_fields:
            params["roleArn"] = changed_fields["iam_service_role_arn"]
        if {"kendra_index_configuration", "native_index_configuration"} & set(
            changed_fields
        ):
            params["configuration"] = _expand_retriever_configuration(changed_fields)
        await self.call("update_retriever", **params)

    async def delete(self, handle_id: str) -> None:
        application_id, retriever_id = _split_handle(handle_id, "retriever")
        await self.call(
            "delete_retriever", applicationId=application_id, retrieverId=retriever_id
        )


def _document_attribute_configurations(
    items: List[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """Same keys on both sides of the API; fills in the default search mode."""
    return [
        {
            "name": item["name"],
            "type": item["type"],
            "search": item.get("search", "ENABLED"),
        }
        for item in items or []
    ]


class _IndexOperations(_KindOperations):
    service_name = "qbusiness"

    async def create(self, fields: Dict[str, Any]) -> str:
        # Document attribute configurations are applied by a later update.
        application_id = fields["application_id"]
        params: Dict[str, Any] = {
            "applicationId": application_id,
            "displayName": fields["display_name"],
        }
        if fields.get("description"):
            params["description"] = fields["description"]
        if fields.get("capacity_configuration"):
            params["capacityConfiguration"] = {
                "units": fields["capacity_configuration"]["units"]
            }

        output = await self.call("create_index", **params)
        return f"{application_id}/{output['indexId']}"

    async def read(self, handle_id: str) -> RemoteObject:
        application_id, index_id = _split_handle(handle_id, "index")
        output = await self.call(
            "get_index", applicationId=application_id, indexId=index_id
        )

        capacity = output.get("capacityConfiguration")
        fields: Dict[str, Any] = {
            "application_id": output.get("applicationId"),
            "index_id": output.get("indexId"),
            "arn": output.get("indexArn"),
            "display_name": output.get("displayName"),
            "description": output.get("description"),
            "capacity_configuration": (
                {"units": capacity["units"]} if capacity else None
            ),
            "document_attribute_configurations": _document_attribute_configurations(
                output.get("documentAttributeConfigurations")
            ),
        }
        return RemoteObject(fields=fields, status=output.get("status", ""))

    async def update(self, handle_id: str, changed_fields: Dict[str, Any]) -> None:
        application_id, index_id = _split_handle(handle_id, "index")
        params: Dict[str, Any] = {"applicationId": application_id, "indexId": index_id}
        if "display_name" in changed_fields:
            params["displayName"] = changed_fields["display_name"]
        if "description" in changed_fields:
            params["description"] = changed_fields["description"]
        if changed_fields.get("capacity_configuration"):
            params["capacityConfiguration"] = {
                "units": changed_fields["capacity_configuration"]["units"]
            }
        if "document_attribute_configurations" in changed_fields:
            params["documentAttributeConfigurations"] = (
                _document_attribute_configurations(
                    changed_fields["document_attribute_configurations"]
                )
            )
        await self.call("update_index", **params)

    async def delete(self, handle_id: str) -> None:
        application_id, index_id = _split_handle(handle_id, "index")
        await self.call("delete_index", applicationId=application_id, indexId=index_id)


def _expand_user_aliases(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    aliases = []
    for item in items or []:
        alias = {"userId": item["user_id"]}
        if item.get("datasource_id"):
            alias["dataSourceId"] = item["datasource_id"]
        if item.get("index_id"):
            alias["indexId"] = item["index_id"]
        aliases.append(alias)
    return aliases


def _flatten_user_aliases(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [
        {
            "user_id": item["userId"],
            "datasource_id": item.get("dataSourceId"),
            "index_id": item.get("indexId"),
        }
        for item in items or []
    ]


def _alias_key(alias: Dict[str, Any]) -> Tuple[Any, Any, Any]:
    return (alias["user_id"], alias.get("datasource_id"), alias.get("index_id"))


class _UserOperations(_KindOperations):
    service_name = "qbusiness"

    async def create(self, fields: Dict[str, Any]) -> str:
        application_id = fields["application_id"]
        params: Dict[str, Any] = {
            "applicationId": application_id,
            "userId": fields["user_id"],
        }
        if fields.get("user_aliases"):
            params["userAliases"] = _expand_user_aliases(fields["user_aliases"])

        await self.call("create_user", **params)
        return f"{application_id}/{fields['user_id']}"

    async def _aliases(self, application_id: str, user_id: str) -> List[Dict]:
        output = await self.call(
            "get_user", applicationId=application_id, userId=user_id
        )
        return _flatten_user_aliases(output.get("userAliases"))

    async def read(self, handle_id: str) -> RemoteObject:
        application_id, user_id = _split_handle(handle_id, "user")
        return RemoteObject(
            fields={
                "application_id": application_id,
                "user_id": user_id,
                "user_aliases": await self._aliases(application_id, user_id),
            },
            status=USER_ACTIVE,
        )

    async def update(self, handle_id: str, changed_fields: Dict[str, Any]) -> None:
        if "user_aliases" not in changed_fields:
            return

        application_id, user_id = _split_handle(handle_id, "user")
        current = {
            _alias_key(alias): alias
            for alias in await self._aliases(application_id, user_id)
        }
        desired = {
            _alias_key(alias): alias for alias in changed_fields["user_aliases"] or []
        }
        added = sorted(desired.keys() - current.keys(), key=str)
        removed = sorted(current.keys() - desired.keys(), key=str)
        to_update = [desired[key] for key in added]
        to_delete = [current[key] for key in removed]

        params: Dict[str, Any] = {"applicationId": application_id, "userId": user_id}
        if to_update:
            params["userAliasesToUpdate"] = _expand_user_aliases(to_update)
        if to_delete:
            params["userAliasesToDelete"] = _expand_user_aliases(to_delete)
        await self.call("update_user", **params)

    async def delete(self, handle_id: str) -> None:
        application_id, user_id = _split_handle(handle_id, "user")
        await self.call("delete_user", applicationId=application_id, userId=user_id)
