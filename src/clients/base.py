"""
Control Plane Client Base - Abstract interface for remote control planes.

Clients translate between flat field maps and a concrete remote API. They
raise ControlPlaneError tagged with the remote error code and leave
classification and retries to the reconciler.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from resources import RemoteObject


class ControlPlaneClient(ABC):
    """
    Abstract base class for remote control plane clients.

    Implementations must be safe for concurrent use by several in-flight
    operations.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this client (e.g., 'aws')."""
        pass

    @abstractmethod
    async def create(self, kind: str, fields: Dict[str, Any]) -> str:
        """
        Submit creation of a remote object.

        Args:
            kind: Resource kind name
            fields: Desired field values

        Returns:
            The identifier assigned by the control plane.
        """
        pass

    @abstractmethod
    async def read(self, kind: str, handle_id: str) -> RemoteObject:
        """
        Describe a remote object.

        Raises:
            ControlPlaneError: With a not-found code if the object is gone.
        """
        pass

    @abstractmethod
    async def update(
        self, kind: str, handle_id: str, changed_fields: Dict[str, Any]
    ) -> None:
        """
        Apply changes to mutable fields.

        Args:
            kind: Resource kind name
            handle_id: Identifier returned by create()
            changed_fields: Only the fields that differ, with desired values
        """
        pass

    @abstractmethod
    async def delete(self, kind: str, handle_id: str) -> None:
        """Submit deletion of a remote object."""
        pass

    async def close(self) -> None:
        """Release any connections held by the client."""
        return None
