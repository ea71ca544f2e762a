"""
Resource Kind Base - Strongly typed desired state per resource kind.

Each kind is a dataclass that converts between its typed form and the
flat field map exchanged with the control plane, and declares the
metadata the reconciler needs: schema, force-replacement fields, unordered
collections, status mapping and convergence deadlines.
"""

from abc import ABC, abstractmethod
from typing import Any, ClassVar, Dict, FrozenSet, Optional

from errors import ValidationError
from resources import LifecycleStatus, ResourceSpec
from validation import validate_fields


class ResourceKind(ABC):
    """
    Abstract base class for resource kinds.

    Subclasses are dataclasses. Kinds are discovered via Python entry
    points in the 'remote_reconciler.kinds' group, in addition to the
    built-in kinds.
    """

    kind: ClassVar[str]
    schema: ClassVar[Dict[str, Any]]
    immutable_fields: ClassVar[FrozenSet[str]] = frozenset()
    unordered_fields: ClassVar[FrozenSet[str]] = frozenset()
    # Fields the control plane only accepts after the object exists.
    deferred_fields: ClassVar[FrozenSet[str]] = frozenset()
    # Values to apply, and wait for, before the control plane accepts a delete.
    pre_delete_fields: ClassVar[Dict[str, Any]] = {}
    status_map: ClassVar[Dict[str, LifecycleStatus]] = {}

    # Convergence deadlines in seconds; None falls back to config defaults.
    create_timeout: ClassVar[Optional[float]] = None
    update_timeout: ClassVar[Optional[float]] = None
    delete_timeout: ClassVar[Optional[float]] = None

    # Re-read once after update instead of polling for convergence.
    synchronous_update: ClassVar[bool] = False

    @abstractmethod
    def to_fields(self) -> Dict[str, Any]:
        """Flatten the typed resource into a field map."""
        pass

    @classmethod
    @abstractmethod
    def from_fields(cls, fields: Dict[str, Any]) -> "ResourceKind":
        """
        Build the typed resource from a field map.

        Unknown keys (computed attributes such as ARNs) are ignored.
        """
        pass

    def to_spec(self) -> ResourceSpec:
        return ResourceSpec(
            kind=self.kind,
            fields=self.to_fields(),
            immutable_fields=self.immutable_fields,
            unordered_fields=self.unordered_fields,
        )

    @classmethod
    def validate(cls, fields: Dict[str, Any]) -> None:
        """
        Check fields against the kind schema.

        Raises:
            ValidationError: If any field is missing or malformed.
        """
        is_valid, error = validate_fields(fields, cls.schema)
        if not is_valid:
            raise ValidationError(f"Invalid {cls.kind} spec: {error}")

    @classmethod
    def spec_from_fields(cls, fields: Dict[str, Any]) -> ResourceSpec:
        """Validate raw fields and return a normalized spec."""
        cls.validate(fields)
        return cls.from_fields(fields).to_spec()

    @classmethod
    def lifecycle_status(cls, raw_status: Optional[str]) -> LifecycleStatus:
        if raw_status is None:
            return LifecycleStatus.UNKNOWN
        return cls.status_map.get(raw_status, LifecycleStatus.UNKNOWN)
