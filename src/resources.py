"""
Resource model - Desired and observed state of remote objects.

Defines the types that flow between the controller, the reconciler and
the remote control plane clients.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Set


class LifecycleStatus(Enum):
    """Normalized lifecycle status of a remote object."""

    PENDING = "pending"
    AVAILABLE = "available"
    UPDATING = "updating"
    DELETING = "deleting"
    DELETED = "deleted"
    FAILED = "failed"
    UNKNOWN = "unknown"


# Progress ranks used to detect regressions within a poll sequence.
# Available and Updating share a rank since either may follow the other.
STATUS_RANK: Dict[LifecycleStatus, int] = {
    LifecycleStatus.PENDING: 0,
    LifecycleStatus.AVAILABLE: 1,
    LifecycleStatus.UPDATING: 1,
    LifecycleStatus.DELETING: 2,
    LifecycleStatus.DELETED: 3,
}


@dataclass(frozen=True)
class ResourceHandle:
    """Opaque identifier issued by the control plane on create."""

    kind: str
    id: str

    def __str__(self) -> str:
        return f"{self.kind}/{self.id}"


@dataclass
class ResourceSpec:
    """Desired state of a remote object."""

    kind: str
    fields: Dict[str, Any]
    immutable_fields: FrozenSet[str] = frozenset()
    unordered_fields: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class RemoteObject:
    """Raw result of a control plane read: flattened fields plus status."""

    fields: Dict[str, Any]
    status: str


@dataclass(frozen=True)
class ObservedState:
    """Snapshot of a remote object captured by a single read."""

    handle: ResourceHandle
    fields: Dict[str, Any]
    status: LifecycleStatus
    raw_status: str = ""
    observed_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


@dataclass(frozen=True)
class ConvergenceTarget:
    """
    Predicate over ObservedState.status defining "done" for an operation.

    ``accept_not_found`` makes a not-found read count as converged, which
    is what deletions wait for.
    """

    statuses: FrozenSet[LifecycleStatus]
    accept_not_found: bool = False
    description: str = ""

    def is_satisfied(self, status: LifecycleStatus) -> bool:
        return status in self.statuses

    @classmethod
    def available(cls) -> "ConvergenceTarget":
        return cls(
            statuses=frozenset({LifecycleStatus.AVAILABLE}),
            description="available",
        )

    @classmethod
    def stable(cls) -> "ConvergenceTarget":
        return cls(
            statuses=frozenset({LifecycleStatus.AVAILABLE}),
            description="stable",
        )

    @classmethod
    def settled(cls) -> "ConvergenceTarget":
        """No operation in flight; a failed object is settled too."""
        return cls(
            statuses=frozenset({LifecycleStatus.AVAILABLE, LifecycleStatus.FAILED}),
            description="settled",
        )

    @classmethod
    def deleted(cls) -> "ConvergenceTarget":
        return cls(
            statuses=frozenset({LifecycleStatus.DELETED}),
            accept_not_found=True,
            description="deleted",
        )


@dataclass(frozen=True)
class DriftRecord:
    """A field whose observed value differs from the desired one."""

    field: str
    desired: Any
    observed: Any
    reordered_only: bool = False


@dataclass
class DiffResult:
    """Field-level changes between desired and observed specs."""

    changed_mutable: Set[str] = field(default_factory=set)
    changed_immutable: Set[str] = field(default_factory=set)
    reordered: Set[str] = field(default_factory=set)

    @property
    def has_changes(self) -> bool:
        return bool(self.changed_mutable or self.changed_immutable)

    @property
    def requires_replacement(self) -> bool:
        return bool(self.changed_immutable)


@dataclass
class StatusAnomaly:
    """A status regression seen during a single poll sequence."""

    handle: ResourceHandle
    previous: LifecycleStatus
    current: LifecycleStatus
    poll: int


def status_regressed(
    previous: Optional[LifecycleStatus], current: LifecycleStatus
) -> bool:
    """Return True if ``current`` moves backwards relative to ``previous``."""
    if previous is None:
        return False
    if previous not in STATUS_RANK or current not in STATUS_RANK:
        return False
    return STATUS_RANK[current] < STATUS_RANK[previous]
