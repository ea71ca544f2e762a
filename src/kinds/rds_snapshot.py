"""RDS DB snapshot."""

from dataclasses import dataclass, field
from typing import Any, Dict, List

from kinds.base import ResourceKind
from resources import LifecycleStatus


@dataclass
class DBSnapshot(ResourceKind):
    """
    A manual RDS DB snapshot.

    Only the accounts allowed to restore the snapshot can change in place;
    the attribute modification is synchronous.
    """

    db_snapshot_identifier: str
    db_instance_identifier: str
    shared_accounts: List[str] = field(default_factory=list)

    kind = "rds_snapshot"
    immutable_fields = frozenset({"db_snapshot_identifier", "db_instance_identifier"})
    unordered_fields = frozenset({"shared_accounts"})
    deferred_fields = frozenset({"shared_accounts"})
    status_map = {
        "creating": LifecycleStatus.PENDING,
        "available": LifecycleStatus.AVAILABLE,
        "deleting": LifecycleStatus.DELETING,
        "failed": LifecycleStatus.FAILED,
        "incompatible-restore": LifecycleStatus.FAILED,
    }
    create_timeout = 20 * 60.0
    synchronous_update = True

    schema = {
        "type": "object",
        "required": ["db_snapshot_identifier", "db_instance_identifier"],
        "properties": {
            "db_snapshot_identifier": {
                "type": "string",
                "pattern": "^[a-zA-Z][a-zA-Z0-9-]*$",
                "maxLength": 255,
            },
            "db_instance_identifier": {"type": "string", "minLength": 1},
            "shared_accounts": {
                "type": "array",
                "uniqueItems": True,
                "items": {"type": "string", "pattern": "^([0-9]{12}|all)$"},
            },
        },
    }

    def to_fields(self) -> Dict[str, Any]:
        return {
            "db_snapshot_identifier": self.db_snapshot_identifier,
            "db_instance_identifier": self.db_instance_identifier,
            "shared_accounts": sorted(self.shared_accounts),
        }

    @classmethod
    def from_fields(cls, fields: Dict[str, Any]) -> "DBSnapshot":
        return cls(
            db_snapshot_identifier=fields["db_snapshot_identifier"],
            db_instance_identifier=fields["db_instance_identifier"],
            shared_accounts=list(fields.get("shared_accounts") or []),
        )
