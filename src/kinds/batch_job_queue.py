"""AWS Batch job queue."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from kinds.base import ResourceKind
from resources import LifecycleStatus


@dataclass
class ComputeEnvironmentOrder:
    compute_environment: str
    order: int

    def to_dict(self) -> Dict[str, Any]:
        return {"compute_environment": self.compute_environment, "order": self.order}


@dataclass
class JobQueue(ResourceKind):
    """
    A Batch job queue.

    ``compute_environment_order`` is compared as a set: the console and
    the API may return entries in a different order than they were
    submitted.
    """

    name: str
    priority: int
    state: str
    compute_environment_order: List[ComputeEnvironmentOrder] = field(
        default_factory=list
    )
    scheduling_policy_arn: Optional[str] = None

    kind = "batch_job_queue"
    immutable_fields = frozenset({"name", "scheduling_policy_arn"})
    unordered_fields = frozenset({"compute_environment_order"})
    # Batch refuses to delete an enabled queue.
    pre_delete_fields = {"state": "DISABLED"}
    status_map = {
        "CREATING": LifecycleStatus.PENDING,
        "VALID": LifecycleStatus.AVAILABLE,
        "UPDATING": LifecycleStatus.UPDATING,
        "DELETING": LifecycleStatus.DELETING,
        "DELETED": LifecycleStatus.DELETED,
        "INVALID": LifecycleStatus.FAILED,
    }
    create_timeout = 600.0
    update_timeout = 600.0
    delete_timeout = 600.0

    schema = {
        "type": "object",
        "required": ["name", "priority", "state", "compute_environment_order"],
        "properties": {
            "name": {
                "type": "string",
                "pattern": "^[0-9A-Za-z][0-9A-Za-z_-]{0,127}$",
            },
            "priority": {"type": "integer", "minimum": 0, "maximum": 1000},
            "state": {"type": "string", "enum": ["ENABLED", "DISABLED"]},
            "compute_environment_order": {
                "type": "array",
                "minItems": 1,
                "maxItems": 3,
                "items": {
                    "type": "object",
                    "required": ["compute_environment", "order"],
                    "properties": {
                        "compute_environment": {"type": "string", "minLength": 1},
                        "order": {"type": "integer", "minimum": 0},
                    },
                },
            },
            "scheduling_policy_arn": {"type": ["string", "null"]},
        },
    }

    def to_fields(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "priority": self.priority,
            "state": self.state,
            "compute_environment_order": [
                ceo.to_dict() for ceo in self.compute_environment_order
            ],
            "scheduling_policy_arn": self.scheduling_policy_arn,
        }

    @classmethod
    def from_fields(cls, fields: Dict[str, Any]) -> "JobQueue":
        return cls(
            name=fields["name"],
            priority=int(fields["priority"]),
            state=fields["state"],
            compute_environment_order=[
                ComputeEnvironmentOrder(
                    compute_environment=item["compute_environment"],
                    order=int(item["order"]),
                )
                for item in fields.get("compute_environment_order") or []
            ],
            scheduling_policy_arn=fields.get("scheduling_policy_arn"),
        )
