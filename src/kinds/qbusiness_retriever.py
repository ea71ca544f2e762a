"""Amazon Q Business retriever."""

from dataclasses import dataclass
from typing import Any, Dict, Optional

from kinds.base import ResourceKind
from kinds.qbusiness import ID_PATTERN
from resources import LifecycleStatus

_INDEX_CONFIGURATION = {
    "type": "object",
    "required": ["index_id"],
    "properties": {"index_id": {"type": "string", "pattern": ID_PATTERN}},
}


@dataclass
class Retriever(ResourceKind):
    """A retriever attached to a Q Business application."""

    application_id: str
    display_name: str
    iam_service_role_arn: Optional[str] = None
    kendra_index_id: Optional[str] = None
    native_index_id: Optional[str] = None

    kind = "qbusiness_retriever"
    immutable_fields = frozenset({"application_id"})
    status_map = {
        "CREATING": LifecycleStatus.PENDING,
        "ACTIVE": LifecycleStatus.AVAILABLE,
        "FAILED": LifecycleStatus.FAILED,
    }
    create_timeout = 30 * 60.0
    delete_timeout = 30 * 60.0
    synchronous_update = True

    schema = {
        "type": "object",
        "required": ["application_id", "display_name"],
        "properties": {
            "application_id": {"type": "string", "pattern": ID_PATTERN},
            "display_name": {
                "type": "string",
                "minLength": 1,
                "maxLength": 1000,
                "pattern": "^[a-zA-Z0-9][a-zA-Z0-9_-]*$",
            },
            "iam_service_role_arn": {
                "type": ["string", "null"],
                "pattern": "^arn:[a-z0-9-]+:iam::[0-9]{12}:role/.+$",
            },
            "kendra_index_configuration": _INDEX_CONFIGURATION,
            "native_index_configuration": _INDEX_CONFIGURATION,
        },
        "oneOf": [
            {"required": ["kendra_index_configuration"]},
            {"required": ["native_index_configuration"]},
        ],
    }

    @property
    def retriever_type(self) -> str:
        return "KENDRA_INDEX" if self.kendra_index_id else "NATIVE_INDEX"

    def to_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "application_id": self.application_id,
            "display_name": self.display_name,
            "iam_service_role_arn": self.iam_service_role_arn,
        }
        if self.kendra_index_id:
            fields["kendra_index_configuration"] = {"index_id": self.kendra_index_id}
        if self.native_index_id:
            fields["native_index_configuration"] = {"index_id": self.native_index_id}
        return fields

    @classmethod
    def from_fields(cls, fields: Dict[str, Any]) -> "Retriever":
        kendra = fields.get("kendra_index_configuration") or {}
        native = fields.get("native_index_configuration") or {}
        return cls(
            application_id=fields["application_id"],
            display_name=fields["display_name"],
            iam_service_role_arn=fields.get("iam_service_role_arn"),
            kendra_index_id=kendra.get("index_id"),
            native_index_id=native.get("index_id"),
        )
