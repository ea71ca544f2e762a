"""Amazon Q Business index."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from kinds.base import ResourceKind
from kinds.qbusiness import ID_PATTERN
from resources import LifecycleStatus


@dataclass
class DocumentAttributeConfiguration:
    name: str
    type: str
    search: str = "ENABLED"

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.type, "search": self.search}


@dataclass
class Index(ResourceKind):
    """
    A Q Business index.

    Document attribute configurations cannot be passed to CreateIndex, so
    they are applied by an update once the index is active.
    """

    application_id: str
    display_name: str
    description: Optional[str] = None
    capacity_units: Optional[int] = None
    document_attribute_configurations: List[DocumentAttributeConfiguration] = field(
        default_factory=list
    )

    kind = "qbusiness_index"
    immutable_fields = frozenset({"application_id"})
    unordered_fields = frozenset({"document_attribute_configurations"})
    deferred_fields = frozenset({"document_attribute_configurations"})
    status_map = {
        "CREATING": LifecycleStatus.PENDING,
        "ACTIVE": LifecycleStatus.AVAILABLE,
        "UPDATING": LifecycleStatus.UPDATING,
        "DELETING": LifecycleStatus.DELETING,
        "FAILED": LifecycleStatus.FAILED,
    }
    create_timeout = 30 * 60.0
    update_timeout = 30 * 60.0
    delete_timeout = 30 * 60.0

    schema = {
        "type": "object",
        "required": ["application_id", "display_name"],
        "properties": {
            "application_id": {"type": "string", "pattern": ID_PATTERN},
            "display_name": {"type": "string", "minLength": 1, "maxLength": 1000},
            "description": {"type": ["string", "null"], "maxLength": 1000},
            "capacity_configuration": {
                "type": ["object", "null"],
                "properties": {"units": {"type": "integer", "minimum": 1}},
            },
            "document_attribute_configurations": {
                "type": "array",
                "maxItems": 500,
                "items": {
                    "type": "object",
                    "required": ["name", "type"],
                    "properties": {
                        "name": {"type": "string", "minLength": 1, "maxLength": 30},
                        "type": {
                            "type": "string",
                            "enum": ["STRING", "STRING_LIST", "NUMBER", "DATE"],
                        },
                        "search": {"type": "string", "enum": ["ENABLED", "DISABLED"]},
                    },
                },
            },
        },
    }

    def to_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            "application_id": self.application_id,
            "display_name": self.display_name,
        }
        # Unset optional values are left to the service defaults.
        if self.description is not None:
            fields["description"] = self.description
        if self.capacity_units is not None:
            fields["capacity_configuration"] = {"units": self.capacity_units}
        if self.document_attribute_configurations:
            fields["document_attribute_configurations"] = [
                dac.to_dict() for dac in self.document_attribute_configurations
            ]
        return fields

    @classmethod
    def from_fields(cls, fields: Dict[str, Any]) -> "Index":
        capacity = fields.get("capacity_configuration") or {}
        return cls(
            application_id=fields["application_id"],
            display_name=fields["display_name"],
            description=fields.get("description"),
            capacity_units=capacity.get("units"),
            document_attribute_configurations=[
                DocumentAttributeConfiguration(
                    name=item["name"],
                    type=item["type"],
                    search=item.get("search", "ENABLED"),
                )
                for item in fields.get("document_attribute_configurations") or []
            ],
        )
