"""Amazon Q Business user."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from kinds.base import ResourceKind
from kinds.qbusiness import ID_PATTERN
from resources import LifecycleStatus

# GetUser reports no lifecycle; a readable user is active.
USER_ACTIVE = "ACTIVE"


@dataclass
class UserAlias:
    user_id: str
    datasource_id: Optional[str] = None
    index_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "datasource_id": self.datasource_id,
            "index_id": self.index_id,
        }


@dataclass
class User(ResourceKind):
    """
    A user of a Q Business application, with the aliases that map it to
    user identities in individual indexes and data sources.
    """

    application_id: str
    user_id: str
    user_aliases: List[UserAlias] = field(default_factory=list)

    kind = "qbusiness_user"
    immutable_fields = frozenset({"application_id", "user_id"})
    unordered_fields = frozenset({"user_aliases"})
    status_map = {USER_ACTIVE: LifecycleStatus.AVAILABLE}
    synchronous_update = True

    schema = {
        "type": "object",
        "required": ["application_id", "user_id"],
        "properties": {
            "application_id": {"type": "string", "pattern": ID_PATTERN},
            "user_id": {
                "type": "string",
                "minLength": 1,
                "maxLength": 2048,
                "pattern": "^[^/]+$",
            },
            "user_aliases": {
                "type": "array",
                "maxItems": 100,
                "items": {
                    "type": "object",
                    "required": ["user_id"],
                    "properties": {
                        "user_id": {
                            "type": "string",
                            "minLength": 1,
                            "maxLength": 2048,
                        },
                        "datasource_id": {
                            "type": ["string", "null"],
                            "pattern": ID_PATTERN,
                        },
                        "index_id": {"type": ["string", "null"], "pattern": ID_PATTERN},
                    },
                },
            },
        },
    }

    def to_fields(self) -> Dict[str, Any]:
        return {
            "application_id": self.application_id,
            "user_id": self.user_id,
            "user_aliases": [alias.to_dict() for alias in self.user_aliases],
        }

    @classmethod
    def from_fields(cls, fields: Dict[str, Any]) -> "User":
        return cls(
            application_id=fields["application_id"],
            user_id=fields["user_id"],
            user_aliases=[
                UserAlias(
                    user_id=item["user_id"],
                    datasource_id=item.get("datasource_id"),
                    index_id=item.get("index_id"),
                )
                for item in fields.get("user_aliases") or []
            ],
        )
