"""
Kind Registry - Registration and lookup of resource kinds.

Built-in kinds are registered by build_registry(); third party kinds are
discovered via entry points.
"""

import logging
from importlib.metadata import entry_points
from typing import Any, Dict, List, Type

from errors import ValidationError
from kinds.base import ResourceKind
from validation import validate_kind_schema

logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "remote_reconciler.kinds"


class KindRegistry:
    """Maps kind names to ResourceKind classes."""

    def __init__(self):
        self._kinds: Dict[str, Type[ResourceKind]] = {}

    def register_kind(self, kind_class: Type[ResourceKind]) -> None:
        """
        Register a resource kind class.

        Args:
            kind_class: The ResourceKind subclass to register

        Raises:
            ValueError: If the kind's schema is not a valid JSON Schema
        """
        name = kind_class.kind
        is_valid, error = validate_kind_schema(kind_class.schema)
        if not is_valid:
            raise ValueError(f"Kind '{name}' has an invalid schema: {error}")

        if name in self._kinds:
            logger.warning(f"Overwriting existing resource kind: {name}")

        self._kinds[name] = kind_class
        logger.debug(f"Registered resource kind: {name}")

    def get_kind(self, name: str) -> Type[ResourceKind]:
        """
        Get a registered kind class by name.

        Raises:
            ValidationError: If the kind is not registered
        """
        if name not in self._kinds:
            available = ", ".join(sorted(self._kinds)) or "none"
            raise ValidationError(
                f"Unknown resource kind: {name}. Available kinds: {available}"
            )
        return self._kinds[name]

    def has_kind(self, name: str) -> bool:
        return name in self._kinds

    def list_kinds(self) -> List[str]:
        return sorted(self._kinds)

    def describe_kinds(self) -> List[Dict[str, Any]]:
        """Summaries of all registered kinds, for display."""
        summaries = []
        for name in self.list_kinds():
            kind_class = self._kinds[name]
            summaries.append(
                {
                    "kind": name,
                    "required": kind_class.schema.get("required", []),
                    "immutable": sorted(kind_class.immutable_fields),
                    "unordered": sorted(kind_class.unordered_fields),
                    "create_timeout": kind_class.create_timeout,
                    "delete_timeout": kind_class.delete_timeout,
                }
            )
        return summaries

    def discover(self) -> None:
        """Register kinds advertised by installed packages."""
        for ep in entry_points(group=ENTRY_POINT_GROUP):
            try:
                self.register_kind(ep.load())
            except Exception as e:
                logger.warning(f"Could not load resource kind {ep.name}: {e}")


def build_registry(discover: bool = True) -> KindRegistry:
    """
    Create a registry holding the built-in kinds.

    Args:
        discover: Also register kinds found via entry points.
    """
    from kinds.batch_job_queue import JobQueue
    from kinds.qbusiness_index import Index
    from kinds.qbusiness_retriever import Retriever
    from kinds.qbusiness_user import User
    from kinds.rds_snapshot import DBSnapshot

    registry = KindRegistry()
    for kind_class in (JobQueue, DBSnapshot, Index, Retriever, User):
        registry.register_kind(kind_class)

    if discover:
        registry.discover()
    return registry
