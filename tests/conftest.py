"""Pytest configuration and fixtures."""

from dataclasses import dataclass, field
from typing import List, Optional
from unittest.mock import AsyncMock

import pytest

from clients.base import ControlPlaneClient
from config import Config, PollConfig, RetryConfig, TimeoutConfig
from errors import ControlPlaneError
from events import EventBus
from kinds.base import ResourceKind
from kinds.registry import KindRegistry
from kinds.rds_snapshot import DBSnapshot
from reconciler import Reconciler
from resources import LifecycleStatus


@dataclass
class QueueKind(ResourceKind):
    """Minimal kind used to exercise the reconciler."""

    name: str
    priority: int = 0
    order: Optional[int] = None
    members: List[str] = field(default_factory=list)

    kind = "queue"
    immutable_fields = frozenset({"name"})
    unordered_fields = frozenset({"members"})
    status_map = {
        "PENDING": LifecycleStatus.PENDING,
        "AVAILABLE": LifecycleStatus.AVAILABLE,
        "UPDATING": LifecycleStatus.UPDATING,
        "DELETING": LifecycleStatus.DELETING,
        "DELETED": LifecycleStatus.DELETED,
        "FAILED": LifecycleStatus.FAILED,
    }
    schema = {
        "type": "object",
        "required": ["name"],
        "properties": {
            "name": {"type": "string", "minLength": 1},
            "priority": {"type": "integer", "minimum": 0},
            "order": {"type": ["integer", "null"]},
            "members": {"type": "array", "items": {"type": "string"}},
        },
    }

    def to_fields(self):
        fields = {"name": self.name, "priority": self.priority}
        if self.order is not None:
            fields["order"] = self.order
        if self.members:
            fields["members"] = list(self.members)
        return fields

    @classmethod
    def from_fields(cls, fields):
        return cls(
            name=fields["name"],
            priority=fields.get("priority", 0),
            order=fields.get("order"),
            members=list(fields.get("members") or []),
        )


class FakeControlPlane(ControlPlaneClient):
    """
    Control plane double.

    Reads replay ``read_script`` in order; the last entry repeats. Entries
    that are exceptions are raised. An empty script reads as not found.
    """

    def __init__(self):
        self.create_mock = AsyncMock(return_value="q-1")
        self.update_mock = AsyncMock(return_value=None)
        self.delete_mock = AsyncMock(return_value=None)
        self.read_script = []
        self.read_count = 0

    @property
    def name(self) -> str:
        return "fake"

    def script_reads(self, *results):
        self.read_script = list(results)

    async def create(self, kind, fields):
        return await self.create_mock(kind, fields)

    async def read(self, kind, handle_id):
        self.read_count += 1
        if not self.read_script:
            raise ControlPlaneError("NotFound", f"{kind}/{handle_id} not found")
        if len(self.read_script) > 1:
            result = self.read_script.pop(0)
        else:
            result = self.read_script[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def update(self, kind, handle_id, changed_fields):
        return await self.update_mock(kind, handle_id, changed_fields)

    async def delete(self, kind, handle_id):
        return await self.delete_mock(kind, handle_id)


@pytest.fixture
def fast_config():
    """Configuration with no waiting between polls or retries."""
    config = Config.default()
    config.poll = PollConfig(
        initial_delay=0.0,
        min_delay=0.0,
        max_delay=0.0,
        jitter_factor=0.0,
        not_found_checks=2,
    )
    config.retry = RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0)
    config.timeouts = TimeoutConfig(create=5.0, update=5.0, delete=5.0)
    return config


@pytest.fixture
def fake_client():
    return FakeControlPlane()


@pytest.fixture
def registry():
    """Registry holding the test queue kind and the RDS snapshot kind."""
    registry = KindRegistry()
    registry.register_kind(QueueKind)
    registry.register_kind(DBSnapshot)
    return registry


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def reconciler(fake_client, registry, fast_config, event_bus):
    return Reconciler(
        client=fake_client,
        registry=registry,
        config=fast_config,
        event_bus=event_bus,
    )
