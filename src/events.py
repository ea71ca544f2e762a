"""
Reconciliation events - In-memory pub/sub for lifecycle and drift signals.

Drift and status anomalies are informational only: they are published
here and logged, never acted upon automatically.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, Optional, Tuple

from resources import ResourceHandle

logger = logging.getLogger(__name__)


def _json_default(obj: Any) -> Any:
    """JSON serializer for objects not handled by default json encoder."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


class EventType(Enum):
    """Types of reconciliation events."""

    CREATED = "CREATED"
    UPDATED = "UPDATED"
    REPLACED = "REPLACED"
    DELETED = "DELETED"
    DRIFT_DETECTED = "DRIFT_DETECTED"
    STATUS_ANOMALY = "STATUS_ANOMALY"
    CONVERGENCE_FAILED = "CONVERGENCE_FAILED"


@dataclass
class ReconcileEvent:
    """Event emitted for a remote object."""

    event_type: EventType
    kind: str
    handle_id: Optional[str]
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "kind": self.kind,
            "handle_id": self.handle_id,
            "data": self.data,
            "timestamp": self.timestamp,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=_json_default)

    @classmethod
    def for_handle(
        cls,
        event_type: EventType,
        handle: ResourceHandle,
        **data: Any,
    ) -> "ReconcileEvent":
        """
        Create an event for a resource handle.

        Args:
            event_type: The type of event.
            handle: Handle of the remote object.
            **data: Event payload.

        Returns:
            A new ReconcileEvent instance.
        """
        return cls(event_type=event_type, kind=handle.kind, handle_id=handle.id, data=data)


class EventSubscription:
    """
    Async iterator over the events delivered to one subscriber.

    A ``None`` sentinel value stops iteration.
    """

    def __init__(
        self,
        queue: asyncio.Queue,
        filter_fn: Optional[Callable[["ReconcileEvent"], bool]] = None,
    ):
        self._queue = queue
        self._filter_fn = filter_fn

    def __aiter__(self) -> AsyncIterator["ReconcileEvent"]:
        return self

    async def __anext__(self) -> "ReconcileEvent":
        while True:
            event = await self._queue.get()

            if event is None:
                raise StopAsyncIteration

            if self._filter_fn is None or self._filter_fn(event):
                return event


class EventBus:
    """
    In-memory event bus with one bounded queue per subscriber.

    Publishing never blocks; subscribers with full queues miss events.
    """

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._subscribers: Dict[str, asyncio.Queue] = {}
        self._lock = asyncio.Lock()

    async def publish(self, event: ReconcileEvent) -> None:
        async with self._lock:
            subscribers = list(self._subscribers.items())

        for subscriber_id, queue in subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    f"Dropped {event.event_type.value} event for subscriber "
                    f"{subscriber_id}: queue full"
                )

    async def subscribe(
        self,
        filter_fn: Optional[Callable[[ReconcileEvent], bool]] = None,
    ) -> Tuple[str, EventSubscription]:
        """
        Subscribe to events.

        Args:
            filter_fn: Optional predicate; only matching events are yielded.

        Returns:
            A tuple of ``(subscriber_id, EventSubscription)``.
        """
        subscriber_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)

        async with self._lock:
            self._subscribers[subscriber_id] = queue

        logger.debug(f"New event subscriber: {subscriber_id}")
        return subscriber_id, EventSubscription(queue, filter_fn)

    async def unsubscribe(self, subscriber_id: str) -> None:
        """Remove a subscriber and end its iterator."""
        async with self._lock:
            queue = self._subscribers.pop(subscriber_id, None)

        if queue is not None:
            if queue.full():
                # Drop the oldest event so the end marker always fits
                queue.get_nowait()
            queue.put_nowait(None)
            logger.debug(f"Unsubscribed: {subscriber_id}")

    def subscriber_count(self) -> int:
        return len(self._subscribers)
