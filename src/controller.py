"""
Controller - Orchestrates reconciliation of many remote objects.

Runs reconciliations for distinct objects concurrently, bounded by a
semaphore, and serializes create/update/delete against any single object.
Drift found on refresh is reported, never corrected.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Iterable, List, Optional, Tuple, Union

from config import ControllerConfig
from differ import drift_records
from errors import NotFoundError
from events import EventBus, EventType, ReconcileEvent
from reconciler import Reconciler
from resources import DriftRecord, ObservedState, ResourceHandle, ResourceSpec

logger = logging.getLogger(__name__)


@dataclass
class ConvergeResult:
    """Outcome of converging one object on its desired state."""

    action: str
    handle: ResourceHandle
    observed: ObservedState
    drift: List[DriftRecord] = field(default_factory=list)
    duration_seconds: float = 0.0


class Controller:
    """
    Caller-side orchestration around a Reconciler.

    Holds one lock per object so that no two mutating operations ever run
    against the same handle at once.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        config: Optional[ControllerConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.reconciler = reconciler
        self.config = config or ControllerConfig()
        self.max_concurrent_reconciles = self.config.max_concurrent_reconciles
        self.semaphore = asyncio.Semaphore(self.max_concurrent_reconciles)
        self._event_bus = event_bus
        self._locks: Dict[str, asyncio.Lock] = {}
        # Holders plus waiters per lock; a lock is dropped when this hits 0
        self._lock_users: Dict[str, int] = {}

        self._shutdown_event = asyncio.Event()
        if self.reconciler.cancel_event is None:
            self.reconciler.cancel_event = self._shutdown_event

    @asynccontextmanager
    async def _serialized(self, key: str) -> AsyncIterator[None]:
        """Hold the per-object lock for ``key``."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[key] -= 1
            if self._lock_users[key] == 0:
                del self._lock_users[key]
                del self._locks[key]

    @staticmethod
    def _key(
        desired: Optional[ResourceSpec], handle: Optional[ResourceHandle]
    ) -> str:
        if handle is not None:
            return str(handle)
        # No handle yet: serialize on the desired object's identity.
        return f"{desired.kind}:{sorted(desired.fields.items(), key=str)}"

    async def converge(
        self,
        desired: ResourceSpec,
        handle: Optional[ResourceHandle] = None,
    ) -> ConvergeResult:
        """
        Converge one object on ``desired``.

        Creates the object when there is no handle or it vanished
        remotely, replaces it when a force-replacement field changed,
        and otherwise updates the changed mutable fields.

        Args:
            desired: The desired spec.
            handle: Handle of the existing object, if any.

        Returns:
            ConvergeResult with the action taken ('created', 'recreated',
            'replaced', 'updated' or 'noop').
        """
        async with self.semaphore:
            async with self._serialized(self._key(desired, handle)):
                start_time = time.monotonic()
                result = await self._converge(desired, handle)
                result.duration_seconds = time.monotonic() - start_time
                logger.info(
                    f"Converged {result.handle} ({result.action}) "
                    f"in {result.duration_seconds:.1f}s"
                )
                return result

    async def _converge(
        self, desired: ResourceSpec, handle: Optional[ResourceHandle]
    ) -> ConvergeResult:
        if handle is None:
            new_handle, observed = await self.reconciler.create(desired)
            return ConvergeResult("created", new_handle, observed)

        try:
            observed = await self.reconciler.read(handle)
        except NotFoundError:
            logger.warning(f"{handle} not found, recreating")
            new_handle, observed = await self.reconciler.create(desired)
            return ConvergeResult("recreated", new_handle, observed)

        drift = await self._report_drift(desired, observed)
        changed = [record for record in drift if not record.reordered_only]
        if not changed:
            return ConvergeResult("noop", handle, observed, drift)

        immutable = self.reconciler.effective_spec(desired).immutable_fields
        replaced = sorted(r.field for r in changed if r.field in immutable)
        if replaced:
            logger.info(f"Replacing {handle}: immutable fields changed {replaced}")
            await self.reconciler.delete(handle)
            new_handle, observed = await self.reconciler.create(desired)
            await self._publish(
                EventType.REPLACED,
                new_handle,
                previous_handle=handle.id,
                fields=replaced,
            )
            return ConvergeResult("replaced", new_handle, observed, drift)

        observed = await self.reconciler.update(handle, desired, observed)
        return ConvergeResult("updated", handle, observed, drift)

    async def refresh(
        self, handle: ResourceHandle, desired: ResourceSpec
    ) -> Tuple[ObservedState, List[DriftRecord]]:
        """
        Read an object and report how it drifted from ``desired``.

        Raises:
            NotFoundError: The object no longer exists.
        """
        observed = await self.reconciler.read(handle)
        drift = await self._report_drift(desired, observed)
        return observed, drift

    async def destroy(self, handle: ResourceHandle) -> None:
        """Delete an object, serialized with any other operation on it."""
        async with self.semaphore:
            async with self._serialized(self._key(None, handle)):
                await self.reconciler.delete(handle)

    async def converge_all(
        self,
        items: Iterable[Tuple[ResourceSpec, Optional[ResourceHandle]]],
    ) -> List[Union[ConvergeResult, BaseException]]:
        """
        Converge many objects concurrently.

        One failing object never stops the others; its exception is
        returned in place of its result.
        """
        tasks = [self.converge(desired, handle) for desired, handle in items]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Reconciliation failed: {result}")
        return results

    async def stop(self) -> None:
        """Cancel in-flight convergence polling."""
        logger.info("Stopping controller")
        self._shutdown_event.set()

    async def _report_drift(
        self, desired: ResourceSpec, observed: ObservedState
    ) -> List[DriftRecord]:
        drift = drift_records(self.reconciler.effective_spec(desired), observed)

        changed = [record.field for record in drift if not record.reordered_only]
        if changed:
            logger.info(f"Drift detected for {observed.handle}: {changed}")
            await self._publish(
                EventType.DRIFT_DETECTED,
                observed.handle,
                drift=[
                    {
                        "field": record.field,
                        "desired": record.desired,
                        "observed": record.observed,
                        "reordered_only": record.reordered_only,
                    }
                    for record in drift
                ],
            )
        return drift

    async def _publish(
        self, event_type: EventType, handle: ResourceHandle, **data
    ) -> None:
        if self._event_bus:
            await self._event_bus.publish(
                ReconcileEvent.for_handle(event_type, handle, **data)
            )
