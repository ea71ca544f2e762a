"""
Reconciler - Drives a remote object through create, update and delete.

Every mutating call is followed by convergence polling. Transient remote
errors are retried with exponential backoff; every other failure
propagates to the caller unchanged.
"""

import asyncio
import logging
from collections import OrderedDict
from typing import Any, Awaitable, Callable, FrozenSet, Optional, Set, Tuple, Type

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from clients.base import ControlPlaneClient
from config import Config
from differ import changed_values, diff, project, values_equal
from errors import (
    ControlPlaneError,
    ConvergenceTimeout,
    ImmutableFieldChanged,
    NotFoundError,
    ReconcileError,
    RemoteOperationFailed,
    RemoteRejected,
    TransientError,
    classify_error,
)
from events import EventBus, EventType, ReconcileEvent
from kinds.base import ResourceKind
from kinds.registry import KindRegistry
from poller import BackoffPolicy, PollOutcome, Poller
from resources import (
    ConvergenceTarget,
    LifecycleStatus,
    ObservedState,
    ResourceHandle,
    ResourceSpec,
)

logger = logging.getLogger(__name__)

FAILURE_STATUSES: FrozenSet[LifecycleStatus] = frozenset({LifecycleStatus.FAILED})


class Reconciler:
    """
    Converges remote objects on their desired state.

    The reconciler holds no per-handle locks: callers must not run
    create, update or delete concurrently against the same handle.
    Operations on distinct handles may run concurrently.
    """

    def __init__(
        self,
        client: ControlPlaneClient,
        registry: KindRegistry,
        config: Optional[Config] = None,
        event_bus: Optional[EventBus] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ):
        self.client = client
        self.registry = registry
        self.config = config or Config.default()
        self.cancel_event = cancel_event
        self._event_bus = event_bus
        self.poller = Poller(
            read=self._observe,
            backoff=BackoffPolicy.from_config(self.config.poll),
            not_found_checks=self.config.poll.not_found_checks,
            event_bus=event_bus,
        )
        # Handles discarded by a successful delete, oldest first
        self._retired: "OrderedDict[ResourceHandle, None]" = OrderedDict()
        self.max_retired_handles = self.config.controller.max_retired_handles

    # ==================== Operations ====================

    async def create(
        self, spec: ResourceSpec, cancel_event: Optional[asyncio.Event] = None
    ) -> Tuple[ResourceHandle, ObservedState]:
        """
        Create a remote object and wait until it is available.

        Args:
            spec: Desired state. Validated before any remote call.
            cancel_event: Stops convergence polling when set.

        Returns:
            The new handle and the final observed state.

        Raises:
            ValidationError: The spec is malformed or its kind unknown.
            RemoteRejected: The control plane refused the request.
            ConvergenceTimeout: The object did not become available in
                time. The handle on the error is still valid.
            RemoteOperationFailed: The object entered a failure status.
            Cancelled: Polling was cancelled; the handle is still valid.
        """
        kind = self.registry.get_kind(spec.kind)
        kind.validate(spec.fields)
        spec = self.effective_spec(spec, kind)

        handle_id = await self._call(
            f"create {spec.kind}", self.client.create, spec.kind, spec.fields
        )
        handle = ResourceHandle(kind=spec.kind, id=handle_id)
        self._retired.pop(handle, None)
        logger.info(f"Creating {handle}, waiting for it to become available")

        outcome = await self._converge(
            handle,
            ConvergenceTarget.available(),
            self._timeout(kind, "create"),
            cancel_event,
        )
        observed = outcome.observed
        await self._publish(EventType.CREATED, handle, status=observed.status.value)

        # Fields the control plane only accepts once the object exists.
        deferred = kind.deferred_fields & set(spec.fields)
        if deferred:
            result = diff(spec, project(spec, observed))
            pending = result.changed_mutable & deferred
            if pending:
                observed = await self._apply_update(
                    kind, handle, spec, pending, cancel_event
                )

        return handle, observed

    async def read(self, handle: ResourceHandle) -> ObservedState:
        """
        Read the current state of a remote object.

        Raises:
            NotFoundError: The object does not exist; callers should drop
                the handle.
        """
        if handle in self._retired:
            raise NotFoundError(f"{handle} has been deleted", handle=handle)

        return await self._call(f"read {handle}", self._observe, handle, handle=handle)

    async def update(
        self,
        handle: ResourceHandle,
        desired: ResourceSpec,
        observed: ObservedState,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ObservedState:
        """
        Bring mutable fields of a remote object in line with ``desired``.

        Returns ``observed`` unchanged, without any remote call, when
        nothing differs.

        Raises:
            ValidationError: The desired spec is malformed.
            ImmutableFieldChanged: A force-replacement field differs. No
                remote call is made.
            NotFoundError: The object no longer exists.
        """
        if handle in self._retired:
            raise NotFoundError(f"{handle} has been deleted", handle=handle)

        kind = self.registry.get_kind(desired.kind)
        kind.validate(desired.fields)
        desired = self.effective_spec(desired, kind)

        result = diff(desired, project(desired, observed))
        if not result.has_changes:
            logger.debug(f"{handle} already matches desired state")
            return observed

        if result.changed_immutable:
            raise ImmutableFieldChanged(result.changed_immutable)

        return await self._apply_update(
            kind, handle, desired, result.changed_mutable, cancel_event
        )

    async def delete(
        self, handle: ResourceHandle, cancel_event: Optional[asyncio.Event] = None
    ) -> None:
        """
        Delete a remote object and wait until it is gone.

        Deleting an object that no longer exists succeeds. Deletion is
        always safe to retry, including after a ConvergenceTimeout.

        Kinds with ``pre_delete_fields`` (a Batch queue must be disabled)
        are updated to those values and polled until settled first.
        """
        if handle in self._retired:
            logger.debug(f"{handle} already deleted")
            return

        kind = self.registry.get_kind(handle.kind)

        try:
            if kind.pre_delete_fields:
                await self._prepare_delete(kind, handle, cancel_event)
            await self._call(
                f"delete {handle}",
                self.client.delete,
                handle.kind,
                handle.id,
                handle=handle,
            )
        except NotFoundError:
            logger.info(f"{handle} already gone")
            self._retire(handle)
            return

        await self._converge(
            handle,
            ConvergenceTarget.deleted(),
            self._timeout(kind, "delete"),
            cancel_event,
        )
        self._retire(handle)
        await self._publish(EventType.DELETED, handle)
        logger.info(f"Deleted {handle}")

    # ==================== Helpers ====================

    async def _prepare_delete(
        self,
        kind: Type[ResourceKind],
        handle: ResourceHandle,
        cancel_event: Optional[asyncio.Event],
    ) -> None:
        """
        Apply the kind's pre-delete values and wait for the object to settle.

        Waiting goes through the Poller under the delete deadline, never
        through the transient retry budget.
        """
        observed = await self.read(handle)
        if observed.status in (LifecycleStatus.DELETING, LifecycleStatus.DELETED):
            return

        pending = {
            name: value
            for name, value in kind.pre_delete_fields.items()
            if not values_equal(value, observed.fields.get(name))
        }
        if pending:
            logger.info(f"Preparing {handle} for deletion: {pending}")
            await self._call(
                f"update {handle}",
                self.client.update,
                handle.kind,
                handle.id,
                pending,
                handle=handle,
            )

        settling = observed.status in (
            LifecycleStatus.PENDING,
            LifecycleStatus.UPDATING,
            LifecycleStatus.UNKNOWN,
        )
        if pending or settling:
            await self._converge(
                handle,
                ConvergenceTarget.settled(),
                self._timeout(kind, "delete"),
                cancel_event,
            )

    async def _apply_update(
        self,
        kind: Type[ResourceKind],
        handle: ResourceHandle,
        desired: ResourceSpec,
        field_names: Set[str],
        cancel_event: Optional[asyncio.Event],
    ) -> ObservedState:
        changed = changed_values(desired, field_names)
        logger.info(f"Updating {handle}: {sorted(changed)}")

        await self._call(
            f"update {handle}",
            self.client.update,
            handle.kind,
            handle.id,
            changed,
            handle=handle,
        )

        if kind.synchronous_update:
            observed = await self.read(handle)
        else:
            outcome = await self._converge(
                handle,
                ConvergenceTarget.stable(),
                self._timeout(kind, "update"),
                cancel_event,
            )
            observed = outcome.observed

        await self._publish(EventType.UPDATED, handle, fields=sorted(changed))
        return observed

    async def _observe(self, handle: ResourceHandle) -> ObservedState:
        """Single read without retries; errors are classified."""
        kind = self.registry.get_kind(handle.kind)
        try:
            remote = await self.client.read(handle.kind, handle.id)
        except ControlPlaneError as e:
            raise self._classify(e, handle) from e

        return ObservedState(
            handle=handle,
            fields=dict(remote.fields),
            status=kind.lifecycle_status(remote.status),
            raw_status=remote.status,
        )

    async def _converge(
        self,
        handle: ResourceHandle,
        target: ConvergenceTarget,
        timeout: float,
        cancel_event: Optional[asyncio.Event],
    ) -> PollOutcome:
        try:
            return await self.poller.poll(
                handle,
                target,
                timeout=timeout,
                failure_statuses=FAILURE_STATUSES,
                cancel_event=cancel_event or self.cancel_event,
            )
        except (ConvergenceTimeout, RemoteOperationFailed) as e:
            logger.error(f"{handle} did not become {target.description}: {e}")
            await self._publish(
                EventType.CONVERGENCE_FAILED,
                handle,
                target=target.description,
                error=str(e),
            )
            raise

    async def _call(
        self,
        description: str,
        fn: Callable[..., Awaitable[Any]],
        *args: Any,
        handle: Optional[ResourceHandle] = None,
    ) -> Any:
        """
        Invoke a remote call, retrying transient failures.

        Raises:
            RemoteRejected: Permanent failure, or retries exhausted.
            NotFoundError: The object does not exist.
        """
        retry_config = self.config.retry
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(retry_config.max_attempts),
                wait=wait_exponential(
                    multiplier=retry_config.base_delay, max=retry_config.max_delay
                ),
                retry=retry_if_exception_type(TransientError),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    try:
                        return await fn(*args)
                    except ControlPlaneError as e:
                        raise self._classify(e, handle) from e
        except TransientError as e:
            raise RemoteRejected(
                f"{description} failed after {retry_config.max_attempts} "
                f"attempts: {e.message}",
                code=e.code,
            ) from e

    def _classify(
        self, error: ControlPlaneError, handle: Optional[ResourceHandle]
    ) -> ReconcileError:
        return classify_error(
            error,
            transient_codes=self.config.retry.transient_codes,
            not_found_codes=self.config.retry.not_found_codes,
            handle=handle,
        )

    def effective_spec(
        self, spec: ResourceSpec, kind: Optional[Type[ResourceKind]] = None
    ) -> ResourceSpec:
        """Merge the kind's declared field rules into ``spec``."""
        kind = kind or self.registry.get_kind(spec.kind)
        return ResourceSpec(
            kind=spec.kind,
            fields=spec.fields,
            immutable_fields=spec.immutable_fields | kind.immutable_fields,
            unordered_fields=spec.unordered_fields | kind.unordered_fields,
        )

    def _timeout(self, kind: Type[ResourceKind], operation: str) -> float:
        override = getattr(kind, f"{operation}_timeout", None)
        if override is not None:
            return override
        return getattr(self.config.timeouts, operation)

    def _retire(self, handle: ResourceHandle) -> None:
        self._retired[handle] = None
        self._retired.move_to_end(handle)
        while len(self._retired) > self.max_retired_handles:
            self._retired.popitem(last=False)

    async def _publish(
        self, event_type: EventType, handle: ResourceHandle, **data: Any
    ) -> None:
        if self._event_bus:
            await self._event_bus.publish(
                ReconcileEvent.for_handle(event_type, handle, **data)
            )
