"""
Poller - Waits for a remote object to converge on a target status.

Reads the object repeatedly with capped exponential backoff until the
convergence target is met, a failure status is seen, the deadline
elapses, or the caller cancels.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, FrozenSet, List, Optional

from config import PollConfig
from errors import (
    Cancelled,
    ConvergenceTimeout,
    NotFoundError,
    RemoteOperationFailed,
    TransientError,
)
from events import EventBus, EventType, ReconcileEvent
from resources import (
    ConvergenceTarget,
    LifecycleStatus,
    ObservedState,
    ResourceHandle,
    StatusAnomaly,
    status_regressed,
)

logger = logging.getLogger(__name__)

ReadFn = Callable[[ResourceHandle], Awaitable[ObservedState]]

DEFAULT_FAILURE_STATUSES: FrozenSet[LifecycleStatus] = frozenset(
    {LifecycleStatus.FAILED}
)


@dataclass
class BackoffPolicy:
    """Delay schedule between polls."""

    initial_delay: float = 2.0
    multiplier: float = 1.5
    min_delay: float = 1.0
    max_delay: float = 30.0
    jitter_factor: float = 0.1

    @classmethod
    def from_config(cls, config: PollConfig) -> "BackoffPolicy":
        return cls(
            initial_delay=config.initial_delay,
            multiplier=config.multiplier,
            min_delay=config.min_delay,
            max_delay=config.max_delay,
            jitter_factor=config.jitter_factor,
        )

    def delay(self, attempt: int) -> float:
        """
        Delay before poll number ``attempt + 1``.

        Growth is exponential, jittered by ±jitter_factor and always
        clamped to [min_delay, max_delay].
        """
        base = self.initial_delay * (self.multiplier**attempt)
        if self.jitter_factor:
            base *= 1 + random.uniform(-self.jitter_factor, self.jitter_factor)
        return max(self.min_delay, min(self.max_delay, base))


@dataclass
class PollOutcome:
    """Result of a converged poll sequence."""

    observed: Optional[ObservedState]
    polls: int = 0
    anomalies: List[StatusAnomaly] = field(default_factory=list)

    @property
    def gone(self) -> bool:
        return self.observed is None


class Poller:
    """
    Polls a read function until a convergence target is satisfied.

    A single transient read error never aborts the sequence. Permanent
    read errors propagate unchanged.
    """

    def __init__(
        self,
        read: ReadFn,
        backoff: Optional[BackoffPolicy] = None,
        not_found_checks: int = 20,
        event_bus: Optional[EventBus] = None,
    ):
        self.read = read
        self.backoff = backoff or BackoffPolicy()
        self.not_found_checks = not_found_checks
        self._event_bus = event_bus

    async def poll(
        self,
        handle: ResourceHandle,
        target: ConvergenceTarget,
        timeout: float,
        failure_statuses: FrozenSet[LifecycleStatus] = DEFAULT_FAILURE_STATUSES,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> PollOutcome:
        """
        Wait until ``handle`` satisfies ``target``.

        Args:
            handle: The remote object to poll.
            target: Convergence predicate.
            timeout: Deadline in seconds from now.
            failure_statuses: Statuses that can never converge.
            cancel_event: Setting this event stops polling promptly.

        Returns:
            PollOutcome; ``observed`` is None when the object is gone and
            the target accepts that.

        Raises:
            RemoteOperationFailed: A failure status was observed.
            ConvergenceTimeout: The deadline elapsed first.
            Cancelled: ``cancel_event`` was set.
            NotFoundError: The object vanished and the target does not
                accept it.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        last_observed: Optional[ObservedState] = None
        last_status: Optional[LifecycleStatus] = None
        anomalies: List[StatusAnomaly] = []
        not_found_count = 0
        polls = 0
        attempt = 0

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise Cancelled(f"Polling {handle} cancelled", handle=handle)

            try:
                observed = await self.read(handle)
            except NotFoundError:
                if target.accept_not_found:
                    logger.debug(
                        f"{handle} not found, treating as {target.description}"
                    )
                    return PollOutcome(observed=None, polls=polls, anomalies=anomalies)
                not_found_count += 1
                if not_found_count > self.not_found_checks:
                    raise
                logger.debug(
                    f"{handle} not found yet "
                    f"({not_found_count}/{self.not_found_checks}), retrying"
                )
            except TransientError as e:
                logger.warning(f"Transient error polling {handle}: {e}")
            else:
                polls += 1
                not_found_count = 0

                if status_regressed(last_status, observed.status):
                    anomaly = StatusAnomaly(
                        handle=handle,
                        previous=last_status,
                        current=observed.status,
                        poll=polls,
                    )
                    anomalies.append(anomaly)
                    await self._report_anomaly(anomaly)

                last_observed = observed
                last_status = observed.status

                if target.is_satisfied(observed.status):
                    logger.info(
                        f"{handle} reached {observed.status.value} "
                        f"after {polls} poll(s)"
                    )
                    return PollOutcome(
                        observed=observed, polls=polls, anomalies=anomalies
                    )

                if observed.status in failure_statuses:
                    raise RemoteOperationFailed(
                        f"{handle} entered failure status "
                        f"{observed.raw_status or observed.status.value}",
                        observed=observed,
                    )

                logger.debug(
                    f"{handle} status: {observed.status.value}, "
                    f"waiting for {target.description}"
                )

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ConvergenceTimeout(
                    f"Timed out after {timeout}s waiting for {handle} "
                    f"to become {target.description}",
                    last_observed=last_observed,
                    handle=handle,
                )

            delay = min(self.backoff.delay(attempt), remaining)
            await self._sleep(delay, cancel_event, handle)
            attempt += 1

    async def _sleep(
        self,
        delay: float,
        cancel_event: Optional[asyncio.Event],
        handle: ResourceHandle,
    ) -> None:
        """Suspend for ``delay`` seconds, waking early on cancellation."""
        if cancel_event is None:
            await asyncio.sleep(delay)
            return

        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise Cancelled(f"Polling {handle} cancelled", handle=handle)

    async def _report_anomaly(self, anomaly: StatusAnomaly) -> None:
        logger.warning(
            f"Status regression for {anomaly.handle}: "
            f"{anomaly.previous.value} -> {anomaly.current.value} "
            f"(poll {anomaly.poll})"
        )
        if self._event_bus:
            await self._event_bus.publish(
                ReconcileEvent.for_handle(
                    EventType.STATUS_ANOMALY,
                    anomaly.handle,
                    previous=anomaly.previous.value,
                    current=anomaly.current.value,
                    poll=anomaly.poll,
                )
            )
