"""
Reconciliation errors and remote error classification.

Control plane clients raise ControlPlaneError carrying the remote error
code. The reconciler classifies those codes into transient, not-found and
permanent failures; only transient errors are retried.
"""

from typing import FrozenSet, Iterable, Optional

from resources import ObservedState, ResourceHandle

# Error codes that indicate throttling or a temporary service fault.
DEFAULT_TRANSIENT_CODES: FrozenSet[str] = frozenset(
    {
        "ThrottlingException",
        "Throttling",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "ProvisionedThroughputExceededException",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "InternalServerError",
        "InternalServerException",
        "InternalFailure",
        "RequestTimeout",
        "SlowDown",
        "NetworkError",
        "HTTP_408",
        "HTTP_429",
        "HTTP_500",
        "HTTP_502",
        "HTTP_503",
        "HTTP_504",
    }
)

# Error codes that mean the object does not exist remotely.
DEFAULT_NOT_FOUND_CODES: FrozenSet[str] = frozenset(
    {
        "ResourceNotFoundException",
        "DBSnapshotNotFound",
        "DBSnapshotNotFoundFault",
        "NotFound",
        "HTTP_404",
    }
)


class ReconcileError(Exception):
    """Base class for all reconciliation errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(ReconcileError):
    """Desired spec is malformed; raised before any remote call."""


class RemoteRejected(ReconcileError):
    """The control plane permanently refused the request."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class TransientError(ReconcileError):
    """Throttling or temporary fault. Retried, never surfaced to callers."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


class NotFoundError(ReconcileError):
    """The remote object does not exist."""

    def __init__(self, message: str, handle: Optional[ResourceHandle] = None):
        super().__init__(message)
        self.handle = handle


class ImmutableFieldChanged(ReconcileError):
    """An update touched force-replacement fields."""

    def __init__(self, fields: Iterable[str]):
        self.fields = sorted(fields)
        super().__init__(
            f"Immutable fields changed: {', '.join(self.fields)}. "
            f"Resource must be replaced."
        )


class ConvergenceTimeout(ReconcileError):
    """Polling deadline elapsed; carries the last observed state."""

    def __init__(
        self,
        message: str,
        last_observed: Optional[ObservedState] = None,
        handle: Optional[ResourceHandle] = None,
    ):
        super().__init__(message)
        self.last_observed = last_observed
        self.handle = handle


class RemoteOperationFailed(ReconcileError):
    """The remote object reached a failure status."""

    def __init__(self, message: str, observed: ObservedState):
        super().__init__(message)
        self.observed = observed
        self.handle = observed.handle

    @property
    def status(self):
        return self.observed.status


class Cancelled(ReconcileError):
    """Polling was cancelled by the caller."""

    def __init__(self, message: str, handle: Optional[ResourceHandle] = None):
        super().__init__(message)
        self.handle = handle


class ControlPlaneError(Exception):
    """Error raised by a control plane client, tagged with a remote code."""

    def __init__(self, code: str, message: str = ""):
        self.code = code
        self.message = message or code
        super().__init__(f"{code}: {self.message}")


def classify_error(
    error: ControlPlaneError,
    transient_codes: FrozenSet[str] = DEFAULT_TRANSIENT_CODES,
    not_found_codes: FrozenSet[str] = DEFAULT_NOT_FOUND_CODES,
    handle: Optional[ResourceHandle] = None,
) -> ReconcileError:
    """
    Map a client error onto the reconciliation error taxonomy.

    Args:
        error: The error raised by the control plane client.
        transient_codes: Codes that should be retried.
        not_found_codes: Codes meaning the object does not exist.
        handle: Handle the call was made against, if any.

    Returns:
        A TransientError, NotFoundError or RemoteRejected instance.
    """
    if error.code in not_found_codes:
        return NotFoundError(error.message, handle=handle)
    if error.code in transient_codes:
        return TransientError(error.message, code=error.code)
    return RemoteRejected(error.message, code=error.code)
