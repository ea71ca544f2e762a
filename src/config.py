"""
Configuration module for the remote reconciler.

Loads configuration from environment variables. Configuration objects are
passed explicitly to the components that need them.
"""

import os
from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from errors import DEFAULT_NOT_FOUND_CODES, DEFAULT_TRANSIENT_CODES


def _codes_from_env(name: str, default: FrozenSet[str]) -> FrozenSet[str]:
    """Extend a default code set with comma separated codes from the env."""
    extra = os.getenv(name, "")
    codes = {c.strip() for c in extra.split(",") if c.strip()}
    return frozenset(default | codes)


@dataclass
class PollConfig:
    """Convergence polling configuration."""

    initial_delay: float = 2.0  # seconds
    multiplier: float = 1.5
    min_delay: float = 1.0  # floor between polls
    max_delay: float = 30.0  # ceiling between polls
    jitter_factor: float = 0.1  # ±10% jitter
    not_found_checks: int = 20

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            initial_delay=float(os.getenv("POLL_INITIAL_DELAY", "2.0")),
            multiplier=float(os.getenv("POLL_MULTIPLIER", "1.5")),
            min_delay=float(os.getenv("POLL_MIN_DELAY", "1.0")),
            max_delay=float(os.getenv("POLL_MAX_DELAY", "30.0")),
            jitter_factor=float(os.getenv("POLL_JITTER_FACTOR", "0.1")),
            not_found_checks=int(os.getenv("POLL_NOT_FOUND_CHECKS", "20")),
        )


@dataclass
class RetryConfig:
    """Retry configuration for transient remote errors."""

    max_attempts: int = 5
    base_delay: float = 1.0  # seconds
    max_delay: float = 20.0  # seconds
    transient_codes: FrozenSet[str] = DEFAULT_TRANSIENT_CODES
    not_found_codes: FrozenSet[str] = DEFAULT_NOT_FOUND_CODES

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            max_attempts=int(os.getenv("RETRY_MAX_ATTEMPTS", "5")),
            base_delay=float(os.getenv("RETRY_BASE_DELAY", "1.0")),
            max_delay=float(os.getenv("RETRY_MAX_DELAY", "20.0")),
            transient_codes=_codes_from_env(
                "RETRY_TRANSIENT_CODES", DEFAULT_TRANSIENT_CODES
            ),
            not_found_codes=_codes_from_env(
                "RETRY_NOT_FOUND_CODES", DEFAULT_NOT_FOUND_CODES
            ),
        )


@dataclass
class TimeoutConfig:
    """Default per-operation convergence deadlines (seconds)."""

    create: float = 1200.0
    update: float = 1200.0
    delete: float = 1200.0

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            create=float(os.getenv("CREATE_TIMEOUT", "1200")),
            update=float(os.getenv("UPDATE_TIMEOUT", "1200")),
            delete=float(os.getenv("DELETE_TIMEOUT", "1200")),
        )


@dataclass
class ControllerConfig:
    """Controller concurrency and bookkeeping configuration."""

    max_concurrent_reconciles: int = 5
    max_retired_handles: int = 10000  # deleted handles remembered

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            max_concurrent_reconciles=int(os.getenv("MAX_CONCURRENT_RECONCILES", "5")),
            max_retired_handles=int(os.getenv("MAX_RETIRED_HANDLES", "10000")),
        )


@dataclass
class AWSConfig:
    """AWS control plane configuration."""

    region: Optional[str] = None
    profile: Optional[str] = None
    endpoint_url: Optional[str] = None

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            region=os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION"),
            profile=os.getenv("AWS_PROFILE"),
            endpoint_url=os.getenv("AWS_ENDPOINT_URL"),
        )


@dataclass
class HTTPConfig:
    """Generic HTTP control plane configuration."""

    base_url: str = "http://localhost:8080/api/v1"
    token: str = field(default="", repr=False)  # Never log token
    request_timeout: float = 30.0

    @classmethod
    def from_env(cls):
        """Load from environment variables."""
        return cls(
            base_url=os.getenv("CONTROL_PLANE_URL", "http://localhost:8080/api/v1"),
            token=os.getenv("CONTROL_PLANE_TOKEN", ""),
            request_timeout=float(os.getenv("CONTROL_PLANE_TIMEOUT", "30")),
        )


@dataclass
class Config:
    """Main configuration object."""

    poll: PollConfig
    retry: RetryConfig
    timeouts: TimeoutConfig
    controller: ControllerConfig
    aws: AWSConfig
    http: HTTPConfig
    log_level: str = "INFO"

    @classmethod
    def from_env(cls):
        """Load all configuration from environment variables."""
        return cls(
            poll=PollConfig.from_env(),
            retry=RetryConfig.from_env(),
            timeouts=TimeoutConfig.from_env(),
            controller=ControllerConfig.from_env(),
            aws=AWSConfig.from_env(),
            http=HTTPConfig.from_env(),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    @classmethod
    def default(cls):
        """Return default configuration."""
        return cls(
            poll=PollConfig(),
            retry=RetryConfig(),
            timeouts=TimeoutConfig(),
            controller=ControllerConfig(),
            aws=AWSConfig(),
            http=HTTPConfig(),
        )
