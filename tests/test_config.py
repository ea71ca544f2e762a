"""Unit tests for config.py - Configuration management."""

import os
from unittest.mock import patch

from config import (
    AWSConfig,
    Config,
    ControllerConfig,
    HTTPConfig,
    PollConfig,
    RetryConfig,
    TimeoutConfig,
)
from errors import DEFAULT_NOT_FOUND_CODES, DEFAULT_TRANSIENT_CODES


class TestPollConfig:
    """Tests for PollConfig class."""

    def test_default_values(self):
        """Test default configuration values."""
        cfg = PollConfig()
        assert cfg.initial_delay == 2.0
        assert cfg.multiplier == 1.5
        assert cfg.min_delay == 1.0
        assert cfg.max_delay == 30.0
        assert cfg.jitter_factor == 0.1
        assert cfg.not_found_checks == 20

    def test_from_env(self):
        """Test loading configuration from environment variables."""
        env_vars = {
            "POLL_INITIAL_DELAY": "5",
            "POLL_MULTIPLIER": "2",
            "POLL_MIN_DELAY": "3",
            "POLL_MAX_DELAY": "60",
            "POLL_JITTER_FACTOR": "0.25",
            "POLL_NOT_FOUND_CHECKS": "4",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = PollConfig.from_env()
            assert cfg.initial_delay == 5.0
            assert cfg.multiplier == 2.0
            assert cfg.min_delay == 3.0
            assert cfg.max_delay == 60.0
            assert cfg.jitter_factor == 0.25
            assert cfg.not_found_checks == 4

    def test_from_env_defaults(self):
        """Test that from_env falls back to defaults."""
        with patch.dict(os.environ, {}, clear=True):
            assert PollConfig.from_env() == PollConfig()


class TestRetryConfig:
    """Tests for RetryConfig class."""

    def test_default_values(self):
        cfg = RetryConfig()
        assert cfg.max_attempts == 5
        assert cfg.base_delay == 1.0
        assert cfg.max_delay == 20.0
        assert cfg.transient_codes == DEFAULT_TRANSIENT_CODES
        assert cfg.not_found_codes == DEFAULT_NOT_FOUND_CODES

    def test_from_env(self):
        env_vars = {
            "RETRY_MAX_ATTEMPTS": "8",
            "RETRY_BASE_DELAY": "0.5",
            "RETRY_MAX_DELAY": "10",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = RetryConfig.from_env()
            assert cfg.max_attempts == 8
            assert cfg.base_delay == 0.5
            assert cfg.max_delay == 10.0

    def test_from_env_extends_codes(self):
        """Extra codes are added to the defaults, never replacing them."""
        env_vars = {
            "RETRY_TRANSIENT_CODES": "ConcurrentModification, LimitExceeded",
            "RETRY_NOT_FOUND_CODES": "NoSuchEntity",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = RetryConfig.from_env()
            assert "ConcurrentModification" in cfg.transient_codes
            assert "LimitExceeded" in cfg.transient_codes
            assert "ThrottlingException" in cfg.transient_codes
            assert "NoSuchEntity" in cfg.not_found_codes
            assert "ResourceNotFoundException" in cfg.not_found_codes

    def test_from_env_ignores_blank_codes(self):
        with patch.dict(os.environ, {"RETRY_TRANSIENT_CODES": " , ,"}, clear=True):
            cfg = RetryConfig.from_env()
            assert cfg.transient_codes == DEFAULT_TRANSIENT_CODES


class TestTimeoutConfig:
    """Tests for TimeoutConfig class."""

    def test_default_values(self):
        cfg = TimeoutConfig()
        assert cfg.create == 1200.0
        assert cfg.update == 1200.0
        assert cfg.delete == 1200.0

    def test_from_env(self):
        env_vars = {
            "CREATE_TIMEOUT": "1800",
            "UPDATE_TIMEOUT": "300",
            "DELETE_TIMEOUT": "600",
        }
        with patch.dict(os.environ, env_vars, clear=False):
            cfg = TimeoutConfig.from_env()
            assert cfg.create == 1800.0
            assert cfg.update == 300.0
            assert cfg.delete == 600.0


class TestControllerConfig:
    """Tests for ControllerConfig class."""

    def test_default_values(self):
        assert ControllerConfig().max_concurrent_reconciles == 5
        assert ControllerConfig().max_retired_handles == 10000

    def test_from_env(self):
        env = {"MAX_CONCURRENT_RECONCILES": "12", "MAX_RETIRED_HANDLES": "50"}
        with patch.dict(os.environ, env):
            cfg = ControllerConfig.from_env()
            assert cfg.max_concurrent_reconciles == 12
            assert cfg.max_retired_handles == 50


class TestAWSConfig:
    """Tests for AWSConfig class."""

    def test_default_values(self):
        cfg = AWSConfig()
        assert cfg.region is None
        assert cfg.profile is None
        assert cfg.endpoint_url is None

    def test_from_env(self):
        env_vars = {
            "AWS_REGION": "eu-west-1",
            "AWS_PROFILE": "ops",
            "AWS_ENDPOINT_URL": "http://localhost:4566",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = AWSConfig.from_env()
            assert cfg.region == "eu-west-1"
            assert cfg.profile == "ops"
            assert cfg.endpoint_url == "http://localhost:4566"

    def test_from_env_default_region(self):
        with patch.dict(os.environ, {"AWS_DEFAULT_REGION": "us-east-2"}, clear=True):
            assert AWSConfig.from_env().region == "us-east-2"


class TestHTTPConfig:
    """Tests for HTTPConfig class."""

    def test_default_values(self):
        cfg = HTTPConfig()
        assert cfg.base_url == "http://localhost:8080/api/v1"
        assert cfg.token == ""
        assert cfg.request_timeout == 30.0

    def test_from_env(self):
        env_vars = {
            "CONTROL_PLANE_URL": "https://cp.example.com/v2",
            "CONTROL_PLANE_TOKEN": "secret-token",
            "CONTROL_PLANE_TIMEOUT": "5",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = HTTPConfig.from_env()
            assert cfg.base_url == "https://cp.example.com/v2"
            assert cfg.token == "secret-token"
            assert cfg.request_timeout == 5.0

    def test_token_not_in_repr(self):
        """Test that the token is never rendered in logs."""
        cfg = HTTPConfig(token="secret-token")
        assert "secret-token" not in repr(cfg)


class TestConfig:
    """Tests for main Config class."""

    def test_default(self):
        cfg = Config.default()
        assert cfg.poll == PollConfig()
        assert cfg.retry == RetryConfig()
        assert cfg.timeouts == TimeoutConfig()
        assert cfg.controller == ControllerConfig()
        assert cfg.aws == AWSConfig()
        assert cfg.http == HTTPConfig()
        assert cfg.log_level == "INFO"

    def test_from_env(self):
        env_vars = {
            "LOG_LEVEL": "DEBUG",
            "POLL_MAX_DELAY": "45",
            "CREATE_TIMEOUT": "900",
            "AWS_REGION": "ap-southeast-2",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = Config.from_env()
            assert cfg.log_level == "DEBUG"
            assert cfg.poll.max_delay == 45.0
            assert cfg.timeouts.create == 900.0
            assert cfg.aws.region == "ap-southeast-2"
