"""
Unit tests for reactor configuration and status codes.
"""

import pytest

from portreactor.config import ReactorConfig, ClientPolicy, AcceptErrorPolicy
from portreactor.errors import (
    ReactorStatus,
    ReactorError,
    ListenerSetupError,
    NonBlockingError,
    WaitError,
    AcceptError,
    ErrorQueryError,
)


class TestReactorConfig:
    """Tests for ReactorConfig."""

    def test_defaults(self):
        config = ReactorConfig()

        assert config.host == "0.0.0.0"
        assert config.backlog == 4
        assert config.poll_timeout == 1.0
        assert config.client_policy is ClientPolicy.MULTIPLE
        assert config.accept_errors is AcceptErrorPolicy.FATAL
        config.validate()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("REACTOR_HOST", "127.0.0.1")
        monkeypatch.setenv("REACTOR_BACKLOG", "16")
        monkeypatch.setenv("REACTOR_TIMEOUT", "0.25")
        monkeypatch.setenv("REACTOR_BUFFER_SIZE", "512")
        monkeypatch.setenv("REACTOR_CLIENT_POLICY", "single")
        monkeypatch.setenv("REACTOR_ACCEPT_ERRORS", "tolerate-transient")
        monkeypatch.setenv("REACTOR_LOG_LEVEL", "DEBUG")

        config = ReactorConfig.from_env()

        assert config.host == "127.0.0.1"
        assert config.backlog == 16
        assert config.poll_timeout == 0.25
        assert config.buffer_size == 512
        assert config.client_policy is ClientPolicy.SINGLE
        assert config.accept_errors is AcceptErrorPolicy.TOLERATE_TRANSIENT
        assert config.log_level == "DEBUG"

    def test_from_env_rejects_unknown_policy(self, monkeypatch):
        monkeypatch.setenv("REACTOR_CLIENT_POLICY", "several")

        with pytest.raises(ValueError):
            ReactorConfig.from_env()

    @pytest.mark.parametrize("kwargs", [
        {"backlog": 0},
        {"poll_timeout": -1.0},
        {"poll_timeout": None},
        {"buffer_size": 0},
        {"client_policy": "single"},
        {"accept_errors": True},
    ])
    def test_validate_rejects(self, kwargs):
        with pytest.raises(ValueError):
            ReactorConfig(**kwargs).validate()

    def test_zero_timeout_allowed(self):
        ReactorConfig(poll_timeout=0).validate()


class TestReactorStatus:
    """Tests for status codes and the exceptions carrying them."""

    def test_codes(self):
        assert ReactorStatus.OK == 0
        assert ReactorStatus.SOCKET_FAILED == -1
        assert ReactorStatus.BIND_FAILED == -2
        assert ReactorStatus.NONBLOCKING_FAILED == -3
        assert ReactorStatus.LISTEN_FAILED == -4
        assert ReactorStatus.WAIT_FAILED == -5
        assert ReactorStatus.ACCEPT_FAILED == -6
        assert ReactorStatus.ERROR_QUERY_FAILED == -7

    def test_every_failure_is_distinct_and_negative(self):
        failures = [s for s in ReactorStatus if s.is_error]

        assert len(failures) == 7
        assert all(s < 0 for s in failures)
        assert len({s.phase for s in ReactorStatus}) == len(ReactorStatus)

    @pytest.mark.parametrize("phase,status", [
        ("socket", ReactorStatus.SOCKET_FAILED),
        ("bind", ReactorStatus.BIND_FAILED),
        ("nonblocking", ReactorStatus.NONBLOCKING_FAILED),
        ("listen", ReactorStatus.LISTEN_FAILED),
    ])
    def test_listener_setup_error_status(self, phase, status):
        error = ListenerSetupError("failed", phase=phase, port=9000)

        assert error.status is status
        assert error.phase == phase
        assert error.port == 9000
        assert error.opened == []

    @pytest.mark.parametrize("error_type,status", [
        (NonBlockingError, ReactorStatus.NONBLOCKING_FAILED),
        (WaitError, ReactorStatus.WAIT_FAILED),
        (AcceptError, ReactorStatus.ACCEPT_FAILED),
        (ErrorQueryError, ReactorStatus.ERROR_QUERY_FAILED),
    ])
    def test_exception_status(self, error_type, status):
        error = error_type("boom")

        assert isinstance(error, ReactorError)
        assert error.status is status
        assert str(error) == "boom"
