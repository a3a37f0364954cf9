"""Tests for error hierarchy."""

from opsdeck.errors import (
    AuthError,
    CommandBlocked,
    ConfigError,
    ExecutionError,
    InvalidOperation,
    NoTokenAvailable,
    NotAllowlisted,
    OpsdeckError,
    ProtocolError,
    StreamTimeoutError,
    UpstreamError,
    ValidationError,
)
from opsdeck.exception_handlers import status_for_error


def test_hierarchy() -> None:
    for cls in (ValidationError, ExecutionError, AuthError, ProtocolError, ConfigError):
        assert issubclass(cls, OpsdeckError)
    assert issubclass(NotAllowlisted, ValidationError)
    assert issubclass(InvalidOperation, ValidationError)
    assert issubclass(CommandBlocked, ValidationError)
    assert issubclass(NoTokenAvailable, ConfigError)


def test_retryable_flags() -> None:
    assert OpsdeckError("x").retryable is False
    assert AuthError("x").retryable is False
    assert UpstreamError("x", status_code=503).retryable is True
    assert UpstreamError("x", status_code=404).retryable is False
    assert StreamTimeoutError("x", total_bytes=12).total_bytes == 12


def test_status_mapping() -> None:
    assert status_for_error(NotAllowlisted("x")) == 403
    assert status_for_error(CommandBlocked("x")) == 403
    assert status_for_error(InvalidOperation("x")) == 400
    assert status_for_error(AuthError("x")) == 502
    assert status_for_error(UpstreamError("x", status_code=404)) == 404
    assert status_for_error(ConfigError("x")) == 500
    assert status_for_error(NoTokenAvailable("x")) == 500
