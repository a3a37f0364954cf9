"""Opsdeck exception hierarchy.

All opsdeck-specific exceptions inherit from OpsdeckError,
enabling structured error handling and cleaner catch clauses.
"""


class OpsdeckError(Exception):
    """Base exception for all opsdeck errors."""

    def __init__(self, message: str = "", *, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class ValidationError(OpsdeckError):
    """Request rejected before execution (bad body, unknown op, target not allowed)."""


class NotAllowlisted(ValidationError):
    """A target identifier is absent from the current allowlist."""


class InvalidOperation(ValidationError):
    """The requested operation is not one of the recognized operations."""


class CommandBlocked(ValidationError):
    """A raw shell command matched the destructive-command blocklist."""


class ExecutionError(OpsdeckError):
    """Subprocess failed: non-zero exit, spawn failure, timeout or output overflow."""


class AuthError(OpsdeckError):
    """Upstream rejected our credentials."""

    def __init__(self, message: str = "", *, status_code: int = 401) -> None:
        super().__init__(message, retryable=False)
        self.status_code = status_code


class UpstreamError(OpsdeckError):
    """Non-auth HTTP failure from an upstream API."""

    def __init__(self, message: str = "", *, status_code: int = 502) -> None:
        super().__init__(message, retryable=status_code >= 500)
        self.status_code = status_code


class ProtocolError(OpsdeckError):
    """Malformed multiplexed log frame."""


class ConfigError(OpsdeckError):
    """Invalid or missing configuration."""


class NoTokenAvailable(ConfigError):
    """No container-management token could be found in any source."""


class StreamTimeoutError(OpsdeckError):
    """A streaming session exhausted its poll budget."""

    def __init__(self, message: str = "", *, total_bytes: int = 0) -> None:
        super().__init__(message, retryable=True)
        self.total_bytes = total_bytes
