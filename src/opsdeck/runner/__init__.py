"""Execution gateway: allowlisted operations and filtered shell access."""

from opsdeck.runner.allowlist import AllowlistConfig, AllowlistHolder, AllowlistStore, validate_request
from opsdeck.runner.operations import ExecutionResult, Operation, OperationRequest
from opsdeck.runner.shell import ShellResult

__all__ = [
    "AllowlistConfig",
    "AllowlistHolder",
    "AllowlistStore",
    "ExecutionResult",
    "Operation",
    "OperationRequest",
    "ShellResult",
    "validate_request",
]
