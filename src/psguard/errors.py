"""
Exception hierarchy for psguard.

Every error carries an ErrorKind so the operation layer can report a stable
(code, kind) pair for it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from psguard._types import ErrorKind

if TYPE_CHECKING:
    from psguard._types import ExecutionResult, ValidationOutcome


class PsGuardError(Exception):
    """Base class for all psguard errors."""

    kind: ErrorKind = ErrorKind.EXECUTION

    @property
    def code(self) -> int:
        return self.kind.code


class ConfigurationError(PsGuardError):
    """Raised when a policy or config cannot be loaded. Fatal at startup."""


class SecurityViolation(PsGuardError):
    """
    Raised when a request is rejected before any process is spawned.

    Attributes:
        outcome: The failed ValidationOutcome (rule, reason, pattern).
        command: The rejected command or script text.
    """

    kind = ErrorKind.SECURITY

    def __init__(self, outcome: ValidationOutcome, command: str = "") -> None:
        self.outcome = outcome
        self.command = command
        self.reason = outcome.reason or "rejected by security policy"
        super().__init__(f"Security violation: {self.reason}")

    @property
    def rule(self) -> str | None:
        return self.outcome.rule


class ExecutionError(PsGuardError):
    """Raised when the interpreter could not be started."""

    kind = ErrorKind.EXECUTION


class CommandFailed(ExecutionError):
    """Raised by ExecutionResult.raise_for_status() for a non-zero exit."""

    def __init__(self, message: str, result: ExecutionResult) -> None:
        self.result = result
        super().__init__(message)


class CommandTimeout(CommandFailed):
    """Raised by ExecutionResult.raise_for_status() when the deadline elapsed."""

    kind = ErrorKind.TIMEOUT


class InvalidParams(PsGuardError):
    """Raised when an operation's parameter map is malformed."""

    kind = ErrorKind.INVALID_PARAMS


class UnknownOperation(PsGuardError):
    """Raised when a batch item names an operation that does not exist."""

    kind = ErrorKind.UNKNOWN_OPERATION
