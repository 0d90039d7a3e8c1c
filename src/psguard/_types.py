"""
Core type definitions for psguard.

Uses dataclasses for lightweight, typed, immutable records.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(Enum):
    """Stable (code, type) pairs reported for failed operations."""

    SECURITY = (-32001, "Security")
    TIMEOUT = (-32002, "Timeout")
    EXECUTION = (-32003, "Execution")
    UNKNOWN_OPERATION = (-32601, "UnknownOperation")
    INVALID_PARAMS = (-32602, "InvalidParams")

    @property
    def code(self) -> int:
        return self.value[0]

    @property
    def error_type(self) -> str:
        return self.value[1]


def _compact(data: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in data.items() if value is not None}


@dataclass(frozen=True, slots=True)
class ValidationOutcome:
    """
    Result of a validator or guard call.

    `rule` names the policy clause that fired (e.g. "blocked_pattern",
    "allowed_commands", "path_traversal") and is stable for tests and audit.
    `line` is the 1-based script line for per-line failures.
    """

    valid: bool
    reason: str | None = None
    rule: str | None = None
    pattern: str | None = None
    line: int | None = None

    @classmethod
    def ok(cls) -> ValidationOutcome:
        return cls(valid=True)

    @classmethod
    def fail(
        cls,
        rule: str,
        reason: str,
        *,
        pattern: str | None = None,
        line: int | None = None,
    ) -> ValidationOutcome:
        return cls(valid=False, reason=reason, rule=rule, pattern=pattern, line=line)

    def __bool__(self) -> bool:
        return self.valid

    def to_dict(self) -> dict[str, Any]:
        return _compact(asdict(self))


@dataclass(frozen=True, slots=True)
class ExecutionRequest:
    """One command or script submission. Created per call, never persisted."""

    command_or_script: str
    is_script: bool
    timeout_seconds: float
    working_directory: str | None = None
    environment_overrides: dict[str, str] = field(default_factory=dict)
    allow_shell_access: bool = False
    script_name: str | None = None

    @property
    def operation(self) -> str:
        return "execute_script" if self.is_script else "execute_command"


@dataclass(frozen=True, slots=True)
class ExecutionResult:
    """
    Immutable result from command or script execution.

    When `timed_out` is True the process was killed and `exit_code` is -1;
    stdout/stderr hold whatever was captured before the kill.
    """

    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    timed_out: bool = False
    lines_executed: int | None = None
    command: str | None = None
    working_directory: str | None = None
    script_name: str | None = None

    @property
    def success(self) -> bool:
        """Return True if the process ran to completion with exit code 0."""
        return self.exit_code == 0 and not self.timed_out

    @property
    def error_kind(self) -> ErrorKind | None:
        if self.timed_out:
            return ErrorKind.TIMEOUT
        if self.exit_code != 0:
            return ErrorKind.EXECUTION
        return None

    def raise_for_status(self) -> None:
        """Raise CommandTimeout or CommandFailed unless the run succeeded."""
        from psguard.errors import CommandFailed, CommandTimeout

        if self.timed_out:
            raise CommandTimeout(f"Command timed out after {self.duration_ms}ms", self)
        if self.exit_code != 0:
            raise CommandFailed(
                f"Command failed with exit code {self.exit_code}: {self.stderr or self.stdout}",
                self,
            )

    def to_dict(self) -> dict[str, Any]:
        return _compact(asdict(self))


@dataclass(frozen=True, slots=True)
class CommandExistsResult:
    """Outcome of a command availability lookup."""

    exists: bool
    command: str
    path: str | None = None
    version: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _compact(asdict(self))
