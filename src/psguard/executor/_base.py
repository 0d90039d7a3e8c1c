"""
Abstract base class for executors.

The operation layer only talks to this interface, so tests and hosts can
substitute their own implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from psguard._types import ExecutionResult


class Executor(ABC):
    """
    Runs already-validated commands and scripts under a deadline.

    Implementations never validate: callers must have applied the policy
    first.
    """

    @abstractmethod
    async def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ExecutionResult:
        """
        Run `argv` directly (no shell) and return the captured result.

        Raises:
            ExecutionError: If the process could not be started.
        """
        ...

    @abstractmethod
    async def run_command(
        self,
        command: str,
        *,
        timeout: float,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        allow_shell_access: bool = False,
    ) -> ExecutionResult:
        """Run a single command line through the interpreter."""
        ...

    @abstractmethod
    async def run_script(
        self,
        script: str,
        *,
        timeout: float,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        allow_shell_access: bool = True,
        script_name: str | None = None,
    ) -> ExecutionResult:
        """Materialize `script` to a temporary file and run it."""
        ...

    async def close(self) -> None:
        """Release executor resources. Idempotent."""

    async def __aenter__(self) -> Executor:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
