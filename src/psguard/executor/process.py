"""
Subprocess-based executor.

Uses asyncio.subprocess for non-blocking execution with a hard deadline.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import re
import signal
import tempfile
import time
from collections.abc import Mapping, Sequence
from dataclasses import replace

from psguard._types import ExecutionResult
from psguard.errors import ExecutionError
from psguard.executor._base import Executor
from psguard.executor.interpreter import Interpreter

logger = logging.getLogger(__name__)

_SCRIPT_NAME_CHARS = re.compile(r"[^A-Za-z0-9_.-]")


async def _drain(stream: asyncio.StreamReader | None, buffer: bytearray) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            break
        buffer.extend(chunk)


def _kill_tree(proc: asyncio.subprocess.Process) -> None:
    with contextlib.suppress(ProcessLookupError):
        if os.name == "posix":
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()


class ProcessExecutor(Executor):
    """
    Runs commands and scripts as child processes of an interpreter.

    Security features:
    - Direct exec of the interpreter, never through a host shell
    - Deadline enforcement with forced termination of the process group
    - Partial output preserved on timeout
    - Unique temporary script files, always removed

    Example:
        >>> executor = ProcessExecutor(Interpreter.powershell())
        >>> result = await executor.run_command("Get-Date", timeout=10)
        >>> print(result.stdout)
    """

    def __init__(
        self,
        interpreter: Interpreter | None = None,
        *,
        drain_grace_seconds: float = 2.0,
    ) -> None:
        """
        Initialize the executor.

        Args:
            interpreter: Interpreter profile. Defaults to PowerShell.
            drain_grace_seconds: How long to keep reading output after the
                process exits, for pipes inherited by orphaned children.
        """
        self.interpreter = interpreter or Interpreter.powershell()
        self._drain_grace = drain_grace_seconds

    async def run(
        self,
        argv: Sequence[str],
        *,
        timeout: float,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> ExecutionResult:
        argv = list(argv)
        child_env = {**os.environ, **env} if env else None
        start = time.monotonic()

        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                env=child_env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=os.name == "posix",
            )
        except (OSError, ValueError) as e:
            raise ExecutionError(f"Failed to start {argv[0]}: {e}") from e

        logger.debug("Started pid %s: %s", proc.pid, argv[0])
        stdout = bytearray()
        stderr = bytearray()
        readers = [
            asyncio.create_task(_drain(proc.stdout, stdout)),
            asyncio.create_task(_drain(proc.stderr, stderr)),
        ]

        timed_out = False
        try:
            await asyncio.wait_for(proc.wait(), timeout=timeout)
        except TimeoutError:
            timed_out = True
            logger.warning("Process %s exceeded %ss deadline, killing", proc.pid, timeout)
            _kill_tree(proc)
            await proc.wait()
        except asyncio.CancelledError:
            _kill_tree(proc)
            for task in readers:
                task.cancel()
            raise

        _, pending = await asyncio.wait(readers, timeout=self._drain_grace)
        for task in pending:
            task.cancel()

        duration_ms = int((time.monotonic() - start) * 1000)
        return ExecutionResult(
            exit_code=-1 if timed_out else (proc.returncode if proc.returncode is not None else -1),
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            duration_ms=duration_ms,
            timed_out=timed_out,
            working_directory=cwd,
        )

    async def run_command(
        self,
        command: str,
        *,
        timeout: float,
        cwd: str | None = None,
        env: Mapping[str, str] | None = None,
        allow_shell_access: bool = False,
    ) -> ExecutionResult:
        argv = self.interpreter.command_argv(command, allow_shell_access=allow_shell_access)
        result = await self.run(argv, timeout=timeout, cwd=cwd, env=env)
        return replace(result, command=command)

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
        name = _SCRIPT_NAME_CHARS.sub("_", script_name or "script")[:64]
        fd, path = tempfile.mkstemp(prefix=f"{name}_", suffix=self.interpreter.script_suffix)
        try:
            with os.fdopen(fd, "w", encoding=self.interpreter.script_encoding, newline="") as f:
                f.write(script)
            argv = self.interpreter.script_argv(path, allow_shell_access=allow_shell_access)
            result = await self.run(argv, timeout=timeout, cwd=cwd, env=env)
        finally:
            with contextlib.suppress(FileNotFoundError):
                os.remove(path)

        return replace(
            result,
            command=name,
            script_name=name,
            lines_executed=script.count("\n") + 1,
        )
