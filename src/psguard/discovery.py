"""
Command discovery.

Answers whether a command is available to the interpreter: in explicit
search paths, as a known cmdlet, or on PATH.
"""

from __future__ import annotations

import os
import re
import shutil
from collections.abc import Iterable
from typing import TYPE_CHECKING

from psguard._types import CommandExistsResult
from psguard.errors import ExecutionError
from psguard.security.validator import validate_command

if TYPE_CHECKING:
    from psguard.executor._base import Executor
    from psguard.security.policy import SecurityPolicy

COMMAND_NAME = re.compile(r"^[A-Za-z0-9_.-]+$")

# Tried in order when looking inside explicit search paths.
EXECUTABLE_EXTENSIONS: tuple[str, ...] = ("", ".exe", ".ps1", ".cmd", ".bat")

VERSION_TIMEOUT = 5.0


def is_valid_command_name(name: str) -> bool:
    return bool(COMMAND_NAME.fullmatch(name))


def find_in_search_paths(name: str, search_paths: Iterable[str]) -> str | None:
    """Return the first existing file `name` + extension under `search_paths`."""
    for directory in search_paths:
        for extension in EXECUTABLE_EXTENSIONS:
            candidate = os.path.join(directory, name + extension)
            if os.path.isfile(candidate):
                return candidate
    return None


async def get_command_version(executor: Executor, path: str) -> str | None:
    """
    Run `path --version` and return the first line of its output.

    Returns None when the command fails, times out, or prints an error.
    """
    try:
        result = await executor.run([path, "--version"], timeout=VERSION_TIMEOUT)
    except ExecutionError:
        return None
    if not result.success:
        return None

    output = (result.stdout or result.stderr).strip()
    if not output:
        return None
    first = output.splitlines()[0].strip()
    if not first or "error" in first.lower():
        return None
    return first


async def check_command_exists(
    name: str,
    policy: SecurityPolicy,
    executor: Executor,
    *,
    search_paths: Iterable[str] = (),
    with_version: bool = True,
) -> CommandExistsResult:
    """
    Look up `name` in `search_paths`, then intrinsic cmdlets, then PATH.

    Args:
        name: Command name; must match [A-Za-z0-9_.-]+ (callers validate).
        policy: Supplies the intrinsic cmdlet set and the allow-list.
        executor: Runs the optional `--version` query. It only runs
            for names the policy would let a caller execute directly.
        search_paths: Directories searched before anything else.
        with_version: Whether to run `--version` on a found executable.
    """
    with_version = with_version and validate_command(name, policy).valid

    path = find_in_search_paths(name, search_paths)
    if path is not None:
        version = await get_command_version(executor, path) if with_version else None
        return CommandExistsResult(exists=True, command=name, path=path, version=version)

    if name in policy.intrinsic_commands:
        return CommandExistsResult(exists=True, command=name, path=f"PowerShell: {name}")

    path = shutil.which(name)
    if path is None:
        return CommandExistsResult(
            exists=False, command=name, error=f"{name}: executable file not found in PATH"
        )

    version = await get_command_version(executor, path) if with_version else None
    return CommandExistsResult(exists=True, command=name, path=path, version=version)
