"""
Working-directory jail and environment override screening.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path

from psguard._types import ValidationOutcome

_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Compared case-insensitively. Search paths, interpreter pointers, profile
# locations, identity/domain variables and loader hooks.
SENSITIVE_ENVIRONMENT_VARIABLES: frozenset[str] = frozenset(
    name.upper()
    for name in (
        "PATH", "PATHEXT", "COMSPEC", "SYSTEMROOT", "SYSTEMDRIVE", "WINDIR",
        "TEMP", "TMP", "USERPROFILE", "HOMEPATH", "HOMEDRIVE", "COMPUTERNAME",
        "USERNAME", "USERDOMAIN", "LOGONSERVER", "PROGRAMFILES",
        "PROGRAMFILES(X86)", "PROGRAMDATA", "PUBLIC", "ALLUSERSPROFILE",
        "APPDATA", "LOCALAPPDATA", "PROCESSOR_ARCHITECTURE",
        "NUMBER_OF_PROCESSORS", "OS", "PSModulePath",
        "PSExecutionPolicyPreference",
        # POSIX hosts running pwsh
        "HOME", "USER", "LOGNAME", "SHELL", "TMPDIR", "LD_PRELOAD",
        "LD_LIBRARY_PATH", "DYLD_INSERT_LIBRARIES", "DYLD_LIBRARY_PATH",
    )
)


def has_parent_segment(path: str) -> bool:
    """True if any '/' or '\\' separated segment of `path` is '..'."""
    return any(segment == ".." for segment in re.split(r"[\\/]", path))


def _is_within(path: str, root: str) -> bool:
    return path == root or path.startswith(root.rstrip(os.sep) + os.sep)


def validate_working_directory(working_directory: str | None, root: Path | str) -> ValidationOutcome:
    """
    Validate a requested working directory against the jail root.

    Relative paths are resolved against `root`. Containment is checked on
    canonical paths (symlinks resolved), never on the raw input.
    """
    if not working_directory:
        return ValidationOutcome.ok()

    if "\x00" in working_directory:
        return ValidationOutcome.fail("path_invalid", "Working directory contains a null byte")

    if has_parent_segment(working_directory):
        return ValidationOutcome.fail("path_traversal", "Path traversal not allowed")

    canonical_root = os.path.realpath(root)
    canonical = resolve_working_directory(working_directory, canonical_root)

    if not _is_within(canonical, canonical_root):
        return ValidationOutcome.fail(
            "path_restriction", f"Working directory outside root: {working_directory}"
        )

    if not os.path.exists(canonical):
        return ValidationOutcome.fail(
            "directory_exists", f"Working directory does not exist: {working_directory}"
        )
    if not os.path.isdir(canonical):
        return ValidationOutcome.fail(
            "not_directory", f"Path is not a directory: {working_directory}"
        )

    return ValidationOutcome.ok()


def resolve_working_directory(working_directory: str | None, root: Path | str) -> str:
    """Return the canonical directory a validated request runs in."""
    canonical_root = os.path.realpath(root)
    if not working_directory:
        return canonical_root
    candidate = Path(working_directory)
    if not candidate.is_absolute():
        candidate = Path(canonical_root) / candidate
    return os.path.realpath(candidate)


def validate_environment(overrides: Mapping[str, str] | None) -> ValidationOutcome:
    """
    Screen environment overrides.

    Names must be plain identifiers outside the sensitive set. Values are
    passed through as-is, except that a null byte cannot reach a process
    environment.
    """
    for name, value in (overrides or {}).items():
        if not _ENV_NAME.fullmatch(name):
            return ValidationOutcome.fail(
                "env_var_format", f"Invalid environment variable name: {name}"
            )
        if name.upper() in SENSITIVE_ENVIRONMENT_VARIABLES:
            return ValidationOutcome.fail(
                "dangerous_env_var", f"Dangerous environment variable not allowed: {name}"
            )
        if "\x00" in value:
            return ValidationOutcome.fail(
                "env_var_value", f"Environment variable value contains a null byte: {name}"
            )
    return ValidationOutcome.ok()


def validate_timeout(timeout_seconds: float) -> ValidationOutcome:
    if timeout_seconds <= 0:
        return ValidationOutcome.fail("timeout_positive", "Timeout must be greater than 0")
    return ValidationOutcome.ok()
