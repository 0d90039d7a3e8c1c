"""
Process configuration.

Built once at startup and passed explicitly to the components that need it.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from psguard.errors import ConfigurationError

DEFAULT_AUDIT_FILE = "psguard-audit.log"


@dataclass(frozen=True)
class GuardConfig:
    """
    Host configuration for a guarded shell.

    Attributes:
        root: Working-directory jail; relative working directories resolve
            against it and requests may not leave it.
        audit_file: Path of the JSON-lines audit log.
        audit_enabled: When False the audit logger never touches disk.
        interpreter: Explicit interpreter executable, or None to auto-detect.
    """

    root: Path
    audit_file: Path = Path(DEFAULT_AUDIT_FILE)
    audit_enabled: bool = True
    interpreter: str | None = None

    def __post_init__(self) -> None:
        root = Path(self.root).resolve()
        if not root.is_dir():
            raise ConfigurationError(f"Root directory does not exist: {self.root}")
        object.__setattr__(self, "root", root)
        object.__setattr__(self, "audit_file", Path(self.audit_file))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> GuardConfig:
        """
        Read configuration from environment variables.

        REPO_PATH              jail root (default: current directory)
        PSGUARD_AUDIT_FILE     audit log path (default: psguard-audit.log)
        PSGUARD_AUDIT_DISABLED "true" disables audit logging
        PSGUARD_INTERPRETER    interpreter executable
        """
        env = os.environ if environ is None else environ
        return cls(
            root=Path(env.get("REPO_PATH") or os.getcwd()),
            audit_file=Path(env.get("PSGUARD_AUDIT_FILE") or DEFAULT_AUDIT_FILE),
            audit_enabled=env.get("PSGUARD_AUDIT_DISABLED", "").strip().lower() != "true",
            interpreter=env.get("PSGUARD_INTERPRETER") or None,
        )
