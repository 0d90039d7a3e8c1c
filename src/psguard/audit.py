"""
Append-only audit trail.

One JSON object per line, one line per attempted operation, rejected ones
included. A startup and a shutdown record bracket the file's lifetime.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any

from psguard._types import ExecutionResult, ValidationOutcome

logger = logging.getLogger(__name__)

SERVER_NAME = "psguard"
SERVER_VERSION = "1.0.0"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class AuditEntry:
    """An immutable record of one attempted operation."""

    operation: str
    success: bool
    command: str = ""
    script: str = ""
    working_directory: str = ""
    environment: dict[str, str] = field(default_factory=dict)
    result: ExecutionResult | None = None
    security: ValidationOutcome | None = None
    duration_ms: int = 0
    error_code: int = 0
    error_type: str = ""
    user: str = ""
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "event_type": "operation",
            "operation": self.operation,
            "command": self.command,
            "script": self.script,
            "user": self.user,
            "working_dir": self.working_directory,
            "environment": dict(self.environment),
            "result": self.result.to_dict() if self.result is not None else None,
            "security": self.security.to_dict() if self.security is not None else None,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "error_code": self.error_code,
            "error_type": self.error_type,
            "server_name": SERVER_NAME,
            "server_version": SERVER_VERSION,
        }


class AuditLogger:
    """
    Process-wide audit logger.

    Every write takes the lock, writes one line, then flushes and fsyncs
    before releasing it. Write failures are reported through `logging` and
    never reach the caller. A disabled logger never touches the filesystem.

    Example:
        >>> audit = AuditLogger("audit.log")
        >>> audit.open()
        >>> audit.log(AuditEntry(operation="execute_command", success=True))
        >>> audit.close()
    """

    def __init__(self, path: Path | str, *, enabled: bool = True) -> None:
        self.path = Path(path)
        self.enabled = enabled
        self._lock = threading.Lock()
        self._file: IO[str] | None = None

    @classmethod
    def disabled(cls) -> AuditLogger:
        return cls(os.devnull, enabled=False)

    @property
    def is_open(self) -> bool:
        return self._file is not None

    def open(self) -> None:
        """
        Open the file in append mode and write the startup record.

        Raises:
            OSError: If the file cannot be opened or the startup record
                cannot be written.
        """
        if not self.enabled:
            return
        with self._lock:
            if self._file is not None:
                return
            self.path.parent.mkdir(parents=True, exist_ok=True)
            f = self.path.open("a", encoding="utf-8")
            try:
                self._write_locked(f, {
                    "timestamp": _now(),
                    "event_type": "startup",
                    "server_name": SERVER_NAME,
                    "pid": os.getpid(),
                    "version": SERVER_VERSION,
                })
            except OSError:
                f.close()
                raise
            self._file = f

    def close(self) -> None:
        """Write the shutdown record and close the file. Idempotent."""
        if not self.enabled:
            return
        with self._lock:
            if self._file is None:
                return
            try:
                self._write_locked(self._file, {
                    "timestamp": _now(),
                    "event_type": "shutdown",
                    "server_name": SERVER_NAME,
                    "pid": os.getpid(),
                })
            except (OSError, TypeError, ValueError) as e:
                logger.error("Failed to write audit shutdown record to %s: %s", self.path, e)
            finally:
                self._file.close()
                self._file = None

    def log(self, entry: AuditEntry) -> None:
        """Append one entry. Never raises."""
        if not self.enabled:
            return
        with self._lock:
            if self._file is None:
                logger.error("Audit log %s is not open; dropping %s entry", self.path, entry.operation)
                return
            try:
                self._write_locked(self._file, entry.to_dict())
            except (OSError, TypeError, ValueError) as e:
                logger.error("Failed to write audit entry to %s: %s", self.path, e)

    def stats(self) -> dict[str, Any]:
        """Report logger state and file metadata."""
        with self._lock:
            stats: dict[str, Any] = {
                "enabled": self.enabled,
                "audit_file": str(self.path),
                "server_name": SERVER_NAME,
            }
            if self._file is not None:
                try:
                    info = os.fstat(self._file.fileno())
                except OSError:
                    return stats
                stats["file_size"] = info.st_size
                stats["file_modified"] = datetime.fromtimestamp(
                    info.st_mtime, timezone.utc
                ).isoformat(timespec="seconds")
            return stats

    @staticmethod
    def _write_locked(f: IO[str], record: dict[str, Any]) -> None:
        f.write(json.dumps(record, separators=(",", ":")) + "\n")
        f.flush()
        os.fsync(f.fileno())

    def __enter__(self) -> AuditLogger:
        self.open()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
