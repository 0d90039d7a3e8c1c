"""Tests for the JSON-lines audit logger."""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import pytest

from conftest import read_audit
from psguard import AuditEntry, AuditLogger, ExecutionResult, ValidationOutcome
from psguard.audit import SERVER_NAME


class TestAuditLogger:
    """Tests for AuditLogger lifecycle and writes."""

    def test_open_writes_startup_record(self, audit: AuditLogger, audit_path: Path) -> None:
        records = read_audit(audit_path)
        assert len(records) == 1
        assert records[0]["event_type"] == "startup"
        assert records[0]["server_name"] == SERVER_NAME
        assert "pid" in records[0]

    def test_close_writes_shutdown_once(self, audit_path: Path) -> None:
        audit = AuditLogger(audit_path)
        audit.open()
        audit.close()
        audit.close()
        records = read_audit(audit_path)
        assert [r["event_type"] for r in records] == ["startup", "shutdown"]
        assert not audit.is_open

    def test_appends_across_sessions(self, audit_path: Path) -> None:
        for _ in range(2):
            with AuditLogger(audit_path):
                pass
        events = [r["event_type"] for r in read_audit(audit_path)]
        assert events == ["startup", "shutdown", "startup", "shutdown"]

    def test_log_entry_shape(self, audit: AuditLogger, audit_path: Path) -> None:
        audit.log(AuditEntry(
            operation="execute_command",
            success=True,
            command="git status",
            working_directory="/repo",
            environment={"FOO": "bar"},
            result=ExecutionResult(exit_code=0, stdout="ok", stderr="", duration_ms=12),
            security=ValidationOutcome.ok(),
            duration_ms=12,
            user="tester",
        ))
        record = read_audit(audit_path)[-1]
        assert record["event_type"] == "operation"
        assert record["operation"] == "execute_command"
        assert record["command"] == "git status"
        assert record["working_dir"] == "/repo"
        assert record["environment"] == {"FOO": "bar"}
        assert record["result"]["exit_code"] == 0
        assert record["security"] == {"valid": True}
        assert record["success"] is True
        assert record["error_code"] == 0
        assert record["user"] == "tester"
        assert record["server_name"] == SERVER_NAME
        assert record["timestamp"]

    def test_rejection_entry(self, audit: AuditLogger, audit_path: Path) -> None:
        outcome = ValidationOutcome.fail("blocked_pattern", "Blocked", pattern="x")
        audit.log(AuditEntry(
            operation="execute_command",
            success=False,
            command="Stop-Computer",
            security=outcome,
            error_code=-32001,
            error_type="Security",
        ))
        record = read_audit(audit_path)[-1]
        assert record["result"] is None
        assert record["security"]["valid"] is False
        assert record["security"]["rule"] == "blocked_pattern"
        assert record["security"]["reason"] == "Blocked"
        assert record["security"]["pattern"] == "x"
        assert record["error_code"] == -32001
        assert record["error_type"] == "Security"

    def test_disabled_logger_never_touches_disk(self, temp_dir: Path) -> None:
        path = temp_dir / "never" / "audit.log"
        audit = AuditLogger(path, enabled=False)
        audit.open()
        audit.log(AuditEntry(operation="execute_command", success=True))
        audit.close()
        assert not path.exists()
        assert not path.parent.exists()

    def test_log_when_not_open_does_not_raise(
        self, audit_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        audit = AuditLogger(audit_path)
        with caplog.at_level(logging.ERROR, logger="psguard.audit"):
            audit.log(AuditEntry(operation="execute_command", success=True))
        assert "not open" in caplog.text
        assert not audit_path.exists()

    def test_write_failure_does_not_raise(
        self, audit_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        audit = AuditLogger(audit_path)
        audit.open()
        audit._file.close()  # type: ignore[union-attr]
        with caplog.at_level(logging.ERROR, logger="psguard.audit"):
            audit.log(AuditEntry(operation="execute_command", success=True))
            audit.close()
        assert "Failed to write audit entry" in caplog.text
        assert not audit.is_open

    def test_open_failure_raises(self, temp_dir: Path) -> None:
        blocker = temp_dir / "blocker"
        blocker.write_text("not a directory")
        with pytest.raises(OSError):
            AuditLogger(blocker / "audit.log").open()

    def test_concurrent_writes_are_whole_lines(self, audit: AuditLogger, audit_path: Path) -> None:
        def worker(n: int) -> None:
            for i in range(50):
                audit.log(AuditEntry(
                    operation="execute_command",
                    success=True,
                    command=f"worker {n} entry {i} " + "x" * 200,
                ))

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        records = read_audit(audit_path)
        operations = [r for r in records if r["event_type"] == "operation"]
        assert len(operations) == 400

    def test_stats(self, audit: AuditLogger, audit_path: Path) -> None:
        stats = audit.stats()
        assert stats["enabled"] is True
        assert stats["audit_file"] == str(audit_path)
        assert stats["file_size"] > 0
        assert "file_modified" in stats

    def test_disabled_stats(self) -> None:
        stats = AuditLogger.disabled().stats()
        assert stats["enabled"] is False
        assert "file_size" not in stats
