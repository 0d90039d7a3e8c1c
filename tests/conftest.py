"""Pytest configuration and fixtures for psguard tests."""

from __future__ import annotations

import json
import shutil
import tempfile
from pathlib import Path
from typing import AsyncGenerator, Generator

import pytest
import pytest_asyncio

from psguard import AuditLogger, GuardedShell, Interpreter, ProcessExecutor, SecurityPolicy

HAS_POWERSHELL = shutil.which("pwsh") is not None or shutil.which("powershell") is not None

requires_powershell = pytest.mark.skipif(not HAS_POWERSHELL, reason="PowerShell not installed")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory(prefix="psguard_test_") as tmp:
        yield Path(tmp)


@pytest.fixture
def standard_policy() -> SecurityPolicy:
    """Create a standard security policy."""
    return SecurityPolicy.standard()


@pytest.fixture
def posix_policy() -> SecurityPolicy:
    """Standard policy plus the POSIX commands the sh-based tests run."""
    return SecurityPolicy.standard().with_allowed_commands("sleep", "pwd", "exit", "printenv")


@pytest.fixture
def audit_path(temp_dir: Path) -> Path:
    return temp_dir / "logs" / "audit.log"


@pytest.fixture
def audit(audit_path: Path) -> Generator[AuditLogger, None, None]:
    """An open audit logger writing under the temp dir."""
    logger = AuditLogger(audit_path)
    logger.open()
    try:
        yield logger
    finally:
        logger.close()


@pytest.fixture
def sh_executor() -> ProcessExecutor:
    """Executor driving /bin/sh, for hosts without PowerShell."""
    return ProcessExecutor(Interpreter.posix_shell(), drain_grace_seconds=0.5)


@pytest_asyncio.fixture
async def shell(
    temp_dir: Path,
    posix_policy: SecurityPolicy,
    sh_executor: ProcessExecutor,
    audit: AuditLogger,
) -> AsyncGenerator[GuardedShell, None]:
    """A GuardedShell jailed to temp_dir, running through /bin/sh."""
    (temp_dir / "test.txt").write_text("hello world")
    (temp_dir / "sub").mkdir()

    shell = GuardedShell(
        posix_policy,
        root=temp_dir,
        executor=sh_executor,
        audit=audit,
        actor="tester",
    )
    try:
        yield shell
    finally:
        await shell.close()


def read_audit(path: Path) -> list[dict]:
    """Parse the JSON-lines audit file."""
    return [json.loads(line) for line in path.read_text().splitlines() if line]
