"""
Top-level facade for psguard.
"""

from psguard._types import (
    CommandExistsResult,
    ErrorKind,
    ExecutionRequest,
    ExecutionResult,
    ValidationOutcome,
)
from psguard.api import create_guarded_shell
from psguard.audit import AuditEntry, AuditLogger
from psguard.config import GuardConfig
from psguard.errors import (
    CommandFailed,
    CommandTimeout,
    ConfigurationError,
    ExecutionError,
    InvalidParams,
    PsGuardError,
    SecurityViolation,
    UnknownOperation,
)
from psguard.executor import Executor, Interpreter, ProcessExecutor
from psguard.security import Rule, RuleScope, SecurityPolicy, validate_command, validate_script
from psguard.shell import GuardedShell

__all__ = [
    "AuditEntry",
    "AuditLogger",
    "CommandExistsResult",
    "CommandFailed",
    "CommandTimeout",
    "ConfigurationError",
    "ErrorKind",
    "ExecutionError",
    "ExecutionRequest",
    "ExecutionResult",
    "Executor",
    "GuardConfig",
    "GuardedShell",
    "Interpreter",
    "InvalidParams",
    "ProcessExecutor",
    "PsGuardError",
    "Rule",
    "RuleScope",
    "SecurityPolicy",
    "SecurityViolation",
    "UnknownOperation",
    "ValidationOutcome",
    "create_guarded_shell",
    "validate_command",
    "validate_script",
]
