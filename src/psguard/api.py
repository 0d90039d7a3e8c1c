"""
Main entry point: create_guarded_shell factory function.

Wires configuration, policy, executor and audit logger into a GuardedShell.
"""

from __future__ import annotations

from psguard.audit import AuditLogger
from psguard.config import GuardConfig
from psguard.executor.interpreter import Interpreter
from psguard.executor.process import ProcessExecutor
from psguard.security.policy import SecurityPolicy
from psguard.shell import GuardedShell


def create_guarded_shell(
    config: GuardConfig | None = None,
    *,
    policy: SecurityPolicy | None = None,
    interpreter: Interpreter | None = None,
    actor: str | None = None,
) -> GuardedShell:
    """
    Create a guarded shell for PowerShell commands and scripts.

    Call once at process start. The audit log is opened (startup record
    written) before this returns; close the shell to write the shutdown
    record.

    Args:
        config: Host configuration. Defaults to GuardConfig.from_env().
        policy: Security policy. Defaults to SecurityPolicy.standard().
        interpreter: Interpreter profile. Defaults to PowerShell, honouring
            config.interpreter and the policy's execution-policy flag.
        actor: User recorded in audit entries. Defaults to $USER.

    Returns:
        A ready GuardedShell.

    Raises:
        ConfigurationError: If the configuration or policy is invalid.
        OSError: If the audit log cannot be opened.

    Example:
        >>> async with create_guarded_shell() as shell:
        ...     result = await shell.execute_command({"command": "Get-Date"})
        ...     print(result.stdout)

    Example with a custom allow-list:
        >>> shell = create_guarded_shell(
        ...     policy=SecurityPolicy.standard().with_allowed_commands("terraform"),
        ... )
    """
    config = config or GuardConfig.from_env()
    policy = policy or SecurityPolicy.standard()

    if interpreter is None:
        interpreter = Interpreter.powershell(
            config.interpreter,
            bypass_execution_policy=not policy.allow_execution_policy_override,
        )

    audit = AuditLogger(config.audit_file, enabled=config.audit_enabled)
    audit.open()

    return GuardedShell(
        policy,
        root=config.root,
        executor=ProcessExecutor(interpreter),
        audit=audit,
        actor=actor,
    )
