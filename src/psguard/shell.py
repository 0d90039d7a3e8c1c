"""
Operation layer: turns deserialized requests into guarded executions.

Each request is parsed, checked by the path/environment guard and the
command or script validator, executed only if every check passed, and
audited exactly once whatever the outcome.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Awaitable, Callable, Mapping, Sequence
from pathlib import Path
from typing import Any

from psguard._types import (
    CommandExistsResult,
    ErrorKind,
    ExecutionRequest,
    ExecutionResult,
    ValidationOutcome,
)
from psguard.audit import AuditEntry, AuditLogger
from psguard.discovery import check_command_exists, is_valid_command_name
from psguard.errors import (
    ExecutionError,
    InvalidParams,
    PsGuardError,
    SecurityViolation,
    UnknownOperation,
)
from psguard.executor._base import Executor
from psguard.security.guard import (
    resolve_working_directory,
    validate_environment,
    validate_timeout,
    validate_working_directory,
)
from psguard.security.policy import SecurityPolicy
from psguard.security.validator import validate_command, validate_script

logger = logging.getLogger(__name__)

OperationResult = ExecutionResult | CommandExistsResult


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def _optional_str(params: Mapping[str, Any], key: str) -> str | None:
    value = params.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidParams(f"{key} must be a string")
    return value


def _optional_bool(params: Mapping[str, Any], key: str, default: bool) -> bool:
    value = params.get(key, default)
    if not isinstance(value, bool):
        raise InvalidParams(f"{key} must be a boolean")
    return value


def parse_request(
    params: Mapping[str, Any],
    policy: SecurityPolicy,
    *,
    is_script: bool,
) -> ExecutionRequest:
    """
    Build an ExecutionRequest from a caller's parameter map.

    The timeout defaults per mode and is clamped to the mode maximum.

    Raises:
        InvalidParams: If a field is missing or has the wrong type.
    """
    key = "script" if is_script else "command"
    text = params.get(key)
    if not isinstance(text, str):
        raise InvalidParams(f"{key} is required")

    default_timeout, max_timeout = policy.timeout_bounds(is_script=is_script)
    timeout = params.get("timeout", default_timeout)
    if timeout is None:
        timeout = default_timeout
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
        raise InvalidParams("timeout must be a number of seconds")
    timeout = min(timeout, max_timeout)

    env = params.get("environment_vars") or {}
    if not isinstance(env, Mapping) or not all(
        isinstance(name, str) and isinstance(value, str) for name, value in env.items()
    ):
        raise InvalidParams("environment_vars must map strings to strings")

    return ExecutionRequest(
        command_or_script=text,
        is_script=is_script,
        timeout_seconds=timeout,
        working_directory=_optional_str(params, "working_directory") or None,
        environment_overrides=dict(env),
        allow_shell_access=_optional_bool(params, "allow_shell_access", is_script),
        script_name=_optional_str(params, "script_name") if is_script else None,
    )


class GuardedShell:
    """
    Guarded command and script execution.

    Holds the policy, jail root, executor and audit logger; nothing is read
    from module globals, so several isolated instances can coexist.

    Example:
        >>> shell = GuardedShell(SecurityPolicy.standard(), root=".", executor=ProcessExecutor())
        >>> result = await shell.execute_command({"command": "Get-ChildItem"})
        >>> print(result.stdout)
    """

    def __init__(
        self,
        policy: SecurityPolicy,
        *,
        root: Path | str,
        executor: Executor,
        audit: AuditLogger | None = None,
        actor: str | None = None,
    ) -> None:
        self.policy = policy
        self.root = Path(root).resolve()
        self.executor = executor
        self.audit = audit or AuditLogger.disabled()
        self.actor = actor if actor is not None else (
            os.environ.get("USER") or os.environ.get("USERNAME", "")
        )
        self._closed = False
        self._operations: dict[str, Callable[[Mapping[str, Any]], Awaitable[OperationResult]]] = {
            "execute_command": self.execute_command,
            "execute_script": self.execute_script,
            "check_command_exists": self.check_command_exists,
        }

    @property
    def operations(self) -> list[str]:
        return list(self._operations)

    async def execute_command(self, params: Mapping[str, Any]) -> ExecutionResult:
        """
        Validate and run a single command.

        Args:
            params: command, timeout, working_directory, environment_vars,
                allow_shell_access.

        Returns:
            The ExecutionResult, also for non-zero exits and timeouts.

        Raises:
            SecurityViolation: Rejected by the guard or validator; nothing ran.
            ExecutionError: The interpreter could not be started.
            InvalidParams: Malformed parameters.
        """
        return await self._execute(params, is_script=False)

    async def execute_script(self, params: Mapping[str, Any]) -> ExecutionResult:
        """
        Validate and run a multi-line script.

        Same contract as execute_command; `allow_shell_access` defaults to
        True and `script_name` prefixes the temporary file.
        """
        return await self._execute(params, is_script=True)

    async def check_command_exists(self, params: Mapping[str, Any]) -> CommandExistsResult:
        """Report whether a command is available. Read-only; still audited."""
        self._ensure_open()
        start = time.monotonic()
        name = params.get("command")
        try:
            if not isinstance(name, str):
                raise InvalidParams("command is required")
            if not is_valid_command_name(name):
                raise InvalidParams(f"invalid command name format: {name}")
            search_paths = params.get("search_paths") or []
            if not isinstance(search_paths, list) or not all(
                isinstance(p, str) for p in search_paths
            ):
                raise InvalidParams("search_paths must be a list of strings")
            with_version = _optional_bool(params, "include_version", True)
        except InvalidParams as e:
            await self._record(
                "check_command_exists",
                command=name if isinstance(name, str) else "",
                success=False,
                kind=e.kind,
                duration_ms=_elapsed_ms(start),
            )
            raise

        resolved: list[str] = []
        for path in search_paths:
            outcome = validate_working_directory(path, self.root)
            if not outcome.valid:
                logger.info("Rejected search path %r (%s): %s", path, outcome.rule, outcome.reason)
                await self._record(
                    "check_command_exists",
                    command=name,
                    working_directory=path,
                    security=outcome,
                    success=False,
                    kind=ErrorKind.SECURITY,
                    duration_ms=_elapsed_ms(start),
                )
                raise SecurityViolation(outcome, name)
            resolved.append(resolve_working_directory(path, self.root))

        result = await check_command_exists(
            name, self.policy, self.executor, search_paths=resolved, with_version=with_version
        )
        await self._record(
            "check_command_exists",
            command=name,
            success=result.exists,
            duration_ms=_elapsed_ms(start),
        )
        return result

    async def execute(self, operation: str, params: Mapping[str, Any]) -> OperationResult:
        """
        Dispatch one operation by name.

        Raises:
            UnknownOperation: If `operation` is not supported.
        """
        handler = self._operations.get(operation)
        if handler is None:
            raise UnknownOperation(f"unknown operation type: {operation}")
        return await handler(params)

    async def apply_operations(
        self,
        operations: Sequence[Any],
        *,
        concurrent: bool = False,
    ) -> list[dict[str, Any]]:
        """
        Run a batch of `{"type": ..., **params}` operations.

        Every item yields one entry with `status` "Success" or "Error";
        failures never abort the rest of the batch. Timeouts and non-zero
        exits are errors that still carry the full result.

        Args:
            operations: The batch, in order.
            concurrent: Run all items at once instead of sequentially.
        """
        if not isinstance(operations, Sequence) or isinstance(operations, (str, bytes)):
            raise InvalidParams("operations array is required")
        if not operations:
            raise InvalidParams("operations array cannot be empty")

        if concurrent:
            return list(await asyncio.gather(*(self._apply_one(op) for op in operations)))
        return [await self._apply_one(op) for op in operations]

    async def _apply_one(self, op: Any) -> dict[str, Any]:
        if not isinstance(op, Mapping):
            return _error_entry("unknown", {}, InvalidParams("Invalid operation format"))
        op_type = op.get("type")
        if not isinstance(op_type, str):
            return _error_entry("unknown", {}, InvalidParams("Operation type is required"))

        params = {key: value for key, value in op.items() if key != "type"}
        try:
            value = await self.execute(op_type, params)
        except PsGuardError as e:
            return _error_entry(op_type, params, e)

        entry: dict[str, Any] = {
            "operation": op_type,
            "params": params,
            "status": "Success",
            "result": value.to_dict(),
        }
        kind = value.error_kind if isinstance(value, ExecutionResult) else None
        if kind is not None:
            entry["status"] = "Error"
            entry["error_code"] = kind.code
            entry["error_type"] = kind.error_type
            entry["message"] = (
                f"command timed out after {value.duration_ms}ms"
                if kind is ErrorKind.TIMEOUT
                else f"command exited with code {value.exit_code}"
            )
        return entry

    async def _execute(self, params: Mapping[str, Any], *, is_script: bool) -> ExecutionResult:
        self._ensure_open()
        operation = "execute_script" if is_script else "execute_command"
        start = time.monotonic()
        try:
            request = parse_request(params, self.policy, is_script=is_script)
        except InvalidParams as e:
            text = params.get("script" if is_script else "command")
            await self._record(
                operation,
                is_script=is_script,
                text=text if isinstance(text, str) else "",
                success=False,
                kind=e.kind,
                duration_ms=_elapsed_ms(start),
            )
            raise

        outcome = self.validate(request)
        workdir = request.working_directory or str(self.root)
        if not outcome.valid:
            logger.info("Rejected %s (%s): %s", operation, outcome.rule, outcome.reason)
            await self._record(
                operation,
                is_script=is_script,
                text=request.command_or_script,
                working_directory=workdir,
                environment=request.environment_overrides,
                security=outcome,
                success=False,
                kind=ErrorKind.SECURITY,
                duration_ms=_elapsed_ms(start),
            )
            raise SecurityViolation(outcome, request.command_or_script)

        cwd = resolve_working_directory(request.working_directory, self.root)
        try:
            if is_script:
                result = await self.executor.run_script(
                    request.command_or_script,
                    timeout=request.timeout_seconds,
                    cwd=cwd,
                    env=request.environment_overrides,
                    allow_shell_access=request.allow_shell_access,
                    script_name=request.script_name,
                )
            else:
                result = await self.executor.run_command(
                    request.command_or_script,
                    timeout=request.timeout_seconds,
                    cwd=cwd,
                    env=request.environment_overrides,
                    allow_shell_access=request.allow_shell_access,
                )
        except ExecutionError as e:
            logger.error("Failed to run %s: %s", operation, e)
            await self._record(
                operation,
                is_script=is_script,
                text=request.command_or_script,
                working_directory=cwd,
                environment=request.environment_overrides,
                security=outcome,
                success=False,
                kind=e.kind,
                duration_ms=_elapsed_ms(start),
            )
            raise

        kind = result.error_kind
        await self._record(
            operation,
            is_script=is_script,
            text=request.command_or_script,
            working_directory=cwd,
            environment=request.environment_overrides,
            result=result,
            security=outcome,
            success=kind is None,
            kind=kind,
            duration_ms=result.duration_ms,
        )
        return result

    def validate(self, request: ExecutionRequest) -> ValidationOutcome:
        """Run the guard and validator checks for `request` without executing it."""
        for outcome in (
            validate_working_directory(request.working_directory, self.root),
            validate_environment(request.environment_overrides),
            validate_timeout(request.timeout_seconds),
        ):
            if not outcome.valid:
                return outcome

        if request.is_script:
            return validate_script(request.command_or_script, self.policy)
        return validate_command(
            request.command_or_script,
            self.policy,
            allow_shell_access=request.allow_shell_access,
        )

    async def _record(
        self,
        operation: str,
        *,
        success: bool,
        is_script: bool = False,
        text: str = "",
        command: str = "",
        working_directory: str = "",
        environment: Mapping[str, str] | None = None,
        result: ExecutionResult | None = None,
        security: ValidationOutcome | None = None,
        kind: ErrorKind | None = None,
        duration_ms: int = 0,
    ) -> None:
        entry = AuditEntry(
            operation=operation,
            success=success,
            command=command or ("" if is_script else text),
            script=text if is_script else "",
            working_directory=working_directory,
            environment=dict(environment or {}),
            result=result,
            security=security,
            duration_ms=duration_ms,
            error_code=kind.code if kind else 0,
            error_type=kind.error_type if kind else "",
            user=self.actor,
        )
        # File writes and fsync stay off the event loop.
        await asyncio.to_thread(self.audit.log, entry)

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("GuardedShell has been closed")

    def stats(self) -> dict[str, Any]:
        """Audit logger statistics."""
        return self.audit.stats()

    async def close(self) -> None:
        """Close the executor and the audit log. Safe to call multiple times."""
        if self._closed:
            return
        self._closed = True
        await self.executor.close()
        await asyncio.to_thread(self.audit.close)

    async def __aenter__(self) -> GuardedShell:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()


def _error_entry(operation: str, params: Mapping[str, Any], error: PsGuardError) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "operation": operation,
        "params": dict(params),
        "status": "Error",
        "message": str(error),
        "error_code": error.code,
        "error_type": error.kind.error_type,
    }
    if isinstance(error, SecurityViolation):
        entry["details"] = error.outcome.to_dict()
    return entry
