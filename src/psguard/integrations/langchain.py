"""LangChain integration for psguard."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from psguard.errors import PsGuardError

if TYPE_CHECKING:
    from psguard.shell import GuardedShell

HAS_LANGCHAIN = False
_StructuredTool: Any = None

try:
    import langchain_core.tools

    _StructuredTool = langchain_core.tools.StructuredTool
    HAS_LANGCHAIN = True
except ImportError:
    pass


def format_result(result: Any) -> str:
    """Render an ExecutionResult as text for an LLM."""
    if result.timed_out:
        return f"Error (timed out after {result.duration_ms}ms):\n{result.stdout}{result.stderr}"
    if result.exit_code != 0:
        return f"Error (exit {result.exit_code}): {result.stderr or result.stdout}"
    return result.stdout


def create_langchain_tools(shell: GuardedShell) -> dict[str, Any]:
    """
    Create LangChain tools from a GuardedShell.

    Security rejections are returned as tool output rather than raised, so
    the agent sees why a command was refused.

    Args:
        shell: The guarded shell to wrap.

    Returns:
        Dictionary of LangChain StructuredTool instances.

    Raises:
        ImportError: If langchain-core is not installed.

    Example:
        >>> shell = create_guarded_shell()
        >>> tools = create_langchain_tools(shell)
        >>> agent = create_react_agent(llm, list(tools.values()))
    """
    if not HAS_LANGCHAIN:
        raise ImportError(
            "LangChain integration requires langchain-core. "
            "Install with: pip install psguard[langchain]"
        )

    async def execute_command(command: str, timeout: float | None = None) -> str:
        """Execute a single PowerShell command under the security policy."""
        try:
            result = await shell.execute_command({"command": command, "timeout": timeout})
        except PsGuardError as e:
            return f"Error ({e.kind.error_type}): {e}"
        return format_result(result)

    async def execute_script(script: str, timeout: float | None = None) -> str:
        """Execute a multi-line PowerShell script under the security policy."""
        try:
            result = await shell.execute_script({"script": script, "timeout": timeout})
        except PsGuardError as e:
            return f"Error ({e.kind.error_type}): {e}"
        return format_result(result)

    command_tool = _StructuredTool.from_function(
        coroutine=execute_command,
        name="execute_command",
        description="Execute one PowerShell command. Dangerous commands are refused.",
    )

    script_tool = _StructuredTool.from_function(
        coroutine=execute_script,
        name="execute_script",
        description="Execute a multi-line PowerShell script. Dangerous constructs are refused.",
    )

    return {
        "execute_command": command_tool,
        "execute_script": script_tool,
    }
