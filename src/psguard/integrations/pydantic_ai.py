"""
PydanticAI integration for psguard.

Provides helpers to create PydanticAI-compatible tools.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

try:
    from pydantic_ai import RunContext, Tool
except ImportError:
    raise ImportError(
        "PydanticAI integration requires 'pydantic-ai'. "
        "Install with `pip install psguard[pydantic-ai]`"
    )

from psguard.errors import PsGuardError
from psguard.integrations.langchain import format_result

if TYPE_CHECKING:
    from psguard.shell import GuardedShell


def create_pydantic_ai_tools(shell: GuardedShell) -> list[Tool]:
    """
    Create PydanticAI tools for guarded command and script execution.

    Example:
        >>> from pydantic_ai import Agent
        >>> agent = Agent("openai:gpt-4o", tools=create_pydantic_ai_tools(shell))
    """

    async def execute_command(ctx: RunContext, command: str) -> str:
        """
        Execute one PowerShell command.
        Only commands allowed by the security policy will run.
        """
        try:
            result = await shell.execute_command({"command": command})
        except PsGuardError as e:
            return f"Error ({e.kind.error_type}): {e}"
        return format_result(result)

    async def execute_script(ctx: RunContext, script: str) -> str:
        """
        Execute a multi-line PowerShell script.
        Scripts with dangerous constructs are refused.
        """
        try:
            result = await shell.execute_script({"script": script})
        except PsGuardError as e:
            return f"Error ({e.kind.error_type}): {e}"
        return format_result(result)

    return [
        Tool(execute_command, takes_ctx=True),
        Tool(execute_script, takes_ctx=True),
    ]
