"""
Simulation of an AI Agent using psguard.

The agent (simulated here) proposes PowerShell commands and scripts.
psguard validates each one, runs the safe ones under a deadline, refuses
the dangerous ones, and writes every attempt to the audit log.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path

from psguard import GuardConfig, SecurityViolation, create_guarded_shell


@dataclass
class AgentAction:
    thought: str
    operation: str
    params: dict


class MockLLM:
    """Simulates an LLM acting on a user request."""

    def __init__(self):
        self.step = 0

    def next_action(self) -> AgentAction | None:
        """Returns the next operation the 'AI' wants to run."""
        actions = [
            # Innocent exploration
            AgentAction(
                thought="I need to see what files are here.",
                operation="execute_command",
                params={"command": "Get-ChildItem"},
            ),
            # Doing work (safe)
            AgentAction(
                thought="I'll check the repository state.",
                operation="execute_command",
                params={"command": "git status"},
            ),
            # A small script (safe)
            AgentAction(
                thought="Let me count the files.",
                operation="execute_script",
                params={"script": "$items = Get-ChildItem\nWrite-Output $items.Count\n"},
            ),
            # HALLUCINATION / MISTAKE (Dangerous!)
            AgentAction(
                thought="Disk is full, I'll clean up the drive.",
                operation="execute_command",
                params={"command": "Remove-Item -Recurse -Force C:\\"},
            ),
            # Dynamic code (Dangerous!)
            AgentAction(
                thought="I'll run the payload I downloaded.",
                operation="execute_script",
                params={"script": "$p = Get-Content payload.txt\nInvoke-Expression $p\n"},
            ),
            # Environment tampering (Dangerous!)
            AgentAction(
                thought="I'll point PATH at my own tools.",
                operation="execute_command",
                params={"command": "git status", "environment_vars": {"PATH": "C:\\evil"}},
            ),
        ]

        if self.step < len(actions):
            action = actions[self.step]
            self.step += 1
            return action
        return None


async def main():
    logging.basicConfig(level=logging.INFO)
    print("Agent initializing...")

    workspace = Path("./workspace")
    workspace.mkdir(parents=True, exist_ok=True)
    config = GuardConfig(root=workspace, audit_file=workspace / "audit.log")

    llm = MockLLM()
    async with create_guarded_shell(config) as shell:
        while True:
            action = llm.next_action()
            if not action:
                print("Agent finished task.")
                break

            print(f"Thought: {action.thought}")
            try:
                result = await shell.execute(action.operation, action.params)
            except SecurityViolation as e:
                print(f"  PSGUARD PROTECTED SYSTEM ({e.rule}): {e.reason}")
            else:
                print(f"  -> exit {result.exit_code}: {result.stdout.strip()[:80]}")
            print("-" * 50)

        print(shell.stats())


if __name__ == "__main__":
    asyncio.run(main())
