"""
Interpreter profiles: which executable runs commands and scripts, and how
its argv is built.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass


@dataclass(frozen=True)
class Interpreter:
    """
    Describes how to invoke an interpreter.

    argv for a command is `executable, *base_args, [*restricted_args],
    *command_flag, command`; for a script it is `executable, *base_args,
    [*restricted_args], *script_policy_args, *script_flag, path`.
    `restricted_args` apply when the call has no shell access.
    """

    executable: str
    name: str = "powershell"
    base_args: tuple[str, ...] = ("-NoProfile", "-NonInteractive")
    restricted_args: tuple[str, ...] = ("-NoLogo",)
    command_flag: tuple[str, ...] = ("-Command",)
    script_flag: tuple[str, ...] = ("-File",)
    script_policy_args: tuple[str, ...] = ()
    script_suffix: str = ".ps1"
    # Windows PowerShell reads BOM-less files in the ANSI code page.
    script_encoding: str = "utf-8-sig"

    @classmethod
    def powershell(
        cls,
        executable: str | None = None,
        *,
        bypass_execution_policy: bool = True,
    ) -> Interpreter:
        """PowerShell Core if installed, else Windows PowerShell."""
        if executable is None:
            executable = shutil.which("pwsh") or shutil.which("powershell") or "powershell"
        return cls(
            executable=executable,
            script_policy_args=("-ExecutionPolicy", "Bypass") if bypass_execution_policy else (),
        )

    @classmethod
    def posix_shell(cls, executable: str = "/bin/sh") -> Interpreter:
        """A POSIX shell profile, mainly for hosts without PowerShell."""
        return cls(
            executable=executable,
            name="sh",
            base_args=(),
            restricted_args=(),
            command_flag=("-c",),
            script_flag=(),
            script_suffix=".sh",
            script_encoding="utf-8",
        )

    def command_argv(self, command: str, *, allow_shell_access: bool) -> list[str]:
        argv = [self.executable, *self.base_args]
        if not allow_shell_access:
            argv.extend(self.restricted_args)
        argv.extend(self.command_flag)
        argv.append(command)
        return argv

    def script_argv(self, path: str, *, allow_shell_access: bool) -> list[str]:
        argv = [self.executable, *self.base_args]
        if not allow_shell_access:
            argv.extend(self.restricted_args)
        argv.extend(self.script_policy_args)
        argv.extend(self.script_flag)
        argv.append(path)
        return argv
