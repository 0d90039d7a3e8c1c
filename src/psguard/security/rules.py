"""
Rule tables for command and script validation.

Each blocked construct is an explicit Rule (pattern, name, rationale) so the
rule set can be reviewed and tested on its own. The tables are lexical
heuristics, not a PowerShell parser: string concatenation, aliases built at
runtime and similar obfuscation can evade them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from psguard.errors import ConfigurationError


class RuleScope(Enum):
    """Where a rule is evaluated inside a script."""

    COMMAND = "command"  # every single command and every script line
    COMPOSITE = "composite"  # single commands and the whole script text, across lines


@dataclass(frozen=True)
class Rule:
    """A blocked regular expression with a name and a rationale."""

    name: str
    pattern: str
    rationale: str
    scope: RuleScope = RuleScope.COMMAND
    compiled: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        try:
            compiled = re.compile(self.pattern, re.IGNORECASE | re.DOTALL)
        except re.error as exc:
            raise ConfigurationError(
                f"Invalid blocked pattern for rule {self.name!r}: {self.pattern!r} ({exc})"
            ) from exc
        object.__setattr__(self, "compiled", compiled)

    def search(self, text: str) -> bool:
        return self.compiled.search(text) is not None


def _command(name: str, pattern: str, rationale: str) -> Rule:
    return Rule(name, pattern, rationale, RuleScope.COMMAND)


def _composite(name: str, pattern: str, rationale: str) -> Rule:
    return Rule(name, pattern, rationale, RuleScope.COMPOSITE)


# Ordered: the first matching rule is reported.
DEFAULT_RULES: tuple[Rule, ...] = (
    # Filesystem destruction
    _command("recursive_drive_delete", r"Remove-Item\s+-Recurse\s+-Force\s+[C-Z]:\\", "Recursive forced deletion of a drive root"),
    _command("recursive_root_delete", r"\bRemove-Item\b.*\s-Recurse\b.*\s[/~](\s|$)", "Recursive deletion of filesystem root or home"),
    _command("format_volume", r"\bFormat-Volume\b", "Disk formatting"),
    _command("clear_disk", r"\bClear-Disk\b", "Disk clearing"),
    _command("remove_partition", r"\bRemove-Partition\b", "Partition removal"),
    _command("initialize_disk", r"\bInitialize-Disk\b", "Disk initialization"),
    _command("format_exe", r"\bformat(\.com|\.exe)?\s+[a-z]:", "Drive formatting via format.exe"),
    _command("diskpart", r"\bdiskpart\b", "Disk partitioning"),
    _command("cipher_wipe", r"\bcipher(\.exe)?\s+/w", "Free-space wiping"),
    _command("sdelete_wipe", r"\bsdelete(64)?(\.exe)?\b.*\s-z\b", "Free-space wiping with SDelete"),
    # System state
    _command("stop_computer", r"\bStop-Computer\b", "System shutdown"),
    _command("restart_computer", r"\bRestart-Computer\b", "System reboot"),
    _command("shutdown_exe", r"\bshutdown(\.exe)?\s+.*/[sr]\b", "Shutdown or reboot via shutdown.exe"),
    _command("stop_service", r"\bSet-Service\b.*-Status\s+Stopped", "Stopping services"),
    _command("net_stop_forced", r"\bnet(\.exe)?\s+stop\b.*/y\b", "Forced service stop"),
    _command("sc_delete", r"\bsc(\.exe)?\s+delete\b", "Service deletion"),
    _command("event_log_clear", r"\bwevtutil(\.exe)?\s+(cl|clear-log)\b", "Event log clearing"),
    _command("clear_event_log", r"\bClear-EventLog\b", "Event log clearing"),
    # Identity and permissions
    _command("set_local_user", r"\bSet-LocalUser\b", "Local user modification"),
    _command("set_ad_user", r"\bSet-ADUser\b", "Active Directory user modification"),
    _command("set_acl", r"\bSet-Acl\b", "Permission changes"),
    _command("take_ownership", r"\b(Take-Ownership|takeown(\.exe)?)\b", "Ownership changes"),
    _command("net_user_delete", r"\bnet(\.exe)?\s+user\b.*/delete\b", "User deletion"),
    _command("net_share_delete", r"\bnet(\.exe)?\s+share\b.*/delete\b", "Share deletion"),
    # Registry and scheduled tasks
    _command("reg_delete", r"\breg(\.exe)?\s+delete\b", "Registry deletion"),
    _command("reg_add_forced", r"\breg(\.exe)?\s+add\b.*/f\b", "Forced registry write"),
    _command("schtasks_delete", r"\bschtasks(\.exe)?\b.*/delete\b", "Scheduled task deletion"),
    # Dynamic code evaluation
    _composite("invoke_expression", r"\bInvoke-Expression\b", "Dynamic code evaluation"),
    _composite("iex_alias", r"(^|[\s|;({=])iex(\s|\(|$)", "Dynamic code evaluation via the iex alias"),
    _composite("script_block_create", r"\[ScriptBlock\]::Create\b", "Dynamic script block construction"),
    _composite("remote_script_block", r"\bInvoke-Command\b.*-ComputerName\b.*-ScriptBlock\b", "Remote code execution"),
    _composite("elevation", r"\bStart-Process\b.*-Verb\s+RunAs\b", "Privilege elevation"),
    # Reflection and assembly loading
    _composite("add_type", r"\bAdd-Type\b", "Compiling or loading .NET types"),
    _composite("reflection_assembly", r"\bNew-Object\b.*Reflection\.Assembly\b", "Reflection assembly loading"),
    _composite("reflection_namespace", r"\bSystem\.Reflection\b", "Reflection namespace access"),
    _composite("assembly_load", r"\[Reflection\.Assembly\]::Load", "Assembly loading"),
    # Remoting and session configuration
    _composite("enable_remoting", r"\bEnable-PSRemoting\b", "Enabling remote execution"),
    _composite("wsman_config", r"\bSet-WSManQuickConfig\b", "WSMan configuration"),
    _composite("session_config", r"\bRegister-PSSessionConfiguration\b", "Session configuration"),
    # Execution policy and file trust
    _composite("forced_execution_policy", r"\bSet-ExecutionPolicy\b.*-Force\b", "Forced execution policy change"),
    _composite("forced_unblock", r"\bUnblock-File\b.*-Force\b", "Forced file unblock"),
    # Services
    _composite("new_service", r"\bNew-Service\b", "Service creation"),
    _composite("service_state", r"\bSet-Service\b.*-Status\b.*\b(Running|Start|Stop)", "Service start or stop"),
    _composite("remove_service", r"\bRemove-Service\b", "Service removal"),
    # Local users and groups
    _composite("new_local_user", r"\bNew-LocalUser\b", "User creation"),
    _composite("remove_local_user", r"\bRemove-LocalUser\b", "User deletion"),
    _composite("add_group_member", r"\bAdd-LocalGroupMember\b", "Group membership change"),
    _composite("remove_group_member", r"\bRemove-LocalGroupMember\b", "Group membership removal"),
    # Scheduled tasks
    _composite("new_scheduled_task", r"\bNew-ScheduledTask\b", "Scheduled task creation"),
    _composite("register_scheduled_task", r"\bRegister-ScheduledTask\b", "Scheduled task registration"),
    _composite("unregister_scheduled_task", r"\bUnregister-ScheduledTask\b.*-Force\b", "Forced scheduled task removal"),
    # Alternate data streams and serialization
    _composite("ads_write", r"\bSet-Content\b.*-Stream\b.*-Force\b", "Alternate data stream write"),
    _composite("ads_read", r"\bGet-Content\b.*-Stream\b", "Alternate data stream read"),
    _composite("export_clixml", r"\bExport-Clixml\b", "Serialization to CliXml"),
    _composite("import_clixml", r"\bImport-Clixml\b", "Deserialization from CliXml"),
    # Credentials
    _composite("plaintext_secure_string", r"\bConvertTo-SecureString\b.*-AsPlainText\b", "Plain text to secure string"),
    _composite("secure_string_to_plaintext", r"\bConvertFrom-SecureString\b.*-AsPlainText\b", "Secure string to plain text"),
    _composite("stored_credential", r"\bGet-Credential\b.*-Store\b", "Credential storage"),
    # Drives and caches
    _composite("map_drive_root", r"\bNew-PSDrive\b.*-PSProvider\s+FileSystem\b.*-Root\s+['\"]?[C-Z]:\\", "Mapping a drive root"),
    _composite("remove_drive_forced", r"\bRemove-PSDrive\b.*-Force\b", "Forced drive removal"),
    _composite("hosted_cache", r"\b(Update|Clear)-HostedCache\b", "BranchCache manipulation"),
    _composite("clear_recycle_bin", r"\bClear-RecycleBin\b.*-Force\b", "Forced recycle bin clearing"),
    # Encoded or hidden invocation
    _composite("encoded_command", r"\b(pwsh|powershell)(\.exe)?\b.*\s-(e|ec|enc|encodedcommand)\s", "Encoded command invocation"),
    _composite("hidden_powershell", r"\b(pwsh|powershell)(\.exe)?\b.*-WindowStyle\s+Hidden\b", "Hidden interpreter invocation"),
    _composite("base64_decode", r"FromBase64String\s*\(", "Decoding base64 payloads"),
)

# Active only when the policy does not allow execution policy overrides.
EXECUTION_POLICY_RULE = _command(
    "set_execution_policy", r"\bSet-ExecutionPolicy\b", "Execution policy change"
)

# Cmdlets recognised as known-safe intrinsics even when not allow-listed.
INTRINSIC_COMMANDS: frozenset[str] = frozenset({
    "Get-ChildItem", "Get-Content", "Set-Content", "Add-Content", "Get-Item",
    "Test-Path", "New-Item", "Remove-Item", "Copy-Item", "Move-Item",
    "Rename-Item", "Get-Location", "Set-Location", "Get-Date", "Get-Host",
    "Write-Host", "Write-Output", "Write-Error", "Write-Warning",
    "Write-Verbose", "Out-File", "Out-String", "Out-Null", "Get-Process",
    "Get-Service", "Get-ComputerInfo", "Get-WmiObject", "Get-CimInstance",
    "Get-Variable", "Get-Module", "Get-Command", "Select-String",
    "Select-Object", "Where-Object", "ForEach-Object", "Sort-Object",
    "Group-Object", "Measure-Object", "Compare-Object", "Join-String",
    "Join-Path", "Split-Path", "Resolve-Path", "ConvertTo-Json",
    "ConvertFrom-Json", "Format-Table", "Format-List", "Start-Sleep",
    "Compress-Archive", "Expand-Archive", "Test-Connection",
    "Test-NetConnection", "Resolve-DnsName", "Invoke-WebRequest",
    "Invoke-RestMethod", "Stop-Process", "Start-Process", "Wait-Process",
})

DEFAULT_ALLOWED_COMMANDS: frozenset[str] = frozenset({
    # Development tools
    "git", "npm", "yarn", "dotnet", "msbuild", "go", "python", "python3",
    "node", "java", "javac", "mvn", "gradle", "cargo", "rustc", "gcc", "g++",
    "clang", "clang++", "choco", "winget",
    # Archives
    "tar", "zip",
    # Network (read-only)
    "curl", "wget",
    # Console built-ins
    "dir", "type", "copy", "move", "del", "md", "rd", "cls", "echo", "cd",
    "whoami", "hostname", "ipconfig", "netstat", "tasklist", "taskkill",
})

# Syntax that lets one command line launch or influence further operations.
SHELL_FEATURE_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = tuple(
    (re.compile(pattern), description)
    for pattern, description in (
        (r"\|", "pipeline"),
        (r">", "output redirection"),
        (r"<", "input redirection"),
        (r";", "command separator"),
        (r"&", "call operator"),
        (r"`", "escape or line continuation"),
        (r"\$\(", "subexpression"),
        (r"\$\{", "braced variable"),
        (r"\(", "grouping expression"),
        (r"\{", "script block"),
        (r"@\(", "array subexpression"),
    )
)

# Keywords that open control flow or declarations. A trailing '-' or '.'
# means a command name such as "process-data", not the keyword.
CONTROL_FLOW = re.compile(
    r"^(if|elseif|else|switch|foreach|for|while|do|until|try|catch|finally|throw|trap"
    r"|break|continue|return|exit|function|filter|workflow|class|enum|param|begin"
    r"|process|end|dynamicparam|using|default)\b(?![-.])",
    re.IGNORECASE,
)
VARIABLE_ASSIGNMENT = re.compile(
    r"^(\[[\w.\[\]]+\]\s*)*\$[\w:]+(\.\w+|\[[^\]]*\])*\s*([-+*/%]|\?\?)?=(?!=)"
)
# Brace-only lines and closing braces that continue a construct.
STRUCTURAL_LINE = re.compile(
    r"^[{}()\[\]\s,]+$|^[})\]]+(\s*(else|elseif|catch|finally|until|while)\b[^;|&]*)?\s*$",
    re.IGNORECASE,
)
ATTRIBUTE_LINE = re.compile(r"^\[[\w.]+(\(.*\))?\]\s*$")
