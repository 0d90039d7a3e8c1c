"""
Command and script validation.

Validators are pure: they read the policy and the text and return a
ValidationOutcome. Checks run cheapest-first and stop at the first failure.
"""

from __future__ import annotations

import re

from psguard._types import ValidationOutcome
from psguard.security.policy import SecurityPolicy
from psguard.security.rules import (
    ATTRIBUTE_LINE,
    CONTROL_FLOW,
    SHELL_FEATURE_PATTERNS,
    STRUCTURAL_LINE,
    VARIABLE_ASSIGNMENT,
    Rule,
)
from psguard.security.sanitizer import (
    InvalidEncoding,
    decode_text,
    has_control_characters,
    sanitize,
)

_LEADING_SEPARATORS = re.compile(r"^[|;]+")
# `name = value`, `$x += 1`, `FOO=bar cmd`; not `--opt=value` further along the line.
_ASSIGNMENT = re.compile(r"^[^\s=]+\s*([-+*/%]|\?\?)?=(?!=)")
_QUOTED = re.compile(r"'[^']*'|\"[^\"]*\"")
# Attributes and type literals: `[Parameter(Mandatory)]`, `[string]`.
_TYPE_LITERAL = re.compile(r"\[[\w.]+(\([^)]*\))?\]")
_INLINE_DELIMITERS = re.compile(r"[(){};]")
# `.Count` after a closing paren is member access, not a command.
_COMMAND_START = re.compile(r"^([A-Za-z&\\/]|\.[\\/\s])")


def extract_base_command(line: str) -> str | None:
    """
    Return the command a line invokes, or None when it names no command.

    Leading pipes and separators are discarded and only the first pipeline
    segment is considered. Assignments, variable references and bare
    parameters are not base commands.
    """
    text = _LEADING_SEPARATORS.sub("", line.strip()).strip()
    if "|" in text:
        text = text.split("|", 1)[0].strip()

    if _ASSIGNMENT.match(text):
        return None

    fields = text.split()
    if not fields:
        return None
    first = fields[0]
    if first.startswith(("-", "$")):
        return None
    return first


def is_control_structure(line: str) -> bool:
    """True for control-flow, declaration, assignment and brace-only lines."""
    text = line.strip()
    return bool(
        CONTROL_FLOW.match(text)
        or VARIABLE_ASSIGNMENT.match(text)
        or STRUCTURAL_LINE.match(text)
        or ATTRIBUTE_LINE.match(text)
    )


def inline_commands(line: str) -> list[str]:
    """
    Return the commands embedded in a control, declaration or assignment line.

    `if ($x) { certutil -f a }` names certutil in its block, while a bare
    `} else {` names nothing. Quoted text, attributes and type literals are
    ignored. Segments that open with a variable, an operator or a literal
    value are not commands.
    """
    commands = []
    for segment in _INLINE_DELIMITERS.split(_TYPE_LITERAL.sub("", _QUOTED.sub('""', line))):
        segment = segment.strip()
        if not _COMMAND_START.match(segment) or is_control_structure(segment):
            continue
        base = extract_base_command(segment)
        if base is not None:
            commands.append(base)
    return commands


def find_shell_feature(command: str) -> str | None:
    """Return a description of the first shell-composition construct found."""
    for pattern, description in SHELL_FEATURE_PATTERNS:
        if pattern.search(command):
            return description
    return None


def _match_rules(rules: tuple[Rule, ...], text: str) -> Rule | None:
    for rule in rules:
        if rule.search(text):
            return rule
    return None


def _check_encoding(text: str | bytes, what: str) -> tuple[str | None, ValidationOutcome]:
    try:
        return decode_text(text), ValidationOutcome.ok()
    except InvalidEncoding:
        return None, ValidationOutcome.fail(
            "utf8_validation", f"{what} contains invalid UTF-8 characters"
        )


def validate_command(
    command: str | bytes,
    policy: SecurityPolicy,
    *,
    allow_shell_access: bool = False,
) -> ValidationOutcome:
    """
    Validate a single command line against the policy.

    Args:
        command: The command line.
        policy: Security policy in effect.
        allow_shell_access: Per-call permission for pipelines, redirects and
            separators. The policy default can also grant it.
    """
    if len(command) > policy.max_command_length:
        return ValidationOutcome.fail(
            "max_length", f"Command too long (max {policy.max_command_length} characters)"
        )

    text, outcome = _check_encoding(command, "Command")
    if text is None:
        return outcome

    if sanitize(text) != text:
        return ValidationOutcome.fail("character_validation", "Command contains invalid characters")

    rule = _match_rules(policy.active_rules, text)
    if rule is not None:
        return ValidationOutcome.fail(
            "blocked_pattern",
            f"Blocked pattern detected ({rule.rationale}): {rule.pattern}",
            pattern=rule.pattern,
        )

    base = extract_base_command(text)
    if base is None:
        return ValidationOutcome.fail("command_extraction", "Unable to determine base command")

    if not policy.is_allowed(base):
        return ValidationOutcome.fail("allowed_commands", f"Command not allowed: {base}")

    if not (allow_shell_access or policy.allow_shell_access_by_default):
        feature = find_shell_feature(text)
        if feature is not None:
            return ValidationOutcome.fail("shell_access", f"Shell features not allowed: {feature}")

    return ValidationOutcome.ok()


def _statement_lines(script: str):
    """Yield (line_number, stripped_line) for lines that are not blank or comments."""
    in_block_comment = False
    for number, raw in enumerate(script.splitlines(), start=1):
        line = raw.strip()
        if in_block_comment:
            if "#>" in line:
                in_block_comment = False
                line = line.split("#>", 1)[1].strip()
            else:
                continue
        if line.startswith("<#"):
            if "#>" not in line[2:]:
                in_block_comment = True
                continue
            line = line[2:].split("#>", 1)[1].strip()
        if not line or line.startswith("#"):
            continue
        yield number, line


def validate_script(script: str | bytes, policy: SecurityPolicy) -> ValidationOutcome:
    """
    Validate a multi-line script against the policy.

    The whole text is scanned for composite constructs first, then each
    statement line gets the per-line rules and the allow-list check. Commands
    inside one-line blocks of control lines are allow-listed too. Lines that
    cannot be classified are rejected.
    """
    if len(script) > policy.max_script_length:
        return ValidationOutcome.fail(
            "max_length", f"Script too long (max {policy.max_script_length} characters)"
        )

    text, outcome = _check_encoding(script, "Script")
    if text is None:
        return outcome

    if has_control_characters(text):
        return ValidationOutcome.fail("character_validation", "Script contains invalid characters")

    rule = _match_rules(policy.composite_rules, text)
    if rule is not None:
        return ValidationOutcome.fail(
            "dangerous_constructs",
            f"Script contains dangerous constructs ({rule.rationale}): {rule.pattern}",
            pattern=rule.pattern,
        )

    line_rules = policy.command_rules
    for number, line in _statement_lines(text):
        rule = _match_rules(line_rules, line)
        if rule is not None:
            return ValidationOutcome.fail(
                "blocked_pattern",
                f"Blocked pattern detected at line {number} ({rule.rationale}): {rule.pattern}",
                pattern=rule.pattern,
                line=number,
            )

        if is_control_structure(line):
            for base in inline_commands(line):
                if not policy.is_allowed(base):
                    return ValidationOutcome.fail(
                        "allowed_commands",
                        f"Command not allowed at line {number}: {base}",
                        line=number,
                    )
            continue

        base = extract_base_command(line)
        if base is None:
            return ValidationOutcome.fail(
                "command_extraction",
                f"Unable to determine base command at line {number}",
                line=number,
            )

        if not policy.is_allowed(base):
            return ValidationOutcome.fail(
                "allowed_commands",
                f"Command not allowed at line {number}: {base}",
                line=number,
            )

    return ValidationOutcome.ok()
