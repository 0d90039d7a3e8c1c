"""
Security policy for guarded command and script execution.

The policy is built once at startup and only read afterwards; derived
policies are new instances.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field

from psguard.errors import ConfigurationError
from psguard.security.rules import (
    DEFAULT_ALLOWED_COMMANDS,
    DEFAULT_RULES,
    EXECUTION_POLICY_RULE,
    INTRINSIC_COMMANDS,
    Rule,
    RuleScope,
)


@dataclass(frozen=True)
class SecurityPolicy:
    """
    Immutable security policy.

    Attributes:
        allowed_commands: Base commands permitted to run (case-sensitive).
        rules: Ordered blocked-pattern table; the first match is reported.
        intrinsic_commands: Known-safe cmdlets accepted without allow-listing.
        allow_shell_access_by_default: Permit pipelines, redirects and
            separators in single commands without a per-call override.
        allow_execution_policy_override: Let submitted code change the
            execution policy. When False, any Set-ExecutionPolicy is blocked
            and scripts run with a process-scoped Bypass.
    """

    allowed_commands: frozenset[str] = DEFAULT_ALLOWED_COMMANDS
    rules: tuple[Rule, ...] = DEFAULT_RULES
    intrinsic_commands: frozenset[str] = INTRINSIC_COMMANDS
    max_command_length: int = 1000
    max_script_length: int = 10000
    default_timeout_seconds: int = 30
    max_timeout_seconds: int = 300
    default_script_timeout_seconds: int = 60
    max_script_timeout_seconds: int = 600
    allow_shell_access_by_default: bool = False
    allow_execution_policy_override: bool = False
    active_rules: tuple[Rule, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        """Check invariants and freeze collections. Fails closed on bad config."""
        object.__setattr__(self, "allowed_commands", frozenset(self.allowed_commands))
        object.__setattr__(self, "intrinsic_commands", frozenset(self.intrinsic_commands))
        object.__setattr__(self, "rules", tuple(self.rules))

        for rule in self.rules:
            if not isinstance(rule, Rule):
                raise ConfigurationError(f"Policy rules must be Rule instances, got {rule!r}")

        for name in ("max_command_length", "max_script_length"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")

        for default, maximum in (
            ("default_timeout_seconds", "max_timeout_seconds"),
            ("default_script_timeout_seconds", "max_script_timeout_seconds"),
        ):
            if getattr(self, default) <= 0:
                raise ConfigurationError(f"{default} must be positive")
            if getattr(self, default) > getattr(self, maximum):
                raise ConfigurationError(f"{default} must not exceed {maximum}")

        active = self.rules
        if not self.allow_execution_policy_override:
            active = active + (EXECUTION_POLICY_RULE,)
        object.__setattr__(self, "active_rules", active)

    @classmethod
    def standard(cls) -> SecurityPolicy:
        """
        Create the standard security policy (recommended).

        Allow-lists common development tools and read-mostly cmdlets and
        blocks known-dangerous constructs.
        """
        return cls()

    @classmethod
    def from_patterns(
        cls,
        patterns: list[tuple[str, str]],
        **overrides: object,
    ) -> SecurityPolicy:
        """
        Build a policy whose rule table comes from (pattern, rationale) pairs.

        Raises:
            ConfigurationError: If any pattern does not compile.
        """
        rules = tuple(
            Rule(f"custom_{index}", pattern, rationale)
            for index, (pattern, rationale) in enumerate(patterns)
        )
        return cls(rules=rules, **overrides)  # type: ignore[arg-type]

    @property
    def command_rules(self) -> tuple[Rule, ...]:
        """Rules checked against every script line."""
        return tuple(rule for rule in self.active_rules if rule.scope is RuleScope.COMMAND)

    @property
    def composite_rules(self) -> tuple[Rule, ...]:
        """Rules checked against the whole script text."""
        return tuple(rule for rule in self.active_rules if rule.scope is RuleScope.COMPOSITE)

    def is_allowed(self, base_command: str) -> bool:
        return base_command in self.allowed_commands or base_command in self.intrinsic_commands

    def timeout_bounds(self, *, is_script: bool) -> tuple[int, int]:
        """Return (default, maximum) seconds for the given mode."""
        if is_script:
            return self.default_script_timeout_seconds, self.max_script_timeout_seconds
        return self.default_timeout_seconds, self.max_timeout_seconds

    def with_rules(self, *rules: Rule) -> SecurityPolicy:
        """Return a copy with `rules` appended to the table."""
        return dataclasses.replace(self, rules=self.rules + rules)

    def with_allowed_commands(self, *commands: str) -> SecurityPolicy:
        """Return a copy with `commands` added to the allow-list."""
        return dataclasses.replace(self, allowed_commands=self.allowed_commands | set(commands))
