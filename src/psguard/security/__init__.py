"""Security module for psguard."""

from psguard.security.guard import (
    SENSITIVE_ENVIRONMENT_VARIABLES,
    validate_environment,
    validate_timeout,
    validate_working_directory,
)
from psguard.security.policy import SecurityPolicy
from psguard.security.rules import DEFAULT_RULES, Rule, RuleScope
from psguard.security.sanitizer import sanitize
from psguard.security.validator import validate_command, validate_script

__all__ = [
    "DEFAULT_RULES",
    "Rule",
    "RuleScope",
    "SENSITIVE_ENVIRONMENT_VARIABLES",
    "SecurityPolicy",
    "sanitize",
    "validate_command",
    "validate_environment",
    "validate_script",
    "validate_timeout",
    "validate_working_directory",
]
