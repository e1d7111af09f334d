#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
Redaction of sensitive argument values before a command is persisted.

"-Password hunter2" becomes "-Password ***"; the flag name is kept so the
history still shows what kind of value was passed. PowerShell's colon form
("-Token:abc") is handled too. Quoted strings and parenthesised
subexpressions are replaced whole, including an unterminated trailing quote.
"""

import re

REDACTED_PLACEHOLDER = "***"

SENSITIVE_FLAGS = ("Password", "ApiKey", "Secret", "Token")

_VALUE_PATTERN = (
    r'"(?:[^"`]|`.)*"?'                       # "double quoted", `-escapes
    r"|'(?:[^']|'')*'?"                       # 'single quoted', '' escapes
    r"|\$?\((?:[^()]|\([^()]*\))*\)?"         # (expr) or $(subexpression)
    r"|\S+"
)

_SENSITIVE_ARG_RE = re.compile(
    r"(?<![\w-])(?P<flag>-(?:" + "|".join(SENSITIVE_FLAGS) + r"))"
    r"(?P<sep>:\s*|\s+)(?P<value>" + _VALUE_PATTERN + r")",
    re.IGNORECASE | re.DOTALL,
)


def redact_command(command_text: str) -> str:
    """Replace the values of sensitive flags with a fixed placeholder."""
    if not command_text:
        return command_text
    return _SENSITIVE_ARG_RE.sub(
        lambda m: f"{m.group('flag')}{m.group('sep')}{REDACTED_PLACEHOLDER}",
        command_text,
    )


def contains_redacted_value(command_text: str) -> bool:
    """True if a sensitive flag in the text carries the placeholder instead of a value."""
    return any(m.group('value') == REDACTED_PLACEHOLDER
               for m in _SENSITIVE_ARG_RE.finditer(command_text or ""))
