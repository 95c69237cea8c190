"""Structural validation of generated component source.

These checks are cheap syntactic proxies for "plausibly a component",
not a parse. Code that passes can still be broken.
"""

from __future__ import annotations

import re

from uiforge.core.normalizer import EXPORT_MARKER
from uiforge.types import ErrorKind, ValidationResult

_DECLARATION = re.compile(r"(\bfunction\b|\bconst\b)\s+\w+")
_PAIRS = {"(": ")", "{": "}", "[": "]"}
_CLOSERS = set(_PAIRS.values())


def check_brackets(text: str) -> str | None:
    """Return an error message if ``()[]{}`` are unbalanced, else ``None``."""
    stack: list[str] = []
    for ch in text:
        if ch in _PAIRS:
            stack.append(ch)
        elif ch in _CLOSERS:
            if not stack or _PAIRS[stack.pop()] != ch:
                return "Mismatched brackets or parentheses"
    if stack:
        return "Unclosed brackets or parentheses"
    return None


def validate(text: str) -> ValidationResult:
    """Validate normalized component text. First failing check wins."""
    if not text.strip():
        return ValidationResult.fail(ErrorKind.EMPTY_ARTIFACT, "Empty code response")

    if not _DECLARATION.search(text):
        return ValidationResult.fail(
            ErrorKind.INVALID_COMPONENT_STRUCTURE, "Invalid component structure",
        )

    if EXPORT_MARKER not in text:
        return ValidationResult.fail(
            ErrorKind.MISSING_DEFAULT_EXPORT, "Missing export default statement",
        )

    bracket_error = check_brackets(text)
    if bracket_error:
        return ValidationResult.fail(
            ErrorKind.MISMATCHED_OR_UNCLOSED_BRACKETS, bracket_error,
        )

    return ValidationResult.ok()
