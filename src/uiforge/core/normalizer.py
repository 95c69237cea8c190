"""Cleanup of accumulated model output into component source text."""

from __future__ import annotations

import re

_FENCE = re.compile(r"```[\w+-]*\n?")
_LEADING_DECLARATION = re.compile(r"^(\s*)(const|function|class)\s+(\w+)")
EXPORT_MARKER = "export default"


def strip_fences(text: str) -> str:
    """Remove Markdown code fences, with or without a language tag."""
    return _FENCE.sub("", text)


def normalize(text: str) -> str:
    """Normalize raw model output.

    1. Drop every code-fence delimiter.
    2. Without an ``export default`` marker, mark a leading
       ``const``/``function``/``class`` declaration as the default export.
    3. Trim surrounding whitespace.

    ``normalize(normalize(t)) == normalize(t)`` for every ``t``.
    """
    text = strip_fences(text)
    if EXPORT_MARKER not in text:
        text = _LEADING_DECLARATION.sub(
            rf"\1{EXPORT_MARKER} \2 \3", text, count=1,
        )
    return text.strip()
