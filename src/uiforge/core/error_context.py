"""Turn raw error strings into structured fix instructions for the model.

The output is advisory text embedded in the next prompt; nothing here is
enforced by the engine.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_SYNTAX_MESSAGE = re.compile(r"SyntaxError:(.*?)(?:\n|$)", re.DOTALL)
_LINE_COL = re.compile(r"\((\d+):(\d+)\)")
_LINE_WORD = re.compile(r"\bline (\d+)", re.IGNORECASE)
_COLUMN_WORD = re.compile(r"\bcolumn (\d+)", re.IGNORECASE)
_SNIPPET = re.compile(r"(?:\n\s*\d+ \|.*){2,4}")


@dataclass(frozen=True)
class ParsedError:
    """Pieces extracted from a raw error string."""

    message: str
    line: int | None = None
    column: int | None = None
    snippet: str = ""
    full_error: str = ""


def parse_error(raw: str) -> ParsedError:
    """Extract message, location and code snippet from *raw* when present."""
    syntax = _SYNTAX_MESSAGE.search(raw)
    message = syntax.group(1).strip() if syntax else raw.strip()

    line = column = None
    loc = _LINE_COL.search(raw)
    if loc:
        line, column = int(loc.group(1)), int(loc.group(2))
    else:
        line_match = _LINE_WORD.search(raw)
        column_match = _COLUMN_WORD.search(raw)
        line = int(line_match.group(1)) if line_match else None
        column = int(column_match.group(1)) if column_match else None

    snippet_match = _SNIPPET.search(raw)
    return ParsedError(
        message=message,
        line=line,
        column=column,
        snippet=snippet_match.group(0).strip() if snippet_match else "",
        full_error=raw,
    )


class ErrorClassifier:
    """Classify an error string into a fix-instruction family.

    Families:
      syntax    - ``SyntaxError`` (JSX, tags, attributes)
      type      - ``TypeError`` (props, null handling, property access)
      reference - ``ReferenceError`` (undefined names, imports, hooks)
      generic   - anything else, including structural validation messages
    """

    def classify(self, raw: str) -> str:
        if "SyntaxError" in raw:
            return "syntax"
        if "TypeError" in raw:
            return "type"
        if "ReferenceError" in raw:
            return "reference"
        return "generic"

    def instructions(self, raw: str) -> list[str]:
        """Return the checklist for *raw*'s family."""
        family = self.classify(raw)
        if family == "syntax":
            line = parse_error(raw).line
            return [
                "- Fix the syntax error in the component",
                "- Make sure JSX is well formed and every tag is closed",
                "- Check attribute syntax and values",
                f"- Pay special attention to line {line or 'with the error'}",
            ]
        if family == "type":
            return [
                "- Fix type-related issues in the component",
                "- Make sure props have proper types and interfaces",
                "- Handle null and undefined values",
                "- Check object property access",
            ]
        if family == "reference":
            return [
                "- Fix references to undefined variables",
                "- Make sure every required import is present",
                "- Check variable scope and declarations",
                "- Follow the rules of hooks",
            ]
        return [
            "- Review and fix the component structure",
            "- Follow standard React patterns",
            "- Check component logic and data flow",
            "- Look for likely runtime issues",
        ]


_classifier = ErrorClassifier()


def classify_error(raw: str) -> str:
    return _classifier.classify(raw)


def fix_instructions(raw: str) -> str:
    return "\n".join(_classifier.instructions(raw))


def build_error_context(raw: str | None) -> str:
    """Render the error block for a contextual prompt ('' when no error)."""
    if not raw:
        return ""
    parsed = parse_error(raw)
    lines = ["Current Error Details:", parsed.message]
    if parsed.line:
        location = f"At Line: {parsed.line}"
        if parsed.column:
            location += f", Column: {parsed.column}"
        lines.append(location)
    if parsed.snippet:
        lines += ["", "Problematic Code Section:", parsed.snippet]
    lines += [
        "",
        "Required Fixes:",
        fix_instructions(raw),
        "",
        "Special Instructions:",
        "1. Keep the existing imports and component structure",
        "2. Preserve all working functionality",
        "3. Focus on fixing the identified error",
        "4. Use correct TypeScript types",
        "5. Follow React best practices",
    ]
    return "\n".join(lines)
