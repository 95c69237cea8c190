"""Prompt text for generation, refinement, fixing and idea brainstorming."""

from __future__ import annotations

import textwrap

from uiforge.core.error_context import build_error_context

SYSTEM_PROMPT = textwrap.dedent("""\
    You are an expert frontend React engineer who is also a great UI/UX designer.
    Follow the instructions carefully:

    - Think carefully step by step.
    - Create a React component for whatever the user asked for and make sure it
      runs on its own by using a default export.
    - Make the component interactive and functional, keep state where needed,
      and require no props.
    - Import anything you use from React (useState, useEffect, ...) directly.
    - Write the component in TypeScript.
    - Style with Tailwind classes. Do not use arbitrary values (e.g. h-[600px]).
      Keep a consistent color palette and use margin and padding classes so
      the layout is well spaced.
    - Return ONLY the full React code starting with the imports. Do not wrap
      it in ```typescript, ```tsx or any other code fence.
    - Only for dashboards, graphs or charts, the recharts library is available,
      e.g. import { LineChart, XAxis } from "recharts".
    - For placeholder images use
      <div className="bg-gray-200 border-2 border-dashed rounded-xl w-16 h-16" />

    No other libraries (e.g. zod, hookform) are installed or importable.
    Use export default for the main component.
""")

RETRY_REQUEST = (
    "Please fix the following issue: {error}. "
    "Ensure the code is complete and properly formatted."
)

REMEDIATION_MESSAGE = (
    "I'm having trouble generating valid code. Could you please try:\n"
    "1. Describing the specific changes needed\n"
    "2. Breaking down the request into smaller steps\n"
    "3. Providing any error messages you're seeing"
)

IDEA_SYSTEM_PROMPT = textwrap.dedent("""\
    Generate a creative app idea in the following format EXACTLY:
    "Build me a [type] app that [brief description of main functionality]"

    For example:
    "Build me a fitness tracking app that uses gamification to motivate users"
    "Build me a recipe management app that suggests meals based on available ingredients"

    The app idea should be practical and feasible to implement, solve a real
    problem, and be specific enough to generate code from.

    Return ONLY the formatted prompt, nothing else. Always start with "Build me a".
""")

IDEA_USER_PROMPT = (
    "Generate a creative and unique app idea that is practical, innovative, "
    "and solves a real problem."
)


def refinement_prompt(
    user_request: str,
    code: str,
    original_prompt: str,
    last_error: str | None = None,
) -> str:
    """Contextual prompt for a chat refinement or an automatic retry."""
    sections = ["As a React and TypeScript expert, please help improve this code:"]
    error_context = build_error_context(last_error)
    if error_context:
        sections.append(error_context)
    sections += [
        f"Original Requirements:\n{original_prompt}",
        f"Current Complete Code:\n{code}",
        f"User Request:\n{user_request}",
        textwrap.dedent("""\
            Technical Requirements:
            1. Return a complete, working React TypeScript component
            2. Include ALL necessary imports at the top
            3. Keep the component structure and the default export
            4. Use appropriate TypeScript types and interfaces
            5. Follow the rules of hooks
            6. Handle errors and null values
            7. Use consistent formatting
            8. Make sure all JSX is well formed and closed
            9. Keep existing functionality while fixing issues

            Format Requirements:
            - Start the response with the imports
            - Include the complete component code
            - No explanations and no markdown
            - The code must be usable as-is

            Additional Context:
            - Framework: React 18+ with TypeScript
            - Style: Tailwind CSS"""),
    ]
    return "\n\n".join(sections).strip()


def fix_prompt(
    code: str,
    error: str,
    line: int | None = None,
    column: int | None = None,
) -> str:
    """Direct "fix this error" prompt for an error reported by the viewer."""
    details = [f"- Message: {error}"]
    if line:
        details.append(f"- Line: {line}")
    if column:
        details.append(f"- Column: {column}")
    return (
        "As an expert React developer, please fix the following code that has an error.\n"
        "Error details:\n"
        + "\n".join(details)
        + f"\n\nHere's the code:\n{code}\n\n"
        "Please analyze the error carefully and provide ONLY the fixed code without "
        "any explanations or markdown formatting. The response should start directly "
        "with the imports and contain only the corrected code."
    )
