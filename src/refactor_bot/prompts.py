"""Prompt templates shared by the planning, editing and enrichment steps."""

from __future__ import annotations

from typing import Sequence

SYSTEM_PROMPT = (
    "Think step by step. Be concise and to the point. "
    "Do not make assumptions other than what was given in the instructions."
)

PLAN_RESPONSE_INSTRUCTION = (
    "Return only JSON: a single array of repository-relative file paths, in the order "
    "they should be changed. Return an empty array when no further changes are needed. "
    "Do not include markdown fences or explanations."
)

EDIT_RESPONSE_INSTRUCTION = (
    "Respond with the complete new content of the file in a single fenced code block. "
    "Do not omit unchanged parts of the file."
)


def render_file_list(paths: Sequence[str], *, limit: int = 500) -> str:
    """Format ``paths`` as a bullet list, truncated after ``limit`` entries."""
    if not paths:
        return "(no files)"
    lines = [f"- {path}" for path in paths[:limit]]
    if len(paths) > limit:
        lines.append(f"- ... and {len(paths) - limit} more")
    return "\n".join(lines)


def render_enrich_prompt(objective: str, tracked_files: Sequence[str]) -> str:
    return (
        "These are the original instructions:\n\n"
        f"{objective.strip()}\n\n"
        "## Repository Files\n"
        f"{render_file_list(tracked_files)}\n\n"
        "Given the instructions above, list extra information about the repository that "
        "helps determine which changes achieve the objective. Keep it concise and factual: "
        "no conclusions, no advice, nothing unrelated to the objective."
    )


def render_plan_prompt(objective: str, candidates: Sequence[str]) -> str:
    return (
        "## Objective\n"
        f"{objective.strip()}\n\n"
        "## Candidate Files\n"
        f"{render_file_list(candidates)}\n\n"
        "Choose the candidate files that still need to change to achieve the objective. "
        "Files changed earlier in this run already contain their edits; do not plan them "
        "again unless more work is needed.\n\n"
        f"{PLAN_RESPONSE_INSTRUCTION}"
    )


def render_edit_prompt(
    objective: str,
    file_path: str,
    file_contents: str,
    *,
    attempt: int = 1,
) -> str:
    sections = [
        "## Objective",
        objective.strip(),
        "",
        f"## File `{file_path}`",
        "```",
        file_contents.rstrip("\n"),
        "```",
        "",
        "Change only this file, and only as far as the objective requires.",
        EDIT_RESPONSE_INSTRUCTION,
    ]
    if attempt > 1:
        sections.append(
            "The previous reply could not be used. Make sure the answer contains exactly one "
            "fenced code block holding the whole file."
        )
    return "\n".join(sections)


__all__ = [
    "EDIT_RESPONSE_INSTRUCTION",
    "PLAN_RESPONSE_INSTRUCTION",
    "SYSTEM_PROMPT",
    "render_edit_prompt",
    "render_enrich_prompt",
    "render_file_list",
    "render_plan_prompt",
]
