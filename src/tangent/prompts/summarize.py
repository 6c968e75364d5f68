"""Prompts for merge summaries and conversation titles.

Both are single user-turn prompts; the model is asked for one short line.
"""

from __future__ import annotations

MERGE_SUMMARY_INSTRUCTIONS: str = (
    "Summarize the following tangent conversation in one short sentence "
    "(max 80 characters). Focus on what was discussed and concluded:"
)

BRANCH_TITLE_TEMPLATE: str = (
    "In 4 words or fewer, write a short title for a conversation exploring "
    'this topic: "{text}". Reply with only the title: no quotes and no '
    "punctuation at the end."
)

CONVERSATION_TITLE_TEMPLATE: str = (
    "In 4 words or fewer, write a short title for a conversation that starts "
    'with this message: "{text}". Reply with only the title: no quotes and no '
    "punctuation at the end."
)

TITLE_SOURCE_CHARS = 300


def format_transcript(messages: list[dict[str, str]]) -> str:
    """Render messages as ``role: content`` lines."""
    return "\n".join(f"{m['role']}: {m['content']}" for m in messages)


def build_merge_summary_prompt(
    messages: list[dict[str, str]],
    *,
    instructions: str | None = None,
) -> str:
    """Build the user prompt for a merged tangent's one-line summary.

    Args:
        messages: Capped source history, chronological.
        instructions: Replaces the default instruction line when given.

    Returns:
        The formatted prompt.
    """
    header = instructions if instructions is not None else MERGE_SUMMARY_INSTRUCTIONS
    return f"{header}\n\n{format_transcript(messages)}"


def build_title_prompt(text: str, *, template: str = BRANCH_TITLE_TEMPLATE) -> str:
    return template.format(text=text[:TITLE_SOURCE_CHARS])


def clean_title(raw: str, max_chars: int) -> str:
    """Strip whitespace and surrounding quotes, then cap the length."""
    title = raw.strip().strip("\"'").strip()
    return title[:max_chars]
