"""Debate briefs: markdown files with optional YAML frontmatter."""

from pathlib import Path
from typing import Any

import frontmatter

# Frontmatter keys copied straight onto DebateContext
CONTEXT_KEYS = ("summary", "wiki_knowledge", "design_context", "code_context", "previous_decisions")


def parse_brief(file_path: Path) -> tuple[str, dict[str, Any]]:
    """Parse a markdown brief with optional YAML frontmatter.

    Returns:
        (body, metadata). Recognised metadata keys: topic, ticket, env,
        participants, moderator, max_turns, budget_usd, plus CONTEXT_KEYS.
        If no frontmatter, metadata is {}.
    """
    post = frontmatter.load(str(file_path))
    return post.content.strip(), dict(post.metadata)


def topic_from_body(body: str) -> str:
    """First non-empty line of the body, heading markers stripped."""
    for line in body.splitlines():
        stripped = line.strip().lstrip("#").strip()
        if stripped:
            return stripped
    return ""


def split_roles(value: Any) -> list[str]:
    """Accept ``"pm,qa"`` or ``["pm", "qa"]``."""
    if isinstance(value, str):
        return [v.strip() for v in value.split(",") if v.strip()]
    return [str(v).strip() for v in value]
