"""Unit tests for conclave/brief.py — no API calls."""

import textwrap
from pathlib import Path

from conclave.brief import parse_brief, split_roles, topic_from_body


def test_parse_brief_no_frontmatter(tmp_path: Path) -> None:
    """File without frontmatter returns full content and empty metadata."""
    f = tmp_path / "brief.md"
    f.write_text("Should checkout use optimistic locking?", encoding="utf-8")
    body, metadata = parse_brief(f)
    assert body == "Should checkout use optimistic locking?"
    assert metadata == {}


def test_parse_brief_with_frontmatter(tmp_path: Path) -> None:
    """File with frontmatter returns metadata keys and body content."""
    f = tmp_path / "brief.md"
    f.write_text(
        textwrap.dedent("""\
            ---
            ticket: SHOP-42
            env: staging
            participants: [pm, backend-developer, qa]
            max_turns: 8
            code_context: services/checkout/
            ---
            # Optimistic locking for checkout

            Orders are occasionally double-charged.
        """),
        encoding="utf-8",
    )
    body, metadata = parse_brief(f)
    assert body.startswith("# Optimistic locking for checkout")
    assert metadata["ticket"] == "SHOP-42"
    assert metadata["participants"] == ["pm", "backend-developer", "qa"]
    assert metadata["max_turns"] == 8


def test_topic_from_body_strips_heading() -> None:
    assert topic_from_body("\n\n## Rate limiting\n\nDetails") == "Rate limiting"


def test_topic_from_body_empty() -> None:
    assert topic_from_body("   \n") == ""


def test_split_roles_string() -> None:
    assert split_roles("pm, qa,,devops ") == ["pm", "qa", "devops"]


def test_split_roles_list() -> None:
    assert split_roles(["pm", " qa"]) == ["pm", "qa"]
