from __future__ import annotations

from datetime import date

import allure
import pytest
from conftest import make_item

from research_queue.scheduler.instructions import (
    REQUIRED_SECTIONS,
    build_instructions,
    expected_artifact_path,
    slugify,
)

pytestmark = [
    allure.epic("Research Queue"),
    allure.feature("Task Instructions"),
]


@pytest.mark.parametrize(
    ("topic", "slug"),
    [
        ("Agent memory architectures", "agent-memory-architectures"),
        ("  C++ & Rust: FFI?  ", "c-rust-ffi"),
        ("LLM eval -- 2026 edition!", "llm-eval-2026-edition"),
    ],
)
def test_slugify(topic: str, slug: str) -> None:
    assert slugify(topic) == slug


def test_expected_artifact_path_uses_date_and_slug() -> None:
    item = make_item(topic="Agent memory architectures")

    assert (
        expected_artifact_path(item, date(2026, 10, 19))
        == "research/2026-10-19-agent-memory-architectures.md"
    )


def test_build_instructions_carries_item_fields_and_rules() -> None:
    item = make_item(topic="Agent memory architectures", tags=("ai", "agents"))
    path = expected_artifact_path(item, date(2026, 10, 19))

    text = build_instructions(
        item,
        artifact_path=path,
        day=date(2026, 10, 19),
        protected_paths=("CLAUDE.md", "AGENTS.md"),
    )

    assert 'Research topic: "Agent memory architectures"' in text
    assert f"Output file: {path}" in text
    assert "Today's date: 2026-10-19" in text
    assert "Tags: ai, agents" in text
    assert "topic: Agent memory architectures" in text
    assert "[automated] Agent memory architectures" in text
    assert "Do NOT modify these files: CLAUDE.md, AGENTS.md." in text
    assert "Do NOT run git push" in text
    for section in REQUIRED_SECTIONS:
        assert section in text
