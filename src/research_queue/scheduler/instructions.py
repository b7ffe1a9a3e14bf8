"""Task instructions and the deterministic artifact path for one research item."""

from __future__ import annotations

import re
from datetime import date
from pathlib import PurePosixPath

from research_queue.scheduler.models import QueueItem

RESEARCH_DIR = "research"
SESSIONS_MARKER = "[automated]"
REQUIRED_SECTIONS: tuple[str, ...] = (
    "## Context",
    "## Findings",
    "## Open Questions",
    "## Extracted Principles",
)

_NON_SLUG_CHARS = re.compile(r"[^a-z0-9]+")


def slugify(topic: str) -> str:
    """Lowercase, collapse non-alphanumeric runs to '-', strip edge separators."""

    return _NON_SLUG_CHARS.sub("-", topic.lower()).strip("-")


def expected_artifact_path(item: QueueItem, day: date) -> str:
    """Project-relative path the task runner must write for ``item`` on ``day``."""

    return str(PurePosixPath(RESEARCH_DIR) / f"{day.isoformat()}-{slugify(item.topic)}.md")


def build_instructions(
    item: QueueItem,
    *,
    artifact_path: str,
    day: date,
    protected_paths: tuple[str, ...] = ("CLAUDE.md",),
) -> str:
    """Render the headless research-session protocol for the task runner."""

    today = day.isoformat()
    tags = ", ".join(item.tags)
    topic_words = " ".join(item.topic.split()[:3])
    principle_query = " ".join(item.tags[:3]) or topic_words
    sections = "\n\n".join(
        f"{heading}\n{_SECTION_GUIDANCE[heading].format(description=item.description)}"
        for heading in REQUIRED_SECTIONS
    )
    protected = ", ".join(protected_paths) or "(none)"

    return f"""You are conducting an automated research session. Follow the protocol exactly.

## Your Task

Research topic: "{item.topic}"
Description: {item.description}
Tags: {tags}
Output file: {artifact_path}
Today's date: {today}

## Session Protocol

### Step 1: Orient
1. Read the project conventions and `sessions.md` to see what was explored recently.
2. Search for existing principles related to this topic: {principle_query}
3. Search for prior research on this topic: {topic_words}
4. Note what already exists so you don't duplicate it.

### Step 2: Research
1. Conduct thorough web research on the topic.
2. Use high-quality, authoritative sources (official docs, recognized experts).
3. Aim for at least 5 distinct sources.
4. Cover: current best practices, trade-offs, decision frameworks, concrete examples.

### Step 3: Write Research File
Write the research file to `{artifact_path}` with this exact format:

```markdown
---
date: {today}
topic: {item.topic}
status: complete
tags: [{tags}]
---

# {item.topic}

{sections}
```

### Step 4: Extract Principles
If the research produced actionable, reusable insights, add them to the matching
file in `principles/` or create a new one.

### Step 5: Update Sessions Log
Append a single line to `sessions.md` in this format:
`{today} | {SESSIONS_MARKER} {item.topic} | {artifact_path} | <brief summary of key findings>`

### Step 6: Git Commit
1. Run `git add` for all files you created or modified.
2. Run `git commit -m "{SESSIONS_MARKER} Research: {item.topic}"`.
Do NOT run git push; the worker handles that.

## Rules
- Do NOT modify these files: {protected}.
- Do NOT run git push.
- Be thorough but focused. Stay on topic.
- Cite your sources inline in the findings."""


_SECTION_GUIDANCE = {
    "## Context": 'Why this was investigated. Reference the description: "{description}"',
    "## Findings": (
        "The core content. Use subsections. Be thorough and detailed "
        "(aim for 5000+ chars of substantive content).\n"
        "Include specific recommendations, code examples where helpful, "
        "and source attributions."
    ),
    "## Open Questions": "What remains unclear or worth further investigation.",
    "## Extracted Principles": "Brief list of any principles distilled from this research.",
}
