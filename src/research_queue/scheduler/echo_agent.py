"""Local demo research agent for CLI and end-to-end tests.

Accepts the same argv as the real runner, reads the session instructions from
stdin and writes a deterministic artifact plus a session log line.
"""

from __future__ import annotations

import argparse
import re
import sys
from pathlib import Path

from research_queue.scheduler.instructions import REQUIRED_SECTIONS, SESSIONS_MARKER

_FIELD_PATTERNS = {
    "topic": re.compile(r'^Research topic: "(.*)"$', re.M),
    "output_file": re.compile(r"^Output file: (.+)$", re.M),
    "today": re.compile(r"^Today's date: (.+)$", re.M),
    "tags": re.compile(r"^Tags: ?(.*)$", re.M),
}

_SOURCES = (
    "https://docs.python.org/3/library/subprocess.html",
    "https://www.sqlite.org/wal.html",
    "https://alembic.sqlalchemy.org/en/latest/tutorial.html",
)

_FILLER = (
    "Deterministic demo paragraph describing trade-offs, decision criteria and "
    "concrete examples so the artifact clears the typical length floor. "
)


def main(argv: list[str] | None = None) -> int:
    """Write a research artifact for the topic found in the stdin instructions."""

    parser = argparse.ArgumentParser()
    parser.add_argument("-p", action="store_true", dest="headless")
    parser.add_argument("--model", default="sonnet")
    parser.add_argument("--output-format", default="json")
    parser.add_argument("--allowedTools", nargs="*", default=[])
    parser.add_argument("--short", action="store_true", help="Write an undersized artifact.")
    parser.add_argument("--exit-code", type=int, default=0)
    args, _unknown = parser.parse_known_args(argv)

    instructions = sys.stdin.read()
    fields: dict[str, str] = {}
    for name, pattern in _FIELD_PATTERNS.items():
        match = pattern.search(instructions)
        if match is None:
            print(f"echo_agent: missing '{name}' in instructions", file=sys.stderr)
            return 2
        fields[name] = match.group(1).strip()

    output_path = Path(fields["output_file"])
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if args.short:
        content = f"# {fields['topic']}\n\nToo short.\n"
    else:
        content = _render_artifact(
            topic=fields["topic"],
            today=fields["today"],
            tags=fields["tags"],
        )
    output_path.write_text(content, "utf-8")

    with Path("sessions.md").open("a", encoding="utf-8") as sessions:
        sessions.write(
            f"{fields['today']} | {SESSIONS_MARKER} {fields['topic']} | "
            f"{fields['output_file']} | demo findings\n",
        )

    print(f'{{"result": "wrote {fields["output_file"]}", "model": "{args.model}"}}')
    return args.exit_code


def _render_artifact(*, topic: str, today: str, tags: str) -> str:
    body = []
    for heading in REQUIRED_SECTIONS:
        body.append(f"{heading}\n\n" + _FILLER * 15)
    sources = "\n".join(f"- {url}" for url in _SOURCES)
    return (
        f"---\ndate: {today}\ntopic: {topic}\nstatus: complete\ntags: [{tags}]\n---\n\n"
        f"# {topic}\n\n" + "\n\n".join(body) + f"\n\n### Sources\n\n{sources}\n"
    )


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
