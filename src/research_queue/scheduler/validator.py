"""Output validation for research artifacts written by the task runner."""

from __future__ import annotations

import re
from pathlib import Path

from research_queue.scheduler.instructions import REQUIRED_SECTIONS, SESSIONS_MARKER
from research_queue.scheduler.models import QueueItem, ValidationResult

HEADER_KEYS: tuple[str, ...] = ("date", "topic", "status", "tags")

_HEADER_BLOCK = re.compile(r"^---\r?\n(.*?)\r?\n---", re.S)
_TOPIC_LINE = re.compile(r"^topic[ \t]*:[ \t]*(.*)$", re.M)
_SOURCE_URL = re.compile(r"https?://[^\s)>\]]+")
_SIGNIFICANT_WORD_MIN_CHARS = 4


class OutputValidator:
    """Structural and content checks on one research artifact.

    Every defect is appended to the result; nothing here raises.
    """

    def __init__(
        self,
        *,
        project_root: Path,
        sessions_log: Path | None = None,
        min_chars: int = 5_000,
        typical_chars: int = 8_000,
        min_source_urls: int = 3,
        required_sections: tuple[str, ...] = REQUIRED_SECTIONS,
    ) -> None:
        self.project_root = project_root
        self.sessions_log = sessions_log
        self.min_chars = min_chars
        self.typical_chars = typical_chars
        self.min_source_urls = min_source_urls
        self.required_sections = required_sections

    def validate(self, item: QueueItem, expected_path: str) -> ValidationResult:
        result = ValidationResult(output_file=expected_path)
        full_path = self.project_root / expected_path

        if not full_path.is_file():
            result.errors.append(f"Output file not found: {expected_path}")
            return result
        try:
            content = full_path.read_text("utf-8", errors="replace")
        except OSError as error:
            result.errors.append(f"Output file not readable: {expected_path}: {error}")
            return result

        self._check_length(content, result)
        self._check_header(item, content, result)
        self._check_sections(content, result)
        self._check_sources(content, result)
        self._check_sessions_log(item, result)
        return result

    def _check_length(self, content: str, result: ValidationResult) -> None:
        size = len(content)
        if size < self.min_chars:
            result.errors.append(
                f"Content too short: {size} chars (minimum {self.min_chars}). "
                "Research may be incomplete.",
            )
        elif size < self.typical_chars:
            result.warnings.append(
                f"Content is short: {size} chars. "
                f"Typical research files are {self.typical_chars}+.",
            )

    def _check_header(self, item: QueueItem, content: str, result: ValidationResult) -> None:
        match = _HEADER_BLOCK.match(content)
        if match is None:
            result.errors.append("Missing YAML frontmatter (---...---)")
            return
        header = match.group(1)
        for key in HEADER_KEYS:
            if re.search(rf"^{key}[ \t]*:", header, re.M) is None:
                result.errors.append(f"Frontmatter missing '{key}' field")

        topic_match = _TOPIC_LINE.search(header)
        if topic_match is None:
            return
        file_topic = topic_match.group(1).strip()
        if not topics_overlap(item.topic, file_topic):
            result.errors.append(
                f'Topic mismatch: file says "{file_topic}", queue says "{item.topic}"',
            )

    def _check_sections(self, content: str, result: ValidationResult) -> None:
        for section in self.required_sections:
            if section not in content:
                result.errors.append(f"Missing required section: {section}")

    def _check_sources(self, content: str, result: ValidationResult) -> None:
        unique_urls = set(_SOURCE_URL.findall(content))
        if len(unique_urls) < self.min_source_urls:
            result.warnings.append(
                f"Only {len(unique_urls)} source URLs found "
                f"(target: {self.min_source_urls}+). Research may lack citations.",
            )

    def _check_sessions_log(self, item: QueueItem, result: ValidationResult) -> None:
        if self.sessions_log is None or not self.sessions_log.is_file():
            return
        try:
            sessions = self.sessions_log.read_text("utf-8", errors="replace")
        except OSError:
            return
        if SESSIONS_MARKER not in sessions or item.topic not in sessions:
            result.warnings.append(
                f"{self.sessions_log.name} may not have been updated with this research entry",
            )


def topics_overlap(queue_topic: str, file_topic: str) -> bool:
    """True when a word of 4+ chars from the queue topic occurs in the file topic."""

    haystack = file_topic.lower()
    words = [
        word for word in queue_topic.lower().split() if len(word) >= _SIGNIFICANT_WORD_MIN_CHARS
    ]
    return any(word in haystack for word in words)
