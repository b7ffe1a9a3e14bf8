"""Logging setup shared by the CLI and the scheduler."""

from __future__ import annotations

import logging
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(item)s %(message)s"


class ItemLogAdapter(logging.LoggerAdapter):
    """Tags every record with the queue item label (``[t-42]``)."""

    def __init__(self, logger: logging.Logger, label: str) -> None:
        super().__init__(logger, {"item": f"[{label}]"})

    def process(self, msg: str, kwargs: MutableMapping[str, Any]) -> tuple[str, Any]:
        extra = dict(kwargs.get("extra") or {})
        extra.update(self.extra or {})
        kwargs["extra"] = extra
        return msg, kwargs


class _DefaultItemFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "item"):
            record.item = "[worker]"
        return True


def configure_logging(*, log_file: Path | None, verbose: bool = False) -> None:
    """Send package logs to stderr and, when given, append them to ``log_file``."""

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    package_logger = logging.getLogger("research_queue")
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(_DefaultItemFilter())
        package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
