"""Programmatic Alembic entry points for the queue database."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext

from research_queue.storage.common import build_sqlite_engine

# Shipped inside the package so non-editable installs can migrate too.
MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


def alembic_config(db_path: Path) -> Config:
    """Alembic config bound to the packaged migrations and ``db_path``."""

    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def upgrade_head(db_path: Path) -> None:
    """Apply migrations up to head; a no-op on an up-to-date database."""

    command.upgrade(alembic_config(db_path), "head")


def current_revision(db_path: Path, *, busy_timeout_ms: int = 5_000) -> str | None:
    """Revision stamped in ``db_path``, or None for an unmigrated database."""

    engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)
    try:
        with engine.connect() as connection:
            return MigrationContext.configure(connection).get_current_revision()
    finally:
        engine.dispose()
