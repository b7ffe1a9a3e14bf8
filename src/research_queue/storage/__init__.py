"""Persistence helpers: SQLModel tables, SQLite engine policy, migrations."""
