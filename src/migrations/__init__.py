"""Versioned one-shot migrations of the stored data."""

from src.migrations.runner import CURRENT_VERSION, MIGRATIONS, SchemaMigrator

__all__ = [
    "CURRENT_VERSION",
    "MIGRATIONS",
    "SchemaMigrator",
]
