"""
Migration runner for versioned ledger schema changes.

Migrations are named with format: {version}_{name}.py
E.g., 001_add_receipt_notes.py

Each migration must define:
- VERSION: int
- NAME: str
- upgrade(conn: Connection) -> None

The base schema is created by the store itself; migrations only carry
changes made after a ledger is already in use.
"""

import importlib
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class Migration:
    """Represents a database migration."""

    version: int
    name: str
    upgrade: Callable[[sqlite3.Connection], None]


def get_all_migrations() -> list[Migration]:
    """
    Load all migrations shipped next to this module.

    Returns migrations sorted by version. A migration module that cannot be
    loaded is a packaging error and is raised, not skipped.
    """
    migrations = []

    for py_file in sorted(Path(__file__).parent.glob("[0-9][0-9][0-9]_*.py")):
        module = importlib.import_module(f"{__package__}.{py_file.stem}")
        migrations.append(
            Migration(
                version=module.VERSION,
                name=module.NAME,
                upgrade=module.upgrade,
            )
        )

    return sorted(migrations, key=lambda m: m.version)


class MigrationRunner:
    """
    Applies ledger migrations in version order.

    Applied versions are recorded in the `migrations` table.
    """

    def __init__(self, conn: sqlite3.Connection):
        """Initialize with a database connection."""
        self.conn = conn
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
        """
        )
        self.conn.commit()

    def get_applied_versions(self) -> set[int]:
        """Get set of applied migration versions."""
        rows = self.conn.execute("SELECT version FROM migrations").fetchall()
        return {row[0] for row in rows}

    def get_current_version(self) -> int:
        """Get the highest applied migration version (0 if none)."""
        result = self.conn.execute("SELECT MAX(version) FROM migrations").fetchone()[0]
        return result if result is not None else 0

    def get_pending(self) -> list[Migration]:
        """Migrations not yet applied, in order."""
        applied = self.get_applied_versions()
        return [m for m in get_all_migrations() if m.version not in applied]

    def apply_migration(self, migration: Migration) -> None:
        """Apply a single migration and record it."""
        logger.info("Applying migration %03d: %s", migration.version, migration.name)

        try:
            migration.upgrade(self.conn)
            self.conn.execute(
                "INSERT INTO migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (
                    migration.version,
                    migration.name,
                    datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                ),
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            logger.error("Migration %03d (%s) failed", migration.version, migration.name)
            raise

    def run_pending(self) -> list[int]:
        """
        Run all pending migrations.

        Returns list of applied migration versions.
        """
        applied_versions = []
        for migration in self.get_pending():
            self.apply_migration(migration)
            applied_versions.append(migration.version)

        if applied_versions:
            logger.info("Applied %d migrations: %s", len(applied_versions), applied_versions)
        else:
            logger.debug("No pending migrations")

        return applied_versions
