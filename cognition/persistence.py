"""
Snapshot persistence for agent cognition.

An agent snapshot is a plain dictionary tagged with ``SNAPSHOT_VERSION``.
``SnapshotStore`` keeps the latest snapshot per agent in SQLite.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

from cognition.errors import InvariantViolation

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


def check_version(snapshot: dict[str, Any]) -> None:
    """Raise ``InvariantViolation`` unless the snapshot has a supported version."""
    version = snapshot.get("version")
    if version != SNAPSHOT_VERSION:
        raise InvariantViolation(
            f"Unsupported snapshot version {version!r}, expected {SNAPSHOT_VERSION}"
        )


class SnapshotStore:
    """SQLite-backed storage for agent snapshots."""

    def __init__(self, db_path: str | Path):
        """
        Initialize the snapshot store.

        Args:
            db_path: Path to the SQLite database file.
        """
        self.db_path = Path(db_path)
        self._ensure_tables()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection."""
        return sqlite3.connect(self.db_path)

    def _ensure_tables(self) -> None:
        """Create database tables if they don't exist."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS snapshots (
                    agent_id TEXT PRIMARY KEY,
                    version INTEGER NOT NULL,
                    sim_time INTEGER,
                    saved_at TEXT NOT NULL,
                    data TEXT NOT NULL
                )
            """)

    def save(self, snapshot: dict[str, Any]) -> None:
        """Save (or replace) the snapshot of one agent."""
        check_version(snapshot)
        agent_id = snapshot["agent_id"]
        with self._get_connection() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO snapshots (agent_id, version, sim_time, saved_at, data)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    agent_id,
                    snapshot["version"],
                    snapshot.get("now"),
                    datetime.now().isoformat(),
                    json.dumps(snapshot),
                ),
            )
        logger.info(f"Saved snapshot for {agent_id} at tick {snapshot.get('now')}")

    def load(self, agent_id: str) -> dict[str, Any] | None:
        """Load the snapshot of one agent, or None if there is none."""
        with self._get_connection() as conn:
            conn.row_factory = sqlite3.Row
            row = conn.execute(
                "SELECT data FROM snapshots WHERE agent_id = ?",
                (agent_id,),
            ).fetchone()

        if row is None:
            return None
        snapshot = json.loads(row["data"])
        check_version(snapshot)
        return snapshot

    def agent_ids(self) -> list[str]:
        with self._get_connection() as conn:
            cursor = conn.execute("SELECT agent_id FROM snapshots ORDER BY agent_id")
            return [row[0] for row in cursor]

    def delete(self, agent_id: str) -> bool:
        """Delete an agent's snapshot. Returns True if one existed."""
        with self._get_connection() as conn:
            cursor = conn.execute("DELETE FROM snapshots WHERE agent_id = ?", (agent_id,))
            return cursor.rowcount > 0
