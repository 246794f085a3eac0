"""SQLite storage for Bill Split."""

import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

SNAPSHOT_KEY = "ledger"


class Database:
    """SQLite database manager.

    Keeps the ledger as one JSON blob (the exported snapshot envelope) plus a
    small key/value config table.
    """

    def __init__(self, db_path: Path):
        """Initialize database connection."""
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path))
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self):
        """Initialize database schema."""
        cursor = self.conn.cursor()

        # Snapshot blobs
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS snapshots (
                key TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        # Config table
        cursor.execute(
            """
            CREATE TABLE IF NOT EXISTS config (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """
        )

        self.conn.commit()

    def close(self):
        """Close database connection."""
        self.conn.close()

    # ========================================================================
    # Snapshot operations
    # ========================================================================

    def load_snapshot(self, key: str = SNAPSHOT_KEY) -> dict[str, Any] | None:
        """Load the stored snapshot, or None when nothing was saved yet."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT data FROM snapshots WHERE key = ?", (key,))
        row = cursor.fetchone()
        return json.loads(row["data"]) if row else None

    def save_snapshot(self, snapshot: dict[str, Any], key: str = SNAPSHOT_KEY):
        """Store a snapshot, replacing the previous one."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO snapshots (key, data, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                data = excluded.data,
                updated_at = excluded.updated_at
            """,
            (key, json.dumps(snapshot), datetime.now().isoformat()),
        )
        self.conn.commit()

    # ========================================================================
    # Config operations
    # ========================================================================

    def get_config(self, key: str) -> str | None:
        """Get a config value by key."""
        cursor = self.conn.cursor()
        cursor.execute("SELECT value FROM config WHERE key = ?", (key,))
        row = cursor.fetchone()
        return str(row["value"]) if row else None

    def set_config(self, key: str, value: str):
        """Set a config value."""
        cursor = self.conn.cursor()
        cursor.execute(
            """
            INSERT INTO config (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET
                value = excluded.value,
                updated_at = excluded.updated_at
            """,
            (key, value, datetime.now().isoformat()),
        )
        self.conn.commit()
