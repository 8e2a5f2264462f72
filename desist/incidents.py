"""
Desist - Incident Records
Stores panic activations in SQLite (~/.desist/incidents.db)
"""

import asyncio
import json
import sqlite3
from pathlib import Path
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any
from contextlib import contextmanager

from .config import get_desist_dir
from .errors import TransientIOError
from .interfaces import IncidentRecord


def get_db_path() -> Path:
    """Get the path to the incident database."""
    return get_desist_dir() / "incidents.db"


class SQLiteIncidentRecorder:
    """
    Durable record of every panic activation.

    One row per activation: what triggered it, where, and how many
    alerts went out.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = db_path or get_db_path()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS incidents (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at TEXT NOT NULL,
                    incident_type TEXT NOT NULL,
                    description TEXT NOT NULL,
                    trigger_source TEXT NOT NULL,

                    -- NULL when location was unavailable
                    latitude REAL,
                    longitude REAL,

                    alerts_sent INTEGER NOT NULL DEFAULT 0,
                    alerts_failed INTEGER NOT NULL DEFAULT 0,
                    metadata TEXT
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_incidents_created
                ON incidents(created_at DESC)
            """)

            conn.commit()

    @contextmanager
    def _get_connection(self):
        """Context manager for database connections."""
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    async def create(self, record: IncidentRecord) -> int:
        """
        Store an incident.

        Returns:
            The ID of the inserted row.
        """
        return await asyncio.to_thread(self._insert, record)

    def _insert(self, record: IncidentRecord) -> int:
        try:
            with self._get_connection() as conn:
                cursor = conn.execute("""
                    INSERT INTO incidents (
                        created_at, incident_type, description, trigger_source,
                        latitude, longitude,
                        alerts_sent, alerts_failed, metadata
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    record.created_at,
                    record.incident_type,
                    record.description,
                    record.trigger,
                    record.location.latitude if record.location else None,
                    record.location.longitude if record.location else None,
                    record.alerts_sent,
                    record.alerts_failed,
                    json.dumps(record.metadata)
                ))
                conn.commit()
                return cursor.lastrowid
        except sqlite3.Error as e:
            raise TransientIOError(f"Could not record incident: {e}") from e

    def get_recent(self, count: int = 10) -> List[Dict[str, Any]]:
        """Get the most recent incidents, newest first."""
        with self._get_connection() as conn:
            cursor = conn.execute("""
                SELECT * FROM incidents
                ORDER BY created_at DESC, id DESC
                LIMIT ?
            """, (count,))

            rows = []
            for row in cursor.fetchall():
                incident = dict(row)
                incident['metadata'] = json.loads(incident['metadata'] or '{}')
                rows.append(incident)
            return rows

    def count(self) -> int:
        with self._get_connection() as conn:
            return conn.execute("SELECT COUNT(*) FROM incidents").fetchone()[0]

    def cleanup_old_data(self, days: int = 30) -> int:
        """
        Delete incidents older than N days.
        Returns number of rows deleted.
        """
        cutoff_iso = (datetime.now(timezone.utc) - timedelta(days=days)).isoformat()
        with self._get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM incidents WHERE created_at < ?",
                (cutoff_iso,)
            )
            conn.commit()
            return cursor.rowcount
