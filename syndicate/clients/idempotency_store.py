"""SQLite-backed idempotency ledger for inbound provider events."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import Optional

from syndicate.utils.clock import now_ms

logger = logging.getLogger(__name__)

_DEFAULT_RETENTION_MS = 24 * 60 * 60 * 1000


class SQLiteIdempotencyStore:
    """Remember processed webhook event ids for a bounded retention window."""

    def __init__(self, db_path: str, retention_ms: int = _DEFAULT_RETENTION_MS) -> None:
        self._db_path = Path(db_path)
        self._retention_ms = retention_ms
        if self._db_path.parent and not self._db_path.parent.exists():
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False, timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS processed_events (
                    event_id TEXT PRIMARY KEY,
                    event_type TEXT,
                    processed_at INTEGER NOT NULL
                )
                """
            )

    def is_processed(self, event_id: str) -> bool:
        threshold = now_ms() - self._retention_ms
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM processed_events WHERE event_id = ? AND processed_at >= ?",
                (event_id, threshold),
            ).fetchone()
        return row is not None

    def mark_processed(self, event_id: str, event_type: Optional[str] = None) -> bool:
        """Record an event; returns ``False`` when it was already recorded."""
        timestamp = now_ms()
        with self._connect() as conn:
            conn.execute(
                "DELETE FROM processed_events WHERE processed_at < ?",
                (timestamp - self._retention_ms,),
            )
            cursor = conn.execute(
                """
                INSERT INTO processed_events (event_id, event_type, processed_at)
                VALUES (?, ?, ?)
                ON CONFLICT(event_id) DO NOTHING
                """,
                (event_id, event_type, timestamp),
            )
        inserted = cursor.rowcount == 1
        if not inserted:
            logger.info("Duplicate provider event ignored", extra={"event_id": event_id})
        return inserted

    def release(self, event_id: str) -> None:
        """Forget a claimed event so a redelivery is processed again."""
        with self._connect() as conn:
            conn.execute("DELETE FROM processed_events WHERE event_id = ?", (event_id,))


__all__ = ["SQLiteIdempotencyStore"]
