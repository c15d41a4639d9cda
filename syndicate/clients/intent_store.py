"""SQLite-backed persistence for post intents with compare-and-swap claims."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional
from uuid import uuid4

from syndicate.models.intents import IntentStatus, PostContent, PostIntent, PublishResult


def _ensure_directory(db_path: Path) -> None:
    if db_path.parent and not db_path.parent.exists():
        db_path.parent.mkdir(parents=True, exist_ok=True)


class SQLiteIntentStore:
    """Durable intent table.

    Every status change is a single conditional ``UPDATE``; a row count of one
    means the caller won the transition. The ``scheduled -> dispatching`` claim
    is the only entry into dispatch, and the final transition only succeeds for
    the holder of the current claim token.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        _ensure_directory(self._db_path)
        self._ensure_tables()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False, timeout=10.0)
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_tables(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS post_intents (
                    intent_id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    platform_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    options TEXT NOT NULL,
                    scheduled_at INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    result TEXT,
                    last_error TEXT,
                    claim_token TEXT,
                    claimed_at INTEGER,
                    attempts INTEGER NOT NULL DEFAULT 0,
                    created_at INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL,
                    published_at INTEGER
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS ix_post_intents_due "
                "ON post_intents (status, scheduled_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS ix_post_intents_user "
                "ON post_intents (user_id, created_at)"
            )

    def insert(self, intent: PostIntent) -> PostIntent:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO post_intents (
                    intent_id, user_id, platform_id, content, options,
                    scheduled_at, status, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    intent.intent_id,
                    intent.user_id,
                    intent.platform_id,
                    json.dumps(intent.content.to_dict()),
                    json.dumps(intent.options),
                    intent.scheduled_at,
                    intent.status.value,
                    intent.created_at,
                    intent.updated_at or intent.created_at,
                ),
            )
        return intent

    def get(self, intent_id: str) -> Optional[PostIntent]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM post_intents WHERE intent_id = ?",
                (intent_id,),
            ).fetchone()
        if not row:
            return None
        return self._row_to_intent(row)

    def list_for_user(
        self,
        user_id: str,
        *,
        status: Optional[IntentStatus] = None,
        limit: int = 50,
    ) -> List[PostIntent]:
        query = "SELECT * FROM post_intents WHERE user_id = ?"
        params: list[Any] = [user_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY scheduled_at DESC LIMIT ?"
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_intent(row) for row in rows]

    def list_claimable(
        self,
        *,
        now_ms: int,
        stale_before_ms: int,
        limit: int = 100,
    ) -> List[PostIntent]:
        """Due scheduled intents plus dispatching intents whose claim went stale."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM post_intents
                WHERE (status = ? AND scheduled_at <= ?)
                   OR (status = ? AND claimed_at < ?)
                ORDER BY scheduled_at ASC
                LIMIT ?
                """,
                (
                    IntentStatus.SCHEDULED.value,
                    now_ms,
                    IntentStatus.DISPATCHING.value,
                    stale_before_ms,
                    limit,
                ),
            ).fetchall()
        return [self._row_to_intent(row) for row in rows]

    def claim(
        self,
        intent_id: str,
        *,
        now_ms: int,
        stale_before_ms: Optional[int] = None,
    ) -> Optional[PostIntent]:
        """Move an intent to ``dispatching``; ``None`` if someone else holds it."""
        token = uuid4().hex
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE post_intents
                SET status = ?, claim_token = ?, claimed_at = ?,
                    attempts = attempts + 1, updated_at = ?
                WHERE intent_id = ?
                  AND (
                    status = ?
                    OR (? IS NOT NULL AND status = ? AND claimed_at < ?)
                  )
                """,
                (
                    IntentStatus.DISPATCHING.value,
                    token,
                    now_ms,
                    now_ms,
                    intent_id,
                    IntentStatus.SCHEDULED.value,
                    stale_before_ms,
                    IntentStatus.DISPATCHING.value,
                    stale_before_ms,
                ),
            )
            claimed = cursor.rowcount == 1
        if not claimed:
            return None
        return self.get(intent_id)

    def mark_published(
        self,
        intent_id: str,
        *,
        claim_token: str,
        result: PublishResult,
        now_ms: int,
    ) -> bool:
        return self._finish(
            intent_id,
            claim_token=claim_token,
            status=IntentStatus.PUBLISHED,
            result=json.dumps(result.to_dict()),
            last_error=None,
            published_at=now_ms,
            now_ms=now_ms,
        )

    def mark_failed(
        self,
        intent_id: str,
        *,
        claim_token: str,
        error: Dict[str, Any],
        now_ms: int,
    ) -> bool:
        return self._finish(
            intent_id,
            claim_token=claim_token,
            status=IntentStatus.FAILED,
            result=None,
            last_error=json.dumps(error),
            published_at=None,
            now_ms=now_ms,
        )

    def release(self, intent_id: str, *, claim_token: str, now_ms: int) -> bool:
        """Hand a claimed intent back to ``scheduled`` (used on cancellation)."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE post_intents
                SET status = ?, claim_token = NULL, claimed_at = NULL, updated_at = ?
                WHERE intent_id = ? AND status = ? AND claim_token = ?
                """,
                (
                    IntentStatus.SCHEDULED.value,
                    now_ms,
                    intent_id,
                    IntentStatus.DISPATCHING.value,
                    claim_token,
                ),
            )
        return cursor.rowcount == 1

    def cancel(self, intent_id: str, *, user_id: str, now_ms: int) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE post_intents SET status = ?, updated_at = ?
                WHERE intent_id = ? AND user_id = ? AND status = ?
                """,
                (
                    IntentStatus.CANCELLED.value,
                    now_ms,
                    intent_id,
                    user_id,
                    IntentStatus.SCHEDULED.value,
                ),
            )
        return cursor.rowcount == 1

    def count_created_since(self, user_id: str, since_ms: int) -> int:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total FROM post_intents
                WHERE user_id = ? AND created_at >= ? AND status != ?
                """,
                (user_id, since_ms, IntentStatus.CANCELLED.value),
            ).fetchone()
        return int(row["total"])

    def _finish(
        self,
        intent_id: str,
        *,
        claim_token: str,
        status: IntentStatus,
        result: Optional[str],
        last_error: Optional[str],
        published_at: Optional[int],
        now_ms: int,
    ) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE post_intents
                SET status = ?, result = ?, last_error = ?, published_at = ?,
                    claim_token = NULL, updated_at = ?
                WHERE intent_id = ? AND status = ? AND claim_token = ?
                """,
                (
                    status.value,
                    result,
                    last_error,
                    published_at,
                    now_ms,
                    intent_id,
                    IntentStatus.DISPATCHING.value,
                    claim_token,
                ),
            )
        return cursor.rowcount == 1

    def _row_to_intent(self, row: sqlite3.Row) -> PostIntent:
        result = None
        if row["result"]:
            result = PublishResult(**json.loads(row["result"]))
        return PostIntent(
            intent_id=row["intent_id"],
            user_id=row["user_id"],
            platform_id=row["platform_id"],
            content=PostContent.from_dict(json.loads(row["content"])),
            options=json.loads(row["options"]) if row["options"] else {},
            scheduled_at=row["scheduled_at"],
            status=IntentStatus(row["status"]),
            result=result,
            last_error=json.loads(row["last_error"]) if row["last_error"] else None,
            claim_token=row["claim_token"],
            claimed_at=row["claimed_at"],
            attempts=row["attempts"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            published_at=row["published_at"],
        )


__all__ = ["SQLiteIntentStore"]
