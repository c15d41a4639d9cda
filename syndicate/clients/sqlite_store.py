"""Generic (partition key, sort key) record table backing credentials, handshakes and billing."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional

from syndicate.utils.clock import now_ms

Record = Dict[str, Any]

_SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    pk TEXT NOT NULL,
    sk TEXT NOT NULL,
    body TEXT NOT NULL,
    written_at INTEGER NOT NULL,
    PRIMARY KEY (pk, sk)
)
"""


class SQLiteStore:
    """JSON documents addressed by ``pk``/``sk``.

    Plain reads and writes autocommit. ``update_item`` and ``pop_item`` run
    under ``BEGIN IMMEDIATE`` so concurrent writers cannot interleave between
    the read and the write.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(_SCHEMA)

    def _connect(self, **kwargs: Any) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False, timeout=10.0, **kwargs)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _locked(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect(isolation_level=None)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    @staticmethod
    def _read(conn: sqlite3.Connection, pk: str, sk: str) -> Optional[Record]:
        row = conn.execute(
            "SELECT body FROM records WHERE pk = ? AND sk = ?", (pk, sk)
        ).fetchone()
        return json.loads(row["body"]) if row else None

    def put_item(self, item: Record) -> None:
        """Insert or replace a document; ``pk`` and ``sk`` are taken from the item."""
        pk, sk = item.get("pk"), item.get("sk")
        if not pk or not sk:
            raise ValueError("Item must include 'pk' and 'sk' keys")
        with self._connect() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO records (pk, sk, body, written_at) VALUES (?, ?, ?, ?)",
                (pk, sk, json.dumps(item), now_ms()),
            )

    def get_item(self, *, partition_key: str, sort_key: str) -> Optional[Record]:
        with self._connect() as conn:
            return self._read(conn, partition_key, sort_key)

    def update_item(
        self,
        *,
        partition_key: str,
        sort_key: str,
        mutate: Callable[[Record], Record],
    ) -> Optional[Record]:
        """Apply ``mutate`` to an existing document atomically; ``None`` if absent."""
        with self._locked() as conn:
            current = self._read(conn, partition_key, sort_key)
            if current is None:
                return None
            updated = mutate(current)
            updated.update(pk=partition_key, sk=sort_key)
            conn.execute(
                "UPDATE records SET body = ?, written_at = ? WHERE pk = ? AND sk = ?",
                (json.dumps(updated), now_ms(), partition_key, sort_key),
            )
        return updated

    def pop_item(self, *, partition_key: str, sort_key: str) -> Optional[Record]:
        """Read and delete a document in one transaction; only one caller gets it."""
        with self._locked() as conn:
            current = self._read(conn, partition_key, sort_key)
            if current is not None:
                conn.execute(
                    "DELETE FROM records WHERE pk = ? AND sk = ?", (partition_key, sort_key)
                )
        return current

    def delete_item(self, *, partition_key: str, sort_key: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM records WHERE pk = ? AND sk = ?", (partition_key, sort_key)
            )
        return cursor.rowcount > 0

    def list_items_with_prefix(
        self, *, partition_key: str, sort_key_prefix: str
    ) -> List[Record]:
        pattern = (
            sort_key_prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "%"
        )
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT body FROM records WHERE pk = ? AND sk LIKE ? ESCAPE '\\' ORDER BY sk",
                (partition_key, pattern),
            ).fetchall()
        return [json.loads(row["body"]) for row in rows]


__all__ = ["SQLiteStore"]
