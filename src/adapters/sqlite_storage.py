"""SQLite storage adapter.

Implements the core StoragePort using a simple SQLite database.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterable, Iterator, Optional

from core.models import (
    DeliveryEntry,
    DeliveryStatus,
    Message,
    MessageSummary,
    SourceInfo,
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    # Fixed-width UTC ISO strings so SQL string comparison orders correctly.
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the StoragePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Yield a connection that commits on success and always closes."""

        conn = self._connect()
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - messages: one row per accepted alert
        - deliveries: the per-recipient ledger, unique per (message, recipient)
        """

        with self._session() as conn:
            # messages is written once per accepted alert; only processed_at
            # changes afterwards, when every delivery is terminal.
            # Fields:
            # - type_code: message type code from the catalog
            # - source_host/source_service: NULL when absent, compared exactly
            #   by duplicate suppression
            # - target_groups/metadata: JSON payloads from the request
            # - processed_at: completion stamp, NULL while deliveries are open
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    type_code TEXT NOT NULL,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    source_host TEXT,
                    source_service TEXT,
                    source_ip TEXT,
                    priority TEXT NOT NULL DEFAULT 'normal',
                    target_groups TEXT,
                    metadata TEXT,
                    created_at TIMESTAMP NOT NULL,
                    processed_at TIMESTAMP
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS ix_messages_dedup
                ON messages (type_code, source_host, source_service, created_at)
                """
            )
            # deliveries is the ledger the sender and retry loops work from.
            # Fields:
            # - status: pending, sent, failed or skipped
            # - attempt_count: pushes made so far
            # - last_error: gateway error or skip reason
            # - next_retry_at: earliest time the sender may pick the row again
            # - updated_at: last transition, used as the retry backoff anchor
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS deliveries (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    message_id INTEGER NOT NULL REFERENCES messages(id) ON DELETE CASCADE,
                    recipient_id INTEGER NOT NULL,
                    status TEXT NOT NULL,
                    attempt_count INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    next_retry_at TIMESTAMP,
                    sent_at TIMESTAMP,
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    UNIQUE (message_id, recipient_id)
                )
                """
            )
            conn.execute(
                """
                CREATE INDEX IF NOT EXISTS ix_deliveries_status
                ON deliveries (status, attempt_count, created_at)
                """
            )

    # -- messages -------------------------------------------------------

    def has_recent_message(
        self,
        type_code: str,
        source_host: Optional[str],
        source_service: Optional[str],
        since: datetime,
    ) -> bool:
        """Exact (type, host, service) match created at or after ``since``."""

        with self._session() as conn:
            row = conn.execute(
                """
                SELECT 1 FROM messages
                WHERE type_code = ?
                  AND source_host IS ?
                  AND source_service IS ?
                  AND created_at >= ?
                LIMIT 1
                """,
                (type_code, source_host, source_service, _ts(since)),
            ).fetchone()
        return row is not None

    @staticmethod
    def _insert_message_row(conn: sqlite3.Connection, message: Message) -> int:
        cur = conn.execute(
            """
            INSERT INTO messages (
                type_code,
                title,
                content,
                source_host,
                source_service,
                source_ip,
                priority,
                target_groups,
                metadata,
                created_at,
                processed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                message.type_code,
                message.title,
                message.content,
                message.source.host,
                message.source.service,
                message.source.ip,
                message.priority,
                json.dumps(list(message.target_groups)) if message.target_groups else None,
                json.dumps(message.metadata) if message.metadata else None,
                _ts(message.created_at),
                _ts(message.processed_at),
            ),
        )
        return int(cur.lastrowid)

    def insert_message(self, message: Message) -> int:
        with self._session() as conn:
            return self._insert_message_row(conn, message)

    def insert_message_with_deliveries(
        self,
        message: Message,
        rows: Iterable[tuple[int, DeliveryStatus, Optional[str]]],
        now: datetime,
    ) -> int:
        """Insert a message and its ledger rows as one transaction.

        If any insert fails nothing is kept, so a rejected dispatch leaves
        no message behind for duplicate suppression to find.
        """

        with self._session() as conn:
            message_id = self._insert_message_row(conn, message)
            self._insert_delivery_rows(conn, message_id, rows, now)
        return message_id

    def get_message(self, message_id: int) -> Optional[Message]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
        return self._row_to_message(row) if row else None

    def mark_message_processed(self, message_id: int, processed_at: datetime) -> bool:
        """Stamp processed_at once; later calls leave the first stamp alone."""

        with self._session() as conn:
            cur = conn.execute(
                "UPDATE messages SET processed_at = ? WHERE id = ? AND processed_at IS NULL",
                (_ts(processed_at), message_id),
            )
            return cur.rowcount == 1

    def list_messages(self, limit: int = 200) -> list[MessageSummary]:
        """Newest messages first, each with its delivery counts by status."""

        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM messages ORDER BY created_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
            count_rows = conn.execute(
                """
                SELECT message_id, status, COUNT(*) AS n FROM deliveries
                WHERE message_id IN (SELECT id FROM messages ORDER BY created_at DESC, id DESC LIMIT ?)
                GROUP BY message_id, status
                """,
                (limit,),
            ).fetchall()

        counts: dict[int, dict[DeliveryStatus, int]] = {}
        for row in count_rows:
            counts.setdefault(row["message_id"], {})[DeliveryStatus(row["status"])] = int(row["n"])
        return [
            MessageSummary(message=self._row_to_message(row), counts=counts.get(row["id"], {}))
            for row in rows
        ]

    # -- deliveries -----------------------------------------------------

    def _insert_delivery_rows(
        self,
        conn: sqlite3.Connection,
        message_id: int,
        rows: Iterable[tuple[int, DeliveryStatus, Optional[str]]],
        now: datetime,
    ) -> int:
        stamp = _ts(now)
        created = 0
        for recipient_id, status, reason in rows:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO deliveries (
                    message_id,
                    recipient_id,
                    status,
                    attempt_count,
                    last_error,
                    created_at,
                    updated_at
                ) VALUES (?, ?, ?, 0, ?, ?, ?)
                """,
                (message_id, recipient_id, DeliveryStatus(status).value, reason, stamp, stamp),
            )
            created += cur.rowcount
        return created

    def insert_deliveries(
        self,
        message_id: int,
        rows: Iterable[tuple[int, DeliveryStatus, Optional[str]]],
        now: datetime,
    ) -> int:
        """Insert ledger rows in one transaction; existing pairs are ignored."""

        with self._session() as conn:
            return self._insert_delivery_rows(conn, message_id, rows, now)

    def get_delivery(self, delivery_id: int) -> Optional[DeliveryEntry]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM deliveries WHERE id = ?", (delivery_id,)).fetchone()
        return self._row_to_delivery(row) if row else None

    def list_deliveries(self, message_id: int) -> list[DeliveryEntry]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM deliveries WHERE message_id = ? ORDER BY id",
                (message_id,),
            ).fetchall()
        return [self._row_to_delivery(row) for row in rows]

    def fetch_pending(self, max_attempts: int, now: datetime, limit: int) -> list[DeliveryEntry]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT * FROM deliveries
                WHERE status = ?
                  AND attempt_count < ?
                  AND (next_retry_at IS NULL OR next_retry_at <= ?)
                ORDER BY created_at, id
                LIMIT ?
                """,
                (DeliveryStatus.PENDING.value, max_attempts, _ts(now), limit),
            ).fetchall()
        return [self._row_to_delivery(row) for row in rows]

    def fetch_retryable(
        self, max_attempts: int, updated_before: datetime, limit: int
    ) -> list[DeliveryEntry]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT * FROM deliveries
                WHERE status = ?
                  AND attempt_count > 0
                  AND attempt_count < ?
                  AND updated_at <= ?
                ORDER BY updated_at, id
                LIMIT ?
                """,
                (DeliveryStatus.PENDING.value, max_attempts, _ts(updated_before), limit),
            ).fetchall()
        return [self._row_to_delivery(row) for row in rows]

    def update_delivery(
        self,
        delivery_id: int,
        *,
        expected_status: DeliveryStatus,
        expected_attempts: int,
        status: DeliveryStatus,
        attempt_count: int,
        last_error: Optional[str],
        next_retry_at: Optional[datetime],
        sent_at: Optional[datetime],
        now: datetime,
    ) -> bool:
        """Compare-and-set a ledger row; False when someone else got there first."""

        with self._session() as conn:
            cur = conn.execute(
                """
                UPDATE deliveries
                SET status = ?,
                    attempt_count = ?,
                    last_error = ?,
                    next_retry_at = ?,
                    sent_at = COALESCE(?, sent_at),
                    updated_at = ?
                WHERE id = ? AND status = ? AND attempt_count = ?
                """,
                (
                    DeliveryStatus(status).value,
                    attempt_count,
                    last_error[:1000] if last_error else None,
                    _ts(next_retry_at),
                    _ts(sent_at),
                    _ts(now),
                    delivery_id,
                    DeliveryStatus(expected_status).value,
                    expected_attempts,
                ),
            )
            return cur.rowcount == 1

    def count_open_deliveries(self, message_id: int) -> tuple[int, int]:
        """Return (total, still pending) for a message."""

        with self._session() as conn:
            row = conn.execute(
                """
                SELECT COUNT(*) AS total,
                       COALESCE(SUM(CASE WHEN status = ? THEN 1 ELSE 0 END), 0) AS open_count
                FROM deliveries WHERE message_id = ?
                """,
                (DeliveryStatus.PENDING.value, message_id),
            ).fetchone()
        return int(row["total"]), int(row["open_count"])

    def delivery_counts(self, message_id: int) -> dict[DeliveryStatus, int]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM deliveries WHERE message_id = ? GROUP BY status",
                (message_id,),
            ).fetchall()
        return {DeliveryStatus(row["status"]): int(row["n"]) for row in rows}

    def requeue_failed(self, message_id: int, now: datetime) -> int:
        """Reset failed rows to pending with a fresh budget and reopen the message."""

        with self._session() as conn:
            cur = conn.execute(
                """
                UPDATE deliveries
                SET status = ?, attempt_count = 0, last_error = NULL,
                    next_retry_at = NULL, updated_at = ?
                WHERE message_id = ? AND status = ?
                """,
                (DeliveryStatus.PENDING.value, _ts(now), message_id, DeliveryStatus.FAILED.value),
            )
            count = cur.rowcount
            if count:
                conn.execute("UPDATE messages SET processed_at = NULL WHERE id = ?", (message_id,))
        return count

    def cleanup_before(self, retention_days: int) -> int:
        """Delete processed messages (and their deliveries) older than the horizon."""

        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        with self._session() as conn:
            cur = conn.execute(
                "DELETE FROM messages WHERE created_at < ? AND processed_at IS NOT NULL",
                (_ts(cutoff),),
            )
            return cur.rowcount

    # -- row mapping ----------------------------------------------------

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> Message:
        return Message(
            id=int(row["id"]),
            type_code=row["type_code"],
            title=row["title"],
            content=row["content"],
            source=SourceInfo(
                host=row["source_host"],
                service=row["source_service"],
                ip=row["source_ip"],
            ),
            priority=row["priority"],
            created_at=_parse_ts(row["created_at"]),
            target_groups=tuple(json.loads(row["target_groups"])) if row["target_groups"] else (),
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            processed_at=_parse_ts(row["processed_at"]),
        )

    @staticmethod
    def _row_to_delivery(row: sqlite3.Row) -> DeliveryEntry:
        return DeliveryEntry(
            id=int(row["id"]),
            message_id=int(row["message_id"]),
            recipient_id=int(row["recipient_id"]),
            status=DeliveryStatus(row["status"]),
            attempt_count=int(row["attempt_count"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
            last_error=row["last_error"],
            next_retry_at=_parse_ts(row["next_retry_at"]),
            sent_at=_parse_ts(row["sent_at"]),
        )
