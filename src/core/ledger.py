"""Delivery ledger: the per-recipient state machine (core domain).

Every transition is a compare-and-set on the entry's current status and
attempt count. When the sender and retry loops pick the same entry, the
second write matches nothing and becomes a no-op instead of corrupting the
attempt budget.

Lifecycle::

    pending -> sent | failed | skipped
    pending -> pending   (attempt recorded, next retry pushed forward)
    failed  -> pending   (operator requeue only)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from core.clock import Clock, utc_now
from core.config import LedgerConfig
from core.models import DeliveryEntry, DeliveryStatus, Recipient
from core.ports import StoragePort

LOGGER = logging.getLogger(__name__)

NO_ADDRESS_REASON = "recipient has no channel address"


class DeliveryNotFound(LookupError):
    """Raised when a ledger entry id does not exist."""


class DeliveryLedger:
    """Creation, lookup and status transitions for ledger entries."""

    def __init__(
        self,
        storage: StoragePort,
        config: LedgerConfig = LedgerConfig(),
        clock: Clock = utc_now,
    ) -> None:
        self._storage = storage
        self._config = config
        self._clock = clock

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    @property
    def retry_interval(self) -> timedelta:
        return self._config.retry_interval

    @staticmethod
    def build_rows(recipients: Iterable[Recipient]) -> list[tuple[int, DeliveryStatus, Optional[str]]]:
        """Initial ledger rows, one per distinct recipient.

        Recipients without an address start out skipped.
        """

        rows: list[tuple[int, DeliveryStatus, Optional[str]]] = []
        seen: set[int] = set()
        for recipient in recipients:
            if recipient.id in seen:
                continue
            seen.add(recipient.id)
            if recipient.deliverable:
                rows.append((recipient.id, DeliveryStatus.PENDING, None))
            else:
                rows.append((recipient.id, DeliveryStatus.SKIPPED, NO_ADDRESS_REASON))
        return rows

    def create_batch(self, message_id: int, recipients: Iterable[Recipient]) -> int:
        """Create one entry per recipient in a single transaction.

        Returns the number of rows created; repeats of an existing
        (message, recipient) pair are ignored.
        """

        rows = self.build_rows(recipients)
        if not rows:
            return 0
        created = self._storage.insert_deliveries(message_id, rows, self._clock())
        LOGGER.debug("Created %s ledger entries for message %s", created, message_id)
        return created

    def get_pending(self, limit: int) -> List[DeliveryEntry]:
        """Oldest-first pending entries with attempts left and no backoff in effect."""

        return self._storage.fetch_pending(self._config.max_attempts, self._clock(), limit)

    def get_retryable(self, backoff_floor: datetime, limit: int) -> List[DeliveryEntry]:
        """Pending entries that failed before and were last touched before ``backoff_floor``."""

        return self._storage.fetch_retryable(self._config.max_attempts, backoff_floor, limit)

    def set_status(self, delivery_id: int, status: DeliveryStatus, error: Optional[str] = None) -> bool:
        """Move a pending entry to ``status``.

        Setting an entry to the terminal status it already has is a no-op.
        Returns True when the row actually changed.
        """

        entry = self._storage.get_delivery(delivery_id)
        if entry is None:
            raise DeliveryNotFound(f"Delivery {delivery_id} does not exist")
        if entry.status is status and status.is_terminal:
            return False
        if entry.status.is_terminal:
            LOGGER.warning(
                "Refusing %s -> %s for delivery %s", entry.status.value, status.value, delivery_id
            )
            return False
        now = self._clock()
        return self._apply(
            entry,
            status=status,
            attempt_count=entry.attempt_count,
            last_error=error,
            next_retry_at=None,
            sent_at=now if status is DeliveryStatus.SENT else None,
            now=now,
        )

    def skip(self, entry: DeliveryEntry, reason: str) -> bool:
        now = self._clock()
        return self._apply(
            entry,
            status=DeliveryStatus.SKIPPED,
            attempt_count=entry.attempt_count,
            last_error=reason,
            next_retry_at=None,
            sent_at=None,
            now=now,
        )

    def record_attempt(self, entry: DeliveryEntry, success: bool, error: Optional[str] = None) -> DeliveryStatus:
        """Account for one push attempt and return the resulting status.

        Success moves the entry to sent. A failure keeps it pending with the
        next retry pushed out by the retry interval, or fails it for good
        once the attempt budget is spent.
        """

        now = self._clock()
        attempts = entry.attempt_count + 1
        if success:
            status = DeliveryStatus.SENT
            next_retry_at = None
        elif attempts >= self._config.max_attempts:
            status = DeliveryStatus.FAILED
            next_retry_at = None
        else:
            status = DeliveryStatus.PENDING
            next_retry_at = now + self._config.retry_interval

        applied = self._apply(
            entry,
            status=status,
            attempt_count=attempts,
            last_error=None if success else error,
            next_retry_at=next_retry_at,
            sent_at=now if success else None,
            now=now,
        )
        if not applied:
            current = self._storage.get_delivery(entry.id)
            return current.status if current else status
        return status

    def complete_if_done(self, message_id: int) -> bool:
        """Stamp the message as processed once every entry is terminal."""

        total, open_count = self._storage.count_open_deliveries(message_id)
        if total == 0 or open_count > 0:
            return False
        stamped = self._storage.mark_message_processed(message_id, self._clock())
        if stamped:
            LOGGER.info("Message %s fully processed (%s deliveries)", message_id, total)
        return stamped

    def requeue_failed(self, message_id: int) -> int:
        """Operator action: give failed entries a fresh attempt budget."""

        count = self._storage.requeue_failed(message_id, self._clock())
        LOGGER.info("Requeued %s failed deliveries for message %s", count, message_id)
        return count

    def summary(self, message_id: int) -> dict[DeliveryStatus, int]:
        return self._storage.delivery_counts(message_id)

    def _apply(
        self,
        entry: DeliveryEntry,
        *,
        status: DeliveryStatus,
        attempt_count: int,
        last_error: Optional[str],
        next_retry_at: Optional[datetime],
        sent_at: Optional[datetime],
        now: datetime,
    ) -> bool:
        changed = self._storage.update_delivery(
            entry.id,
            expected_status=entry.status,
            expected_attempts=entry.attempt_count,
            status=status,
            attempt_count=attempt_count,
            last_error=last_error,
            next_retry_at=next_retry_at,
            sent_at=sent_at,
            now=now,
        )
        if not changed:
            LOGGER.debug("Delivery %s changed concurrently; skipping %s", entry.id, status.value)
            return False
        if status.is_terminal:
            self.complete_if_done(entry.message_id)
        return True
