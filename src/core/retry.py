"""Retry loop: re-drive deliveries that failed transiently."""

from __future__ import annotations

import asyncio
import logging

from core.clock import Clock, utc_now
from core.config import RetryConfig
from core.delivery import describe_failure, push_one, render_content
from core.ledger import NO_ADDRESS_REASON, DeliveryLedger
from core.models import DeliveryStatus
from core.ports import CatalogPort, GatewayPort, StoragePort
from core.scheduling import PeriodicLoop
from core.sender import MESSAGE_MISSING

LOGGER = logging.getLogger(__name__)


class RetryLoop(PeriodicLoop):
    """Single-recipient re-pushes for entries whose backoff has elapsed.

    Entries that reach the attempt budget end up failed and are never picked
    again here; putting them back in the queue is an operator decision.
    """

    name = "retry"

    def __init__(
        self,
        storage: StoragePort,
        catalog: CatalogPort,
        ledger: DeliveryLedger,
        gateway: GatewayPort,
        config: RetryConfig = RetryConfig(),
        clock: Clock = utc_now,
    ) -> None:
        super().__init__(config.interval_seconds)
        self._storage = storage
        self._catalog = catalog
        self._ledger = ledger
        self._gateway = gateway
        self._config = config
        self._clock = clock

    async def tick(self) -> int:
        floor = self._clock() - self._ledger.retry_interval
        entries = self._ledger.get_retryable(floor, self._config.batch_size)
        if not entries:
            return 0

        succeeded = 0
        failed = 0
        for entry in entries:
            message = self._storage.get_message(entry.message_id)
            if message is None:
                self._ledger.set_status(entry.id, DeliveryStatus.FAILED, MESSAGE_MISSING)
                continue
            recipient = self._catalog.get_recipient(entry.recipient_id)
            if recipient is None or not recipient.deliverable:
                self._ledger.skip(entry, NO_ADDRESS_REASON)
                continue

            result = await push_one(
                self._gateway,
                recipient.address.strip(),
                render_content(self._catalog, message),
                self._config.push_timeout_seconds,
            )
            error = None if result.success else describe_failure(result)
            status = self._ledger.record_attempt(entry, result.success, error)
            if status is DeliveryStatus.SENT:
                succeeded += 1
            else:
                failed += 1
                LOGGER.warning(
                    "Retry of message %s for recipient %s failed (attempt %s/%s): %s",
                    entry.message_id,
                    entry.recipient_id,
                    entry.attempt_count + 1,
                    self._ledger.max_attempts,
                    error,
                )

            # Spread retries out so a backlog does not burst the gateway.
            if self._config.item_delay_seconds > 0:
                await asyncio.sleep(self._config.item_delay_seconds)

        LOGGER.info("Retry pass complete: %s sent, %s failed", succeeded, failed)
        return len(entries)
