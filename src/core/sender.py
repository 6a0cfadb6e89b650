"""Sender loop: drain pending ledger entries to the messaging gateway."""

from __future__ import annotations

import logging
from collections import OrderedDict
from typing import List, Optional

from core.config import SenderConfig
from core.delivery import chunked, describe_failure, push_batch, push_one, render_content
from core.ledger import NO_ADDRESS_REASON, DeliveryLedger
from core.models import DeliveryEntry, DeliveryStatus
from core.ports import CatalogPort, GatewayPort, StoragePort
from core.scheduling import PeriodicLoop

LOGGER = logging.getLogger(__name__)

MESSAGE_MISSING = "message no longer exists"


class SenderLoop(PeriodicLoop):
    """Push pending deliveries, one gateway call per message where possible.

    Entries of the same message share one rendered alert: a single sendable
    recipient gets a plain push, several get batch pushes split to the
    gateway's cap, with every batch outcome fanned back out per recipient.
    """

    name = "sender"

    def __init__(
        self,
        storage: StoragePort,
        catalog: CatalogPort,
        ledger: DeliveryLedger,
        gateway: GatewayPort,
        config: SenderConfig = SenderConfig(),
    ) -> None:
        super().__init__(config.interval_seconds)
        self._storage = storage
        self._catalog = catalog
        self._ledger = ledger
        self._gateway = gateway
        self._config = config

    async def tick(self) -> int:
        entries = self._ledger.get_pending(self._config.batch_size)
        if not entries:
            return 0

        by_message: "OrderedDict[int, List[DeliveryEntry]]" = OrderedDict()
        for entry in entries:
            by_message.setdefault(entry.message_id, []).append(entry)

        for message_id, group in by_message.items():
            await self._send_message(message_id, group)
        return len(entries)

    async def _send_message(self, message_id: int, entries: List[DeliveryEntry]) -> None:
        message = self._storage.get_message(message_id)
        if message is None:
            for entry in entries:
                self._ledger.set_status(entry.id, DeliveryStatus.FAILED, MESSAGE_MISSING)
            return

        sendable: List[tuple[DeliveryEntry, str]] = []
        for entry in entries:
            address = self._address_for(entry)
            if address is None:
                self._ledger.skip(entry, NO_ADDRESS_REASON)
                continue
            sendable.append((entry, address))

        if not sendable:
            return

        content = render_content(self._catalog, message)
        timeout = self._config.push_timeout_seconds

        if len(sendable) == 1:
            entry, address = sendable[0]
            result = await push_one(self._gateway, address, content, timeout)
            error = None if result.success else describe_failure(result)
            status = self._ledger.record_attempt(entry, result.success, error)
            LOGGER.info("Message %s -> recipient %s: %s", message_id, entry.recipient_id, status.value)
            return

        sent = 0
        for chunk in chunked(sendable, self._gateway.max_batch_size):
            addresses = list(dict.fromkeys(address for _, address in chunk))
            result = await push_batch(self._gateway, addresses, content, timeout)
            for entry, address in chunk:
                ok = result.succeeded_for(address)
                error = None if ok else (result.error_message or "batch push failed")
                if self._ledger.record_attempt(entry, ok, error) is DeliveryStatus.SENT:
                    sent += 1
        LOGGER.info("Message %s batch push: %s/%s sent", message_id, sent, len(sendable))

    def _address_for(self, entry: DeliveryEntry) -> Optional[str]:
        recipient = self._catalog.get_recipient(entry.recipient_id)
        if recipient is None or not recipient.deliverable:
            return None
        return recipient.address.strip()
