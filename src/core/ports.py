"""Ports (interfaces) used by the core.

Ports define the minimal contracts for the catalog, storage and messaging
gateway adapters so that the core can be reused with different backends.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence

from core.models import (
    AlertContent,
    BatchPushResult,
    DeliveryEntry,
    DeliveryStatus,
    Group,
    Message,
    MessageType,
    PushResult,
    Recipient,
)


class CatalogPort(Protocol):
    """Read-only view of message types, groups and recipients."""

    def get_message_type(self, code: str) -> Optional[MessageType]:
        ...

    def groups_for_message_type(self, code: str) -> list[Group]:
        ...

    def get_recipient(self, recipient_id: int) -> Optional[Recipient]:
        ...


class StoragePort(Protocol):
    """Persistence for messages and the delivery ledger."""

    def has_recent_message(
        self,
        type_code: str,
        source_host: Optional[str],
        source_service: Optional[str],
        since: datetime,
    ) -> bool:
        ...

    def insert_message(self, message: Message) -> int:
        ...

    def insert_message_with_deliveries(
        self,
        message: Message,
        rows: Iterable[tuple[int, DeliveryStatus, Optional[str]]],
        now: datetime,
    ) -> int:
        ...

    def get_message(self, message_id: int) -> Optional[Message]:
        ...

    def mark_message_processed(self, message_id: int, processed_at: datetime) -> bool:
        ...

    def insert_deliveries(
        self,
        message_id: int,
        rows: Iterable[tuple[int, DeliveryStatus, Optional[str]]],
        now: datetime,
    ) -> int:
        ...

    def get_delivery(self, delivery_id: int) -> Optional[DeliveryEntry]:
        ...

    def fetch_pending(self, max_attempts: int, now: datetime, limit: int) -> list[DeliveryEntry]:
        ...

    def fetch_retryable(
        self, max_attempts: int, updated_before: datetime, limit: int
    ) -> list[DeliveryEntry]:
        ...

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
        ...

    def count_open_deliveries(self, message_id: int) -> tuple[int, int]:
        ...

    def requeue_failed(self, message_id: int, now: datetime) -> int:
        ...

    def delivery_counts(self, message_id: int) -> dict[DeliveryStatus, int]:
        ...


class GatewayPort(Protocol):
    """Outbound messaging gateway (push one / push a bounded batch)."""

    max_batch_size: int

    async def push_one(self, address: str, content: AlertContent) -> PushResult:
        ...

    async def push_batch(self, addresses: Sequence[str], content: AlertContent) -> BatchPushResult:
        ...
