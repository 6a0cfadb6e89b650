"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any storage or gateway specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

PRIORITIES = ("high", "normal", "low")


class DeliveryStatus(str, Enum):
    """Status of one (message, recipient) delivery."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self is not DeliveryStatus.PENDING


TERMINAL_STATUSES = frozenset(
    {DeliveryStatus.SENT, DeliveryStatus.FAILED, DeliveryStatus.SKIPPED}
)


@dataclass(frozen=True)
class MessageType:
    """Alert category from the catalog.

    ``priority`` ranks the type from 1 (most urgent) to 5 and supplies the
    alert priority when a request does not name one.
    """

    code: str
    name: str
    priority: Optional[int] = None
    color: Optional[str] = None
    active: bool = True

    @property
    def alert_priority(self) -> Optional[str]:
        if self.priority is None:
            return None
        if self.priority <= 2:
            return "high"
        if self.priority == 3:
            return "normal"
        return "low"


@dataclass(frozen=True)
class Recipient:
    """A user that can receive alerts; no address means undeliverable."""

    id: int
    name: str
    address: Optional[str]
    active: bool = True

    @property
    def deliverable(self) -> bool:
        return bool(self.address and self.address.strip())


@dataclass(frozen=True)
class Group:
    """Addressable set of recipients plus routing rules."""

    code: str
    name: str
    members: tuple[int, ...] = ()
    message_types: frozenset[str] = frozenset()
    host_filter: Optional[str] = None
    service_filter: Optional[str] = None
    receive_start: str = "00:00"
    receive_end: str = "24:00"
    mute_start: Optional[str] = None
    mute_end: Optional[str] = None
    suppress_duplicates: bool = False
    duplicate_interval_minutes: int = 30
    active: bool = True


@dataclass(frozen=True)
class SourceInfo:
    """Where an alert came from."""

    host: Optional[str] = None
    service: Optional[str] = None
    ip: Optional[str] = None


@dataclass(frozen=True)
class Message:
    """One accepted inbound event."""

    id: Optional[int]
    type_code: str
    title: str
    content: str
    source: SourceInfo
    priority: str
    created_at: datetime
    target_groups: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    processed_at: Optional[datetime] = None


@dataclass(frozen=True)
class DeliveryEntry:
    """Ledger row for one (message, recipient) pair."""

    id: int
    message_id: int
    recipient_id: int
    status: DeliveryStatus
    attempt_count: int
    created_at: datetime
    updated_at: datetime
    last_error: Optional[str] = None
    next_retry_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None


@dataclass(frozen=True)
class MessageSummary:
    """Message row with per-status delivery counts, used by status queries."""

    message: Message
    counts: dict[DeliveryStatus, int]

    @property
    def total(self) -> int:
        return sum(self.counts.values())


@dataclass(frozen=True)
class AlertContent:
    """Gateway-facing rendering input built from a stored Message."""

    type_code: str
    title: str
    content: str
    priority: str
    timestamp: datetime
    source_host: Optional[str] = None
    source_service: Optional[str] = None
    source_ip: Optional[str] = None
    color: Optional[str] = None

    @classmethod
    def from_message(cls, message: Message, color: Optional[str] = None) -> "AlertContent":
        return cls(
            type_code=message.type_code,
            title=message.title,
            content=message.content,
            priority=message.priority,
            timestamp=message.created_at,
            source_host=message.source.host,
            source_service=message.source.service,
            source_ip=message.source.ip,
            color=color,
        )


@dataclass(frozen=True)
class PushResult:
    """Outcome of a single-recipient push."""

    success: bool
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def ok(cls) -> "PushResult":
        return cls(success=True)

    @classmethod
    def fail(cls, error_code: str, error_message: str) -> "PushResult":
        return cls(success=False, error_code=error_code, error_message=error_message)


@dataclass(frozen=True)
class BatchPushResult:
    """Outcome of a bounded-batch push.

    ``failed_addresses`` lists the recipients that did not get the message.
    An unsuccessful result without a list means nobody in the batch did.
    """

    success: bool
    failed_addresses: tuple[str, ...] = ()
    error_message: Optional[str] = None

    def succeeded_for(self, address: str) -> bool:
        if self.failed_addresses:
            return address not in self.failed_addresses
        return self.success
