"""Dispatch orchestration for inbound alerts.

This module is integration-agnostic. The dispatch path enforces a strict
order:
1) Validate the request and resolve the message type
2) Suppress repeats of a recent (type, host, service) alert
3) Match recipients through the catalog
4) Persist the message together with its ledger entries, stamping
   completion at once when nobody is left to send to

Delivery itself happens later in the sender and retry loops, so a caller
never waits on the gateway.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from core.clock import Clock, utc_now
from core.config import DispatchConfig
from core.dedup import Deduplicator, normalize_source_field
from core.ledger import DeliveryLedger
from core.matcher import RecipientMatcher
from core.models import PRIORITIES, DeliveryStatus, Message, SourceInfo
from core.ports import CatalogPort, StoragePort

LOGGER = logging.getLogger(__name__)

INVALID_MESSAGE_TYPE = "INVALID_MESSAGE_TYPE"
VALIDATION_ERROR = "VALIDATION_ERROR"

STATUS_QUEUED = "queued"
STATUS_COMPLETED = "completed"
STATUS_SUPPRESSED = "suppressed"


class DispatchError(Exception):
    """A rejected dispatch request; nothing has been persisted."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class DispatchRequest:
    """Inbound alert as submitted by a caller."""

    message_type: str
    title: str
    content: str
    source: SourceInfo = SourceInfo()
    target_groups: Sequence[str] = ()
    priority: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DispatchResult:
    status: str
    message_id: Optional[int]
    recipient_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "messageId": self.message_id,
            "recipientCount": self.recipient_count,
        }


class DispatchOrchestrator:
    """Turns an inbound alert into a stored message plus ledger entries."""

    def __init__(
        self,
        catalog: CatalogPort,
        storage: StoragePort,
        ledger: DeliveryLedger,
        config: DispatchConfig = DispatchConfig(),
        clock: Clock = utc_now,
        matcher: Optional[RecipientMatcher] = None,
        deduplicator: Optional[Deduplicator] = None,
    ) -> None:
        self._catalog = catalog
        self._storage = storage
        self._ledger = ledger
        self._config = config
        self._clock = clock
        self._matcher = matcher or RecipientMatcher(catalog)
        self._dedup = deduplicator or Deduplicator(storage, config.dedup_window, clock)

    def _validate(self, request: DispatchRequest) -> Optional[str]:
        if not request.title or not request.title.strip():
            raise DispatchError(VALIDATION_ERROR, "title is required")
        if not request.content or not request.content.strip():
            raise DispatchError(VALIDATION_ERROR, "content is required")
        if not request.priority:
            return None
        priority = request.priority.strip().lower()
        if priority not in PRIORITIES:
            raise DispatchError(VALIDATION_ERROR, f"priority must be one of {', '.join(PRIORITIES)}")
        return priority

    def dispatch(self, request: DispatchRequest) -> DispatchResult:
        """Run one alert through dedup, matching and persistence."""

        priority = self._validate(request)

        message_type = self._catalog.get_message_type(request.message_type)
        if message_type is None or not message_type.active:
            raise DispatchError(
                INVALID_MESSAGE_TYPE,
                f"Message type '{request.message_type}' does not exist or is inactive",
            )
        priority = priority or message_type.alert_priority or self._config.default_priority

        source = SourceInfo(
            host=normalize_source_field(request.source.host),
            service=normalize_source_field(request.source.service),
            ip=normalize_source_field(request.source.ip),
        )

        if self._dedup.is_duplicate(message_type.code, source.host, source.service):
            LOGGER.info(
                "Suppressed duplicate %s (host=%s, service=%s)",
                message_type.code,
                source.host,
                source.service,
            )
            return DispatchResult(status=STATUS_SUPPRESSED, message_id=None, recipient_count=0)

        matched = self._matcher.match(
            message_type.code,
            target_groups=request.target_groups,
            source_host=source.host,
            source_service=source.service,
            extra_gate=self._dedup.group_gate(message_type.code, source.host, source.service),
        )

        recipients = matched.recipients
        rows = self._ledger.build_rows(recipients)
        now = self._clock()
        # Nothing left to send when every row starts out skipped.
        done = all(status is not DeliveryStatus.PENDING for _, status, _ in rows)

        message_id = self._storage.insert_message_with_deliveries(
            Message(
                id=None,
                type_code=message_type.code,
                title=request.title.strip(),
                content=request.content,
                source=source,
                priority=priority,
                created_at=now,
                processed_at=now if done else None,
                target_groups=tuple(request.target_groups or ()),
                metadata=dict(request.metadata or {}),
            ),
            rows,
            now,
        )

        if not recipients:
            LOGGER.warning("Message %s (%s) has no matching recipients", message_id, message_type.code)
            return DispatchResult(status=STATUS_COMPLETED, message_id=message_id, recipient_count=0)

        LOGGER.info("Message %s queued for %s recipient(s)", message_id, len(recipients))
        return DispatchResult(status=STATUS_QUEUED, message_id=message_id, recipient_count=len(recipients))
