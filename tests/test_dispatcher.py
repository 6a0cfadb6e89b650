from __future__ import annotations

import asyncio
import sqlite3
from datetime import datetime, timezone
from typing import Sequence

import pytest

from adapters.config_catalog import ConfigCatalog
from adapters.sqlite_storage import SQLiteStorage
from core.config import SenderConfig
from core.dispatcher import (
    INVALID_MESSAGE_TYPE,
    VALIDATION_ERROR,
    DispatchError,
    DispatchOrchestrator,
    DispatchRequest,
)
from core.ledger import DeliveryLedger
from core.models import AlertContent, BatchPushResult, DeliveryStatus, PushResult, SourceInfo
from core.sender import SenderLoop


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class FakeGateway:
    max_batch_size = 500

    def __init__(self) -> None:
        self.batches: list[list[str]] = []
        self.single: list[str] = []

    async def push_one(self, address: str, content: AlertContent) -> PushResult:
        self.single.append(address)
        return PushResult.ok()

    async def push_batch(self, addresses: Sequence[str], content: AlertContent) -> BatchPushResult:
        self.batches.append(list(addresses))
        return BatchPushResult(success=True)


CATALOG = {
    "message_types": [
        {"code": "WARNING"},
        {"code": "CRITICAL", "priority": 1},
        {"code": "LEGACY", "active": False},
    ],
    "recipients": [
        {"id": 1, "name": "ann", "address": "U1"},
        {"id": 2, "name": "bob", "address": "U2"},
        {"id": 3, "name": "cid"},
    ],
    "groups": [
        {"code": "DBA", "members": [1, 2, 3], "message_types": ["WARNING"]},
        {"code": "NOBODY", "members": [3], "message_types": ["CRITICAL"]},
    ],
}


def _build(tmp_path):
    clock = FakeClock()
    storage = SQLiteStorage(str(tmp_path / "dispatch.db"))
    storage.init_db()
    catalog = ConfigCatalog.from_config(CATALOG)
    ledger = DeliveryLedger(storage, clock=clock)
    orchestrator = DispatchOrchestrator(catalog, storage, ledger, clock=clock)
    return orchestrator, storage, catalog, ledger


def test_warning_to_dba_end_to_end(tmp_path) -> None:
    orchestrator, storage, catalog, ledger = _build(tmp_path)

    result = orchestrator.dispatch(
        DispatchRequest(
            message_type="WARNING",
            title="disk",
            content="90% full",
            source=SourceInfo(host="db-01"),
            target_groups=["DBA"],
        )
    )

    assert result.to_dict() == {"status": "queued", "messageId": result.message_id, "recipientCount": 3}
    assert storage.delivery_counts(result.message_id) == {
        DeliveryStatus.PENDING: 2,
        DeliveryStatus.SKIPPED: 1,
    }
    assert storage.get_message(result.message_id).processed_at is None

    gateway = FakeGateway()
    sender = SenderLoop(storage, catalog, ledger, gateway, SenderConfig(interval_seconds=0.01))
    asyncio.run(sender.tick())

    assert gateway.batches == [["U1", "U2"]]
    assert storage.delivery_counts(result.message_id) == {
        DeliveryStatus.SENT: 2,
        DeliveryStatus.SKIPPED: 1,
    }
    assert storage.get_message(result.message_id).processed_at is not None


def test_unknown_type_is_rejected_without_writes(tmp_path) -> None:
    orchestrator, storage, _, _ = _build(tmp_path)

    with pytest.raises(DispatchError) as excinfo:
        orchestrator.dispatch(DispatchRequest(message_type="NOPE", title="t", content="c"))

    assert excinfo.value.code == INVALID_MESSAGE_TYPE
    assert storage.list_messages() == []


def test_inactive_type_is_rejected(tmp_path) -> None:
    orchestrator, _, _, _ = _build(tmp_path)
    with pytest.raises(DispatchError) as excinfo:
        orchestrator.dispatch(DispatchRequest(message_type="LEGACY", title="t", content="c"))
    assert excinfo.value.code == INVALID_MESSAGE_TYPE


@pytest.mark.parametrize(
    "title, content, priority",
    [("", "body", None), ("title", "  ", None), ("title", "body", "urgent")],
)
def test_invalid_requests(tmp_path, title, content, priority) -> None:
    orchestrator, storage, _, _ = _build(tmp_path)
    with pytest.raises(DispatchError) as excinfo:
        orchestrator.dispatch(
            DispatchRequest(message_type="WARNING", title=title, content=content, priority=priority)
        )
    assert excinfo.value.code == VALIDATION_ERROR
    assert storage.list_messages() == []


def test_no_matching_groups_completes_immediately(tmp_path) -> None:
    orchestrator, storage, _, _ = _build(tmp_path)

    result = orchestrator.dispatch(
        DispatchRequest(message_type="WARNING", title="t", content="c", target_groups=["OTHER"])
    )

    assert result.status == "completed"
    assert result.recipient_count == 0
    message = storage.get_message(result.message_id)
    assert message.processed_at is not None
    assert message.target_groups == ("OTHER",)
    assert storage.list_deliveries(result.message_id) == []


def test_only_undeliverable_recipients_completes_message(tmp_path) -> None:
    orchestrator, storage, _, _ = _build(tmp_path)

    result = orchestrator.dispatch(DispatchRequest(message_type="CRITICAL", title="t", content="c"))

    assert result.status == "queued"
    assert result.recipient_count == 1
    assert storage.delivery_counts(result.message_id) == {DeliveryStatus.SKIPPED: 1}
    assert storage.get_message(result.message_id).processed_at is not None


def test_priority_and_metadata_are_stored(tmp_path) -> None:
    orchestrator, storage, _, _ = _build(tmp_path)

    result = orchestrator.dispatch(
        DispatchRequest(
            message_type="WARNING",
            title=" disk ",
            content="90% full",
            priority="HIGH",
            metadata={"ticket": "OPS-1"},
        )
    )

    message = storage.get_message(result.message_id)
    assert message.title == "disk"
    assert message.priority == "high"
    assert message.metadata == {"ticket": "OPS-1"}
    assert message.created_at == datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


class FlakyStorage(SQLiteStorage):
    """Fails the first ledger insert, then behaves normally."""

    def __init__(self, path: str) -> None:
        super().__init__(path)
        self.failures = 1

    def _insert_delivery_rows(self, conn, message_id, rows, now):
        if self.failures:
            self.failures -= 1
            raise sqlite3.OperationalError("disk I/O error")
        return super()._insert_delivery_rows(conn, message_id, rows, now)


def test_failed_ledger_insert_leaves_no_message_behind(tmp_path) -> None:
    clock = FakeClock()
    storage = FlakyStorage(str(tmp_path / "flaky.db"))
    storage.init_db()
    catalog = ConfigCatalog.from_config(CATALOG)
    orchestrator = DispatchOrchestrator(catalog, storage, DeliveryLedger(storage, clock=clock), clock=clock)
    request = DispatchRequest(message_type="WARNING", title="disk", content="c", source=SourceInfo(host="db-01"))

    with pytest.raises(sqlite3.OperationalError):
        orchestrator.dispatch(request)
    assert storage.list_messages() == []

    result = orchestrator.dispatch(request)

    assert result.status == "queued"
    assert result.recipient_count == 3
    assert len(storage.list_messages()) == 1
    assert storage.delivery_counts(result.message_id) == {
        DeliveryStatus.PENDING: 2,
        DeliveryStatus.SKIPPED: 1,
    }


def test_priority_defaults_from_message_type(tmp_path) -> None:
    orchestrator, storage, _, _ = _build(tmp_path)

    critical = orchestrator.dispatch(DispatchRequest(message_type="CRITICAL", title="t", content="c"))
    warning = orchestrator.dispatch(DispatchRequest(message_type="WARNING", title="t", content="c"))
    explicit = orchestrator.dispatch(
        DispatchRequest(message_type="CRITICAL", title="t", content="c", priority="low", source=SourceInfo(host="h"))
    )

    assert storage.get_message(critical.message_id).priority == "high"
    assert storage.get_message(warning.message_id).priority == "normal"
    assert storage.get_message(explicit.message_id).priority == "low"
