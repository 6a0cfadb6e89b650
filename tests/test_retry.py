from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Sequence

from adapters.config_catalog import ConfigCatalog
from adapters.sqlite_storage import SQLiteStorage
from core.config import RetryConfig
from core.ledger import DeliveryLedger
from core.models import AlertContent, BatchPushResult, DeliveryStatus, Message, PushResult, SourceInfo
from core.retry import RetryLoop


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeGateway:
    max_batch_size = 500

    def __init__(self, succeed: bool = True) -> None:
        self.succeed = succeed
        self.pushed: list[str] = []

    async def push_one(self, address: str, content: AlertContent) -> PushResult:
        self.pushed.append(address)
        if self.succeed:
            return PushResult.ok()
        return PushResult.fail("NETWORK_ERROR", "connection reset")

    async def push_batch(self, addresses: Sequence[str], content: AlertContent) -> BatchPushResult:
        raise AssertionError("retry loop pushes one recipient at a time")


CATALOG = {
    "recipients": [
        {"id": 1, "name": "ann", "address": "U1"},
        {"id": 2, "name": "bob", "address": "U2"},
    ]
}


def _setup(tmp_path):
    clock = FakeClock()
    storage = SQLiteStorage(str(tmp_path / "retry.db"))
    storage.init_db()
    catalog = ConfigCatalog.from_config(CATALOG)
    ledger = DeliveryLedger(storage, clock=clock)
    message_id = storage.insert_message(
        Message(
            id=None,
            type_code="CRITICAL",
            title="down",
            content="api is down",
            source=SourceInfo(),
            priority="normal",
            created_at=clock(),
        )
    )
    ledger.create_batch(message_id, [catalog.get_recipient(1), catalog.get_recipient(2)])
    return storage, catalog, ledger, clock, message_id


def _loop(storage, catalog, ledger, gateway, clock) -> RetryLoop:
    return RetryLoop(storage, catalog, ledger, gateway, RetryConfig(item_delay_seconds=0), clock)


def test_never_attempted_entries_are_left_to_the_sender(tmp_path) -> None:
    storage, catalog, ledger, clock, _ = _setup(tmp_path)
    gateway = FakeGateway()
    clock.advance(hours=1)

    assert asyncio.run(_loop(storage, catalog, ledger, gateway, clock).tick()) == 0
    assert gateway.pushed == []


def test_retry_after_backoff_succeeds(tmp_path) -> None:
    storage, catalog, ledger, clock, message_id = _setup(tmp_path)
    first, second = storage.list_deliveries(message_id)
    ledger.record_attempt(first, True)
    ledger.record_attempt(second, False, "NETWORK_ERROR: reset")
    gateway = FakeGateway()
    retry = _loop(storage, catalog, ledger, gateway, clock)

    clock.advance(minutes=2)
    assert asyncio.run(retry.tick()) == 0

    clock.advance(minutes=4)
    assert asyncio.run(retry.tick()) == 1
    assert gateway.pushed == ["U2"]

    entry = storage.get_delivery(second.id)
    assert entry.status is DeliveryStatus.SENT
    assert entry.attempt_count == 2
    assert storage.get_message(message_id).processed_at is not None


def test_retry_exhausts_budget(tmp_path) -> None:
    storage, catalog, ledger, clock, message_id = _setup(tmp_path)
    first, second = storage.list_deliveries(message_id)
    ledger.record_attempt(first, True)
    ledger.record_attempt(second, False, "NETWORK_ERROR: reset")
    retry = _loop(storage, catalog, ledger, FakeGateway(succeed=False), clock)

    for _ in range(3):
        clock.advance(minutes=6)
        asyncio.run(retry.tick())

    entry = storage.get_delivery(second.id)
    assert entry.status is DeliveryStatus.FAILED
    assert entry.attempt_count == 3
    assert entry.last_error == "NETWORK_ERROR: connection reset"
    assert storage.delivery_counts(message_id) == {DeliveryStatus.SENT: 1, DeliveryStatus.FAILED: 1}
    assert storage.get_message(message_id).processed_at is not None


def test_recipient_without_address_is_skipped(tmp_path) -> None:
    storage, _, ledger, clock, message_id = _setup(tmp_path)
    first, second = storage.list_deliveries(message_id)
    ledger.record_attempt(first, True)
    ledger.record_attempt(second, False, "boom")
    catalog = ConfigCatalog.from_config({"recipients": [{"id": 1, "name": "ann", "address": "U1"}]})
    gateway = FakeGateway()

    clock.advance(minutes=6)
    asyncio.run(_loop(storage, catalog, ledger, gateway, clock).tick())

    assert gateway.pushed == []
    assert storage.get_delivery(second.id).status is DeliveryStatus.SKIPPED
    assert storage.get_message(message_id).processed_at is not None
