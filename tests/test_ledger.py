from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from adapters.sqlite_storage import SQLiteStorage
from core.config import LedgerConfig
from core.ledger import DeliveryLedger, DeliveryNotFound
from core.models import DeliveryStatus, Message, Recipient, SourceInfo


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _setup(tmp_path, max_attempts: int = 3):
    clock = FakeClock()
    storage = SQLiteStorage(str(tmp_path / "ledger.db"))
    storage.init_db()
    message_id = storage.insert_message(
        Message(
            id=None,
            type_code="CRITICAL",
            title="down",
            content="api is down",
            source=SourceInfo(host="web-01"),
            priority="high",
            created_at=clock(),
        )
    )
    ledger = DeliveryLedger(
        storage, LedgerConfig(max_attempts=max_attempts, retry_interval=timedelta(minutes=5)), clock
    )
    return storage, ledger, clock, message_id


def test_duplicate_pair_creates_one_row(tmp_path) -> None:
    storage, ledger, _, message_id = _setup(tmp_path)
    ann = Recipient(id=1, name="ann", address="U1")

    assert ledger.create_batch(message_id, [ann, ann]) == 1
    assert ledger.create_batch(message_id, [ann]) == 0
    assert len(storage.list_deliveries(message_id)) == 1


def test_recipient_without_address_is_skipped_at_creation(tmp_path) -> None:
    storage, ledger, _, message_id = _setup(tmp_path)
    ledger.create_batch(message_id, [Recipient(id=1, name="ann", address=None)])

    [entry] = storage.list_deliveries(message_id)
    assert entry.status is DeliveryStatus.SKIPPED
    assert entry.last_error


def test_consecutive_failures_end_in_failed(tmp_path) -> None:
    storage, ledger, clock, message_id = _setup(tmp_path)
    ledger.create_batch(message_id, [Recipient(id=1, name="ann", address="U1")])
    [entry] = storage.list_deliveries(message_id)

    statuses = []
    for _ in range(3):
        statuses.append(ledger.record_attempt(entry, False, "NETWORK_ERROR: boom"))
        entry = storage.get_delivery(entry.id)
        clock.advance(minutes=10)

    assert statuses == [DeliveryStatus.PENDING, DeliveryStatus.PENDING, DeliveryStatus.FAILED]
    assert entry.attempt_count == 3
    assert entry.last_error == "NETWORK_ERROR: boom"
    clock.advance(days=1)
    assert ledger.get_retryable(clock(), 50) == []
    assert ledger.get_pending(50) == []


def test_failed_attempt_sets_backoff(tmp_path) -> None:
    storage, ledger, clock, message_id = _setup(tmp_path)
    ledger.create_batch(message_id, [Recipient(id=1, name="ann", address="U1")])
    [entry] = ledger.get_pending(50)

    ledger.record_attempt(entry, False, "TIMEOUT")
    entry = storage.get_delivery(entry.id)

    assert entry.next_retry_at == clock() + timedelta(minutes=5)
    assert ledger.get_pending(50) == []
    assert ledger.get_retryable(clock() - timedelta(minutes=5), 50) == []

    clock.advance(minutes=5)
    assert [e.id for e in ledger.get_pending(50)] == [entry.id]
    assert [e.id for e in ledger.get_retryable(clock() - timedelta(minutes=5), 50)] == [entry.id]


def test_set_status_sent_twice_is_idempotent(tmp_path) -> None:
    storage, ledger, _, message_id = _setup(tmp_path)
    ledger.create_batch(message_id, [Recipient(id=1, name="ann", address="U1")])
    [entry] = storage.list_deliveries(message_id)

    assert ledger.set_status(entry.id, DeliveryStatus.SENT) is True
    assert ledger.set_status(entry.id, DeliveryStatus.SENT) is False

    entries = storage.list_deliveries(message_id)
    assert [e.status for e in entries] == [DeliveryStatus.SENT]
    assert entries[0].sent_at is not None


def test_terminal_entry_is_not_reopened(tmp_path) -> None:
    storage, ledger, _, message_id = _setup(tmp_path)
    ledger.create_batch(message_id, [Recipient(id=1, name="ann", address="U1")])
    [entry] = storage.list_deliveries(message_id)

    ledger.set_status(entry.id, DeliveryStatus.FAILED, "gave up")
    assert ledger.set_status(entry.id, DeliveryStatus.SENT) is False
    assert storage.get_delivery(entry.id).status is DeliveryStatus.FAILED


def test_set_status_unknown_id(tmp_path) -> None:
    _, ledger, _, _ = _setup(tmp_path)
    with pytest.raises(DeliveryNotFound):
        ledger.set_status(999, DeliveryStatus.SENT)


def test_stale_entry_write_is_a_no_op(tmp_path) -> None:
    storage, ledger, _, message_id = _setup(tmp_path)
    ledger.create_batch(message_id, [Recipient(id=1, name="ann", address="U1")])
    [stale] = storage.list_deliveries(message_id)

    assert ledger.record_attempt(stale, True) is DeliveryStatus.SENT
    # The other loop still holds the pre-send snapshot.
    assert ledger.record_attempt(stale, False, "late failure") is DeliveryStatus.SENT

    entry = storage.get_delivery(stale.id)
    assert entry.status is DeliveryStatus.SENT
    assert entry.attempt_count == 1


def test_completion_is_stamped_once(tmp_path) -> None:
    storage, ledger, clock, message_id = _setup(tmp_path)
    ledger.create_batch(
        message_id,
        [Recipient(id=1, name="ann", address="U1"), Recipient(id=2, name="bob", address="U2")],
    )
    first, second = storage.list_deliveries(message_id)

    ledger.record_attempt(first, True)
    assert storage.get_message(message_id).processed_at is None

    clock.advance(minutes=1)
    ledger.record_attempt(second, True)
    stamped = storage.get_message(message_id).processed_at
    assert stamped == clock()

    clock.advance(minutes=1)
    assert ledger.complete_if_done(message_id) is False
    assert storage.get_message(message_id).processed_at == stamped


def test_requeue_failed_resets_budget(tmp_path) -> None:
    storage, ledger, _, message_id = _setup(tmp_path, max_attempts=1)
    ledger.create_batch(message_id, [Recipient(id=1, name="ann", address="U1")])
    [entry] = storage.list_deliveries(message_id)
    ledger.record_attempt(entry, False, "boom")
    assert storage.get_message(message_id).processed_at is not None

    assert ledger.requeue_failed(message_id) == 1

    entry = storage.get_delivery(entry.id)
    assert entry.status is DeliveryStatus.PENDING
    assert entry.attempt_count == 0
    assert entry.last_error is None
    assert storage.get_message(message_id).processed_at is None
    assert [e.id for e in ledger.get_pending(50)] == [entry.id]
    assert ledger.summary(message_id) == {DeliveryStatus.PENDING: 1}
