from __future__ import annotations

from datetime import datetime, timedelta, timezone

from adapters.config_catalog import ConfigCatalog
from adapters.sqlite_storage import SQLiteStorage
from core.config import DispatchConfig
from core.dedup import Deduplicator, normalize_source_field
from core.dispatcher import DispatchOrchestrator, DispatchRequest
from core.ledger import DeliveryLedger
from core.models import Group, SourceInfo


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


CATALOG = {
    "message_types": [{"code": "CRITICAL"}],
    "recipients": [{"id": 1, "name": "ann", "address": "U1"}],
    "groups": [{"code": "OPS", "members": [1], "message_types": ["CRITICAL"]}],
}


def _orchestrator(tmp_path, clock: FakeClock, window_minutes: float = 5):
    storage = SQLiteStorage(str(tmp_path / "alerts.db"))
    storage.init_db()
    orchestrator = DispatchOrchestrator(
        ConfigCatalog.from_config(CATALOG),
        storage,
        DeliveryLedger(storage, clock=clock),
        DispatchConfig(dedup_window=timedelta(minutes=window_minutes)),
        clock=clock,
    )
    return orchestrator, storage


def _request(host="h1", service="s1") -> DispatchRequest:
    return DispatchRequest(
        message_type="CRITICAL",
        title="down",
        content="service is down",
        source=SourceInfo(host=host, service=service),
    )


def test_repeat_within_window_is_suppressed(tmp_path) -> None:
    clock = FakeClock()
    orchestrator, storage = _orchestrator(tmp_path, clock)

    first = orchestrator.dispatch(_request())
    clock.advance(minutes=3)
    second = orchestrator.dispatch(_request())

    assert first.status == "queued"
    assert second.status == "suppressed"
    assert second.message_id is None
    assert len(storage.list_messages()) == 1


def test_repeat_outside_window_creates_second_message(tmp_path) -> None:
    clock = FakeClock()
    orchestrator, storage = _orchestrator(tmp_path, clock)

    orchestrator.dispatch(_request())
    clock.advance(minutes=6)
    second = orchestrator.dispatch(_request())

    assert second.status == "queued"
    assert len(storage.list_messages()) == 2


def test_different_source_is_not_a_duplicate(tmp_path) -> None:
    clock = FakeClock()
    orchestrator, storage = _orchestrator(tmp_path, clock)

    orchestrator.dispatch(_request(host="h1"))
    assert orchestrator.dispatch(_request(host="h2")).status == "queued"
    assert orchestrator.dispatch(_request(host="h1", service=None)).status == "queued"


def test_absent_source_matches_absent_source(tmp_path) -> None:
    clock = FakeClock()
    orchestrator, _ = _orchestrator(tmp_path, clock)

    orchestrator.dispatch(_request(host=None, service=None))
    # Empty strings normalize to absent.
    assert orchestrator.dispatch(_request(host="", service=" ")).status == "suppressed"


def test_zero_window_disables_suppression(tmp_path) -> None:
    clock = FakeClock()
    orchestrator, storage = _orchestrator(tmp_path, clock, window_minutes=0)

    orchestrator.dispatch(_request())
    assert orchestrator.dispatch(_request()).status == "queued"
    assert len(storage.list_messages()) == 2


def test_group_gate_only_applies_to_opted_in_groups(tmp_path) -> None:
    clock = FakeClock()
    _, storage = _orchestrator(tmp_path, clock)
    dedup = Deduplicator(storage, window=timedelta(0), clock=clock)
    orchestrator = DispatchOrchestrator(
        ConfigCatalog.from_config(CATALOG),
        storage,
        DeliveryLedger(storage, clock=clock),
        DispatchConfig(dedup_window=timedelta(0)),
        clock=clock,
        deduplicator=dedup,
    )
    orchestrator.dispatch(_request())
    clock.advance(minutes=10)

    gate = dedup.group_gate("CRITICAL", "h1", "s1")
    assert gate(Group(code="ANY", name="any"))
    assert not gate(Group(code="QUIET", name="quiet", suppress_duplicates=True, duplicate_interval_minutes=30))
    assert gate(Group(code="BRIEF", name="brief", suppress_duplicates=True, duplicate_interval_minutes=5))


def test_normalize_source_field() -> None:
    assert normalize_source_field(None) is None
    assert normalize_source_field("  ") is None
    assert normalize_source_field(" db-01 ") == "db-01"
