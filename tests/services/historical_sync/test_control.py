from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from typing import Any
from unittest.mock import Mock

import pytest

from booksync.adapters.db.store import SqlStore
from booksync.services.historical_sync import (
    CancellationRegistry,
    HistoricalSyncControl,
    HistoricalSyncEngine,
    ModuleStatus,
    StopRequestResult,
    SyncAlreadyRunningError,
    UnknownModuleError,
    format_time_ago,
)
from booksync.services.historical_sync.control import HistoricalSyncControlLogger
from tests.fixtures import FakeZohoClient, books_transaction, paged_list

NOW = datetime(2024, 6, 10, 12, 0)


def invoice(invoice_id: str, day: str) -> dict[str, Any]:
    return books_transaction("invoice_id", invoice_id, date=day, line_items=[])


def create_control(
    client: FakeZohoClient, store: SqlStore
) -> tuple[HistoricalSyncControl, CancellationRegistry]:
    registry = CancellationRegistry()
    engine = HistoricalSyncEngine(
        client, store, registry, fetch_comments=False, clock=lambda: NOW
    )
    return HistoricalSyncControl(engine, registry), registry


def serve_invoices(client: FakeZohoClient, records: list[dict[str, Any]]) -> None:
    client.set("/invoices", paged_list("invoices", [records]))
    for record in records:
        client.set(f"/invoices/{record['invoice_id']}", {"invoice": record})


def test_start_runs_with_the_default_window_and_releases(store: SqlStore) -> None:
    # setup
    client = FakeZohoClient()
    serve_invoices(client, [invoice("a", "2024-06-01"), invoice("b", "2024-01-01")])
    control, registry = create_control(client, store)

    # act
    result = control.start_historical_sync(module_names=["invoices"])

    # assert
    assert result.window_days == 180
    assert result.synced == {"invoices": 2}
    assert result.statuses == {"invoices": ModuleStatus.DONE}
    assert client.calls_to("/invoices")[0]["date_start"] == "2023-12-13"
    assert registry.is_active(None) is False


def test_second_start_for_the_same_principal_is_rejected(store: SqlStore) -> None:
    # setup
    control, registry = create_control(FakeZohoClient(), store)
    registry.register_sync("alice", "invoices")

    # act
    with pytest.raises(SyncAlreadyRunningError) as exc_info:
        control.start_historical_sync(7, ["invoices"], "alice")

    # assert
    assert exc_info.value.principal_key == "alice"
    assert registry.is_active("alice") is True


def test_stop_request_during_a_run(store: SqlStore) -> None:
    # setup
    client = FakeZohoClient()
    records = [invoice(f"inv-{i}", "2024-06-09") for i in range(3)]
    serve_invoices(client, records)
    control, _ = create_control(client, store)
    replies: list[StopRequestResult] = []

    def stop_mid_run(params: dict[str, Any]) -> dict[str, Any]:
        status = control.get_sync_status("alice")
        assert status is not None and status.module == "invoices"
        replies.append(control.request_stop_sync("alice"))
        return {"invoice": records[0]}

    client.set("/invoices/inv-0", stop_mid_run)

    # act
    result = control.start_historical_sync(7, ["invoices", "bills"], "alice")

    # assert
    assert replies == [
        StopRequestResult(
            accepted=True,
            message="Stop requested; the sync will halt after the current record",
        )
    ]
    assert result.stopped is True
    assert result.synced == {"invoices": 1}
    assert control.get_sync_status("alice") is None


def test_stop_without_a_run_is_not_accepted(store: SqlStore) -> None:
    control, _ = create_control(FakeZohoClient(), store)

    reply = control.request_stop_sync()

    assert reply.accepted is False
    assert reply.message == "No historical sync is running for system"


def test_invalid_requests_never_register(store: SqlStore) -> None:
    control, registry = create_control(FakeZohoClient(), store)

    with pytest.raises(ValueError, match="window_days"):
        control.start_historical_sync(0)
    with pytest.raises(UnknownModuleError):
        control.start_historical_sync(7, ["journals"])
    with pytest.raises(UnknownModuleError):
        control.start_historical_sync(7, [])

    assert registry.get_all_active_syncs() == {}


def test_latest_sync_timestamps_pass_through(store: SqlStore) -> None:
    control, _ = create_control(FakeZohoClient(), store)

    assert control.get_latest_sync_timestamps() == {
        "salesorders": None,
        "invoices": None,
        "purchaseorders": None,
        "bills": None,
    }


@pytest.mark.parametrize(
    ("elapsed", "expected"),
    [
        (timedelta(0), "Just now"),
        (timedelta(seconds=1), "1 second ago"),
        (timedelta(seconds=45), "45 seconds ago"),
        (timedelta(minutes=1, seconds=30), "1 minute ago"),
        (timedelta(hours=3), "3 hours ago"),
        (timedelta(days=1, hours=5), "1 day ago"),
        (timedelta(days=12), "12 days ago"),
        (timedelta(seconds=-30), "Just now"),
    ],
)
def test_format_time_ago(elapsed: timedelta, expected: str) -> None:
    now = datetime(2024, 6, 10, 12, 0, tzinfo=UTC)

    assert format_time_ago(now - elapsed, now) == expected


def test_format_time_ago_handles_never_and_mixed_timezones() -> None:
    now = datetime(2024, 6, 10, 12, 0, tzinfo=UTC)
    naive = datetime(2024, 6, 10, 10, 0)
    offset = datetime(2024, 6, 10, 13, 0, tzinfo=timezone(timedelta(hours=2)))

    assert format_time_ago(None, now) == "Never"
    assert format_time_ago(naive, now) == "2 hours ago"
    assert format_time_ago(offset, now) == "1 hour ago"


def test_control_logger_binds_the_principal() -> None:
    mock_logger = Mock()

    HistoricalSyncControlLogger(mock_logger).stop_requested("alice", False)

    mock_logger.bind.assert_called_once_with(principal="alice", accepted=False)
    mock_logger.bind.return_value.info.assert_called_once_with(
        "Stop requested for {}: {}", "alice", "no active sync"
    )
