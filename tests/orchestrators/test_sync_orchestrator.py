from __future__ import annotations

from datetime import datetime
from typing import Any

import pytest

from booksync.adapters.db.store import (
    SqlStore,
    StorageError,
    StorageUnavailableError,
)
from booksync.entities import DESK_TICKET, ITEM
from booksync.infra.clients.zoho import UpstreamAuthError
from booksync.orchestrators.sync_orchestrator import SyncOrchestrator
from tests.fixtures import FakeZohoClient, FlakyStore

NOW = datetime(2024, 6, 1, 12, 0)


def create_item(item_id: str, **overrides: Any) -> dict[str, Any]:
    return {
        "item_id": item_id,
        "name": f"Item {item_id}",
        "status": "active",
        "item_type": "sales",
        "product_type": "goods",
        "rate": 10,
        **overrides,
    }


def create_orchestrator(
    client: FakeZohoClient, store: SqlStore | FlakyStore, batch_size: int = 50
) -> SyncOrchestrator:
    return SyncOrchestrator(
        client,
        store,  # type: ignore[arg-type]
        batch_size=batch_size,
        clock=lambda: NOW,
    )


def test_sync_lists_transforms_and_upserts(store: SqlStore) -> None:
    # input
    items = [create_item("1"), create_item("2")]

    # setup
    client = FakeZohoClient({"/items": {"code": 0, "items": items}})
    orchestrator = create_orchestrator(client, store)

    # act
    result = orchestrator.sync(ITEM, {"page": 2, "page_size": 100})

    # assert
    assert result.success is True
    assert (result.total, result.synced, result.skipped) == (2, 2, 0)
    assert result.errors == []
    assert client.calls_to("/items") == [{"page": 2, "per_page": 100}]
    rows = store.select(ITEM.table_name, order_by="zoho_id")
    assert [row["zoho_id"] for row in rows] == ["1", "2"]
    assert all(row["synced_at"] == NOW for row in rows)


def test_sync_with_no_records_succeeds(store: SqlStore) -> None:
    client = FakeZohoClient({"/items": {"code": 0, "items": []}})

    result = create_orchestrator(client, store).sync(ITEM)

    assert result.success is True
    assert result.message == "No records found"
    assert result.total == 0


def test_sync_reports_list_failure(store: SqlStore) -> None:
    client = FakeZohoClient({"/items": UpstreamAuthError("bad token", status=401)})

    result = create_orchestrator(client, store).sync(ITEM)

    assert result.success is False
    assert "bad token" in result.message


def test_sync_fails_when_every_transform_fails(store: SqlStore) -> None:
    items = [{"name": "no id"}, {"item_id": "x", "rate": "abc"}]
    client = FakeZohoClient({"/items": {"items": items}})

    result = create_orchestrator(client, store).sync(ITEM)

    assert result.success is False
    assert result.total == 2
    assert result.skipped == 2
    assert store.select(ITEM.table_name) == []


def test_upsert_keeps_last_duplicate_and_reports_invalid(store: SqlStore) -> None:
    # input
    records = [
        ITEM.transform_to_storage_record(create_item("1", name="Old")),
        ITEM.transform_to_storage_record(create_item("2", status=None)),
        ITEM.transform_to_storage_record(create_item("1", name="New")),
    ]

    # setup
    orchestrator = create_orchestrator(FakeZohoClient(), store)

    # act
    result = orchestrator.upsert(ITEM, records)

    # assert
    assert result.synced == 1
    assert len(result.errors) == 1
    assert result.errors[0].record == "2"
    assert result.errors[0].error == "Missing required fields: status"
    assert result.errors[0].module == "items"
    rows = store.select(ITEM.table_name)
    assert [(row["zoho_id"], row["name"]) for row in rows] == [("1", "New")]


def test_failed_batch_is_retried_row_by_row(store: SqlStore) -> None:
    # setup
    def fail_batches_and_bad_row(
        table: str, rows: list[dict[str, Any]]
    ) -> Exception | None:
        if len(rows) > 1 or rows[0]["zoho_id"] == "3":
            return StorageError("constraint failed")
        return None

    flaky = FlakyStore(store, {"upsert": fail_batches_and_bad_row})
    records = [
        ITEM.transform_to_storage_record(create_item(str(i))) for i in range(1, 6)
    ]
    orchestrator = create_orchestrator(FakeZohoClient(), flaky, batch_size=2)

    # act
    result = orchestrator.upsert(ITEM, records)

    # assert
    assert result.synced == 4
    assert [error.record for error in result.errors] == ["3"]
    assert len(store.select(ITEM.table_name)) == 4


def test_unavailable_store_aborts_the_sync(store: SqlStore) -> None:
    # setup
    flaky = FlakyStore(store, {"upsert": StorageUnavailableError("connection lost")})
    client = FakeZohoClient({"/items": {"items": [create_item("1")]}})

    # act
    result = create_orchestrator(client, flaky).sync(ITEM)

    # assert
    assert result.success is False
    assert "Storage unavailable" in result.message
    assert flaky.calls.count("upsert") == 1


def test_unavailable_store_propagates_from_upsert(store: SqlStore) -> None:
    flaky = FlakyStore(store, {"upsert": StorageUnavailableError("connection lost")})
    records = [ITEM.transform_to_storage_record(create_item("1"))]

    with pytest.raises(StorageUnavailableError):
        create_orchestrator(FakeZohoClient(), flaky).upsert(ITEM, records)


def test_desk_list_is_shaped_for_desk(store: SqlStore) -> None:
    # setup
    client = FakeZohoClient(
        {"/tickets": {"data": [{"id": "t-1", "subject": "Help"}]}}
    )

    # act
    result = create_orchestrator(client, store).sync(
        DESK_TICKET, {"page": 2, "page_size": 10}
    )

    # assert
    assert result.synced == 1
    assert client.calls_to("/tickets") == [{"limit": 10, "from": 11}]


def test_sync_result_to_dict(store: SqlStore) -> None:
    client = FakeZohoClient({"/items": {"items": []}})

    data = create_orchestrator(client, store).sync(ITEM).to_dict()

    assert data == {
        "entity": "items",
        "success": True,
        "message": "No records found",
        "total": 0,
        "synced": 0,
        "skipped": 0,
        "errors": [],
    }


def test_batch_size_must_be_positive(store: SqlStore) -> None:
    with pytest.raises(ValueError, match="batch_size"):
        create_orchestrator(FakeZohoClient(), store, batch_size=0)
