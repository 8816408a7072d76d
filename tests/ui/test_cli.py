from __future__ import annotations

from collections.abc import Iterator
from datetime import UTC, datetime
import json
from pathlib import Path
import sys

from loguru import logger
import pytest
from typer.testing import CliRunner

from booksync.adapters.db.store import SqlStore
from booksync.entities import INVOICE, ITEM
from booksync.infra.clients.zoho import ZohoClient
from booksync.ui.cli import app
from tests.fixtures import FakeZohoClient, books_transaction, paged_list

runner = CliRunner()


@pytest.fixture(autouse=True)
def restore_logger() -> Iterator[None]:
    yield
    # The CLI callback re-points loguru at the runner's captured stderr.
    logger.remove()
    logger.add(sys.stderr)


@pytest.fixture
def database_url(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> str:
    url = f"sqlite:///{tmp_path / 'cache.db'}"
    monkeypatch.setenv("BOOKSYNC_DATABASE_URL", url)
    monkeypatch.delenv("BOOKSYNC_PAGE_SIZE", raising=False)
    monkeypatch.delenv("BOOKSYNC_WINDOW_DAYS", raising=False)
    monkeypatch.setenv("BOOKSYNC_FETCH_COMMENTS", "false")
    return url


def use_fake_client(monkeypatch: pytest.MonkeyPatch, fake: FakeZohoClient) -> None:
    monkeypatch.setattr(ZohoClient, "from_env", lambda **kwargs: fake)


def test_init_db_creates_tables(tmp_path: Path, database_url: str) -> None:
    url = f"sqlite:///{tmp_path / 'other.db'}"

    result = runner.invoke(app, ["init-db", "--url", url])

    assert result.exit_code == 0
    assert f"Initialized database at {url}" in result.stdout
    assert (tmp_path / "other.db").exists()
    assert not (tmp_path / "cache.db").exists()


def test_latest_on_an_empty_cache(database_url: str) -> None:
    result = runner.invoke(app, ["latest"])

    assert result.exit_code == 0
    lines = result.stdout.splitlines()
    assert [line.split()[0] for line in lines] == [
        "salesorders",
        "invoices",
        "purchaseorders",
        "bills",
    ]
    assert all(line.endswith("Never") for line in lines)


def test_invalid_config_exits_2(
    database_url: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("BOOKSYNC_PAGE_SIZE", "lots")

    result = runner.invoke(app, ["latest"])

    assert result.exit_code == 2


def test_sync_unknown_entity_exits_2(database_url: str) -> None:
    result = runner.invoke(app, ["sync", "journals"])

    assert result.exit_code == 2


def test_sync_line_items_directly_exits_2(database_url: str) -> None:
    result = runner.invoke(app, ["sync", "line_items"])

    assert result.exit_code == 2


def test_sync_without_credentials_exits_1(
    database_url: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    for name in ("ZOHO_CLIENT_ID", "ZOHO_CLIENT_SECRET", "ZOHO_REFRESH_TOKEN"):
        monkeypatch.delenv(name, raising=False)

    result = runner.invoke(app, ["sync", "items"])

    assert result.exit_code == 1


def test_sync_entity_page(database_url: str, monkeypatch: pytest.MonkeyPatch) -> None:
    # setup
    item = {
        "item_id": "1",
        "name": "Widget",
        "status": "active",
        "item_type": "sales",
        "product_type": "goods",
    }
    fake = FakeZohoClient({"/items": {"code": 0, "items": [item]}})
    use_fake_client(monkeypatch, fake)

    # act
    result = runner.invoke(
        app, ["--log-level", "CRITICAL", "sync", "items", "--page", "3"]
    )

    # assert
    assert result.exit_code == 0
    assert json.loads(result.stdout)["synced"] == 1
    assert fake.calls_to("/items") == [{"page": 3, "per_page": 50}]
    rows = SqlStore(database_url).select(ITEM.table_name)
    assert [row["zoho_id"] for row in rows] == ["1"]


def test_sync_reports_failure_with_exit_1(
    database_url: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    use_fake_client(monkeypatch, FakeZohoClient())

    result = runner.invoke(app, ["--log-level", "CRITICAL", "sync", "items"])

    assert result.exit_code == 1
    assert json.loads(result.stdout)["success"] is False


def test_sync_historical_prints_the_run_result(
    database_url: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    # setup
    today = datetime.now(UTC).date().isoformat()
    record = books_transaction("invoice_id", "inv-1", date=today, line_items=[])
    fake = FakeZohoClient(
        {
            "/invoices": paged_list("invoices", [[record]]),
            "/invoices/inv-1": {"invoice": record},
        }
    )
    use_fake_client(monkeypatch, fake)

    # act
    result = runner.invoke(
        app,
        [
            "--log-level",
            "CRITICAL",
            "sync-historical",
            "--days",
            "3",
            "--module",
            "invoices",
        ],
    )

    # assert
    assert result.exit_code == 0
    data = json.loads(result.stdout)
    assert data["synced"] == {"invoices": 1}
    assert data["statuses"] == {"invoices": "done"}
    assert data["window_days"] == 3
    rows = SqlStore(database_url).select(INVOICE.table_name)
    assert [row["zoho_id"] for row in rows] == ["inv-1"]


def test_sync_historical_unknown_module_exits_2(
    database_url: str, monkeypatch: pytest.MonkeyPatch
) -> None:
    use_fake_client(monkeypatch, FakeZohoClient())

    result = runner.invoke(app, ["sync-historical", "--module", "journals"])

    assert result.exit_code == 2
