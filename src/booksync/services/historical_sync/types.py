from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any

from booksync.entities.books import BooksTransactionEntity
from booksync.orchestrators.sync_orchestrator import SyncError


class ModuleStatus(str, Enum):
    """Terminal state of one module's pass."""

    DONE = "done"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class SyncModule:
    """A parent transaction type the historical sync walks, newest first."""

    name: str
    entity: BooksTransactionEntity
    sort_column: str = "date"

    @property
    def parent_type(self) -> str:
        return self.entity.parent_type


@dataclass(frozen=True, slots=True)
class SyncWindow:
    """Inclusive trailing date range ``[today - window_days, today]``."""

    start: date
    end: date

    @classmethod
    def trailing(cls, window_days: int, *, today: date) -> SyncWindow:
        if window_days < 1:
            raise ValueError("window_days must be >= 1")
        return cls(start=today - timedelta(days=window_days), end=today)

    def list_params(self) -> dict[str, str]:
        return {
            "date_start": self.start.isoformat(),
            "date_end": self.end.isoformat(),
        }


@dataclass
class ModuleSyncResult:
    module: str
    status: ModuleStatus = ModuleStatus.DONE
    synced: int = 0
    line_items_synced: int = 0
    skipped: int = 0
    deleted: int = 0
    pages: int = 0
    last_synced_date: date | None = None
    errors: list[SyncError] = field(default_factory=list)
    error: str | None = None

    def record_error(self, record: str | None, error: Exception | str) -> None:
        self.errors.append(
            SyncError(record=record, error=str(error), module=self.module)
        )


@dataclass
class HistoricalSyncResult:
    """Aggregate of every module's pass in one historical sync run."""

    window_days: int
    started_at: datetime
    finished_at: datetime | None = None
    synced: dict[str, int] = field(default_factory=dict)
    line_items_synced: dict[str, int] = field(default_factory=dict)
    statuses: dict[str, ModuleStatus] = field(default_factory=dict)
    errors: list[SyncError] = field(default_factory=list)
    last_synced_date: date | None = None
    stopped: bool = False

    def add(self, result: ModuleSyncResult) -> None:
        self.synced[result.module] = result.synced
        self.line_items_synced[result.module] = result.line_items_synced
        self.statuses[result.module] = result.status
        self.errors.extend(result.errors)
        if result.error is not None:
            self.errors.append(
                SyncError(record=None, error=result.error, module=result.module)
            )
        if result.last_synced_date is not None and (
            self.last_synced_date is None
            or result.last_synced_date < self.last_synced_date
        ):
            self.last_synced_date = result.last_synced_date
        if result.status is ModuleStatus.STOPPED:
            self.stopped = True

    @property
    def total_synced(self) -> int:
        return sum(self.synced.values())

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["statuses"] = {
            name: status.value for name, status in self.statuses.items()
        }
        for key in ("started_at", "finished_at", "last_synced_date"):
            value = data[key]
            data[key] = value.isoformat() if value is not None else None
        return data
