from __future__ import annotations

from booksync.services.historical_sync.cancellation import (
    CancellationRegistry,
    SyncStatus,
)
from booksync.services.historical_sync.comments import extract_external_emails
from booksync.services.historical_sync.control import (
    HistoricalSyncControl,
    StopRequestResult,
    SyncAlreadyRunningError,
    format_time_ago,
)
from booksync.services.historical_sync.engine import (
    DEFAULT_MODULES,
    HistoricalSyncEngine,
    UnknownModuleError,
    latest_sync_timestamps,
)
from booksync.services.historical_sync.types import (
    HistoricalSyncResult,
    ModuleStatus,
    ModuleSyncResult,
    SyncModule,
    SyncWindow,
)

__all__ = [
    "DEFAULT_MODULES",
    "CancellationRegistry",
    "HistoricalSyncControl",
    "HistoricalSyncEngine",
    "HistoricalSyncResult",
    "ModuleStatus",
    "ModuleSyncResult",
    "StopRequestResult",
    "SyncAlreadyRunningError",
    "SyncModule",
    "SyncStatus",
    "SyncWindow",
    "UnknownModuleError",
    "extract_external_emails",
    "format_time_ago",
    "latest_sync_timestamps",
]
