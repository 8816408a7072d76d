"""Start, stop and inspect historical syncs on behalf of a principal."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime

import loguru
from loguru import logger

from booksync.services.historical_sync.cancellation import (
    CancellationRegistry,
    SyncStatus,
    principal_key,
)
from booksync.services.historical_sync.engine import HistoricalSyncEngine
from booksync.services.historical_sync.types import HistoricalSyncResult

DEFAULT_CONTROL_WINDOW_DAYS = 180


class SyncAlreadyRunningError(RuntimeError):
    """A historical sync is already active for the principal."""

    def __init__(self, key: str) -> None:
        super().__init__(f"A historical sync is already running for {key}")
        self.principal_key = key


@dataclass(frozen=True, slots=True)
class StopRequestResult:
    accepted: bool
    message: str


class HistoricalSyncControlLogger:
    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def rejected(self, key: str) -> None:
        self._logger.bind(principal=key).warning(
            "Historical sync already running for {}", key
        )

    def stop_requested(self, key: str, accepted: bool) -> None:
        self._logger.bind(principal=key, accepted=accepted).info(
            "Stop requested for {}: {}",
            key,
            "accepted" if accepted else "no active sync",
        )


class HistoricalSyncControl:
    """Guards historical syncs so each principal runs at most one at a time.

    The control owns the registration for the runs it starts, so a stop
    request is accepted from the moment ``start_historical_sync`` is called.
    """

    def __init__(
        self,
        engine: HistoricalSyncEngine,
        registry: CancellationRegistry,
        *,
        default_window_days: int = DEFAULT_CONTROL_WINDOW_DAYS,
    ) -> None:
        self._engine = engine
        self._registry = registry
        self._default_window_days = default_window_days
        self._logger = HistoricalSyncControlLogger()

    def start_historical_sync(
        self,
        window_days: int | None = None,
        module_names: Iterable[str] | None = None,
        principal: str | None = None,
    ) -> HistoricalSyncResult:
        """Run a historical sync to completion (or until stopped).

        Raises:
            ValueError: ``window_days`` is less than 1
            UnknownModuleError: A module name is not known to the engine
            SyncAlreadyRunningError: The principal already has an active sync
        """
        days = self._default_window_days if window_days is None else window_days
        if days < 1:
            raise ValueError("window_days must be >= 1")
        names = self._engine.resolve_modules(module_names)

        key = principal_key(principal)
        if not self._registry.try_register_sync(principal, names[0]):
            self._logger.rejected(key)
            raise SyncAlreadyRunningError(key)
        try:
            return self._engine.sync_recent_transactions(days, names, principal)
        finally:
            self._registry.unregister_sync(principal)

    def request_stop_sync(self, principal: str | None = None) -> StopRequestResult:
        key = principal_key(principal)
        accepted = self._registry.request_stop(principal)
        self._logger.stop_requested(key, accepted)
        if accepted:
            return StopRequestResult(
                accepted=True,
                message="Stop requested; the sync will halt after the current record",
            )
        return StopRequestResult(
            accepted=False, message=f"No historical sync is running for {key}"
        )

    def get_sync_status(self, principal: str | None = None) -> SyncStatus | None:
        return self._registry.get_sync_status(principal)

    def get_latest_sync_timestamps(self) -> dict[str, datetime | None]:
        return self._engine.get_latest_sync_timestamps()


def format_time_ago(timestamp: datetime | None, now: datetime | None = None) -> str:
    """Render a timestamp as "3 hours ago" style text.

    Naive timestamps are taken to be UTC.
    """
    if timestamp is None:
        return "Never"
    if now is None:
        now = datetime.now(UTC)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)

    seconds = int((now - timestamp).total_seconds())
    if seconds < 1:
        return "Just now"
    for unit, size in (("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            return f"{count} {unit}{'s' if count != 1 else ''} ago"
    return f"{seconds} second{'s' if seconds != 1 else ''} ago"
