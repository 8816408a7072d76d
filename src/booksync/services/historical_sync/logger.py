"""Logging for historical sync runs.

Keeps log wording out of the engine's control flow.
"""

from __future__ import annotations

from datetime import date
from typing import TYPE_CHECKING

import loguru
from loguru import logger

if TYPE_CHECKING:
    from booksync.services.historical_sync.types import (
        HistoricalSyncResult,
        ModuleSyncResult,
        SyncWindow,
    )


class HistoricalSyncLogger:
    """Handles all logging for HistoricalSyncEngine."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        """Initialize logger.

        Args:
            logger_instance: Logger instance to use (defaults to loguru.logger)
        """
        self._logger = logger_instance

    def run_start(self, principal: str, modules: list[str], window_days: int) -> None:
        self._logger.bind(
            principal=principal, modules=modules, window_days=window_days
        ).info(
            "Starting historical sync of {} over the last {} day(s)",
            ", ".join(modules),
            window_days,
        )

    def run_complete(self, result: HistoricalSyncResult) -> None:
        self._logger.bind(
            synced=result.total_synced,
            errors=len(result.errors),
            stopped=result.stopped,
        ).info(
            "Historical sync finished: {} record(s) synced, {} error(s){}",
            result.total_synced,
            len(result.errors),
            " (stopped)" if result.stopped else "",
        )

    def module_start(self, module: str, window: SyncWindow) -> None:
        self._logger.bind(
            module=module, start=window.start.isoformat(), end=window.end.isoformat()
        ).info("Syncing {} from {} to {}", module, window.start, window.end)

    def page_fetched(self, module: str, page: int, count: int) -> None:
        self._logger.bind(module=module, page=page, count=count).info(
            "Fetched page {} of {}: {} record(s)", page, module, count
        )

    def record_skipped(self, module: str, zoho_id: str) -> None:
        self._logger.bind(module=module, zoho_id=zoho_id).debug(
            "{} {} is up to date", module, zoho_id
        )

    def record_synced(self, module: str, zoho_id: str, line_items: int) -> None:
        self._logger.bind(module=module, zoho_id=zoho_id, line_items=line_items).debug(
            "Synced {} {} with {} line item(s)", module, zoho_id, line_items
        )

    def record_deleted(self, module: str, zoho_id: str) -> None:
        self._logger.bind(module=module, zoho_id=zoho_id).info(
            "{} {} no longer exists in Zoho; marked deleted", module, zoho_id
        )

    def record_failed(self, module: str, zoho_id: str | None, error: object) -> None:
        self._logger.bind(module=module, zoho_id=zoho_id).warning(
            "Failed to sync {} {}: {}", module, zoho_id or "<unknown>", error
        )

    def cache_read_failed(self, module: str, zoho_id: str, error: Exception) -> None:
        self._logger.bind(module=module, zoho_id=zoho_id).warning(
            "Existence check for {} {} failed, treating as new: {}",
            module,
            zoho_id,
            error,
        )

    def comments_failed(self, module: str, zoho_id: str, error: Exception) -> None:
        self._logger.bind(module=module, zoho_id=zoho_id).warning(
            "Could not read comments for {} {}: {}", module, zoho_id, error
        )

    def line_items_fallback(
        self, module: str, parent_id: int, error: Exception
    ) -> None:
        self._logger.bind(module=module, parent_id=parent_id).warning(
            "Line item replace failed for {} parent {}, inserting row by row: {}",
            module,
            parent_id,
            error,
        )

    def boundary_reached(self, module: str, record_date: date, start: date) -> None:
        self._logger.bind(
            module=module, record_date=record_date.isoformat(), start=start.isoformat()
        ).info(
            "Reached window start for {} at {} (window starts {})",
            module,
            record_date,
            start,
        )

    def stop_honored(self, module: str, page: int, record_index: int) -> None:
        self._logger.bind(module=module, page=page, record_index=record_index).warning(
            "Stop requested; {} halted at page {} record {}",
            module,
            page,
            record_index,
        )

    def module_complete(self, result: ModuleSyncResult) -> None:
        self._logger.bind(
            module=result.module,
            status=result.status.value,
            synced=result.synced,
            line_items=result.line_items_synced,
            skipped=result.skipped,
            pages=result.pages,
        ).info(
            "{} {}: {} synced, {} line item(s), {} unchanged over {} page(s)",
            result.module,
            result.status.value,
            result.synced,
            result.line_items_synced,
            result.skipped,
            result.pages,
        )

    def module_failed(self, module: str, error: Exception) -> None:
        self._logger.bind(module=module).error(
            "Historical sync of {} failed: {}", module, error
        )

    def module_crashed(self, module: str) -> None:
        """Log an unexpected exception with its traceback."""
        self._logger.bind(module=module).exception(
            "Historical sync of {} crashed", module
        )
