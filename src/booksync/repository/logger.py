"""Logging for the read-through cache repository."""

from __future__ import annotations

import loguru
from loguru import logger


class CacheRepositoryLogger:
    """Handles all logging for CacheRepository with business logic separated."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def cache_hit(self, entity: str, zoho_id: str) -> None:
        self._logger.bind(entity=entity, zoho_id=zoho_id).debug(
            "Cache hit for {} {}", entity, zoho_id
        )

    def cache_miss(self, entity: str, zoho_id: str, *, forced: bool) -> None:
        reason = "forced refresh" if forced else "miss"
        self._logger.bind(entity=entity, zoho_id=zoho_id, forced=forced).debug(
            "Fetching {} {} from Zoho ({})", entity, zoho_id, reason
        )

    def cache_read_failed(self, entity: str, error: Exception) -> None:
        """Log a storage read failure that falls back to the upstream fetch."""
        self._logger.bind(entity=entity).warning(
            "Cache lookup for {} failed, fetching from Zoho: {}", entity, error
        )

    def soft_deleted(self, entity: str, zoho_id: str, rows: int) -> None:
        self._logger.bind(entity=entity, zoho_id=zoho_id, rows=rows).info(
            "{} {} no longer exists in Zoho; soft-deleted {} cached row(s)",
            entity,
            zoho_id,
            rows,
        )

    def transform_failed(
        self, entity: str, zoho_id: str | None, error: Exception
    ) -> None:
        self._logger.bind(entity=entity, zoho_id=zoho_id).warning(
            "Skipping {} {}: {}", entity, zoho_id or "<unknown>", error
        )

    def write_failed(self, entity: str, count: int, error: Exception) -> None:
        self._logger.bind(entity=entity, count=count).error(
            "Failed to cache {} {} record(s): {}", count, entity, error
        )

    def fetch_failed(self, entity: str, zoho_id: str, error: Exception) -> None:
        self._logger.bind(entity=entity, zoho_id=zoho_id).warning(
            "Could not fetch {} {}, continuing with the rest: {}",
            entity,
            zoho_id,
            error,
        )

    def batch_fetch(self, entity: str, requested: int, cached: int) -> None:
        self._logger.bind(entity=entity, requested=requested, cached=cached).info(
            "Batch lookup for {}: {} of {} served from cache",
            entity,
            cached,
            requested,
        )

    def list_cached(self, entity: str, fetched: int, cached: int) -> None:
        self._logger.bind(entity=entity, fetched=fetched, cached=cached).info(
            "Listed {} {} record(s), cached {}", fetched, entity, cached
        )
