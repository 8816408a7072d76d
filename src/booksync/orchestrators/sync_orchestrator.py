from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

import loguru
from loguru import logger

from booksync.adapters.db.store import (
    StorageError,
    StorageUnavailableError,
    Store,
)
from booksync.entities.base import (
    EntityDescriptor,
    SourceRecord,
    StorageRecord,
    TransformError,
    prepare_for_write,
    utcnow,
)
from booksync.infra.clients.zoho import ExternalClient, ZohoClientError
from booksync.orchestrators.strategies import ServiceStrategy, strategy_for

DEFAULT_BATCH_SIZE = 50


@dataclass
class SyncError:
    """A row-level failure reported alongside a sync count."""

    record: str | None
    error: str
    module: str | None = None


@dataclass
class UpsertResult:
    synced: int = 0
    errors: list[SyncError] = field(default_factory=list)


@dataclass
class SyncResult:
    """Outcome of one list -> transform -> upsert pass."""

    entity: str
    success: bool
    message: str
    total: int = 0
    synced: int = 0
    skipped: int = 0
    errors: list[SyncError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SyncOrchestratorLogger:
    """Handles all logging for SyncOrchestrator with business logic separated."""

    def __init__(self, logger_instance: loguru.Logger = logger) -> None:
        self._logger = logger_instance

    def listed(self, entity: str, count: int) -> None:
        self._logger.bind(entity=entity, count=count).info(
            "Fetched {} {} record(s) from Zoho", count, entity
        )

    def transform_failed(self, entity: str, zoho_id: Any, error: Exception) -> None:
        self._logger.bind(entity=entity, zoho_id=zoho_id).warning(
            "Dropping {} {} after transform error: {}", entity, zoho_id, error
        )

    def duplicates_dropped(self, entity: str, count: int) -> None:
        self._logger.bind(entity=entity, count=count).debug(
            "Collapsed {} duplicate {} record(s), keeping the last", count, entity
        )

    def batch_failed(self, entity: str, batch_num: int, error: Exception) -> None:
        self._logger.bind(entity=entity, batch=batch_num).warning(
            "Batch {} of {} failed, retrying row by row: {}", batch_num, entity, error
        )

    def row_failed(self, entity: str, zoho_id: Any, error: Exception) -> None:
        self._logger.bind(entity=entity, zoho_id=zoho_id).error(
            "Failed to upsert {} {}: {}", entity, zoho_id, error
        )

    def upsert_complete(self, entity: str, synced: int, errors: int) -> None:
        self._logger.bind(entity=entity, synced=synced, errors=errors).info(
            "Upserted {} {} record(s), {} error(s)", synced, entity, errors
        )


class SyncOrchestrator:
    """One-pass list -> transform -> upsert for a single entity type.

    No windowing or resumability; see HistoricalSyncEngine for backfills.
    """

    def __init__(
        self,
        client: ExternalClient,
        store: Store,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._client = client
        self._store = store
        self._batch_size = batch_size
        self._clock = clock
        self._strategies: dict[str, ServiceStrategy] = {}
        self._logger = SyncOrchestratorLogger()

    def _strategy(self, descriptor: EntityDescriptor) -> ServiceStrategy:
        strategy = self._strategies.get(descriptor.name)
        if strategy is None:
            strategy = strategy_for(descriptor.service)
            self._strategies[descriptor.name] = strategy
        return strategy

    def list(
        self,
        descriptor: EntityDescriptor,
        params: Mapping[str, Any] | None = None,
        principal: str | None = None,
    ) -> list[SourceRecord]:
        """Fetch one page of source records; empty when Zoho has none."""
        raw = self._strategy(descriptor).list(
            self._client, descriptor, params, principal
        )
        records = descriptor.extract_from_response(raw)
        self._logger.listed(descriptor.name, len(records))
        return records

    def transform(
        self, descriptor: EntityDescriptor, records: Iterable[Mapping[str, Any]]
    ) -> list[StorageRecord]:
        """Transform every record, dropping the ones that fail."""
        transformed: list[StorageRecord] = []
        for source in records:
            try:
                transformed.append(descriptor.transform_to_storage_record(source))
            except TransformError as e:
                zoho_id = (
                    source.get(descriptor.source_id_field)
                    if isinstance(source, Mapping)
                    else None
                )
                self._logger.transform_failed(descriptor.name, zoho_id, e)
        return transformed

    def upsert(
        self,
        descriptor: EntityDescriptor,
        records: Sequence[StorageRecord],
        principal: str | None = None,
    ) -> UpsertResult:
        """Write records in batches, retrying a failed batch row by row.

        Duplicates by id keep the last occurrence. Invalid records become
        errors rather than exceptions.

        Raises:
            StorageUnavailableError: The store cannot be reached; remaining
                batches are abandoned.
        """
        result = UpsertResult()
        id_column = descriptor.id_column

        unique: dict[Any, StorageRecord] = {}
        keyless: list[StorageRecord] = []
        for record in records:
            key = tuple(record.get(column) for column in descriptor.conflict_columns)
            if record.get(id_column) in (None, ""):
                keyless.append(record)
            else:
                unique[key] = record
        duplicates = len(records) - len(unique) - len(keyless)
        if duplicates:
            self._logger.duplicates_dropped(descriptor.name, duplicates)

        valid: list[StorageRecord] = []
        for record in [*unique.values(), *keyless]:
            validation = descriptor.validate_record(record)
            if validation.valid:
                valid.append(record)
            else:
                missing = ", ".join(validation.missing)
                result.errors.append(
                    SyncError(
                        record=record.get(id_column),
                        error=f"Missing required fields: {missing}",
                        module=descriptor.name,
                    )
                )

        now = self._clock()
        rows = [prepare_for_write(record, now=now) for record in valid]
        for start in range(0, len(rows), self._batch_size):
            batch = rows[start : start + self._batch_size]
            batch_num = start // self._batch_size + 1
            try:
                self._store.upsert(
                    descriptor.table_name, batch, conflict=descriptor.conflict_columns
                )
                result.synced += len(batch)
                continue
            except StorageUnavailableError:
                raise
            except StorageError as e:
                self._logger.batch_failed(descriptor.name, batch_num, e)

            for row in batch:
                try:
                    self._store.upsert(
                        descriptor.table_name,
                        [row],
                        conflict=descriptor.conflict_columns,
                    )
                    result.synced += 1
                except StorageUnavailableError:
                    raise
                except StorageError as e:
                    self._logger.row_failed(descriptor.name, row.get(id_column), e)
                    result.errors.append(
                        SyncError(
                            record=row.get(id_column),
                            error=str(e),
                            module=descriptor.name,
                        )
                    )

        self._logger.upsert_complete(descriptor.name, result.synced, len(result.errors))
        return result

    def sync(
        self,
        descriptor: EntityDescriptor,
        params: Mapping[str, Any] | None = None,
        principal: str | None = None,
    ) -> SyncResult:
        """Compose list -> transform -> upsert into one structured result."""
        try:
            records = self.list(descriptor, params, principal)
        except ZohoClientError as e:
            return SyncResult(
                entity=descriptor.name,
                success=False,
                message=f"Failed to list {descriptor.name}: {e}",
            )

        if not records:
            return SyncResult(
                entity=descriptor.name, success=True, message="No records found"
            )

        transformed = self.transform(descriptor, records)
        skipped = len(records) - len(transformed)
        if not transformed:
            return SyncResult(
                entity=descriptor.name,
                success=False,
                message=f"All {len(records)} record(s) failed transformation",
                total=len(records),
                skipped=skipped,
            )

        try:
            upserted = self.upsert(descriptor, transformed, principal)
        except StorageUnavailableError as e:
            return SyncResult(
                entity=descriptor.name,
                success=False,
                message=f"Storage unavailable: {e}",
                total=len(records),
                skipped=skipped,
            )

        return SyncResult(
            entity=descriptor.name,
            success=upserted.synced > 0 or not upserted.errors,
            message=f"Synced {upserted.synced} of {len(records)} record(s)",
            total=len(records),
            synced=upserted.synced,
            skipped=skipped,
            errors=upserted.errors,
        )
