from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from booksync.adapters.db.store import (
    StorageError,
    Store,
    eq,
    in_,
    is_null,
)
from booksync.entities.base import (
    EntityDescriptor,
    SourceRecord,
    StorageRecord,
    TransformError,
    prepare_for_write,
    utcnow,
)
from booksync.infra.clients.zoho import (
    ExternalClient,
    UpstreamNotFoundError,
    UpstreamTransientError,
    ZohoClientError,
)
from booksync.repository.logger import CacheRepositoryLogger


@dataclass
class ListResult:
    """Records returned by a list call plus the outcome of caching them.

    ``records`` are always the extracted source records, even when writing
    them to the cache failed; ``cache_error`` carries that failure.
    """

    records: list[SourceRecord]
    cached: int = 0
    skipped: list[str | None] = field(default_factory=list)
    cache_error: StorageError | None = None


def is_not_found(error: ZohoClientError) -> bool:
    """Whether an upstream error means the record does not exist."""
    if isinstance(error, UpstreamNotFoundError) or error.status == 404:
        return True
    if isinstance(error, UpstreamTransientError):
        return False
    return "not found" in str(error).lower()


class CacheRepository:
    """Read-through/write-through cache over Zoho entities.

    Reads are served from storage when an active (not soft-deleted) row
    exists; otherwise the record is fetched from Zoho, transformed, and
    written back. A record Zoho no longer has is soft-deleted locally.
    """

    def __init__(
        self,
        client: ExternalClient,
        store: Store,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._client = client
        self._store = store
        self._clock = clock
        self._logger = CacheRepositoryLogger()

    def get_by_id(
        self,
        descriptor: EntityDescriptor,
        source_id: str,
        principal: str | None = None,
        *,
        force_refresh: bool = False,
    ) -> StorageRecord | None:
        """Return the cached record for ``source_id``, fetching it on a miss.

        Returns None when Zoho no longer has the record; any cached copy is
        soft-deleted in that case.

        Raises:
            TransformError: Zoho returned a record that cannot be stored
            ZohoClientError: Zoho failed for any reason other than not-found
        """
        if not force_refresh:
            cached = self._find_active(descriptor, [source_id])
            if cached:
                self._logger.cache_hit(descriptor.name, source_id)
                return cached[0]

        self._logger.cache_miss(descriptor.name, source_id, forced=force_refresh)
        source = self._fetch_detail(descriptor, source_id, principal)
        if source is None:
            self.soft_delete(descriptor, source_id)
            return None

        try:
            record = descriptor.transform_to_storage_record(source)
        except TransformError as e:
            self._logger.transform_failed(descriptor.name, source_id, e)
            raise

        row = prepare_for_write(record, now=self._clock())
        try:
            written = self._store.upsert(
                descriptor.table_name, [row], conflict=descriptor.conflict_columns
            )
        except StorageError as e:
            self._logger.write_failed(descriptor.name, 1, e)
            return row
        return written[0] if written else row

    def get_by_ids(
        self,
        descriptor: EntityDescriptor,
        source_ids: Iterable[str],
        principal: str | None = None,
    ) -> list[StorageRecord]:
        """Batch lookup: one storage query, then one fetch per missing id.

        An id whose fetch or transform fails is logged and left out. Result
        order is unspecified.
        """
        wanted = list(dict.fromkeys(str(source_id) for source_id in source_ids))
        if not wanted:
            return []

        found = self._find_active(descriptor, wanted)
        found_ids = {row[descriptor.id_column] for row in found}
        self._logger.batch_fetch(descriptor.name, len(wanted), len(found))

        results = list(found)
        for source_id in wanted:
            if source_id in found_ids:
                continue
            try:
                record = self.get_by_id(
                    descriptor, source_id, principal, force_refresh=True
                )
            except (TransformError, ZohoClientError) as e:
                self._logger.fetch_failed(descriptor.name, source_id, e)
                continue
            if record is not None:
                results.append(record)
        return results

    def soft_delete(self, descriptor: EntityDescriptor, source_id: str) -> int:
        """Mark the active row for ``source_id`` deleted; returns rows touched."""
        try:
            rows = self._store.update(
                descriptor.table_name,
                [eq(descriptor.id_column, source_id), is_null("deleted_at")],
                {"deleted_at": self._clock()},
            )
        except StorageError as e:
            self._logger.write_failed(descriptor.name, 1, e)
            raise
        if rows:
            self._logger.soft_deleted(descriptor.name, source_id, rows)
        return rows

    def _find_active(
        self, descriptor: EntityDescriptor, source_ids: list[str]
    ) -> list[StorageRecord]:
        # A failed read is a cache miss; the upstream fetch still answers.
        try:
            return self._store.select(
                descriptor.table_name,
                [in_(descriptor.id_column, source_ids), is_null("deleted_at")],
            )
        except StorageError as e:
            self._logger.cache_read_failed(descriptor.name, e)
            return []

    def _fetch_detail(
        self,
        descriptor: EntityDescriptor,
        source_id: str,
        principal: str | None,
    ) -> SourceRecord | None:
        try:
            raw = self._client.get(
                descriptor.service,
                f"{descriptor.api_endpoint}/{source_id}",
                None,
                principal,
            )
        except ZohoClientError as e:
            if is_not_found(e):
                return None
            raise
        records = descriptor.extract_from_response(raw)
        return records[0] if records else None

    def list(
        self,
        descriptor: EntityDescriptor,
        params: Mapping[str, Any] | None = None,
        principal: str | None = None,
        *,
        cache_results: bool = True,
    ) -> ListResult:
        """Call the list endpoint once and optionally cache every record."""
        raw = self._client.get(
            descriptor.service, descriptor.api_endpoint, params, principal
        )
        result = ListResult(records=descriptor.extract_from_response(raw))
        if not cache_results or not result.records:
            return result

        now = self._clock()
        rows: dict[str, StorageRecord] = {}
        for source in result.records:
            try:
                record = descriptor.transform_to_storage_record(source)
            except TransformError as e:
                source_id = source.get(descriptor.source_id_field)
                self._logger.transform_failed(descriptor.name, source_id, e)
                result.skipped.append(source_id)
                continue
            rows[record[descriptor.id_column]] = prepare_for_write(record, now=now)

        if rows:
            try:
                written = self._store.upsert(
                    descriptor.table_name,
                    list(rows.values()),
                    conflict=descriptor.conflict_columns,
                )
                result.cached = len(written)
            except StorageError as e:
                self._logger.write_failed(descriptor.name, len(rows), e)
                result.cache_error = e
        self._logger.list_cached(descriptor.name, len(result.records), result.cached)
        return result

    def search(
        self,
        descriptor: EntityDescriptor,
        criteria: str,
        params: Mapping[str, Any] | None = None,
        principal: str | None = None,
        *,
        cache_results: bool = True,
    ) -> ListResult:
        """List variant filtered by a Zoho ``criteria`` expression."""
        search_params = {**(params or {}), "criteria": criteria}
        return self.list(
            descriptor, search_params, principal, cache_results=cache_results
        )
