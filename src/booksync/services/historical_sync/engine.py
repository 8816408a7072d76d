from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import date, datetime
from typing import Any

from booksync.adapters.db.store import (
    StorageError,
    StorageUnavailableError,
    Store,
    eq,
    is_null,
    not_null,
)
from booksync.entities.base import (
    Service,
    SourceRecord,
    StorageRecord,
    TransformError,
    parse_date,
    parse_timestamp,
    prepare_for_write,
    utcnow,
)
from booksync.entities.books import (
    BILL,
    INVOICE,
    LINE_ITEM,
    PURCHASE_ORDER,
    SALES_ORDER,
    BooksTransactionEntity,
)
from booksync.infra.clients.zoho import (
    ExternalClient,
    UpstreamAuthError,
    UpstreamTransientError,
    ZohoClientError,
)
from booksync.orchestrators.strategies import strategy_for
from booksync.repository.cache_repository import CacheRepository, is_not_found
from booksync.services.historical_sync.cancellation import (
    CancellationRegistry,
    principal_key,
)
from booksync.services.historical_sync.comments import extract_external_emails
from booksync.services.historical_sync.logger import HistoricalSyncLogger
from booksync.services.historical_sync.types import (
    HistoricalSyncResult,
    ModuleStatus,
    ModuleSyncResult,
    SyncModule,
    SyncWindow,
)

DEFAULT_PAGE_SIZE = 50
DEFAULT_WINDOW_DAYS = 7

DEFAULT_MODULES: tuple[SyncModule, ...] = (
    SyncModule("salesorders", SALES_ORDER),
    SyncModule("invoices", INVOICE),
    SyncModule("purchaseorders", PURCHASE_ORDER),
    SyncModule("bills", BILL),
)


class UnknownModuleError(ValueError):
    """A module name is not one the historical sync knows how to walk."""


class HistoricalSyncEngine:
    """Resumable, cancellable backfill of recent Books transactions.

    Each module is paged newest-first within a trailing date window. Records
    whose list-level ``last_modified_time`` is not newer than the cached copy
    are skipped without a detail call; everything else is refetched in full,
    upserted, and has its line items replaced. Reaching a record dated on or
    before the window start ends the module, which is what makes a rerun
    resume cheaply without a stored cursor.

    Modules, pages and records are processed strictly one at a time.
    """

    def __init__(
        self,
        client: ExternalClient,
        store: Store,
        registry: CancellationRegistry,
        *,
        modules: Sequence[SyncModule] = DEFAULT_MODULES,
        page_size: int = DEFAULT_PAGE_SIZE,
        operator_email_domain: str | None = None,
        fetch_comments: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be >= 1")
        self._client = client
        self._store = store
        self._registry = registry
        self._modules = {module.name: module for module in modules}
        self._page_size = page_size
        self._operator_email_domain = operator_email_domain
        self._fetch_comments = fetch_comments
        self._clock = clock
        self._strategy = strategy_for(Service.BOOKS)
        self._repository = CacheRepository(client, store, clock=clock)
        self._logger = HistoricalSyncLogger()

    @property
    def module_names(self) -> list[str]:
        return list(self._modules)

    def _module(self, name: str) -> SyncModule:
        try:
            return self._modules[name]
        except KeyError:
            known = ", ".join(self._modules)
            raise UnknownModuleError(
                f"Unknown module {name!r}. Expected one of: {known}"
            ) from None

    def resolve_modules(self, names: Iterable[str] | None) -> list[str]:
        """Requested module names, defaulting to every module.

        Raises:
            UnknownModuleError: A name is not a known module, or no name was given
        """
        resolved = list(names) if names is not None else self.module_names
        if not resolved:
            raise UnknownModuleError("No modules requested")
        for name in resolved:
            self._module(name)
        return resolved

    # Run level -----------------------------------------------------------

    def sync_recent_transactions(
        self,
        window_days: int = DEFAULT_WINDOW_DAYS,
        modules: Iterable[str] | None = None,
        principal: str | None = None,
    ) -> HistoricalSyncResult:
        """Sync each module in turn and aggregate the results.

        Never raises for a module's failure: it is reported in the result and
        the next module still runs. A stop request ends the run after the
        current record.

        Raises:
            UnknownModuleError: A requested module does not exist
            ValueError: ``window_days`` is less than 1
        """
        names = self.resolve_modules(modules)
        if window_days < 1:
            raise ValueError("window_days must be >= 1")

        # The caller may already hold the registration (and a pending stop).
        owns_registration = not self._registry.is_active(principal)
        if owns_registration:
            self._registry.register_sync(principal, names[0])

        result = HistoricalSyncResult(window_days=window_days, started_at=self._clock())
        self._logger.run_start(principal_key(principal), names, window_days)
        try:
            for name in names:
                if self._registry.is_stop_requested(principal):
                    result.stopped = True
                    break
                try:
                    module_result = self.sync_module(name, window_days, principal)
                except Exception as e:
                    self._logger.module_crashed(name)
                    module_result = ModuleSyncResult(
                        module=name, status=ModuleStatus.FAILED, error=str(e)
                    )
                result.add(module_result)
                if module_result.status is ModuleStatus.STOPPED:
                    break
        finally:
            if owns_registration:
                self._registry.unregister_sync(principal)

        result.finished_at = self._clock()
        self._logger.run_complete(result)
        return result

    # Module level --------------------------------------------------------

    def sync_module(
        self, module_name: str, window_days: int, principal: str | None = None
    ) -> ModuleSyncResult:
        """Walk one module's pages newest-first until the window start.

        Upstream and connectivity failures end the module as FAILED with the
        counts reached so far; row-level problems are collected in ``errors``.
        """
        module = self._module(module_name)
        window = SyncWindow.trailing(window_days, today=self._clock().date())
        result = ModuleSyncResult(module=module.name)
        self._logger.module_start(module.name, window)

        page = 1
        try:
            while True:
                self._registry.update_progress(principal, module.name, page, 0)
                records = self._fetch_page(module, window, page, principal)
                result.pages += 1
                self._logger.page_fetched(module.name, page, len(records))

                status = self._process_page(
                    module, window, page, records, principal, result
                )
                if status is not None:
                    result.status = status
                    break
                if len(records) < self._page_size:
                    result.status = ModuleStatus.DONE
                    break
                page += 1
        except (ZohoClientError, StorageUnavailableError) as e:
            self._logger.module_failed(module.name, e)
            result.status = ModuleStatus.FAILED
            result.error = str(e)

        self._logger.module_complete(result)
        return result

    def _fetch_page(
        self,
        module: SyncModule,
        window: SyncWindow,
        page: int,
        principal: str | None,
    ) -> list[SourceRecord]:
        params = {
            "page": page,
            "page_size": self._page_size,
            "sort_column": module.sort_column,
            "sort_descending": True,
            **window.list_params(),
        }
        raw = self._strategy.list(self._client, module.entity, params, principal)
        return module.entity.extract_from_response(raw)

    def _process_page(
        self,
        module: SyncModule,
        window: SyncWindow,
        page: int,
        records: list[SourceRecord],
        principal: str | None,
        result: ModuleSyncResult,
    ) -> ModuleStatus | None:
        """Process a page record by record; returns a terminal status or None."""
        entity = module.entity
        for index, source in enumerate(records):
            self._registry.update_progress(principal, module.name, page, index)
            source_id = _source_id(source, entity)

            record_date = _record_date(source, entity)
            if record_date is None:
                self._logger.record_failed(module.name, source_id, "missing date")
                result.record_error(source_id, "missing or invalid date")
            elif record_date < window.start:
                # Older than the window: no detail call.
                self._logger.boundary_reached(module.name, record_date, window.start)
                return ModuleStatus.DONE
            else:
                self._sync_record(module, source, source_id, principal, result)
                result.last_synced_date = record_date
                if record_date <= window.start:
                    self._logger.boundary_reached(
                        module.name, record_date, window.start
                    )
                    return ModuleStatus.DONE

            if self._registry.is_stop_requested(principal):
                self._logger.stop_honored(module.name, page, index)
                return ModuleStatus.STOPPED
        return None

    # Record level --------------------------------------------------------

    def _sync_record(
        self,
        module: SyncModule,
        source: SourceRecord,
        source_id: str | None,
        principal: str | None,
        result: ModuleSyncResult,
    ) -> None:
        entity = module.entity
        if source_id is None:
            result.record_error(None, f"missing {entity.source_id_field}")
            return

        existing = self._find_existing(module, source_id)
        if not _needs_update(existing, source):
            result.skipped += 1
            self._logger.record_skipped(module.name, source_id)
            return

        try:
            detail = self._fetch_detail(module, source_id, principal)
        except (UpstreamTransientError, UpstreamAuthError):
            raise
        except ZohoClientError as e:
            if not is_not_found(e):
                self._logger.record_failed(module.name, source_id, e)
                result.record_error(source_id, e)
                return
            detail = None

        if detail is None:
            self._mark_deleted(module, source_id, result)
            return

        try:
            parent = entity.transform_to_storage_record(detail)
        except TransformError as e:
            self._logger.record_failed(module.name, source_id, e)
            result.record_error(source_id, e)
            return
        validation = entity.validate_record(parent)
        if not validation.valid:
            error = f"Missing required fields: {', '.join(validation.missing)}"
            self._logger.record_failed(module.name, source_id, error)
            result.record_error(source_id, error)
            return

        emails = self._comment_emails(module, source_id, principal)
        if emails is not None:
            parent["email"] = ",".join(emails) or parent.get("email")

        try:
            parent_id = self._write_parent(module, parent)
        except StorageUnavailableError:
            raise
        except StorageError as e:
            self._logger.record_failed(module.name, source_id, e)
            result.record_error(source_id, e)
            return
        result.synced += 1

        line_items = detail.get("line_items") or []
        written = self._replace_line_items(module, parent_id, line_items, result)
        result.line_items_synced += written
        self._logger.record_synced(module.name, source_id, written)

    def _find_existing(
        self, module: SyncModule, source_id: str
    ) -> dict[str, Any] | None:
        entity = module.entity
        try:
            rows = self._store.select(
                entity.table_name,
                [eq(entity.id_column, source_id)],
                columns=["id", "last_modified_time", "deleted_at"],
                limit=1,
            )
        except StorageError as e:
            self._logger.cache_read_failed(module.name, source_id, e)
            return None
        return rows[0] if rows else None

    def _fetch_detail(
        self, module: SyncModule, source_id: str, principal: str | None
    ) -> SourceRecord | None:
        entity = module.entity
        raw = self._client.get(
            entity.service, f"{entity.api_endpoint}/{source_id}", None, principal
        )
        records = entity.extract_from_response(raw)
        return records[0] if records else None

    def _mark_deleted(
        self, module: SyncModule, source_id: str, result: ModuleSyncResult
    ) -> None:
        try:
            rows = self._repository.soft_delete(module.entity, source_id)
        except StorageUnavailableError:
            raise
        except StorageError as e:
            result.record_error(source_id, e)
            return
        result.deleted += rows
        self._logger.record_deleted(module.name, source_id)

    def _comment_emails(
        self, module: SyncModule, source_id: str, principal: str | None
    ) -> list[str] | None:
        """Best-effort; a failed comments call never blocks the record.

        Returns ``None`` when comments were not read, so the stored email is
        left alone.
        """
        if not self._fetch_comments:
            return None
        entity = module.entity
        try:
            raw = self._client.get(
                entity.service,
                f"{entity.api_endpoint}/{source_id}/comments",
                None,
                principal,
            )
        except ZohoClientError as e:
            self._logger.comments_failed(module.name, source_id, e)
            return None
        return extract_external_emails(
            raw.get("comments", raw), exclude_domain=self._operator_email_domain
        )

    def _write_parent(self, module: SyncModule, parent: StorageRecord) -> int:
        """Upsert the parent row and return its storage id."""
        entity = module.entity
        row = prepare_for_write(parent, now=self._clock())
        written = self._store.upsert(
            entity.table_name, [row], conflict=entity.conflict_columns
        )
        if written and written[0].get("id") is not None:
            return int(written[0]["id"])

        rows = self._store.select(
            entity.table_name,
            [eq(entity.id_column, parent[entity.id_column])],
            columns=["id"],
            limit=1,
        )
        if not rows:
            raise StorageError(
                f"Could not resolve id of {entity.name} {parent[entity.id_column]}"
            )
        return int(rows[0]["id"])

    def _replace_line_items(
        self,
        module: SyncModule,
        parent_id: int,
        line_items: Iterable[Any],
        result: ModuleSyncResult,
    ) -> int:
        """Replace every line item of one parent; returns rows written.

        A payload whose line items all fail to transform leaves the stored
        ones untouched.
        """
        now = self._clock()
        payload = list(line_items)
        rows: dict[str, StorageRecord] = {}
        for raw in payload:
            try:
                record = LINE_ITEM.transform_to_storage_record(
                    raw, parent_id, module.parent_type
                )
            except TransformError as e:
                result.record_error(e.source_id, e)
                continue
            validation = LINE_ITEM.validate_record(record)
            if not validation.valid:
                result.record_error(
                    record.get(LINE_ITEM.id_column),
                    f"Missing required fields: {', '.join(validation.missing)}",
                )
                continue
            rows[record[LINE_ITEM.id_column]] = prepare_for_write(record, now=now)
        if payload and not rows:
            return 0

        filters = [eq("parent_id", parent_id), eq("parent_type", module.parent_type)]
        try:
            return len(
                self._store.replace(LINE_ITEM.table_name, filters, list(rows.values()))
            )
        except StorageUnavailableError:
            raise
        except StorageError as e:
            self._logger.line_items_fallback(module.name, parent_id, e)

        try:
            self._store.delete(LINE_ITEM.table_name, filters)
        except StorageUnavailableError:
            raise
        except StorageError as e:
            result.record_error(None, e)
            return 0

        written = 0
        for row in rows.values():
            try:
                self._store.insert(LINE_ITEM.table_name, [row])
                written += 1
            except StorageUnavailableError:
                raise
            except StorageError as e:
                result.record_error(row[LINE_ITEM.id_column], e)
        return written

    # Queries -------------------------------------------------------------

    def get_latest_sync_timestamps(self) -> dict[str, datetime | None]:
        return latest_sync_timestamps(self._store, self._modules.values())

    def get_oldest_transaction_date(self, module_name: str) -> date | None:
        """Oldest transaction date cached (and not deleted) for a module."""
        entity = self._module(module_name).entity
        rows = self._store.select(
            entity.table_name,
            [not_null("date"), is_null("deleted_at")],
            columns=["date"],
            order_by="date",
            limit=1,
        )
        return rows[0]["date"] if rows else None


def _source_id(
    source: Mapping[str, Any], entity: BooksTransactionEntity
) -> str | None:
    value = source.get(entity.source_id_field)
    if value is None or value == "":
        return None
    return str(value)


def _record_date(
    source: Mapping[str, Any], entity: BooksTransactionEntity
) -> date | None:
    try:
        return parse_date(source.get(entity.date_column or "date"))
    except ValueError:
        return None


def _needs_update(
    existing: Mapping[str, Any] | None, source: Mapping[str, Any]
) -> bool:
    """Whether a listed record must be refetched.

    Trusts the list payload's ``last_modified_time``; a record without one is
    treated as unchanged once cached.
    """
    if existing is None or existing.get("deleted_at") is not None:
        return True
    stored = existing.get("last_modified_time")
    if stored is None:
        return True
    try:
        listed = parse_timestamp(source.get("last_modified_time"))
    except ValueError:
        return True
    if listed is None:
        return False
    return listed > stored


def latest_sync_timestamps(
    store: Store, modules: Iterable[SyncModule] = DEFAULT_MODULES
) -> dict[str, datetime | None]:
    """Most recent ``synced_at`` per module, else ``last_modified_time``."""
    latest: dict[str, datetime | None] = {}
    for module in modules:
        latest[module.name] = None
        for column in ("synced_at", "last_modified_time"):
            rows = store.select(
                module.entity.table_name,
                [not_null(column)],
                columns=[column],
                order_by=column,
                descending=True,
                limit=1,
            )
            if rows:
                latest[module.name] = rows[0][column]
                break
    return latest
