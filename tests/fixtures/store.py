"""Store wrapper that injects failures into chosen operations."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any

from booksync.adapters.db.store import Filter, SqlStore

Failure = Exception | Callable[..., Exception | None]


class FlakyStore:
    """Delegates to a real store, raising for operations listed in ``failures``.

    A failure may be an exception (always raised) or a callable that receives
    the call's arguments and returns the exception to raise, or None to let the
    call through.
    """

    def __init__(
        self, inner: SqlStore, failures: Mapping[str, Failure] | None = None
    ) -> None:
        self._inner = inner
        self.failures: dict[str, Failure] = dict(failures or {})
        self.calls: list[str] = []

    def _check(self, operation: str, *args: Any) -> None:
        self.calls.append(operation)
        failure = self.failures.get(operation)
        if failure is None:
            return
        error = failure if isinstance(failure, Exception) else failure(*args)
        if error is not None:
            raise error

    def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        **kwargs: Any,
    ) -> list[dict[str, Any]]:
        self._check("select", table, filters)
        return self._inner.select(table, filters, **kwargs)

    def insert(
        self, table: str, rows: Sequence[Mapping[str, Any]]
    ) -> list[dict[str, Any]]:
        self._check("insert", table, rows)
        return self._inner.insert(table, rows)

    def upsert(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        *,
        conflict: Sequence[str],
    ) -> list[dict[str, Any]]:
        self._check("upsert", table, rows)
        return self._inner.upsert(table, rows, conflict=conflict)

    def update(
        self, table: str, filters: Sequence[Filter], values: Mapping[str, Any]
    ) -> int:
        self._check("update", table, filters)
        return self._inner.update(table, filters, values)

    def delete(self, table: str, filters: Sequence[Filter]) -> int:
        self._check("delete", table, filters)
        return self._inner.delete(table, filters)

    def replace(
        self,
        table: str,
        filters: Sequence[Filter],
        rows: Sequence[Mapping[str, Any]],
    ) -> list[dict[str, Any]]:
        self._check("replace", table, rows)
        return self._inner.replace(table, filters, rows)
