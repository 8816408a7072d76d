from __future__ import annotations

from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from sqlalchemy import (
    ColumnElement,
    Table,
    create_engine,
    delete,
    insert,
    select,
    update,
)
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine
from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    InterfaceError,
    SQLAlchemyError,
)
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from booksync.adapters.db.models import Base

Row = dict[str, Any]
FilterOp = Literal["eq", "in", "is_null", "not_null"]


class StorageError(Exception):
    """A read or write against the store failed."""


class StorageUnavailableError(StorageError):
    """The store cannot be reached at all; retrying row by row will not help."""


@dataclass(frozen=True, slots=True)
class Filter:
    column: str
    op: FilterOp
    value: Any = None


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def in_(column: str, values: Sequence[Any]) -> Filter:
    return Filter(column, "in", tuple(values))


def is_null(column: str) -> Filter:
    return Filter(column, "is_null")


def not_null(column: str) -> Filter:
    return Filter(column, "not_null")


class Store(Protocol):
    """Table-scoped persistence used by the sync components."""

    def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        *,
        columns: Sequence[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]: ...

    def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> list[Row]: ...

    def upsert(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        *,
        conflict: Sequence[str],
    ) -> list[Row]: ...

    def update(
        self, table: str, filters: Sequence[Filter], values: Mapping[str, Any]
    ) -> int: ...

    def delete(self, table: str, filters: Sequence[Filter]) -> int: ...

    def replace(
        self,
        table: str,
        filters: Sequence[Filter],
        rows: Sequence[Mapping[str, Any]],
    ) -> list[Row]: ...


def _is_unavailable(error: SQLAlchemyError) -> bool:
    if isinstance(error, DisconnectionError | InterfaceError):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


class SqlStore:
    """SQLAlchemy-backed ``Store`` over the tables registered on ``Base``."""

    def __init__(self, url: str) -> None:
        """Initialize database connection.

        Args:
            url: Database URL (e.g., "sqlite:///booksync.db")
        """
        self._url = url
        if url.startswith("sqlite") and ":memory:" in url:
            # One shared connection, so every session and thread sees one database
            self._engine = create_engine(
                url,
                echo=False,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
        else:
            self._engine = create_engine(url, echo=False)
        self._session_factory = sessionmaker(bind=self._engine, class_=Session)

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_all(self) -> None:
        """Create every cache table that does not exist yet."""
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to create schema: {e}") from e

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager for database sessions.

        Commits on success and rolls back on any error. SQLAlchemy failures
        leave as ``StorageError``.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            if _is_unavailable(e):
                raise StorageUnavailableError(f"Database unavailable: {e}") from e
            raise StorageError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # Query helpers -------------------------------------------------------

    def _table(self, name: str) -> Table:
        try:
            return Base.metadata.tables[name]
        except KeyError:
            raise StorageError(f"Unknown table: {name}") from None

    def _check_columns(self, table: Table, names: Sequence[str]) -> None:
        unknown = [name for name in names if name not in table.c]
        if unknown:
            raise StorageError(
                f"Unknown column(s) for {table.name}: {', '.join(sorted(unknown))}"
            )

    def _where(
        self, table: Table, filters: Sequence[Filter]
    ) -> list[ColumnElement[bool]]:
        self._check_columns(table, [f.column for f in filters])
        clauses: list[ColumnElement[bool]] = []
        for f in filters:
            column = table.c[f.column]
            if f.op == "eq":
                clauses.append(column == f.value)
            elif f.op == "in":
                clauses.append(column.in_(f.value))
            elif f.op == "is_null":
                clauses.append(column.is_(None))
            elif f.op == "not_null":
                clauses.append(column.is_not(None))
            else:
                raise StorageError(f"Unsupported filter operator: {f.op!r}")
        return clauses

    def _dialect_insert(self, table: Table) -> Any:
        dialect = self._engine.dialect.name
        if dialect == "sqlite":
            return sqlite_insert(table)
        if dialect == "postgresql":
            return postgresql_insert(table)
        raise StorageError(f"Upsert is not supported on {dialect}")

    # Store API -----------------------------------------------------------

    def select(
        self,
        table: str,
        filters: Sequence[Filter] = (),
        *,
        columns: Sequence[str] | None = None,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[Row]:
        t = self._table(table)
        if columns:
            self._check_columns(t, columns)
            stmt = select(*(t.c[name] for name in columns))
        else:
            stmt = select(t)
        stmt = stmt.where(*self._where(t, filters))
        if order_by is not None:
            self._check_columns(t, [order_by])
            column = t.c[order_by]
            stmt = stmt.order_by(column.desc() if descending else column.asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        with self.session() as session:
            return [dict(row) for row in session.execute(stmt).mappings()]

    def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> list[Row]:
        if not rows:
            return []
        t = self._table(table)
        with self.session() as session:
            return self._insert_rows(session, t, rows)

    def _insert_rows(
        self, session: Session, table: Table, rows: Sequence[Mapping[str, Any]]
    ) -> list[Row]:
        written: list[Row] = []
        for row in rows:
            self._check_columns(table, list(row))
            stmt = insert(table).values(**row).returning(*table.c)
            written.append(dict(session.execute(stmt).mappings().one()))
        return written

    def upsert(
        self,
        table: str,
        rows: Sequence[Mapping[str, Any]],
        *,
        conflict: Sequence[str],
    ) -> list[Row]:
        """Insert rows, updating the existing row on a ``conflict`` key clash.

        Only the columns present in each input row are updated. The whole
        batch commits or rolls back together. Returns the written rows,
        storage-assigned ``id`` included.
        """
        if not rows:
            return []
        t = self._table(table)
        self._check_columns(t, conflict)
        written: list[Row] = []
        with self.session() as session:
            for row in rows:
                self._check_columns(t, list(row))
                stmt = self._dialect_insert(t).values(**row)
                updates = {
                    name: stmt.excluded[name]
                    for name in row
                    if name not in conflict and name != "id"
                }
                if updates:
                    stmt = stmt.on_conflict_do_update(
                        index_elements=[t.c[name] for name in conflict],
                        set_=updates,
                    )
                else:
                    stmt = stmt.on_conflict_do_nothing(
                        index_elements=[t.c[name] for name in conflict]
                    )
                result = session.execute(stmt.returning(*t.c)).mappings().one_or_none()
                if result is None:
                    lookup = select(t).where(
                        *(t.c[name] == row[name] for name in conflict)
                    )
                    result = session.execute(lookup).mappings().one()
                written.append(dict(result))
        return written

    def update(
        self, table: str, filters: Sequence[Filter], values: Mapping[str, Any]
    ) -> int:
        t = self._table(table)
        self._check_columns(t, list(values))
        stmt = update(t).where(*self._where(t, filters)).values(**values)
        with self.session() as session:
            return session.execute(stmt).rowcount

    def delete(self, table: str, filters: Sequence[Filter]) -> int:
        t = self._table(table)
        stmt = delete(t).where(*self._where(t, filters))
        with self.session() as session:
            return session.execute(stmt).rowcount

    def replace(
        self,
        table: str,
        filters: Sequence[Filter],
        rows: Sequence[Mapping[str, Any]],
    ) -> list[Row]:
        """Delete the rows matching ``filters`` and insert ``rows`` atomically."""
        t = self._table(table)
        stmt = delete(t).where(*self._where(t, filters))
        with self.session() as session:
            session.execute(stmt)
            return self._insert_rows(session, t, rows)
