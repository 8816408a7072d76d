"""Shared test fixtures."""

from __future__ import annotations

import pytest

from booksync.adapters.db.store import SqlStore


@pytest.fixture
def store() -> SqlStore:
    """Fresh in-memory cache database with every table created."""
    sql_store = SqlStore("sqlite:///:memory:")
    sql_store.create_all()
    return sql_store
