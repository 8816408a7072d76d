from __future__ import annotations

from dataclasses import dataclass
import os

DEFAULT_DATABASE_URL = "sqlite:///booksync.db"


@dataclass(frozen=True, slots=True)
class SyncConfig:
    """Sync settings loaded at process startup."""

    database_url: str = DEFAULT_DATABASE_URL
    window_days: int = 180
    page_size: int = 50
    upsert_batch_size: int = 50
    operator_email_domain: str | None = None
    rate_limit_seconds: float = 1.0
    fetch_comments: bool = True


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < 1:
        raise ValueError(f"{name} must be >= 1, got {value}")
    return value


def _float_env(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must be >= 0, got {value}")
    return value


def load_sync_config_from_env() -> SyncConfig:
    """Load sync config from env, failing fast on malformed values."""
    database_url = (
        os.environ.get("BOOKSYNC_DATABASE_URL", "").strip() or DEFAULT_DATABASE_URL
    )
    operator_domain = os.environ.get("BOOKSYNC_OPERATOR_EMAIL_DOMAIN", "").strip()

    return SyncConfig(
        database_url=database_url,
        window_days=_int_env("BOOKSYNC_WINDOW_DAYS", 180),
        page_size=_int_env("BOOKSYNC_PAGE_SIZE", 50),
        upsert_batch_size=_int_env("BOOKSYNC_UPSERT_BATCH_SIZE", 50),
        operator_email_domain=operator_domain.lower() or None,
        rate_limit_seconds=_float_env("BOOKSYNC_RATE_LIMIT_SECONDS", 1.0),
        fetch_comments=os.environ.get("BOOKSYNC_FETCH_COMMENTS", "true")
        .strip()
        .lower()
        in {"1", "true", "yes", "on"},
    )
