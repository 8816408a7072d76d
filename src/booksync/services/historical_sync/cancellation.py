from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
import threading

SYSTEM_PRINCIPAL = "system"


def principal_key(principal: str | None) -> str:
    """Registry key for a principal; syncs without one run as ``system``."""
    return principal or SYSTEM_PRINCIPAL


@dataclass(frozen=True, slots=True)
class SyncStatus:
    principal_key: str
    module: str
    page: int
    record_index: int
    started_at: datetime
    last_update_at: datetime


@dataclass(frozen=True, slots=True)
class CancellationFlag:
    principal_key: str
    stopped: bool
    requested_at: datetime


class CancellationRegistry:
    """In-process table of active syncs and their stop flags.

    Keyed by principal. Entries live only as long as the sync that registered
    them; nothing here is persisted.
    """

    def __init__(self, *, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()
        self._active: dict[str, SyncStatus] = {}
        self._flags: dict[str, CancellationFlag] = {}

    def _new_status(self, key: str, module: str) -> SyncStatus:
        now = self._clock()
        return SyncStatus(
            principal_key=key,
            module=module,
            page=0,
            record_index=0,
            started_at=now,
            last_update_at=now,
        )

    def register_sync(self, principal: str | None, module: str) -> SyncStatus:
        """Record an active sync. A new run always starts un-stopped."""
        key = principal_key(principal)
        status = self._new_status(key, module)
        with self._lock:
            self._flags.pop(key, None)
            self._active[key] = status
        return status

    def try_register_sync(self, principal: str | None, module: str) -> bool:
        """Register only if no sync is active for the principal."""
        key = principal_key(principal)
        status = self._new_status(key, module)
        with self._lock:
            if key in self._active:
                return False
            self._flags.pop(key, None)
            self._active[key] = status
            return True

    def update_progress(
        self, principal: str | None, module: str, page: int, record_index: int
    ) -> None:
        key = principal_key(principal)
        with self._lock:
            status = self._active.get(key)
            if status is None:
                return
            self._active[key] = replace(
                status,
                module=module,
                page=page,
                record_index=record_index,
                last_update_at=self._clock(),
            )

    def unregister_sync(self, principal: str | None) -> None:
        key = principal_key(principal)
        with self._lock:
            self._active.pop(key, None)
            self._flags.pop(key, None)

    def request_stop(self, principal: str | None) -> bool:
        """Flag the principal's sync to stop; False when nothing is running."""
        key = principal_key(principal)
        with self._lock:
            if key not in self._active:
                return False
            self._flags[key] = CancellationFlag(
                principal_key=key, stopped=True, requested_at=self._clock()
            )
            return True

    def is_stop_requested(self, principal: str | None) -> bool:
        with self._lock:
            flag = self._flags.get(principal_key(principal))
            return flag is not None and flag.stopped

    def is_active(self, principal: str | None) -> bool:
        with self._lock:
            return principal_key(principal) in self._active

    def get_sync_status(self, principal: str | None) -> SyncStatus | None:
        with self._lock:
            return self._active.get(principal_key(principal))

    def get_all_active_syncs(self) -> dict[str, SyncStatus]:
        with self._lock:
            return dict(self._active)

    def clear_all(self) -> None:
        with self._lock:
            self._active.clear()
            self._flags.clear()
