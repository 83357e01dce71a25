"""InMemoryStore — process-local store, the default backend.

Records live in a private dict guarded by striped locks: each key hashes to
one of a fixed set of locks, so writes to the same key serialize while writes
to different keys rarely contend. Nothing survives a restart; use SQLiteStore
when the CLI needs to inspect state written by a running server.
"""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import TYPE_CHECKING

from prbounty_store.base import BaseStore, CreateGuard, UpdateGuard
from prbounty_store.models import AccountMapping

if TYPE_CHECKING:
    from prbounty_store.models import PRRecord

_STRIPES = 16


class InMemoryStore(BaseStore):
    def __init__(self, stripes: int = _STRIPES):
        super().__init__()
        self._records: dict[str, PRRecord] = {}
        self._mappings: dict[str, str] = {}
        self._stripes = [threading.Lock() for _ in range(max(1, stripes))]
        # Guards dict structure for iteration; always taken after a stripe lock.
        self._table_lock = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        return self._stripes[hash(key) % len(self._stripes)]

    def create(self, record: PRRecord, guard: CreateGuard | None = None) -> PRRecord | None:
        self._check_record(record)
        with self._lock_for(record.key):
            existing = self._records.get(record.key)
            if guard is not None and not guard(replace(existing) if existing else None):
                return None
            stored = replace(record, updated_at=self._next_timestamp())
            with self._table_lock:
                self._records[record.key] = stored
            return replace(stored)

    def get(self, key: str) -> PRRecord | None:
        with self._lock_for(key):
            record = self._records.get(key)
            return replace(record) if record else None

    def update(self, key: str, fields: dict, guard: UpdateGuard | None = None) -> PRRecord | None:
        self._check_fields(fields)
        with self._lock_for(key):
            existing = self._records.get(key)
            if existing is None:
                return None
            if guard is not None and not guard(replace(existing)):
                return None
            stored = replace(existing, **fields, updated_at=self._next_timestamp())
            with self._table_lock:
                self._records[key] = stored
            return replace(stored)

    def list_records(self) -> list[PRRecord]:
        with self._table_lock:
            snapshot = [replace(r) for r in self._records.values()]
        return sorted(snapshot, key=lambda r: r.updated_at, reverse=True)

    def delete(self, key: str) -> None:
        with self._lock_for(key):
            with self._table_lock:
                self._records.pop(key, None)

    def set_mapping(self, handle: str, payment_account_id: str) -> None:
        with self._table_lock:
            self._mappings[handle.lower()] = payment_account_id

    def get_mapping(self, handle: str) -> str | None:
        with self._table_lock:
            return self._mappings.get(handle.lower())

    def list_mappings(self) -> list[AccountMapping]:
        with self._table_lock:
            items = sorted(self._mappings.items())
        return [AccountMapping(handle=h, payment_account_id=a) for h, a in items]

    def delete_mapping(self, handle: str) -> None:
        with self._table_lock:
            self._mappings.pop(handle.lower(), None)
