"""Abstract store interface.

Every backend (in-memory, SQLite) implements this interface. The gateway and
the crediting coordinator depend on BaseStore, not on a concrete backend, so
backends are swappable without touching pipeline code.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable

from prbounty_store.models import STATUS_CREDITED, VALID_STATUSES

if TYPE_CHECKING:
    from prbounty_store.models import AccountMapping, PRRecord

# Fields callers may merge through update(). The key and timestamp are store-owned.
UPDATABLE_FIELDS = frozenset(
    {
        "title",
        "author",
        "status",
        "review_reference",
        "review",
        "notes",
        "credited_amount",
        "payment_account_id",
        "credit_claim",
    }
)

CreateGuard = Callable[["PRRecord | None"], bool]
UpdateGuard = Callable[["PRRecord"], bool]


class BaseStore(ABC):
    """Keyed PR lifecycle store plus the author to payment-account mapping table.

    All operations are atomic with respect to a single key. Records handed out
    are copies; mutating them has no effect until passed back through update().
    """

    def __init__(self) -> None:
        self._clock_lock = threading.Lock()
        self._last_stamp: datetime | None = None

    # ------------------------------------------------------------------ #
    # PR records                                                           #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def create(self, record: PRRecord, guard: CreateGuard | None = None) -> PRRecord | None:
        """Upsert a record, overwriting any existing one for the same key.

        ``guard`` receives the existing record (or None) under the key lock;
        returning False aborts the write and create() returns None.
        """

    @abstractmethod
    def get(self, key: str) -> PRRecord | None:
        """Return a copy of the record for ``key``, or None."""

    @abstractmethod
    def update(self, key: str, fields: dict, guard: UpdateGuard | None = None) -> PRRecord | None:
        """Merge ``fields`` into the existing record and return the result.

        Silent no-op (returns None) when the key is absent or ``guard`` refuses,
        so late or duplicate events can never fabricate a record.
        """

    @abstractmethod
    def list_records(self) -> list[PRRecord]:
        """Return every record ordered by updated_at, most recent first."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a record. Administrative escape hatch; no-op if absent."""

    def compare_and_set(self, key: str, expected_status: str, fields: dict) -> PRRecord | None:
        """Apply ``fields`` only if the current status equals ``expected_status``."""
        return self.update(key, fields, guard=lambda current: current.status == expected_status)

    # ------------------------------------------------------------------ #
    # Author -> payment account mappings                                   #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def set_mapping(self, handle: str, payment_account_id: str) -> None:
        """Map an author handle (case-insensitive) to a payment account."""

    @abstractmethod
    def get_mapping(self, handle: str) -> str | None:
        """Return the mapped payment account id, or None."""

    @abstractmethod
    def list_mappings(self) -> list[AccountMapping]:
        """Return all mappings ordered by handle."""

    @abstractmethod
    def delete_mapping(self, handle: str) -> None:
        """Remove a mapping; no-op if absent."""

    def close(self) -> None:
        """Release any resources held by the store (connections, file handles).

        Optional. Default is a no-op so callers can always call close() safely.
        """

    # ------------------------------------------------------------------ #
    # Shared helpers                                                       #
    # ------------------------------------------------------------------ #

    def _next_timestamp(self) -> datetime:
        """Wall-clock UTC timestamp that strictly increases across calls."""
        with self._clock_lock:
            now = datetime.now(timezone.utc)
            if self._last_stamp is not None and now <= self._last_stamp:
                now = self._last_stamp + timedelta(microseconds=1)
            self._last_stamp = now
            return now

    @staticmethod
    def _check_fields(fields: dict) -> None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update field(s): {', '.join(sorted(unknown))}")
        status = fields.get("status")
        if status is None:
            return
        if status not in VALID_STATUSES:
            raise ValueError(f"Unknown status {status!r}")
        paid = fields.get("credited_amount") is not None and fields.get("payment_account_id")
        if status == STATUS_CREDITED and not paid:
            raise ValueError("status 'credited' requires credited_amount and payment_account_id in the same update")

    @staticmethod
    def _check_record(record: PRRecord) -> None:
        if record.status not in VALID_STATUSES:
            raise ValueError(f"Unknown status {record.status!r}")
        if record.status == STATUS_CREDITED and (record.credited_amount is None or not record.payment_account_id):
            raise ValueError("A credited record requires credited_amount and payment_account_id")
