"""SQLiteStore — local file-based store shared by the server and the CLI.

The server writes PR state here and `prbounty list` / `prbounty credit` read
the same file, so operators can inspect and act on records without the
server's process memory.

Schema:
  prs       — one row per tracked PR, keyed by ``owner/repo#number``; the
              structured review is kept as a JSON column.
  mappings  — author handle (lower-cased) -> payment account id.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from dataclasses import replace
from datetime import datetime

from prbounty_store.base import BaseStore, CreateGuard, UpdateGuard
from prbounty_store.models import AccountMapping, PRRecord, review_from_dict, review_to_dict

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS prs (
    pr_key              TEXT PRIMARY KEY,
    title               TEXT,
    author              TEXT,
    owner               TEXT NOT NULL,
    repo                TEXT NOT NULL,
    pr_number           INTEGER NOT NULL,
    status              TEXT NOT NULL,
    review_reference    TEXT,
    review_json         TEXT,
    notes               TEXT DEFAULT '',
    credited_amount     INTEGER,
    payment_account_id  TEXT,
    credit_claim        TEXT,
    updated_at          TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_prs_updated ON prs (updated_at);
CREATE TABLE IF NOT EXISTS mappings (
    handle              TEXT PRIMARY KEY,
    payment_account_id  TEXT NOT NULL
);
"""

_COLUMNS = (
    "pr_key, title, author, owner, repo, pr_number, status, review_reference, "
    "review_json, notes, credited_amount, payment_account_id, credit_claim, updated_at"
)
_PLACEHOLDERS = ", ".join("?" * len(_COLUMNS.split(",")))


class SQLiteStore(BaseStore):
    """Stores PR records in a local SQLite database file.

    The database file path defaults to `.prbounty.db` in the current working
    directory. Configure via .prbounty.yml: `store_path: /path/to/prbounty.db`.
    One connection is shared across threads; a lock plus an explicit
    transaction per operation makes every read-modify-write atomic.
    """

    def __init__(self, db_path: str = ".prbounty.db"):
        super().__init__()
        self._lock = threading.RLock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False, isolation_level=None)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(_SCHEMA)
        self._migrate()

    def create(self, record: PRRecord, guard: CreateGuard | None = None) -> PRRecord | None:
        self._check_record(record)
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                existing = self._fetch(record.key)
                if guard is not None and not guard(existing):
                    self._conn.execute("ROLLBACK")
                    return None
                record = replace(record, updated_at=self._next_timestamp())
                self._conn.execute(
                    f"INSERT OR REPLACE INTO prs ({_COLUMNS}) VALUES ({_PLACEHOLDERS})",
                    self._to_row(record),
                )
                self._conn.execute("COMMIT")
            except Exception:
                self._conn.execute("ROLLBACK")
                raise
            return record

    def get(self, key: str) -> PRRecord | None:
        with self._lock:
            return self._fetch(key)

    def update(self, key: str, fields: dict, guard: UpdateGuard | None = None) -> PRRecord | None:
        self._check_fields(fields)
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                existing = self._fetch(key)
                if existing is None or (guard is not None and not guard(existing)):
                    self._conn.execute("ROLLBACK")
                    return None
                merged = replace(existing, **fields, updated_at=self._next_timestamp())
                self._conn.execute(
                    f"INSERT OR REPLACE INTO prs ({_COLUMNS}) VALUES ({_PLACEHOLDERS})",
                    self._to_row(merged),
                )
                self._conn.execute("COMMIT")
            except Exception:
                self._conn.execute("ROLLBACK")
                raise
            return merged

    def list_records(self) -> list[PRRecord]:
        with self._lock:
            rows = self._conn.execute(f"SELECT {_COLUMNS} FROM prs ORDER BY updated_at DESC").fetchall()
        return [self._row_to_record(r) for r in rows]

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM prs WHERE pr_key=?", (key,))

    def set_mapping(self, handle: str, payment_account_id: str) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO mappings (handle, payment_account_id) VALUES (?, ?)",
                (handle.lower(), payment_account_id),
            )

    def get_mapping(self, handle: str) -> str | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT payment_account_id FROM mappings WHERE handle=?", (handle.lower(),)
            ).fetchone()
        return row["payment_account_id"] if row else None

    def list_mappings(self) -> list[AccountMapping]:
        with self._lock:
            rows = self._conn.execute("SELECT handle, payment_account_id FROM mappings ORDER BY handle").fetchall()
        return [AccountMapping(handle=r["handle"], payment_account_id=r["payment_account_id"]) for r in rows]

    def delete_mapping(self, handle: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM mappings WHERE handle=?", (handle.lower(),))

    def close(self) -> None:
        self._conn.close()

    def _migrate(self) -> None:
        columns = {r["name"] for r in self._conn.execute("PRAGMA table_info(prs)")}
        if "credit_claim" not in columns:
            self._conn.execute("ALTER TABLE prs ADD COLUMN credit_claim TEXT")

    def _fetch(self, key: str) -> PRRecord | None:
        row = self._conn.execute(f"SELECT {_COLUMNS} FROM prs WHERE pr_key=?", (key,)).fetchone()
        return self._row_to_record(row) if row else None

    @staticmethod
    def _to_row(record: PRRecord) -> tuple:
        review = review_to_dict(record.review)
        return (
            record.key,
            record.title,
            record.author,
            record.owner,
            record.repo,
            record.pr_number,
            record.status,
            record.review_reference,
            json.dumps(review) if review is not None else None,
            record.notes,
            record.credited_amount,
            record.payment_account_id,
            record.credit_claim,
            record.updated_at.isoformat(timespec="microseconds"),
        )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> PRRecord:
        try:
            review = review_from_dict(json.loads(row["review_json"])) if row["review_json"] else None
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable review JSON for %s", row["pr_key"])
            review = None
        return PRRecord(
            key=row["pr_key"],
            title=row["title"] or "",
            author=row["author"] or "",
            owner=row["owner"],
            repo=row["repo"],
            pr_number=row["pr_number"],
            status=row["status"],
            review_reference=row["review_reference"],
            review=review,
            notes=row["notes"] or "",
            credited_amount=row["credited_amount"],
            payment_account_id=row["payment_account_id"],
            credit_claim=row["credit_claim"],
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
