"""Tabular logs for ingested bills.

Each company has five logs: ``buffer`` (one row per ingested document),
``buffer2`` (low-confidence triage), ``main`` (every active bill), and the
``inflow``/``outflow`` flow logs. They are stored in SQLite, one table per
log kind with a ``company`` column, and read back as typed records.
"""

import dataclasses
import os
import sqlite3
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Type

from billsort import DEFAULT_LEDGER_DB

STATUS_ACTIVE = "Active"
STATUS_DELETE = "Delete"

REF_DELETED = "DELETED"
REF_NOT_FOUND = "NOT_FOUND"

RELEVANCE_PENDING = ""
RELEVANCE_YES = "Yes"
RELEVANCE_NO = "No"


@dataclass
class BufferRecord:
    """Row of the buffer log; owns the document's unique id and status."""
    row_id: Optional[int] = None
    original_name: str = ""
    canonical_name: str = ""
    invoice_id: str = ""
    storage_ref: str = ""
    archived_ref: str = ""
    message_id: str = ""
    attachment_id: str = ""
    unique_id: str = ""
    status: str = STATUS_ACTIVE
    reason: str = ""
    last_error: str = ""
    repeated_ref: Optional[int] = None
    invoice_status: str = ""
    reference_date: str = ""
    email_subject: str = ""
    sender: str = ""
    created_at: str = ""

    @property
    def is_duplicate(self) -> bool:
        """Placeholder row for a repeated canonical name; owns no file."""
        return self.repeated_ref is not None


@dataclass
class TriageRecord:
    """Row of the buffer2 (triage) log."""
    row_id: Optional[int] = None
    original_name: str = ""
    canonical_name: str = ""
    storage_ref: str = ""
    message_id: str = ""
    attachment_id: str = ""
    unique_id: str = ""
    relevance: str = RELEVANCE_PENDING
    reason: str = ""
    last_error: str = ""
    invoice_status: str = ""
    reference_date: str = ""
    email_subject: str = ""
    sender: str = ""
    created_at: str = ""


@dataclass
class FlowLogRow:
    """Row of the main, inflow or outflow log.

    ``storage_ref`` is the file the row describes (the buffer file for the
    main log, the flow copy for inflow/outflow); ``source_ref`` is always the
    buffer file.
    """
    row_id: Optional[int] = None
    file_name: str = ""
    storage_ref: str = ""
    source_ref: str = ""
    unique_id: str = ""
    message_id: str = ""
    email_subject: str = ""
    invoice_status: str = ""
    vendor_name: str = ""
    invoice_number: str = ""
    amount: str = ""
    invoice_date: str = ""
    gst: str = ""
    tds: str = ""
    other_tax: str = ""
    financial_year: str = ""
    month: str = ""
    size: Optional[int] = None
    mime_type: str = ""
    logged_at: str = ""


RECORD_TYPES: Dict[str, Type] = {
    "buffer": BufferRecord,
    "buffer2": TriageRecord,
    "main": FlowLogRow,
    "inflow": FlowLogRow,
    "outflow": FlowLogRow,
}

LOG_KINDS = tuple(RECORD_TYPES)


def _column_type(field: dataclasses.Field) -> str:
    return "INTEGER" if field.type in (int, Optional[int]) else "TEXT"


def _data_fields(record_type: Type) -> List[dataclasses.Field]:
    return [f for f in dataclasses.fields(record_type) if f.name != "row_id"]


class LogStore:
    """SQLite-backed store for the per-company logs.

    Predicates passed to find_rows/delete_rows receive typed records, so
    callers filter by field name rather than column position. Writes made
    inside ``transaction()`` commit or roll back together.
    """

    def __init__(self, db_path: str = DEFAULT_LEDGER_DB) -> None:
        if db_path != ":memory:":
            db_dir = os.path.dirname(db_path)
            if db_dir and not os.path.exists(db_dir):
                os.makedirs(db_dir)

        self.db_path = db_path
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._in_transaction = False
        self._init_db()

    def _init_db(self) -> None:
        """Create one table per log kind and add any missing columns."""
        cursor = self.conn.cursor()
        for kind, record_type in RECORD_TYPES.items():
            columns = ",\n".join(
                f"{f.name} {_column_type(f)}" for f in _data_fields(record_type)
            )
            cursor.execute(f"""
                CREATE TABLE IF NOT EXISTS {kind} (
                    row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    company TEXT NOT NULL,
                    {columns}
                )
            """)
            cursor.execute(f"CREATE INDEX IF NOT EXISTS idx_{kind}_company ON {kind}(company)")
            self._migrate_add_columns(cursor, kind, record_type)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS counters (
                name TEXT PRIMARY KEY,
                value INTEGER NOT NULL
            )
        """)
        self.conn.commit()

    def _migrate_add_columns(self, cursor: sqlite3.Cursor, kind: str,
                             record_type: Type) -> None:
        """Add columns introduced after a database was created."""
        cursor.execute(f"PRAGMA table_info({kind})")
        existing_columns = {row[1] for row in cursor.fetchall()}
        for field in _data_fields(record_type):
            if field.name not in existing_columns:
                cursor.execute(f"ALTER TABLE {kind} ADD COLUMN {field.name} {_column_type(field)}")

    def _commit(self) -> None:
        if not self._in_transaction:
            self.conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Group writes into one SQLite transaction.

        Nested blocks join the outer transaction. An exception rolls back
        every write made inside the outermost block and is re-raised.
        """
        with self._lock:
            if self._in_transaction:
                yield
                return
            self.conn.execute("BEGIN IMMEDIATE")
            self._in_transaction = True
            try:
                yield
            except BaseException:
                self.conn.rollback()
                raise
            else:
                self.conn.commit()
            finally:
                self._in_transaction = False

    def reserve_unique_number(self, floor: int = 0) -> int:
        """Take the next unique-id number from the ledger-wide counter.

        The counter lives in the database, so processes sharing a ledger
        never receive the same number. ``floor`` lifts the counter past ids
        recorded before the counter existed.
        """
        with self.transaction():
            row = self.conn.execute(
                "SELECT value FROM counters WHERE name = 'unique_id'"
            ).fetchone()
            number = max(row[0] if row else 0, floor) + 1
            self.conn.execute(
                "INSERT OR REPLACE INTO counters (name, value) VALUES ('unique_id', ?)",
                (number,),
            )
        return number

    def _record_type(self, kind: str) -> Type:
        try:
            return RECORD_TYPES[kind]
        except KeyError:
            raise ValueError(f"Unknown log kind: {kind}. Must be one of {', '.join(LOG_KINDS)}")

    def _to_record(self, record_type: Type, row: sqlite3.Row):
        values = {}
        for field in dataclasses.fields(record_type):
            value = row[field.name]
            if value is None and field.default is not None and field.default is not dataclasses.MISSING:
                value = field.default
            values[field.name] = value
        return record_type(**values)

    def append_row(self, company: str, kind: str, record):
        """Append a record and return it with its new row_id."""
        record_type = self._record_type(kind)
        if not isinstance(record, record_type):
            raise TypeError(f"{kind} log expects {record_type.__name__}, got {type(record).__name__}")
        names = [f.name for f in _data_fields(record_type)]
        values = [getattr(record, name) for name in names]
        with self._lock:
            cursor = self.conn.execute(
                f"INSERT INTO {kind} (company, {', '.join(names)}) "
                f"VALUES (?, {', '.join('?' for _ in names)})",
                [company] + values,
            )
            self._commit()
        return dataclasses.replace(record, row_id=cursor.lastrowid)

    def read_all(self, company: str, kind: str) -> List:
        record_type = self._record_type(kind)
        with self._lock:
            rows = self.conn.execute(
                f"SELECT * FROM {kind} WHERE company = ? ORDER BY row_id", (company,)
            ).fetchall()
        return [self._to_record(record_type, row) for row in rows]

    def get_row(self, company: str, kind: str, row_id: int):
        record_type = self._record_type(kind)
        with self._lock:
            row = self.conn.execute(
                f"SELECT * FROM {kind} WHERE company = ? AND row_id = ?", (company, row_id)
            ).fetchone()
        return self._to_record(record_type, row) if row else None

    def find_rows(self, company: str, kind: str,
                  predicate: Optional[Callable] = None) -> List:
        rows = self.read_all(company, kind)
        if predicate is None:
            return rows
        return [row for row in rows if predicate(row)]

    def delete_rows(self, company: str, kind: str, predicate: Callable) -> int:
        """Delete matching rows; returns how many were removed."""
        row_ids = [row.row_id for row in self.find_rows(company, kind, predicate)]
        if not row_ids:
            return 0
        with self._lock:
            self.conn.executemany(
                f"DELETE FROM {kind} WHERE company = ? AND row_id = ?",
                [(company, row_id) for row_id in row_ids],
            )
            self._commit()
        return len(row_ids)

    def update_row(self, company: str, kind: str, row_id: int, **changes):
        """Update fields of one row and return the updated record.

        Raises:
            KeyError: If the row does not exist
        """
        record_type = self._record_type(kind)
        valid = {f.name for f in _data_fields(record_type)}
        unknown = set(changes) - valid
        if unknown:
            raise ValueError(f"Unknown {kind} fields: {', '.join(sorted(unknown))}")
        if changes:
            assignments = ", ".join(f"{name} = ?" for name in changes)
            with self._lock:
                cursor = self.conn.execute(
                    f"UPDATE {kind} SET {assignments} WHERE company = ? AND row_id = ?",
                    list(changes.values()) + [company, row_id],
                )
                self._commit()
            if cursor.rowcount == 0:
                raise KeyError(f"No {kind} row {row_id} for {company}")
        record = self.get_row(company, kind, row_id)
        if record is None:
            raise KeyError(f"No {kind} row {row_id} for {company}")
        return record

    def column_values(self, kind: str, column: str) -> List:
        """All values of one column across every company."""
        record_type = self._record_type(kind)
        if column not in {f.name for f in dataclasses.fields(record_type)}:
            raise ValueError(f"Unknown {kind} column: {column}")
        with self._lock:
            rows = self.conn.execute(f"SELECT {column} FROM {kind}").fetchall()
        return [row[0] for row in rows]

    def close(self) -> None:
        self.conn.close()
