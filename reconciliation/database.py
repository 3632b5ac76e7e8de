"""
SQLite persistence layer for the reconciliation engine.

One database file (output/reconciliation.db) holds the current truth for
every job and its financial documents:

  jobs             Job intake data plus the ledger-derived totals and margins
  purchase_orders  Money owed downstream, one row per leg (never deleted)
  invoices         Money billed upstream, mirror of a purchase order leg
  sync_log         Append-only trail of cross-document amount propagation

Amounts are stored as TEXT holding a fixed-point decimal string ("1234.50")
and read back as ``Decimal``.  SQLite's NUMERIC affinity would coerce them to
binary floats, so no amount column is declared NUMERIC or REAL.

The connection is opened by the constructor and released by ``close()``;
``Database`` is also a context manager.  ``transaction()`` pins all nested
operations into a single commit / rollback.
"""
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Iterator, Optional

logger = logging.getLogger(__name__)

sqlite3.register_adapter(Decimal, str)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id                           TEXT PRIMARY KEY,
    job_no                       TEXT NOT NULL UNIQUE,
    customer_id                  TEXT NOT NULL,
    status                       TEXT NOT NULL DEFAULT 'PENDING',
    customer_po_number           TEXT,

    -- Intake amounts (fixed-point decimal strings)
    customer_total               TEXT NOT NULL DEFAULT '0.00',
    paper_cost_total             TEXT NOT NULL DEFAULT '0.00',
    paper_charged_total          TEXT NOT NULL DEFAULT '0.00',

    -- Derived by the job ledger only
    bradford_total               TEXT NOT NULL DEFAULT '0.00',
    jd_total                     TEXT NOT NULL DEFAULT '0.00',
    impact_margin                TEXT NOT NULL DEFAULT '0.00',
    bradford_total_margin        TEXT NOT NULL DEFAULT '0.00',
    bradford_paper_margin        TEXT NOT NULL DEFAULT '0.00',
    bradford_print_margin        TEXT NOT NULL DEFAULT '0.00',

    -- Routing mode
    jd_supplies_paper            INTEGER NOT NULL DEFAULT 0,
    bradford_waives_paper_margin INTEGER NOT NULL DEFAULT 0,

    created_at                   TEXT NOT NULL,
    updated_at                   TEXT NOT NULL,
    completed_at                 TEXT
);

CREATE INDEX IF NOT EXISTS idx_jobs_status     ON jobs (status);
CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs (created_at DESC);

CREATE TABLE IF NOT EXISTS purchase_orders (
    id                   TEXT PRIMARY KEY,
    origin_company_id    TEXT NOT NULL,
    target_company_id    TEXT,
    target_vendor_id     TEXT,
    job_id               TEXT REFERENCES jobs (id),
    original_amount      TEXT NOT NULL DEFAULT '0.00',
    vendor_amount        TEXT NOT NULL DEFAULT '0.00',
    margin_amount        TEXT NOT NULL DEFAULT '0.00',
    status               TEXT NOT NULL DEFAULT 'PENDING',
    po_number            TEXT,
    reference_po_number  TEXT,
    external_ref         TEXT,
    created_at           TEXT NOT NULL,
    updated_at           TEXT NOT NULL,
    CHECK ((target_company_id IS NULL) <> (target_vendor_id IS NULL))
);

CREATE INDEX IF NOT EXISTS idx_po_job_leg      ON purchase_orders (job_id, origin_company_id, target_company_id);
CREATE INDEX IF NOT EXISTS idx_po_number       ON purchase_orders (po_number);
CREATE INDEX IF NOT EXISTS idx_po_external_ref ON purchase_orders (external_ref);

CREATE TABLE IF NOT EXISTS invoices (
    id               TEXT PRIMARY KEY,
    job_id           TEXT REFERENCES jobs (id),
    from_company_id  TEXT NOT NULL,
    to_company_id    TEXT NOT NULL,
    invoice_no       TEXT NOT NULL UNIQUE,
    amount           TEXT NOT NULL DEFAULT '0.00',
    due_at           TEXT,
    issued_at        TEXT,
    paid_at          TEXT,
    file_id          TEXT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_invoices_job_leg ON invoices (job_id, from_company_id, to_company_id);

CREATE TABLE IF NOT EXISTS sync_log (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    trigger            TEXT NOT NULL,   -- PO_UPDATE | INVOICE_UPDATE
    purchase_order_id  TEXT REFERENCES purchase_orders (id),
    invoice_id         TEXT REFERENCES invoices (id),
    job_id             TEXT REFERENCES jobs (id),
    field              TEXT NOT NULL,
    old_value          TEXT,
    new_value          TEXT NOT NULL,
    changed_by         TEXT,
    notes              TEXT,
    created_at         TEXT NOT NULL    -- ISO-8601 UTC
);

CREATE INDEX IF NOT EXISTS idx_sync_po         ON sync_log (purchase_order_id);
CREATE INDEX IF NOT EXISTS idx_sync_invoice    ON sync_log (invoice_id);
CREATE INDEX IF NOT EXISTS idx_sync_job        ON sync_log (job_id);
CREATE INDEX IF NOT EXISTS idx_sync_created_at ON sync_log (created_at DESC);
"""


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """Thin wrapper around an SQLite database file for reconciliation state."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._depth = 0
        self._connection: Optional[sqlite3.Connection] = self._open()
        self._init_schema()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        if str(self.db_path) != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    @contextmanager
    def _conn(self) -> Iterator[sqlite3.Connection]:
        """
        Yield the shared connection.  Only the outermost block commits or
        rolls back, so nested calls made inside ``transaction()`` share one
        unit of work.
        """
        with self._lock:
            if self._connection is None:
                raise RuntimeError(f"Database is closed: {self.db_path}")
            conn = self._connection
            self._depth += 1
            try:
                yield conn
                if self._depth == 1:
                    conn.commit()
            except Exception:
                if self._depth == 1:
                    conn.rollback()
                raise
            finally:
                self._depth -= 1

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Group several store operations into one atomic commit."""
        with self._conn() as conn:
            yield conn

    def _init_schema(self) -> None:
        with self._conn() as conn:
            conn.executescript(_SCHEMA)
        logger.debug("Database schema ready: %s", self.db_path)

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None
                logger.debug("Database closed: %s", self.db_path)

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def get_stats(self) -> dict:
        """Return row counts per table plus job counts by status."""
        with self._conn() as conn:
            counts = {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in ("jobs", "purchase_orders", "invoices", "sync_log")
            }
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM jobs GROUP BY status"
            ).fetchall()
        counts["jobs_by_status"] = {r["status"]: r["n"] for r in rows}
        return counts
