"""
Document stores: CRUD and filtered queries for jobs, purchase orders,
invoices and the sync log.

Each store is handed the ``Database`` it works on, so components receive only
the stores they need.  Store writes are raw column writes with no cascading
side effects; recalculation and cross-document sync are explicit steps taken
by the job ledger and the sync engine.

Leg lookups
-----------
More than one purchase order (or invoice) can exist for the same
(job, origin, target) leg, e.g. after an amendment that was never closed
out.  The authoritative document for a leg is the most recently created one
that is not CANCELLED; ties on created_at are broken by insertion order.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator, Optional

from models.invoice import Invoice
from models.job import Job, STATUS_PENDING
from models.money import ZERO, to_money
from models.purchase_order import PurchaseOrder, PO_STATUS_CANCELLED, PO_STATUS_PENDING
from models.sync_log import SyncLog
from .database import Database, utcnow
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

JOB_NUMBER_PREFIX     = "J-"
INVOICE_NUMBER_PREFIX = "INV-"

_JOB_FINANCIAL_FIELDS = {
    "bradford_total",
    "jd_total",
    "impact_margin",
    "bradford_total_margin",
    "bradford_paper_margin",
    "bradford_print_margin",
}
_PO_WRITABLE_FIELDS = {
    "original_amount", "vendor_amount", "margin_amount",
    "status", "po_number", "external_ref",
}
_INVOICE_WRITABLE_FIELDS = {"amount", "due_at", "issued_at", "paid_at", "file_id"}
_AMOUNT_FIELDS = {"original_amount", "vendor_amount", "margin_amount", "amount"} | _JOB_FINANCIAL_FIELDS


def _new_id() -> str:
    return uuid.uuid4().hex


def _next_sequence(last: Optional[str], prefix: str, width: int) -> str:
    """J-2025-000041 → J-2025-000042 (prefix includes the year)."""
    next_number = 1
    if last:
        next_number = int(last[len(prefix):]) + 1
    return f"{prefix}{next_number:0{width}d}"


def _update(conn, table: str, row_id: str, values: dict) -> bool:
    values = {
        k: (to_money(v) if k in _AMOUNT_FIELDS and v is not None else v)
        for k, v in values.items()
    }
    values["updated_at"] = utcnow()
    assignments = ", ".join(f"{col} = :{col}" for col in values)
    conn.execute(
        f"UPDATE {table} SET {assignments} WHERE id = :_id",
        {**values, "_id": row_id},
    )
    return conn.execute("SELECT changes()").fetchone()[0] > 0


# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

class JobStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    def create(
        self,
        customer_id: str,
        customer_total=ZERO,
        job_no: Optional[str] = None,
        paper_cost_total=ZERO,
        paper_charged_total=ZERO,
        jd_supplies_paper: bool = False,
        bradford_waives_paper_margin: bool = False,
        customer_po_number: Optional[str] = None,
        status: str = STATUS_PENDING,
    ) -> Job:
        """Insert a job at intake.  Derived totals start at zero."""
        now = utcnow()
        job_id = _new_id()
        with self.db.transaction() as conn:
            if job_no is None:
                job_no = self.next_job_no()
            conn.execute(
                """
                INSERT INTO jobs (
                    id, job_no, customer_id, status, customer_po_number,
                    customer_total, paper_cost_total, paper_charged_total,
                    jd_supplies_paper, bradford_waives_paper_margin,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    job_id, job_no, customer_id, status, customer_po_number,
                    to_money(customer_total), to_money(paper_cost_total),
                    to_money(paper_charged_total),
                    int(jd_supplies_paper), int(bradford_waives_paper_margin),
                    now, now,
                ),
            )
        logger.info("Job created: %s (%s) customer=%s", job_no, job_id, customer_id)
        return self.require(job_id)

    def get(self, job_id: str) -> Optional[Job]:
        with self.db._conn() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE id = ?", (job_id,)).fetchone()
        return Job(**dict(row)) if row else None

    def require(self, job_id: str) -> Job:
        job = self.get(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    def get_by_job_no(self, job_no: str) -> Optional[Job]:
        with self.db._conn() as conn:
            row = conn.execute("SELECT * FROM jobs WHERE job_no = ?", (job_no,)).fetchone()
        return Job(**dict(row)) if row else None

    def count(self) -> int:
        with self.db._conn() as conn:
            return conn.execute("SELECT COUNT(*) FROM jobs").fetchone()[0]

    def list_page(
        self,
        limit: int,
        after: Optional[tuple[str, str]] = None,
    ) -> list[Job]:
        """
        Keyset page of jobs, newest first.

        ``after`` is the (created_at, id) of the last job of the previous page.
        """
        with self.db._conn() as conn:
            if after is None:
                rows = conn.execute(
                    "SELECT * FROM jobs ORDER BY created_at DESC, id DESC LIMIT ?",
                    (limit,),
                ).fetchall()
            else:
                created_at, last_id = after
                rows = conn.execute(
                    """
                    SELECT * FROM jobs
                    WHERE created_at < ? OR (created_at = ? AND id < ?)
                    ORDER BY created_at DESC, id DESC
                    LIMIT ?
                    """,
                    (created_at, created_at, last_id, limit),
                ).fetchall()
        return [Job(**dict(r)) for r in rows]

    def iter_batches(self, batch_size: int) -> Iterator[list[Job]]:
        """Yield every job in pages of ``batch_size`` without loading them all at once."""
        after = None
        while True:
            page = self.list_page(batch_size, after)
            if not page:
                return
            yield page
            if len(page) < batch_size:
                return
            after = (page[-1].created_at, page[-1].id)

    def write_financials(self, job_id: str, values: dict) -> bool:
        """Persist ledger-derived fields.  Called by the job ledger only."""
        unknown = set(values) - _JOB_FINANCIAL_FIELDS
        if unknown:
            raise ValueError(f"Not ledger-derived job fields: {sorted(unknown)}")
        with self.db._conn() as conn:
            return _update(conn, "jobs", job_id, values)

    def write_status(self, job_id: str, status: str, completed_at: Optional[str] = None) -> bool:
        values: dict = {"status": status}
        if completed_at is not None:
            values["completed_at"] = completed_at
        with self.db._conn() as conn:
            return _update(conn, "jobs", job_id, values)

    def next_job_no(self, year: Optional[int] = None) -> str:
        """Next job number in format J-YYYY-NNNNNN."""
        year = year or datetime.now(timezone.utc).year
        prefix = f"{JOB_NUMBER_PREFIX}{year}-"
        with self.db._conn() as conn:
            row = conn.execute(
                "SELECT job_no FROM jobs WHERE job_no LIKE ? ORDER BY job_no DESC LIMIT 1",
                (f"{prefix}%",),
            ).fetchone()
        return _next_sequence(row["job_no"] if row else None, prefix, 6)


# ---------------------------------------------------------------------------
# Purchase orders
# ---------------------------------------------------------------------------

class PurchaseOrderStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    def create(
        self,
        origin_company_id: str,
        target_company_id: Optional[str] = None,
        target_vendor_id: Optional[str] = None,
        job_id: Optional[str] = None,
        original_amount=ZERO,
        vendor_amount=ZERO,
        margin_amount=ZERO,
        po_number: Optional[str] = None,
        reference_po_number: Optional[str] = None,
        external_ref: Optional[str] = None,
        status: str = PO_STATUS_PENDING,
    ) -> PurchaseOrder:
        if bool(target_company_id) == bool(target_vendor_id):
            raise ValidationError(
                "Purchase order must target exactly one of a company or a vendor",
                field="target_company_id",
            )
        now = utcnow()
        po_id = _new_id()
        with self.db._conn() as conn:
            conn.execute(
                """
                INSERT INTO purchase_orders (
                    id, origin_company_id, target_company_id, target_vendor_id, job_id,
                    original_amount, vendor_amount, margin_amount, status,
                    po_number, reference_po_number, external_ref,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    po_id, origin_company_id, target_company_id, target_vendor_id, job_id,
                    to_money(original_amount), to_money(vendor_amount), to_money(margin_amount),
                    status, po_number, reference_po_number, external_ref,
                    now, now,
                ),
            )
        return self.require(po_id)

    def get(self, po_id: str) -> Optional[PurchaseOrder]:
        with self.db._conn() as conn:
            row = conn.execute("SELECT * FROM purchase_orders WHERE id = ?", (po_id,)).fetchone()
        return PurchaseOrder(**dict(row)) if row else None

    def require(self, po_id: str) -> PurchaseOrder:
        po = self.get(po_id)
        if po is None:
            raise NotFoundError("PurchaseOrder", po_id)
        return po

    def find(
        self,
        job_id: Optional[str] = None,
        origin_company_id: Optional[str] = None,
        target_company_id: Optional[str] = None,
        status: Optional[str] = None,
    ) -> list[PurchaseOrder]:
        """Return purchase orders matching every given filter, newest first."""
        clauses: list[str] = []
        params: list = []
        for column, value in (
            ("job_id", job_id),
            ("origin_company_id", origin_company_id),
            ("target_company_id", target_company_id),
            ("status", status),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.db._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM purchase_orders {where} ORDER BY created_at DESC, rowid DESC",
                params,
            ).fetchall()
        return [PurchaseOrder(**dict(r)) for r in rows]

    def find_for_leg(
        self,
        job_id: Optional[str],
        origin_company_id: str,
        target_company_id: str,
    ) -> list[PurchaseOrder]:
        """Active (non-cancelled) purchase orders on one leg, newest first."""
        with self.db._conn() as conn:
            rows = conn.execute(
                """
                SELECT * FROM purchase_orders
                WHERE job_id IS ? AND origin_company_id = ? AND target_company_id = ?
                  AND status != ?
                ORDER BY created_at DESC, rowid DESC
                """,
                (job_id, origin_company_id, target_company_id, PO_STATUS_CANCELLED),
            ).fetchall()
        return [PurchaseOrder(**dict(r)) for r in rows]

    def latest_for_leg(
        self,
        job_id: Optional[str],
        origin_company_id: str,
        target_company_id: str,
    ) -> Optional[PurchaseOrder]:
        matches = self.find_for_leg(job_id, origin_company_id, target_company_id)
        if len(matches) > 1:
            logger.warning(
                "%d purchase orders on leg %s → %s for job %s; using newest %s",
                len(matches), origin_company_id, target_company_id, job_id, matches[0].id,
            )
        return matches[0] if matches else None

    def sum_vendor_amount(
        self,
        job_id: str,
        origin_company_id: str,
        target_company_id: str,
    ) -> Decimal:
        total = sum(
            (po.vendor_amount for po in self.find_for_leg(job_id, origin_company_id, target_company_id)),
            ZERO,
        )
        return to_money(total)

    def find_by_external_ref(self, external_ref: str) -> Optional[PurchaseOrder]:
        with self.db._conn() as conn:
            row = conn.execute(
                "SELECT * FROM purchase_orders WHERE external_ref = ? ORDER BY created_at DESC LIMIT 1",
                (external_ref,),
            ).fetchone()
        return PurchaseOrder(**dict(row)) if row else None

    def last_po_number_with_prefix(self, prefix: str) -> Optional[str]:
        with self.db._conn() as conn:
            row = conn.execute(
                "SELECT po_number FROM purchase_orders WHERE po_number LIKE ? ORDER BY po_number DESC LIMIT 1",
                (f"{prefix}%",),
            ).fetchone()
        return row["po_number"] if row else None

    def write_fields(self, po_id: str, values: dict) -> bool:
        """Raw column write: no sync, no recalculation."""
        unknown = set(values) - _PO_WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Not writable purchase order fields: {sorted(unknown)}")
        if not values:
            return False
        with self.db._conn() as conn:
            return _update(conn, "purchase_orders", po_id, values)

    def write_vendor_amount(self, po_id: str, amount) -> bool:
        """Direct amount write used for mirror propagation."""
        return self.write_fields(po_id, {"vendor_amount": amount})


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------

class InvoiceStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    def create(
        self,
        from_company_id: str,
        to_company_id: str,
        amount,
        job_id: Optional[str] = None,
        due_at: Optional[str] = None,
        issued_at: Optional[str] = None,
        invoice_no: Optional[str] = None,
    ) -> Invoice:
        now = utcnow()
        invoice_id = _new_id()
        with self.db.transaction() as conn:
            if invoice_no is None:
                invoice_no = self.next_invoice_no()
            conn.execute(
                """
                INSERT INTO invoices (
                    id, job_id, from_company_id, to_company_id, invoice_no,
                    amount, due_at, issued_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    invoice_id, job_id, from_company_id, to_company_id, invoice_no,
                    to_money(amount), due_at, issued_at, now, now,
                ),
            )
        return self.require(invoice_id)

    def get(self, invoice_id: str) -> Optional[Invoice]:
        with self.db._conn() as conn:
            row = conn.execute("SELECT * FROM invoices WHERE id = ?", (invoice_id,)).fetchone()
        return Invoice(**dict(row)) if row else None

    def require(self, invoice_id: str) -> Invoice:
        invoice = self.get(invoice_id)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    def find(
        self,
        job_id: Optional[str] = None,
        from_company_id: Optional[str] = None,
        to_company_id: Optional[str] = None,
    ) -> list[Invoice]:
        clauses: list[str] = []
        params: list = []
        for column, value in (
            ("job_id", job_id),
            ("from_company_id", from_company_id),
            ("to_company_id", to_company_id),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self.db._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM invoices {where} ORDER BY created_at DESC, rowid DESC",
                params,
            ).fetchall()
        return [Invoice(**dict(r)) for r in rows]

    def find_for_leg(
        self,
        job_id: Optional[str],
        from_company_id: str,
        to_company_id: str,
    ) -> list[Invoice]:
        with self.db._conn() as conn:
            rows = conn.execute(
                """
                SELECT * FROM invoices
                WHERE job_id IS ? AND from_company_id = ? AND to_company_id = ?
                ORDER BY created_at DESC, rowid DESC
                """,
                (job_id, from_company_id, to_company_id),
            ).fetchall()
        return [Invoice(**dict(r)) for r in rows]

    def latest_for_leg(
        self,
        job_id: Optional[str],
        from_company_id: str,
        to_company_id: str,
    ) -> Optional[Invoice]:
        matches = self.find_for_leg(job_id, from_company_id, to_company_id)
        if len(matches) > 1:
            logger.warning(
                "%d invoices on leg %s → %s for job %s; using newest %s",
                len(matches), from_company_id, to_company_id, job_id, matches[0].id,
            )
        return matches[0] if matches else None

    def write_fields(self, invoice_id: str, values: dict) -> bool:
        """Raw column write: no sync, no recalculation."""
        unknown = set(values) - _INVOICE_WRITABLE_FIELDS
        if unknown:
            raise ValueError(f"Not writable invoice fields: {sorted(unknown)}")
        if not values:
            return False
        with self.db._conn() as conn:
            return _update(conn, "invoices", invoice_id, values)

    def write_amount(self, invoice_id: str, amount) -> bool:
        """Direct amount write used for mirror propagation."""
        return self.write_fields(invoice_id, {"amount": amount})

    def next_invoice_no(self, year: Optional[int] = None) -> str:
        """Next invoice number in format INV-YYYY-NNNNNN."""
        year = year or datetime.now(timezone.utc).year
        prefix = f"{INVOICE_NUMBER_PREFIX}{year}-"
        with self.db._conn() as conn:
            row = conn.execute(
                "SELECT invoice_no FROM invoices WHERE invoice_no LIKE ? ORDER BY invoice_no DESC LIMIT 1",
                (f"{prefix}%",),
            ).fetchone()
        return _next_sequence(row["invoice_no"] if row else None, prefix, 6)


# ---------------------------------------------------------------------------
# Sync log
# ---------------------------------------------------------------------------

class SyncLogStore:
    """Append-only.  There is deliberately no update or delete."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def append(
        self,
        trigger: str,
        field: str,
        new_value,
        old_value=None,
        purchase_order_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
        job_id: Optional[str] = None,
        changed_by: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> SyncLog:
        with self.db._conn() as conn:
            cursor = conn.execute(
                """
                INSERT INTO sync_log (
                    trigger, purchase_order_id, invoice_id, job_id, field,
                    old_value, new_value, changed_by, notes, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    trigger, purchase_order_id, invoice_id, job_id, field,
                    to_money(old_value) if old_value is not None else None,
                    to_money(new_value), changed_by, notes, utcnow(),
                ),
            )
            row = conn.execute(
                "SELECT * FROM sync_log WHERE id = ?", (cursor.lastrowid,)
            ).fetchone()
        return SyncLog(**dict(row))

    def find(
        self,
        job_id: Optional[str] = None,
        purchase_order_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> list[SyncLog]:
        """Return sync entries matching every given filter, newest first."""
        clauses: list[str] = []
        params: list = []
        for column, value in (
            ("job_id", job_id),
            ("purchase_order_id", purchase_order_id),
            ("invoice_id", invoice_id),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.extend([limit, offset])
        with self.db._conn() as conn:
            rows = conn.execute(
                f"SELECT * FROM sync_log {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
                params,
            ).fetchall()
        return [SyncLog(**dict(r)) for r in rows]

    def count(self, job_id: Optional[str] = None) -> int:
        with self.db._conn() as conn:
            if job_id is None:
                return conn.execute("SELECT COUNT(*) FROM sync_log").fetchone()[0]
            return conn.execute(
                "SELECT COUNT(*) FROM sync_log WHERE job_id = ?", (job_id,)
            ).fetchone()[0]
