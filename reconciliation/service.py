"""
Reconciliation service: wires the engine together from a Config.

ReconciliationService owns the Database and hands each component only the
stores it needs.  Every cascade is an explicit call made here or in the
component that owns it:

  create / auto-create PO   → PricingRules, then JobLedger.recalculate
  update PO / invoice       → SyncEngine (mirror write + SyncLog + recalculate)
  complete job              → InvoiceChainGenerator (invoices, status, delivery)
  audit / repair            → AuditEngine / AutoFixEngine

The CLI (main.py) and the HTTP dashboard both go through this class.
"""
import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from config import Config, config_dir
from models.invoice import Invoice, InvoicePatch
from models.job import (
    Job,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_SEQUENCE,
    ALL_STATUSES,
)
from models.purchase_order import PurchaseOrder, PurchaseOrderPatch
from models.result import (
    AmountDiscrepancy,
    BatchFixResult,
    ChainResult,
    FixResult,
    IssuePage,
    IssueReport,
    JobAudit,
)
from models.sync_log import SyncLog
from .audit import AuditEngine
from .autofix import AutoFixEngine
from .database import Database, utcnow
from .documents import TemplateDocumentRenderer
from .errors import InvalidStateError, ValidationError
from .invoice_chain import InvoiceChainGenerator
from .ledger import JobLedger
from .locks import JobLockRegistry
from .notifications import InvoiceNoticeTemplates, WebhookNotifier
from .pricing import PricingRules
from .stores import InvoiceStore, JobStore, PurchaseOrderStore, SyncLogStore
from .sync import SyncEngine

logger = logging.getLogger(__name__)


class ReconciliationService:
    """
    Facade over the reconciliation engine.

    Pass ``renderer`` / ``notifier`` to replace the default collaborators
    (e.g. with fakes in tests).
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        db: Optional[Database] = None,
        renderer=None,
        notifier=None,
    ) -> None:
        self.config = config or Config()
        if db is None:
            self.config.ensure_output_dir()
            db = Database(self.config.db_path)
        self.db = db

        cfg = self.config
        self.jobs = JobStore(db)
        self.purchase_orders = PurchaseOrderStore(db)
        self.invoices = InvoiceStore(db)
        self.sync_log = SyncLogStore(db)
        self.locks = JobLockRegistry()

        self.company_names = {
            cfg.impact_company_id:   "Impact Direct",
            cfg.bradford_company_id: "Bradford",
            cfg.jd_company_id:       "JD Graphic",
        }
        companies = dict(
            impact_company_id=cfg.impact_company_id,
            bradford_company_id=cfg.bradford_company_id,
            jd_company_id=cfg.jd_company_id,
        )

        self.ledger = JobLedger(self.jobs, self.purchase_orders, locks=self.locks, **companies)
        self.pricing = PricingRules(self.jobs, self.purchase_orders, cfg.auto_po_vendor_rate)
        self.sync = SyncEngine(self.purchase_orders, self.invoices, self.sync_log, self.ledger, self.locks)
        self.audit = AuditEngine(
            self.jobs, self.purchase_orders, self.invoices,
            tolerance=cfg.amount_tolerance,
            batch_size=cfg.audit_batch_size,
            **companies,
        )
        self.renderer = renderer or TemplateDocumentRenderer(
            self.invoices, self.jobs, cfg.documents_dir,
            company_names=self.company_names,
            template_dir=config_dir(),
        )
        self.notifier = notifier or WebhookNotifier(
            cfg.notify_webhook_url, cfg.notify_webhook_headers_json
        )
        self.chain = InvoiceChainGenerator(
            self.jobs, self.purchase_orders, self.invoices,
            renderer=self.renderer,
            notifier=self.notifier,
            notice_templates=InvoiceNoticeTemplates(config_dir()),
            recipients=cfg.notification_recipients,
            company_names=self.company_names,
            invoice_due_days=cfg.invoice_due_days,
            jd_invoice_due_days=cfg.jd_invoice_due_days,
            locks=self.locks,
            **companies,
        )
        self.autofix = AutoFixEngine(self.audit, self.pricing, self.ledger, self.chain)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> "ReconciliationService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(self, customer_id: str, customer_total, **kwargs) -> Job:
        return self.jobs.create(customer_id=customer_id, customer_total=customer_total, **kwargs)

    def get_job(self, job_id: str) -> Job:
        return self.jobs.require(job_id)

    def set_job_status(self, job_id: str, status: str) -> Job:
        """
        Move a job along PENDING → … → COMPLETED.

        Moves are forward-only.  CANCELLED is reachable from any status except
        COMPLETED; nothing leaves COMPLETED or CANCELLED.
        """
        if status not in ALL_STATUSES:
            raise ValidationError(f"Unknown job status: {status}", field="status")

        with self.locks.job_lock(job_id):
            job = self.jobs.require(job_id)
            if job.status == status:
                return job
            if job.status in (STATUS_COMPLETED, STATUS_CANCELLED):
                raise InvalidStateError(
                    f"Job {job.job_no} is {job.status}; its status can no longer change",
                    status=job.status,
                )
            if status != STATUS_CANCELLED and (
                STATUS_SEQUENCE.index(status) < STATUS_SEQUENCE.index(job.status)
            ):
                raise InvalidStateError(
                    f"Job {job.job_no} cannot move back from {job.status} to {status}",
                    status=job.status,
                )

            completed_at = utcnow() if status == STATUS_COMPLETED else None
            self.jobs.write_status(job_id, status, completed_at=completed_at)
            logger.info("Job %s status: %s → %s", job.job_no, job.status, status)
            return self.jobs.require(job_id)

    def recalculate_job_from_pos(self, job_id: str) -> Job:
        return self.ledger.recalculate_job_from_pos(job_id)

    # ------------------------------------------------------------------
    # Purchase orders
    # ------------------------------------------------------------------

    def create_purchase_order(self, **kwargs) -> PurchaseOrder:
        """Create a PO (routing validated) and recalculate its job."""
        job_id = kwargs.get("job_id")
        with self.locks.job_lock(job_id), self.db.transaction():
            po = self.pricing.create_purchase_order(**kwargs)
            if po.job_id:
                self.ledger.recalculate_job_from_pos(po.job_id)
        return po

    def create_auto_purchase_order(
        self,
        job_id: str,
        origin_company_id: str,
        target_company_id: str,
        original_amount,
        vendor_amount=None,
        customer_po_number: Optional[str] = None,
    ) -> PurchaseOrder:
        with self.locks.job_lock(job_id), self.db.transaction():
            po = self.pricing.create_auto_purchase_order(
                job_id, origin_company_id, target_company_id,
                original_amount, vendor_amount, customer_po_number,
            )
            self.ledger.recalculate_job_from_pos(job_id)
        return po

    def update_purchase_order(
        self, po_id: str, patch: PurchaseOrderPatch, changed_by: Optional[str] = None
    ) -> PurchaseOrder:
        return self.sync.update_purchase_order(po_id, patch, changed_by)

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    def create_invoice(
        self,
        from_company_id: str,
        to_company_id: str,
        amount,
        job_id: Optional[str] = None,
        due_at: Optional[str] = None,
        issued_at: Optional[str] = None,
    ) -> Invoice:
        """Create a single invoice; due date defaults to the standard terms."""
        if job_id is not None:
            self.jobs.require(job_id)
        if due_at is None:
            due_at = (datetime.now(timezone.utc) + timedelta(days=self.config.invoice_due_days)).isoformat()
        invoice = self.invoices.create(
            from_company_id=from_company_id,
            to_company_id=to_company_id,
            amount=amount,
            job_id=job_id,
            due_at=due_at,
            issued_at=issued_at,
        )
        logger.info(
            "Invoice created: %s %s → %s for %s",
            invoice.invoice_no, from_company_id, to_company_id, invoice.amount,
        )
        return invoice

    def update_invoice(
        self, invoice_id: str, patch: InvoicePatch, changed_by: Optional[str] = None
    ) -> Invoice:
        return self.sync.update_invoice(invoice_id, patch, changed_by)

    def mark_invoice_paid(self, invoice_id: str, changed_by: Optional[str] = None) -> Invoice:
        invoice = self.invoices.require(invoice_id)
        if invoice.paid_at is not None:
            raise InvalidStateError(f"Invoice {invoice.invoice_no} was already paid at {invoice.paid_at}")
        return self.sync.update_invoice(invoice_id, InvoicePatch(paid_at=utcnow()), changed_by)

    def complete_job_and_generate_invoices(self, job_id: str) -> ChainResult:
        return self.chain.complete_job_and_generate_invoices(job_id)

    # ------------------------------------------------------------------
    # Audit and repair
    # ------------------------------------------------------------------

    def audit_job(self, job_id: str) -> JobAudit:
        return self.audit.audit_job(job_id)

    def find_jobs_with_issues(self, cancel_event: Optional[threading.Event] = None) -> IssueReport:
        return self.audit.find_jobs_with_issues(cancel_event)

    def list_jobs_with_issues(self, page: int = 1, limit: int = 50) -> IssuePage:
        return self.audit.list_jobs_with_issues(page, limit)

    def validate_amounts(self, job_id: str) -> list[AmountDiscrepancy]:
        return self.audit.validate_amounts(job_id)

    def auto_fix_missing_pos(self, job_id: str) -> FixResult:
        return self.autofix.auto_fix_missing_pos(job_id)

    def auto_fix_missing_invoices(self, job_id: str) -> FixResult:
        return self.autofix.auto_fix_missing_invoices(job_id)

    def batch_fix(self, job_ids: Iterable[str], fix_type: str) -> BatchFixResult:
        return self.autofix.batch_fix(job_ids, fix_type)

    # ------------------------------------------------------------------
    # Sync log and stats
    # ------------------------------------------------------------------

    def list_sync_log(
        self,
        job_id: Optional[str] = None,
        purchase_order_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
        limit: int = 200,
        offset: int = 0,
    ) -> list[SyncLog]:
        return self.sync_log.find(job_id, purchase_order_id, invoice_id, limit, offset)

    def get_stats(self) -> dict:
        return self.db.get_stats()
