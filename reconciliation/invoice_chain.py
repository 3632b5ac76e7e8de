"""
Invoice chain generation at job completion.

Completing a job bills every leg of the chain upstream:

  1. JD → Bradford       amount = Bradford → JD PO vendor_amount   (Net 10)
  2. Bradford → Impact   amount = Impact → Bradford PO vendor_amount (Net 30)
  3. Impact → Customer   amount = job customer_total               (Net 30)
  4. job status → COMPLETED

Every precondition is checked before the first write.  The four writes are
NOT one transaction: a failure part-way leaves partial invoices on a job that
is not COMPLETED, which the audit reports as a partial chain.  The job lock
keeps two generations for the same job from interleaving.

Rendering and notification for each invoice run afterwards, leg by leg.  A
failure there is logged and recorded on that leg's LegDelivery and never
aborts the other legs or the chain.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from models.job import Job, STATUS_CANCELLED, STATUS_COMPLETED
from models.result import ChainResult, LegDelivery
from .database import utcnow
from .errors import InvalidStateError, PreconditionError
from .locks import JobLockRegistry
from .notifications import STATUS_FAILED, STATUS_SKIPPED, InvoiceNoticeTemplates
from .stores import InvoiceStore, JobStore, PurchaseOrderStore

logger = logging.getLogger(__name__)


class InvoiceChainGenerator:
    def __init__(
        self,
        jobs: JobStore,
        purchase_orders: PurchaseOrderStore,
        invoices: InvoiceStore,
        impact_company_id: str,
        bradford_company_id: str,
        jd_company_id: str,
        renderer=None,
        notifier=None,
        notice_templates: Optional[InvoiceNoticeTemplates] = None,
        recipients: Optional[dict[str, str]] = None,
        company_names: Optional[dict[str, str]] = None,
        invoice_due_days: int = 30,
        jd_invoice_due_days: int = 10,
        locks: Optional[JobLockRegistry] = None,
    ) -> None:
        self.jobs = jobs
        self.purchase_orders = purchase_orders
        self.invoices = invoices
        self.impact_company_id = impact_company_id
        self.bradford_company_id = bradford_company_id
        self.jd_company_id = jd_company_id
        self.renderer = renderer
        self.notifier = notifier
        self.notice_templates = notice_templates or InvoiceNoticeTemplates()
        self.recipients = recipients or {}
        self.company_names = company_names or {}
        self.invoice_due_days = invoice_due_days
        self.jd_invoice_due_days = jd_invoice_due_days
        self.locks = locks or JobLockRegistry()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def complete_job_and_generate_invoices(self, job_id: str) -> ChainResult:
        """Create the three-invoice chain and mark the job COMPLETED."""
        with self.locks.job_lock(job_id):
            job = self.jobs.require(job_id)
            if job.status == STATUS_COMPLETED:
                raise PreconditionError("Job is already completed")
            if job.status == STATUS_CANCELLED:
                raise InvalidStateError("Cannot complete a cancelled job", status=job.status)
            return self._generate(job, complete=True)

    def generate_missing_chain(self, job_id: str) -> ChainResult:
        """
        Create the three invoices for a job that is already COMPLETED.

        Same preconditions as completion except the status check, so it still
        refuses to run when any invoice of the chain exists.
        """
        with self.locks.job_lock(job_id):
            job = self.jobs.require(job_id)
            if job.status != STATUS_COMPLETED:
                raise InvalidStateError(
                    f"Job {job.job_no} is not COMPLETED (status: {job.status})", status=job.status
                )
            return self._generate(job, complete=False)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _generate(self, job: Job, complete: bool) -> ChainResult:
        logger.info("[Invoice Chain] Starting invoice generation for job %s", job.job_no)

        jd_po = self.purchase_orders.latest_for_leg(job.id, self.bradford_company_id, self.jd_company_id)
        if jd_po is None:
            raise PreconditionError("Bradford→JD purchase order not found for this job")
        impact_po = self.purchase_orders.latest_for_leg(job.id, self.impact_company_id, self.bradford_company_id)
        if impact_po is None:
            raise PreconditionError("Impact→Bradford purchase order not found for this job")

        legs = [
            ("JD → Bradford", self.jd_company_id, self.bradford_company_id,
             jd_po.vendor_amount, self.jd_invoice_due_days),
            ("Bradford → Impact", self.bradford_company_id, self.impact_company_id,
             impact_po.vendor_amount, self.invoice_due_days),
            ("Impact → Customer", self.impact_company_id, job.customer_id,
             job.customer_total, self.invoice_due_days),
        ]
        if any(self.invoices.find_for_leg(job.id, from_id, to_id) for _, from_id, to_id, _, _ in legs):
            raise PreconditionError("Invoices already exist for this job")

        now = datetime.now(timezone.utc)
        result = ChainResult(job_id=job.id, job_no=job.job_no)
        for label, from_id, to_id, amount, due_days in legs:
            invoice = self.invoices.create(
                job_id=job.id,
                from_company_id=from_id,
                to_company_id=to_id,
                amount=amount,
                issued_at=now.isoformat(),
                due_at=(now + timedelta(days=due_days)).isoformat(),
            )
            result.invoices.append(invoice)
            logger.info(
                "[Invoice Chain] Created %s invoice: %s for %s", label, invoice.invoice_no, invoice.amount
            )

        if complete:
            self.jobs.write_status(job.id, STATUS_COMPLETED, completed_at=utcnow())
            logger.info("[Invoice Chain] Job %s status → COMPLETED", job.job_no)

        for (label, _, _, _, _), invoice in zip(legs, result.invoices):
            result.deliveries.append(self._deliver(label, invoice, job))

        return result

    def _deliver(self, label: str, invoice, job: Job) -> LegDelivery:
        """Render and notify one invoice.  Failures stay on this leg."""
        delivery = LegDelivery(label=label, invoice_id=invoice.id)

        if self.renderer is not None:
            try:
                delivery.file_id = self.renderer.render_document(invoice.id)
                delivery.rendered = True
            except Exception as exc:
                logger.warning("[Invoice Chain] Rendering %s invoice %s failed: %s",
                               label, invoice.invoice_no, exc)
                delivery.errors.append(f"render: {exc}")

        if self.notifier is None:
            return delivery

        recipient = self.recipients.get(invoice.to_company_id)
        if not recipient:
            logger.warning("[Invoice Chain] No notification recipient for %s; %s invoice not sent",
                           invoice.to_company_id, label)
            delivery.errors.append(f"notify: no recipient for {invoice.to_company_id}")
            return delivery

        try:
            attachments = [delivery.file_id] if delivery.file_id else []
            subject, body = self.notice_templates.render(
                invoice,
                job,
                from_name=self.company_names.get(invoice.from_company_id, invoice.from_company_id),
                to_name=self.company_names.get(invoice.to_company_id, invoice.to_company_id),
                attachments=attachments,
            )
            outcome = self.notifier.send_notification(recipient, subject, body, attachments)
        except Exception as exc:
            logger.warning("[Invoice Chain] Notifying %s about %s failed: %s", recipient, invoice.invoice_no, exc)
            delivery.errors.append(f"notify: {exc}")
            return delivery

        status = (outcome or {}).get("status")
        if status == STATUS_FAILED:
            logger.warning("[Invoice Chain] Notification for %s invoice %s failed: %s",
                           label, invoice.invoice_no, outcome.get("error"))
            delivery.errors.append(f"notify: {outcome.get('error')}")
        else:
            delivery.notified = status != STATUS_SKIPPED
            logger.info("[Invoice Chain] Notification for %s invoice %s: %s", label, invoice.invoice_no, status)
        return delivery
