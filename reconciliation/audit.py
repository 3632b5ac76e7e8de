"""
Job reconciliation audit.

Checks, per job, the five canonical legs against the job's derived totals:

  Impact → Bradford PO        always expected           vs bradford_total
  Bradford → JD PO            expected once in production vs jd_total
  JD → Bradford invoice       expected when COMPLETED   vs jd_total
  Bradford → Impact invoice   expected when COMPLETED   vs bradford_total
  Impact → Customer invoice   expected when COMPLETED   vs customer_total

A document that is not yet expected is reported as a valid missing leg, not as
an issue.  An amount off by more than the tolerance is always an issue, even
on a leg that is not yet expected.  Audits never raise for missing documents;
only an unknown job id raises NotFoundError.
"""
import logging
import math
import threading
from decimal import Decimal
from typing import Optional

from models.invoice import Invoice
from models.job import Job, PRODUCTION_STATUSES, STATUS_COMPLETED
from models.money import AMOUNT_TOLERANCE, amounts_match, to_money
from models.purchase_order import PurchaseOrder
from models.result import (
    AmountDiscrepancy,
    IssuePage,
    IssueReport,
    IssueSummary,
    JobAudit,
    MatchedLeg,
    MismatchedLeg,
    MissingLeg,
    Pagination,
)
from .stores import InvoiceStore, JobStore, PurchaseOrderStore

logger = logging.getLogger(__name__)

LABEL_IMPACT_TO_BRADFORD_PO      = "Impact → Bradford PO"
LABEL_BRADFORD_TO_JD_PO          = "Bradford → JD PO"
LABEL_JD_TO_BRADFORD_INVOICE     = "JD → Bradford Invoice"
LABEL_BRADFORD_TO_IMPACT_INVOICE = "Bradford → Impact Invoice"
LABEL_IMPACT_TO_CUSTOMER_INVOICE = "Impact → Customer Invoice"

ERROR_PO_MISSING             = "PO does not exist"
ERROR_PO_MISSING_PRODUCTION  = "PO does not exist (expected for jobs in production)"
ERROR_PO_NOT_YET_CREATED     = "PO not yet created (expected for pending jobs)"
ERROR_INVOICE_MISSING        = "Invoice not created for completed job"
ERROR_INVOICE_NOT_EXPECTED   = "Invoices not expected until job is COMPLETED"

DEFAULT_PAGE_LIMIT = 50


def _money_text(value: Decimal) -> str:
    return f"${to_money(value)}"


class AuditEngine:
    """
    Produces JobAudit reports for one job or the whole job population.

    Usage:
        engine = AuditEngine(jobs, purchase_orders, invoices, ...)
        audit = engine.audit_job(job_id)
    """

    def __init__(
        self,
        jobs: JobStore,
        purchase_orders: PurchaseOrderStore,
        invoices: InvoiceStore,
        impact_company_id: str,
        bradford_company_id: str,
        jd_company_id: str,
        tolerance: Decimal = AMOUNT_TOLERANCE,
        batch_size: int = 200,
    ) -> None:
        self.jobs = jobs
        self.purchase_orders = purchase_orders
        self.invoices = invoices
        self.impact_company_id = impact_company_id
        self.bradford_company_id = bradford_company_id
        self.jd_company_id = jd_company_id
        self.tolerance = tolerance
        self.batch_size = batch_size

    # ------------------------------------------------------------------
    # Single job
    # ------------------------------------------------------------------

    def audit_job(self, job_id: str) -> JobAudit:
        job = self.jobs.require(job_id)
        return self._audit(job)

    def _audit(self, job: Job) -> JobAudit:
        issues: list[str] = []

        impact_po = self.purchase_orders.latest_for_leg(
            job.id, self.impact_company_id, self.bradford_company_id
        )
        impact_po_leg = self._check_po(
            LABEL_IMPACT_TO_BRADFORD_PO, impact_po, job.bradford_total,
            required=True, missing_error=ERROR_PO_MISSING,
        )
        if impact_po is None:
            issues.append("Missing Impact Direct → Bradford PO")
        elif impact_po_leg.kind == "mismatched":
            issues.append("Impact → Bradford PO amount mismatch")

        jd_po = self.purchase_orders.latest_for_leg(
            job.id, self.bradford_company_id, self.jd_company_id
        )
        in_production = job.status in PRODUCTION_STATUSES
        jd_po_leg = self._check_po(
            LABEL_BRADFORD_TO_JD_PO, jd_po, job.jd_total,
            required=in_production,
            missing_error=ERROR_PO_MISSING_PRODUCTION if in_production else ERROR_PO_NOT_YET_CREATED,
        )
        if jd_po is None:
            if in_production:
                issues.append("Missing Bradford → JD Graphic PO")
        elif jd_po_leg.kind == "mismatched":
            issues.append("Bradford → JD PO amount mismatch")

        completed = job.status == STATUS_COMPLETED
        invoice_specs = [
            (LABEL_JD_TO_BRADFORD_INVOICE, self.jd_company_id, self.bradford_company_id,
             job.jd_total, "JD → Bradford"),
            (LABEL_BRADFORD_TO_IMPACT_INVOICE, self.bradford_company_id, self.impact_company_id,
             job.bradford_total, "Bradford → Impact"),
            (LABEL_IMPACT_TO_CUSTOMER_INVOICE, self.impact_company_id, job.customer_id,
             job.customer_total, "Impact → Customer"),
        ]
        invoice_legs = []
        present = 0
        for label, from_id, to_id, expected, short in invoice_specs:
            invoice = self.invoices.latest_for_leg(job.id, from_id, to_id)
            leg = self._check_invoice(label, invoice, expected, required=completed)
            invoice_legs.append(leg)
            if invoice is None:
                if completed:
                    issues.append(f"Missing {short} invoice (job is COMPLETED)")
            else:
                present += 1
                if leg.kind == "mismatched":
                    issues.append(f"{short} invoice amount mismatch")

        if not completed and 0 < present < len(invoice_specs):
            issues.append(f"Partial invoice chain (job is {job.status})")

        audit = JobAudit(
            job_id=job.id,
            job_no=job.job_no,
            customer_id=job.customer_id,
            status=job.status,
            customer_total=job.customer_total,
            bradford_total=job.bradford_total,
            jd_total=job.jd_total,
            impact_margin=job.impact_margin,
            bradford_total_margin=job.bradford_total_margin,
            bradford_print_margin=job.bradford_print_margin,
            impact_to_bradford_po=impact_po_leg,
            bradford_to_jd_po=jd_po_leg,
            jd_to_bradford_invoice=invoice_legs[0],
            bradford_to_impact_invoice=invoice_legs[1],
            impact_to_customer_invoice=invoice_legs[2],
            issues=issues,
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
        )
        audit.compute_summary()
        logger.debug("Audited %s: %d issue(s)", job.job_no, audit.issue_count)
        return audit

    # ------------------------------------------------------------------
    # Leg checks
    # ------------------------------------------------------------------

    def _compare(self, label: str, document_id: str, document_no: Optional[str],
                 actual: Decimal, expected: Decimal):
        if not amounts_match(actual, expected, self.tolerance):
            return MismatchedLeg(
                label=label,
                expected_amount=expected,
                document_id=document_id,
                document_no=document_no,
                actual_amount=actual,
                difference=abs(actual - expected),
                error=f"Amount mismatch: {_money_text(actual)} vs expected {_money_text(expected)}",
            )
        return MatchedLeg(
            label=label,
            expected_amount=expected,
            document_id=document_id,
            document_no=document_no,
            actual_amount=actual,
        )

    def _check_po(self, label: str, po: Optional[PurchaseOrder], expected: Decimal,
                  required: bool, missing_error: str):
        if po is None:
            return MissingLeg(
                label=label,
                expected_amount=expected,
                required=required,
                is_valid=not required,
                error=missing_error,
            )
        return self._compare(label, po.id, po.po_number, po.vendor_amount, expected)

    def _check_invoice(self, label: str, invoice: Optional[Invoice], expected: Decimal,
                       required: bool):
        if invoice is None:
            return MissingLeg(
                label=label,
                expected_amount=expected,
                required=required,
                is_valid=not required,
                error=ERROR_INVOICE_MISSING if required else ERROR_INVOICE_NOT_EXPECTED,
            )
        return self._compare(label, invoice.id, invoice.invoice_no, invoice.amount, expected)

    # ------------------------------------------------------------------
    # Population scan
    # ------------------------------------------------------------------

    def find_jobs_with_issues(
        self,
        cancel_event: Optional[threading.Event] = None,
    ) -> IssueReport:
        """
        Audit every job, newest first, in keyset pages of ``batch_size``.

        Each audit is independent.  Setting *cancel_event* stops the scan
        after the current page; the partial report is flagged ``cancelled``.
        """
        report = IssueReport()
        for batch in self.jobs.iter_batches(self.batch_size):
            for job in batch:
                report.total += 1
                audit = self._audit(job)
                if audit.has_issues:
                    report.jobs.append(audit)
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                logger.info("Issue scan cancelled after %d job(s)", report.total)
                break

        report.with_issues = len(report.jobs)
        report.summary = self._summarise(report.jobs)
        logger.info(
            "Issue scan: %d job(s) audited, %d with issues", report.total, report.with_issues
        )
        return report

    @staticmethod
    def _summarise(audits: list[JobAudit]) -> IssueSummary:
        summary = IssueSummary()
        for audit in audits:
            if audit.impact_to_bradford_po.kind == "missing":
                summary.missing_impact_to_bradford_pos += 1
            jd_po = audit.bradford_to_jd_po
            if jd_po.kind == "missing" and jd_po.required:
                summary.missing_bradford_to_jd_pos += 1
            if audit.status == STATUS_COMPLETED and any(
                leg.kind == "missing" for leg in audit.invoice_legs
            ):
                summary.missing_invoices += 1
            if any(leg.kind == "mismatched" for leg in audit.legs):
                summary.amount_mismatches += 1
        return summary

    def list_jobs_with_issues(self, page: int = 1, limit: int = DEFAULT_PAGE_LIMIT) -> IssuePage:
        """One page of the issue report, with pagination metadata."""
        page = max(page, 1)
        limit = max(limit, 1)
        report = self.find_jobs_with_issues()
        start = (page - 1) * limit
        return IssuePage(
            jobs=report.jobs[start:start + limit],
            pagination=Pagination(
                current_page=page,
                total_pages=math.ceil(report.with_issues / limit),
                total_items=report.with_issues,
                items_per_page=limit,
            ),
            summary=report.summary,
        )

    # ------------------------------------------------------------------
    # Strict amount validation
    # ------------------------------------------------------------------

    def validate_amounts(self, job_id: str) -> list[AmountDiscrepancy]:
        """Only the legs whose document amount is off by more than the tolerance."""
        audit = self.audit_job(job_id)
        field_names = {
            LABEL_IMPACT_TO_BRADFORD_PO:      "Impact → Bradford PO (vendorAmount)",
            LABEL_BRADFORD_TO_JD_PO:          "Bradford → JD PO (vendorAmount)",
            LABEL_JD_TO_BRADFORD_INVOICE:     LABEL_JD_TO_BRADFORD_INVOICE,
            LABEL_BRADFORD_TO_IMPACT_INVOICE: LABEL_BRADFORD_TO_IMPACT_INVOICE,
            LABEL_IMPACT_TO_CUSTOMER_INVOICE: LABEL_IMPACT_TO_CUSTOMER_INVOICE,
        }
        return [
            AmountDiscrepancy(
                field=field_names[leg.label],
                expected=leg.expected_amount,
                actual=leg.actual_amount,
                difference=leg.difference,
            )
            for leg in audit.legs
            if leg.kind == "mismatched"
        ]
