"""
Repair operations for jobs the audit flags.

Both fixes re-audit first and do nothing when nothing is missing, so running
them twice is safe.

  auto_fix_missing_pos       creates the Impact → Bradford PO only.  The
                             Bradford → JD PO needs an externally issued PO
                             number and is always entered by hand.
  auto_fix_missing_invoices  COMPLETED jobs only; hands off to the chain
                             generator, which refuses to run when any invoice
                             of the chain exists.  A job with some but not
                             all invoices therefore cannot be repaired here.
"""
import logging
from typing import Iterable

from models.job import STATUS_COMPLETED
from models.result import BatchFixResult, FixResult, JobFixOutcome
from .audit import AuditEngine
from .errors import InvalidStateError, PreconditionError, ValidationError
from .invoice_chain import InvoiceChainGenerator
from .ledger import JobLedger
from .pricing import PricingRules

logger = logging.getLogger(__name__)

FIX_POS      = "pos"
FIX_INVOICES = "invoices"
FIX_BOTH     = "both"
FIX_TYPES    = (FIX_POS, FIX_INVOICES, FIX_BOTH)

CREATED_IMPACT_TO_BRADFORD_PO = "Impact Direct → Bradford PO"


class AutoFixEngine:
    def __init__(
        self,
        audit: AuditEngine,
        pricing: PricingRules,
        ledger: JobLedger,
        chain: InvoiceChainGenerator,
    ) -> None:
        self.audit = audit
        self.pricing = pricing
        self.ledger = ledger
        self.chain = chain
        self.locks = ledger.locks

    def auto_fix_missing_pos(self, job_id: str) -> FixResult:
        """Create the Impact → Bradford PO when it is missing."""
        result = FixResult(job_id=job_id)
        with self.locks.job_lock(job_id), self.ledger.jobs.db.transaction():
            audit = self.audit.audit_job(job_id)
            if audit.impact_to_bradford_po.exists:
                logger.debug("Job %s: Impact → Bradford PO present, nothing to fix", audit.job_no)
                return result

            job = self.ledger.jobs.require(job_id)
            # With no PO on the leg the derived bradford_total is zero, which
            # is no basis for a vendor amount; fall back to the pricing split.
            vendor_amount = job.bradford_total if job.bradford_total > 0 else None
            self.pricing.create_auto_purchase_order(
                job_id=job.id,
                origin_company_id=self.ledger.impact_company_id,
                target_company_id=self.ledger.bradford_company_id,
                original_amount=job.customer_total,
                vendor_amount=vendor_amount,
                customer_po_number=job.customer_po_number,
            )
            self.ledger.recalculate_job_from_pos(job.id)
            result.created.append(CREATED_IMPACT_TO_BRADFORD_PO)

        logger.info("Job %s: auto-fix created %s", audit.job_no, ", ".join(result.created))
        return result

    def auto_fix_missing_invoices(self, job_id: str) -> FixResult:
        """Generate the invoice chain for a COMPLETED job that is missing invoices."""
        result = FixResult(job_id=job_id)
        audit = self.audit.audit_job(job_id)
        if audit.status != STATUS_COMPLETED:
            raise InvalidStateError(
                f"Job {audit.job_no} is not COMPLETED (status: {audit.status})",
                status=audit.status,
            )

        missing = [
            short
            for short, leg in (
                ("JD → Bradford", audit.jd_to_bradford_invoice),
                ("Bradford → Impact", audit.bradford_to_impact_invoice),
                ("Impact → Customer", audit.impact_to_customer_invoice),
            )
            if not leg.exists
        ]
        if not missing:
            logger.debug("Job %s: all invoices present, nothing to fix", audit.job_no)
            return result

        self.chain.generate_missing_chain(job_id)
        result.created.extend(missing)
        logger.info("Job %s: auto-fix created invoices %s", audit.job_no, ", ".join(missing))
        return result

    def batch_fix(self, job_ids: Iterable[str], fix_type: str) -> BatchFixResult:
        """
        Apply fixes to each job independently.

        An invoice fix refused because of the job's state is a warning on that
        job, not a failure.  Any other error fails that job only.
        """
        if fix_type not in FIX_TYPES:
            raise ValidationError(
                f'fix_type must be "pos", "invoices", or "both" (got {fix_type!r})',
                field="fix_type",
            )
        job_ids = list(job_ids)
        if not job_ids:
            raise ValidationError("job_ids must not be empty", field="job_ids")

        results = BatchFixResult(total=len(job_ids))
        for job_id in job_ids:
            outcome = JobFixOutcome(job_id=job_id)
            try:
                if fix_type in (FIX_POS, FIX_BOTH):
                    fixed = self.auto_fix_missing_pos(job_id)
                    outcome.actions.extend(f"Created {label}" for label in fixed.created)

                if fix_type in (FIX_INVOICES, FIX_BOTH):
                    try:
                        fixed = self.auto_fix_missing_invoices(job_id)
                        outcome.actions.extend(f"Created {label} invoice" for label in fixed.created)
                    except (InvalidStateError, PreconditionError) as exc:
                        outcome.warnings.append(exc.message)

                results.successful += 1
            except Exception as exc:
                logger.error("Batch fix failed for job %s: %s", job_id, exc)
                outcome = JobFixOutcome(job_id=job_id, success=False, error=str(exc))
                results.failed += 1
            results.details.append(outcome)

        logger.info(
            "Batch fix (%s): %d job(s), %d ok, %d failed",
            fix_type, results.total, results.successful, results.failed,
        )
        return results
