"""
Job ledger: the single writer of a job's derived financial fields.

    bradford_total = sum of vendor_amount, Impact → Bradford purchase orders
    jd_total       = sum of vendor_amount, Bradford → JD purchase orders

Cancelled purchase orders are excluded from both sums.  The totals are fed to
the margin calculator and the six derived fields are persisted together.
"""
import logging
from typing import Optional

from models.job import Job
from .errors import ValidationError
from .locks import JobLockRegistry
from .margin import calculate_margins
from .stores import JobStore, PurchaseOrderStore

logger = logging.getLogger(__name__)


class JobLedger:
    def __init__(
        self,
        jobs: JobStore,
        purchase_orders: PurchaseOrderStore,
        impact_company_id: str,
        bradford_company_id: str,
        jd_company_id: str,
        locks: Optional[JobLockRegistry] = None,
    ) -> None:
        self.jobs = jobs
        self.purchase_orders = purchase_orders
        self.impact_company_id = impact_company_id
        self.bradford_company_id = bradford_company_id
        self.jd_company_id = jd_company_id
        self.locks = locks or JobLockRegistry()

    def recalculate_job_from_pos(self, job_id: str) -> Job:
        """
        Re-derive the job's totals and margins from its purchase orders.

        Idempotent.  Raises ValidationError without writing anything if the
        resulting Impact or Bradford margin would be negative.
        """
        with self.locks.job_lock(job_id), self.jobs.db.transaction():
            job = self.jobs.require(job_id)

            bradford_total = self.purchase_orders.sum_vendor_amount(
                job_id, self.impact_company_id, self.bradford_company_id
            )
            jd_total = self.purchase_orders.sum_vendor_amount(
                job_id, self.bradford_company_id, self.jd_company_id
            )
            margins = calculate_margins(
                customer_total=job.customer_total,
                jd_total=jd_total,
                paper_cost_total=job.paper_cost_total,
                paper_charged_total=job.paper_charged_total,
                jd_supplies_paper=job.jd_supplies_paper,
                bradford_waives_paper_margin=job.bradford_waives_paper_margin,
                bradford_total=bradford_total,
            )

            if margins.impact_margin < 0:
                raise ValidationError(
                    f"Impact margin for job {job.job_no} would be negative: {margins.impact_margin}",
                    field="impact_margin",
                )
            if margins.bradford_total_margin < 0:
                raise ValidationError(
                    f"Bradford margin for job {job.job_no} would be negative: {margins.bradford_total_margin}",
                    field="bradford_total_margin",
                )

            values = {
                "bradford_total":        bradford_total,
                "jd_total":              jd_total,
                "impact_margin":         margins.impact_margin,
                "bradford_total_margin": margins.bradford_total_margin,
                "bradford_paper_margin": margins.bradford_paper_margin,
                "bradford_print_margin": margins.bradford_print_margin,
            }
            unchanged = all(getattr(job, k) == v for k, v in values.items())
            if unchanged:
                logger.debug("Recalculated %s: totals unchanged", job.job_no)
                return job

            self.jobs.write_financials(job_id, values)
            logger.info(
                "Recalculated %s (%s): bradford_total=%s jd_total=%s impact_margin=%s bradford_margin=%s",
                job.job_no, margins.branch, bradford_total, jd_total,
                margins.impact_margin, margins.bradford_total_margin,
            )
            return self.jobs.require(job_id)
