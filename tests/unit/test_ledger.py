"""
Unit tests for the job ledger.
"""
from decimal import Decimal

import pytest

from conftest import BRADFORD, IMPACT, JD
from models.purchase_order import PurchaseOrderPatch
from reconciliation.errors import NotFoundError, ValidationError


@pytest.mark.unit
class TestJobLedger:
    """Tests for JobLedger.recalculate_job_from_pos."""

    def test_totals_follow_purchase_orders(self, make_job):
        """Test bradford_total and jd_total are the vendor amounts of the canonical legs."""
        job = make_job(customer_total="1000", bradford_po="650", jd_po="400",
                       paper_cost_total="80", paper_charged_total="100")

        assert job.bradford_total == Decimal("650.00")
        assert job.jd_total == Decimal("400.00")
        assert job.impact_margin == Decimal("250.00")
        assert job.bradford_total_margin == Decimal("270.00")

    def test_recalculation_is_idempotent(self, service, make_job):
        """Test recalculating twice with no PO change yields identical totals."""
        job = make_job(bradford_po="600", jd_po="400")

        first = service.recalculate_job_from_pos(job.id)
        second = service.recalculate_job_from_pos(job.id)

        fields = ("bradford_total", "jd_total", "impact_margin", "bradford_total_margin",
                  "bradford_paper_margin", "bradford_print_margin")
        assert [getattr(first, f) for f in fields] == [getattr(second, f) for f in fields]

    def test_sums_every_active_po_on_a_leg(self, service, make_job):
        """Test multiple POs on one leg are summed."""
        job = make_job(customer_total="1000", jd_po="300")
        service.create_purchase_order(
            origin_company_id=BRADFORD, target_company_id=JD, job_id=job.id,
            vendor_amount=Decimal("50"), original_amount=Decimal("50"),
        )
        assert service.get_job(job.id).jd_total == Decimal("350.00")

    def test_cancelled_po_is_excluded(self, service, make_job):
        """Test a CANCELLED PO no longer counts toward the leg total."""
        job = make_job(customer_total="1000", bradford_po="600")
        po = service.purchase_orders.latest_for_leg(job.id, IMPACT, BRADFORD)

        service.update_purchase_order(po.id, PurchaseOrderPatch(status="CANCELLED"))

        assert service.get_job(job.id).bradford_total == Decimal("0.00")

    def test_vendor_po_does_not_count(self, service, make_job):
        """Test vendor-routed POs are outside both canonical legs."""
        job = make_job(customer_total="1000", bradford_po="600")
        service.create_purchase_order(
            origin_company_id=IMPACT, target_vendor_id="vendor-042", job_id=job.id,
            original_amount=Decimal("100"), vendor_amount=Decimal("90"),
        )
        assert service.get_job(job.id).bradford_total == Decimal("600.00")

    def test_negative_margin_rejected_and_nothing_persisted(self, service, make_job):
        """Test a PO that would push a margin negative is refused and rolled back."""
        job = make_job(customer_total="1000", bradford_po="600", jd_po="400")

        with pytest.raises(ValidationError) as exc_info:
            service.create_purchase_order(
                origin_company_id=BRADFORD, target_company_id=JD, job_id=job.id,
                original_amount=Decimal("900"), vendor_amount=Decimal("900"),
            )

        assert exc_info.value.field == "impact_margin"
        assert len(service.purchase_orders.find_for_leg(job.id, BRADFORD, JD)) == 1
        assert service.get_job(job.id).jd_total == Decimal("400.00")

    def test_jd_paper_job_needs_impact_po_first(self, service, make_job):
        """Test a JD-supplies-paper job refuses the JD PO while bradford_total is zero."""
        job = make_job(customer_total="1000", jd_supplies_paper=True)

        with pytest.raises(ValidationError) as exc_info:
            service.create_purchase_order(
                origin_company_id=BRADFORD, target_company_id=JD, job_id=job.id,
                original_amount=Decimal("600"), vendor_amount=Decimal("400"),
            )

        assert exc_info.value.field == "bradford_total_margin"
        assert service.purchase_orders.find_for_leg(job.id, BRADFORD, JD) == []

    def test_jd_paper_job_in_order(self, service, make_job):
        """Test the same job accepts both POs once the Impact PO exists."""
        job = make_job(customer_total="1000", bradford_po="600", jd_po="400", jd_supplies_paper=True)

        assert job.impact_margin == Decimal("100.00")
        assert job.bradford_total_margin == Decimal("200.00")

    def test_jd_paper_job_cannot_cancel_impact_po(self, service, make_job):
        """Test cancelling the Impact PO under a live JD PO is refused and rolled back."""
        job = make_job(customer_total="1000", bradford_po="600", jd_po="400", jd_supplies_paper=True)
        po = service.purchase_orders.latest_for_leg(job.id, IMPACT, BRADFORD)

        with pytest.raises(ValidationError):
            service.update_purchase_order(po.id, PurchaseOrderPatch(status="CANCELLED"))

        assert service.purchase_orders.require(po.id).status == po.status
        assert service.get_job(job.id).bradford_total == Decimal("600.00")

    def test_unknown_job(self, service):
        """Test recalculating an unknown job raises NotFoundError."""
        with pytest.raises(NotFoundError):
            service.recalculate_job_from_pos("no-such-job")
