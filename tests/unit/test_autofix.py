"""
Unit tests for audit-driven repairs.
"""
from decimal import Decimal

import pytest

from conftest import BRADFORD, IMPACT, JD
from reconciliation.autofix import CREATED_IMPACT_TO_BRADFORD_PO
from reconciliation.errors import InvalidStateError, NotFoundError, PreconditionError, ValidationError


@pytest.mark.unit
class TestAutoFixMissingPos:
    """Tests for auto_fix_missing_pos."""

    def test_nothing_to_fix(self, service, make_job):
        """Test a job that has its Impact → Bradford PO is left alone."""
        job = make_job(bradford_po="600")

        result = service.auto_fix_missing_pos(job.id)

        assert result.created == []
        assert len(service.purchase_orders.find_for_leg(job.id, IMPACT, BRADFORD)) == 1

    def test_creates_missing_po(self, service, make_job):
        """Test the missing PO is created with the pricing split and an IMP- number."""
        job = make_job(customer_total="1000", customer_po_number="ACME-55")

        result = service.auto_fix_missing_pos(job.id)

        assert result.created == [CREATED_IMPACT_TO_BRADFORD_PO]
        po = service.purchase_orders.latest_for_leg(job.id, IMPACT, BRADFORD)
        assert po.po_number == "IMP-ACME-55"
        assert po.original_amount == Decimal("1000.00")
        assert po.vendor_amount == Decimal("800.00")
        assert po.margin_amount == Decimal("200.00")

    def test_job_recalculated_and_audit_clears(self, service, make_job):
        """Test the job picks up the new PO and the issue goes away."""
        job = make_job(customer_total="1000")

        service.auto_fix_missing_pos(job.id)

        assert service.get_job(job.id).bradford_total == Decimal("800.00")
        assert service.audit_job(job.id).has_issues is False

    def test_second_run_is_a_no_op(self, service, make_job):
        """Test running the fix twice creates one PO."""
        job = make_job()

        service.auto_fix_missing_pos(job.id)
        second = service.auto_fix_missing_pos(job.id)

        assert second.created == []
        assert len(service.purchase_orders.find_for_leg(job.id, IMPACT, BRADFORD)) == 1

    def test_unknown_job(self, service):
        """Test an unknown job raises NotFoundError."""
        with pytest.raises(NotFoundError):
            service.auto_fix_missing_pos("missing")


@pytest.mark.unit
class TestAutoFixMissingInvoices:
    """Tests for auto_fix_missing_invoices."""

    def test_requires_completed_job(self, service, make_job):
        """Test a job that is not COMPLETED is refused."""
        job = make_job(bradford_po="600", jd_po="400", status="IN_PRODUCTION")

        with pytest.raises(InvalidStateError) as exc_info:
            service.auto_fix_missing_invoices(job.id)

        assert "is not COMPLETED (status: IN_PRODUCTION)" in exc_info.value.message

    def test_generates_full_chain(self, service, make_job):
        """Test a COMPLETED job with no invoices gets all three."""
        job = make_job(bradford_po="600", jd_po="400", status="COMPLETED")

        result = service.auto_fix_missing_invoices(job.id)

        assert result.created == ["JD → Bradford", "Bradford → Impact", "Impact → Customer"]
        assert len(service.invoices.find(job_id=job.id)) == 3
        assert service.audit_job(job.id).has_issues is False

    def test_nothing_missing(self, service, make_job):
        """Test a complete chain needs no fix."""
        job = make_job(bradford_po="600", jd_po="400")
        service.complete_job_and_generate_invoices(job.id)

        assert service.auto_fix_missing_invoices(job.id).created == []

    def test_partial_chain_cannot_be_repaired(self, service, make_job):
        """Test an existing invoice blocks regeneration of the chain."""
        job = make_job(bradford_po="600", jd_po="400", status="COMPLETED")
        service.create_invoice(JD, BRADFORD, Decimal("400"), job_id=job.id)

        with pytest.raises(PreconditionError):
            service.auto_fix_missing_invoices(job.id)
        assert len(service.invoices.find(job_id=job.id)) == 1


@pytest.mark.unit
class TestBatchFix:
    """Tests for batch_fix."""

    def test_invalid_fix_type(self, service, make_job):
        """Test an unknown fix type is refused."""
        job = make_job()
        with pytest.raises(ValidationError):
            service.batch_fix([job.id], "everything")

    def test_empty_job_list(self, service):
        """Test an empty batch is refused."""
        with pytest.raises(ValidationError):
            service.batch_fix([], "pos")

    def test_pos_only(self, service, make_job):
        """Test fix_type=pos creates POs and reports the action."""
        missing = make_job()
        present = make_job(bradford_po="600")

        result = service.batch_fix([missing.id, present.id], "pos")

        assert result.total == 2
        assert result.successful == 2
        assert result.failed == 0
        assert result.details[0].actions == ["Created Impact Direct → Bradford PO"]
        assert result.details[1].actions == []

    def test_state_refusal_is_a_warning(self, service, make_job):
        """Test a job that cannot take invoices still counts as successful."""
        job = make_job(bradford_po="600")

        result = service.batch_fix([job.id], "invoices")

        assert result.successful == 1
        assert result.details[0].success is True
        assert len(result.details[0].warnings) == 1
        assert "not COMPLETED" in result.details[0].warnings[0]

    def test_both_on_completed_job(self, service, make_job):
        """Test fix_type=both creates the PO and then the invoice chain."""
        job = make_job(jd_po="400", status="COMPLETED")

        result = service.batch_fix([job.id], "both")

        detail = result.details[0]
        assert detail.success is True
        assert detail.actions == [
            "Created Impact Direct → Bradford PO",
            "Created JD → Bradford invoice",
            "Created Bradford → Impact invoice",
            "Created Impact → Customer invoice",
        ]

    def test_failure_is_isolated(self, service, make_job):
        """Test one failing job does not stop the others."""
        good = make_job()

        result = service.batch_fix(["missing", good.id], "pos")

        assert result.failed == 1
        assert result.successful == 1
        assert result.details[0].success is False
        assert result.details[0].error
        assert result.details[1].actions == ["Created Impact Direct → Bradford PO"]
