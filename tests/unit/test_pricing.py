"""
Unit tests for purchase order creation rules and document numbering.
"""
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from conftest import BRADFORD, IMPACT
from reconciliation.errors import NotFoundError, ValidationError
from reconciliation.pricing import split_amount, validate_vendor_code


@pytest.mark.unit
class TestAutoPurchaseOrder:
    """Tests for create_auto_purchase_order."""

    def test_explicit_vendor_amount(self, service, make_job):
        """Test a supplied vendor amount is used as-is and margin is the remainder."""
        job = make_job(customer_total="1000")
        po = service.create_auto_purchase_order(job.id, IMPACT, BRADFORD, Decimal("1000"), Decimal("640"))

        assert po.original_amount == Decimal("1000.00")
        assert po.vendor_amount == Decimal("640.00")
        assert po.margin_amount == Decimal("360.00")

    def test_fallback_split(self, service, make_job):
        """Test the 80/20 split when no vendor amount is supplied."""
        job = make_job(customer_total="999.99")
        po = service.create_auto_purchase_order(job.id, IMPACT, BRADFORD, Decimal("999.99"))

        assert po.vendor_amount == Decimal("799.99")
        assert po.margin_amount == Decimal("200.00")
        assert po.vendor_amount + po.margin_amount == Decimal("999.99")

    def test_po_number_uses_customer_po(self, service, make_job):
        """Test the PO number references the customer's PO# when the job has one."""
        job = make_job(customer_po_number="ACME-7781")
        po = service.create_auto_purchase_order(job.id, IMPACT, BRADFORD, job.customer_total)

        assert po.po_number == "IMP-ACME-7781"
        assert po.reference_po_number == "ACME-7781"

    def test_po_number_falls_back_to_job_no(self, service, make_job):
        """Test the PO number uses the job number when there is no customer PO#."""
        job = make_job()
        po = service.create_auto_purchase_order(job.id, IMPACT, BRADFORD, job.customer_total)

        assert po.po_number == f"IMP-{job.job_no}"
        assert po.reference_po_number is None

    def test_creation_recalculates_job(self, service, make_job):
        """Test the job's bradford_total reflects the new PO."""
        job = make_job(customer_total="1000")
        service.create_auto_purchase_order(job.id, IMPACT, BRADFORD, Decimal("1000"), Decimal("600"))
        assert service.get_job(job.id).bradford_total == Decimal("600.00")

    def test_unknown_job(self, service):
        """Test auto PO creation for an unknown job raises NotFoundError."""
        with pytest.raises(NotFoundError):
            service.create_auto_purchase_order("missing", IMPACT, BRADFORD, Decimal("10"))


@pytest.mark.unit
class TestPurchaseOrderRouting:
    """Tests for routing validation."""

    def test_both_targets_rejected(self, service):
        """Test a PO targeting a company and a vendor is rejected."""
        with pytest.raises(ValidationError):
            service.create_purchase_order(
                origin_company_id=IMPACT, target_company_id=BRADFORD, target_vendor_id="vendor-1",
            )

    def test_no_target_rejected(self, service):
        """Test a PO with no target is rejected."""
        with pytest.raises(ValidationError):
            service.create_purchase_order(origin_company_id=IMPACT)

    def test_margin_defaults_to_remainder(self, service):
        """Test margin_amount defaults to original minus vendor."""
        po = service.create_purchase_order(
            origin_company_id=IMPACT, target_vendor_id="vendor-1",
            original_amount=Decimal("250"), vendor_amount=Decimal("200"),
        )
        assert po.margin_amount == Decimal("50.00")
        assert po.job_id is None


@pytest.mark.unit
class TestNumbering:
    """Tests for invoice, job and vendor PO numbers."""

    def test_invoice_numbers_are_sequential(self, service):
        """Test invoice numbers increment within the year."""
        year = datetime.now(timezone.utc).year
        first = service.create_invoice(BRADFORD, IMPACT, Decimal("10"))
        second = service.create_invoice(BRADFORD, IMPACT, Decimal("20"))

        assert first.invoice_no == f"INV-{year}-000001"
        assert second.invoice_no == f"INV-{year}-000002"

    def test_job_numbers_are_sequential(self, make_job):
        """Test job numbers use J-YYYY-NNNNNN."""
        year = datetime.now(timezone.utc).year
        assert make_job().job_no == f"J-{year}-000001"
        assert make_job().job_no == f"J-{year}-000002"

    def test_first_vendor_po_number(self, service):
        """Test a vendor's first PO number is XXX-001."""
        assert service.pricing.next_vendor_po_number("042") == "042-001"

    def test_vendor_po_number_increments(self, service):
        """Test the vendor sequence continues from the highest existing number."""
        service.create_purchase_order(origin_company_id=BRADFORD, target_vendor_id="v", po_number="042-009")
        assert service.pricing.next_vendor_po_number("042") == "042-010"

    def test_vendor_po_number_limit(self, service):
        """Test the sequence stops at 999."""
        service.create_purchase_order(origin_company_id=BRADFORD, target_vendor_id="v", po_number="042-999")
        with pytest.raises(ValidationError):
            service.pricing.next_vendor_po_number("042")

    @pytest.mark.parametrize("code", ["42", "0042", "abc", ""])
    def test_invalid_vendor_code(self, service, code):
        """Test vendor codes must be exactly three digits."""
        assert validate_vendor_code(code) is False
        with pytest.raises(ValidationError):
            service.pricing.next_vendor_po_number(code)

    def test_split_amount(self):
        """Test split_amount keeps vendor + margin equal to the original."""
        vendor, margin = split_amount(Decimal("10.01"), Decimal("0.80"))
        assert vendor == Decimal("8.01")
        assert margin == Decimal("2.00")
