"""
Unit tests for invoice chain generation at job completion.
"""
import threading
from datetime import datetime
from decimal import Decimal

import pytest

from conftest import BRADFORD, CUSTOMER, IMPACT, JD, FailingRenderer, RecordingNotifier
from reconciliation.errors import InvalidStateError, NotFoundError, PreconditionError
from reconciliation.service import ReconciliationService


def _days_between(start: str, end: str) -> int:
    return (datetime.fromisoformat(end) - datetime.fromisoformat(start)).days


@pytest.mark.unit
class TestCompleteJob:
    """Tests for complete_job_and_generate_invoices."""

    def test_creates_three_invoices(self, service, make_job):
        """Test each leg is billed with the amount of the PO it mirrors."""
        job = make_job(customer_total="1000", bradford_po="600", jd_po="400")

        result = service.complete_job_and_generate_invoices(job.id)

        amounts = {(i.from_company_id, i.to_company_id): i.amount for i in result.invoices}
        assert amounts == {
            (JD, BRADFORD): Decimal("400.00"),
            (BRADFORD, IMPACT): Decimal("600.00"),
            (IMPACT, CUSTOMER): Decimal("1000.00"),
        }

    def test_job_marked_completed(self, service, make_job):
        """Test the job ends COMPLETED with a completion timestamp."""
        job = make_job(bradford_po="600", jd_po="400")

        service.complete_job_and_generate_invoices(job.id)

        completed = service.get_job(job.id)
        assert completed.status == "COMPLETED"
        assert completed.completed_at is not None

    def test_payment_terms(self, service, make_job):
        """Test JD bills Net 10 and the other legs Net 30."""
        job = make_job(bradford_po="600", jd_po="400")

        invoices = service.complete_job_and_generate_invoices(job.id).invoices

        jd_invoice, bradford_invoice, customer_invoice = invoices
        assert _days_between(jd_invoice.issued_at, jd_invoice.due_at) == 10
        assert _days_between(bradford_invoice.issued_at, bradford_invoice.due_at) == 30
        assert _days_between(customer_invoice.issued_at, customer_invoice.due_at) == 30

    def test_second_call_is_refused(self, service, make_job):
        """Test completing twice raises and creates nothing new."""
        job = make_job(bradford_po="600", jd_po="400")
        service.complete_job_and_generate_invoices(job.id)

        with pytest.raises(PreconditionError):
            service.complete_job_and_generate_invoices(job.id)

        assert len(service.invoices.find(job_id=job.id)) == 3

    def test_missing_jd_po(self, service, make_job):
        """Test a missing Bradford → JD PO aborts before any write."""
        job = make_job(bradford_po="600", status="PROOF_APPROVED")

        with pytest.raises(PreconditionError) as exc_info:
            service.complete_job_and_generate_invoices(job.id)

        assert exc_info.value.message == "Bradford→JD purchase order not found for this job"
        assert service.invoices.find(job_id=job.id) == []
        assert service.get_job(job.id).status == "PROOF_APPROVED"

    def test_missing_impact_po(self, service, make_job):
        """Test a missing Impact → Bradford PO aborts before any write."""
        job = make_job(jd_po="400")

        with pytest.raises(PreconditionError) as exc_info:
            service.complete_job_and_generate_invoices(job.id)

        assert exc_info.value.message == "Impact→Bradford purchase order not found for this job"
        assert service.invoices.find(job_id=job.id) == []

    def test_existing_invoice_blocks_generation(self, service, make_job):
        """Test any invoice on the chain blocks generation."""
        job = make_job(bradford_po="600", jd_po="400")
        service.create_invoice(IMPACT, CUSTOMER, Decimal("1000"), job_id=job.id)

        with pytest.raises(PreconditionError) as exc_info:
            service.complete_job_and_generate_invoices(job.id)

        assert exc_info.value.message == "Invoices already exist for this job"
        assert service.get_job(job.id).status == "PENDING"

    def test_cancelled_job(self, service, make_job):
        """Test a cancelled job cannot be completed."""
        job = make_job(bradford_po="600", jd_po="400", status="CANCELLED")

        with pytest.raises(InvalidStateError):
            service.complete_job_and_generate_invoices(job.id)

    def test_unknown_job(self, service):
        """Test an unknown job raises NotFoundError."""
        with pytest.raises(NotFoundError):
            service.complete_job_and_generate_invoices("missing")


@pytest.mark.unit
class TestDelivery:
    """Tests for per-leg rendering and notification."""

    def test_documents_rendered_and_notified(self, service, notifier, make_job, test_config):
        """Test each invoice gets a document and one notice to its recipient."""
        job = make_job(bradford_po="600", jd_po="400")

        result = service.complete_job_and_generate_invoices(job.id)

        assert all(d.rendered and d.notified and not d.errors for d in result.deliveries)
        assert [m["recipient"] for m in notifier.sent] == [
            "billing@bradford.example",
            "ap@impactdirect.example",
            "purchasing@acme.example",
        ]
        for delivery in result.deliveries:
            assert (test_config.documents_dir / delivery.file_id).exists()
            assert service.invoices.require(delivery.invoice_id).file_id == delivery.file_id

    def test_notice_mentions_invoice_and_job(self, service, notifier, make_job):
        """Test the default subject names the invoice and the job."""
        job = make_job(bradford_po="600", jd_po="400")

        result = service.complete_job_and_generate_invoices(job.id)

        first = result.invoices[0]
        assert notifier.sent[0]["subject"] == f"Invoice {first.invoice_no} for job {job.job_no}"
        assert "$400.00" in notifier.sent[0]["body"]
        assert notifier.sent[0]["attachments"] == [result.deliveries[0].file_id]

    def test_render_failure_is_isolated(self, test_config, test_db):
        """Test a renderer failure on one leg leaves the chain and other legs intact."""
        notifier = RecordingNotifier()
        service = ReconciliationService(test_config, db=test_db,
                                        renderer=FailingRenderer(fail_first=1), notifier=notifier)
        job = service.create_job(customer_id=CUSTOMER, customer_total=Decimal("1000"))
        service.create_purchase_order(origin_company_id=IMPACT, target_company_id=BRADFORD,
                                      job_id=job.id, original_amount=Decimal("1000"),
                                      vendor_amount=Decimal("600"))
        service.create_purchase_order(origin_company_id=BRADFORD, target_company_id=JD,
                                      job_id=job.id, original_amount=Decimal("600"),
                                      vendor_amount=Decimal("400"))

        result = service.complete_job_and_generate_invoices(job.id)

        first, second, third = result.deliveries
        assert first.rendered is False
        assert first.errors == ["render: renderer unavailable"]
        assert first.notified is True
        assert second.rendered and third.rendered
        assert len(result.invoices) == 3
        assert service.get_job(job.id).status == "COMPLETED"

    def test_notifier_failure_is_isolated(self, test_config, test_db):
        """Test a failing notification is recorded on its leg only."""
        notifier = RecordingNotifier(fail_for=("ap@impactdirect.example",))
        service = ReconciliationService(test_config, db=test_db, notifier=notifier)
        job = service.create_job(customer_id=CUSTOMER, customer_total=Decimal("1000"))
        service.create_purchase_order(origin_company_id=IMPACT, target_company_id=BRADFORD,
                                      job_id=job.id, original_amount=Decimal("1000"),
                                      vendor_amount=Decimal("600"))
        service.create_purchase_order(origin_company_id=BRADFORD, target_company_id=JD,
                                      job_id=job.id, original_amount=Decimal("600"),
                                      vendor_amount=Decimal("400"))

        result = service.complete_job_and_generate_invoices(job.id)

        first, second, third = result.deliveries
        assert first.notified and third.notified
        assert second.notified is False
        assert second.errors == ["notify: relay refused ap@impactdirect.example"]
        assert len(notifier.sent) == 2

    def test_missing_recipient(self, service, notifier, make_job):
        """Test a leg with no configured recipient is recorded, not raised."""
        job = make_job(bradford_po="600", jd_po="400", customer_id="cust-unknown")

        result = service.complete_job_and_generate_invoices(job.id)

        assert result.deliveries[2].notified is False
        assert result.deliveries[2].errors == ["notify: no recipient for cust-unknown"]
        assert len(notifier.sent) == 2


@pytest.mark.unit
class TestConcurrentCompletion:
    """Tests for completion racing on one job."""

    def test_parallel_completion_generates_one_chain(self, service, make_job):
        """Test only one of several parallel completions succeeds."""
        job = make_job(bradford_po="600", jd_po="400")
        results, refused, unexpected = [], [], []
        start = threading.Barrier(6)

        def complete():
            start.wait()
            try:
                results.append(service.complete_job_and_generate_invoices(job.id))
            except PreconditionError as exc:
                refused.append(exc)
            except Exception as exc:
                unexpected.append(exc)

        threads = [threading.Thread(target=complete) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert unexpected == []
        assert len(results) == 1
        assert len(refused) == 5
        assert len(service.invoices.find(job_id=job.id)) == 3
        assert service.get_job(job.id).status == "COMPLETED"
