"""
Pytest configuration and shared fixtures for the reconciliation test suite.
"""
import json
import os
import shutil
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Generator

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
os.chdir(PROJECT_ROOT)

IMPACT   = "impact-direct"
BRADFORD = "bradford"
JD       = "jd-graphic"
CUSTOMER = "cust-acme"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory for test files."""
    tmp_path = tempfile.mkdtemp(prefix="reconciliation_test_")
    yield Path(tmp_path)
    shutil.rmtree(tmp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path, monkeypatch) -> "Config":
    """Provide a test configuration with isolated directories and no outbound webhook."""
    from config import Config

    config_dir = temp_dir / "config"
    config_dir.mkdir()
    monkeypatch.setenv("CONFIG_DIR", str(config_dir))
    for var in ("DB_PATH", "NOTIFY_WEBHOOK_URL", "NOTIFY_WEBHOOK_HEADERS", "NOTIFICATION_RECIPIENTS",
                "IMPACT_COMPANY_ID", "BRADFORD_COMPANY_ID", "JD_COMPANY_ID", "AUDIT_BATCH_SIZE"):
        monkeypatch.delenv(var, raising=False)

    config = Config()
    config.db_path = temp_dir / "output" / "reconciliation.db"
    config.documents_dir = temp_dir / "output" / "documents"
    config.notify_webhook_url = None
    config.notification_recipients_json = json.dumps({
        IMPACT:   "ap@impactdirect.example",
        BRADFORD: "billing@bradford.example",
        JD:       "accounts@jdgraphic.example",
        CUSTOMER: "purchasing@acme.example",
    })
    config.ensure_output_dir()
    return config


@pytest.fixture
def test_db(test_config) -> Generator["Database", None, None]:
    """Provide a test database instance."""
    from reconciliation.database import Database
    db = Database(test_config.db_path)
    yield db
    db.close()


class RecordingNotifier:
    """Notifier double that records every call."""

    def __init__(self, fail_for: tuple = ()) -> None:
        self.sent: list[dict] = []
        self.fail_for = fail_for

    def send_notification(self, recipient, subject, body, attachments=None):
        if recipient in self.fail_for:
            raise ConnectionError(f"relay refused {recipient}")
        self.sent.append({
            "recipient": recipient, "subject": subject, "body": body, "attachments": attachments,
        })
        return {"status": "success"}


class FailingRenderer:
    """Renderer double that fails for chosen invoices."""

    def __init__(self, fail_first: int = 1) -> None:
        self.calls = 0
        self.fail_first = fail_first

    def render_document(self, document_id):
        self.calls += 1
        if self.calls <= self.fail_first:
            raise RuntimeError("renderer unavailable")
        return f"{document_id}.html"


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(test_config, test_db, notifier) -> "ReconciliationService":
    """A ReconciliationService on the temp database with a recording notifier."""
    from reconciliation.service import ReconciliationService
    return ReconciliationService(test_config, db=test_db, notifier=notifier)


@pytest.fixture
def make_job(service):
    """
    Factory: create a job and, optionally, its canonical purchase orders.

        job = make_job(customer_total="1000", bradford_po="600", jd_po="400")
    """
    def _make(
        customer_total="1000.00",
        bradford_po=None,
        jd_po=None,
        status=None,
        paper_cost_total="0",
        paper_charged_total="0",
        jd_supplies_paper=False,
        bradford_waives_paper_margin=False,
        customer_po_number=None,
        customer_id=CUSTOMER,
    ):
        job = service.create_job(
            customer_id=customer_id,
            customer_total=Decimal(customer_total),
            paper_cost_total=Decimal(paper_cost_total),
            paper_charged_total=Decimal(paper_charged_total),
            jd_supplies_paper=jd_supplies_paper,
            bradford_waives_paper_margin=bradford_waives_paper_margin,
            customer_po_number=customer_po_number,
        )
        if bradford_po is not None:
            service.create_purchase_order(
                origin_company_id=IMPACT,
                target_company_id=BRADFORD,
                job_id=job.id,
                original_amount=Decimal(customer_total),
                vendor_amount=Decimal(bradford_po),
                po_number=f"IMP-{job.job_no}",
            )
        if jd_po is not None:
            service.create_purchase_order(
                origin_company_id=BRADFORD,
                target_company_id=JD,
                job_id=job.id,
                original_amount=Decimal(bradford_po or customer_total),
                vendor_amount=Decimal(jd_po),
                po_number="001-001",
            )
        if status is not None:
            service.set_job_status(job.id, status)
        return service.get_job(job.id)

    return _make


# Configure pytest markers
def pytest_configure(config):
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "api: API tests")
