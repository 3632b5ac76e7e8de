"""
Integration tests for the command-line interface.
"""
import json
from decimal import Decimal

import pytest
from click.testing import CliRunner

from conftest import BRADFORD, JD
from main import cli


@pytest.fixture
def runner(test_config, monkeypatch):
    monkeypatch.setenv("DOCUMENTS_DIR", str(test_config.documents_dir))
    return CliRunner()


def _invoke(runner, test_config, *args):
    return runner.invoke(cli, ["--db", str(test_config.db_path), *args])


@pytest.mark.integration
class TestCli:
    """Integration tests for main.cli."""

    def test_init_db(self, runner, test_config):
        """Test init-db reports the database."""
        result = _invoke(runner, test_config, "init-db")
        assert result.exit_code == 0
        assert "Database ready" in result.output

    def test_audit_text(self, runner, test_config, make_job):
        """Test the text audit lists legs and issues."""
        job = make_job()

        result = _invoke(runner, test_config, "audit", job.id)

        assert result.exit_code == 0
        assert job.job_no in result.output
        assert "Missing Impact Direct → Bradford PO" in result.output

    def test_audit_json(self, runner, test_config, make_job):
        """Test --json prints the audit model."""
        job = make_job(bradford_po="600")

        result = _invoke(runner, test_config, "--json", "audit", job.id)

        assert result.exit_code == 0
        body = json.loads(result.output)
        assert body["job_id"] == job.id
        assert body["has_issues"] is False

    def test_unknown_job_exits_1(self, runner, test_config):
        """Test errors are reported with a non-zero exit code."""
        result = _invoke(runner, test_config, "audit", "missing")
        assert result.exit_code == 1

    def test_fix_pos(self, runner, test_config, service, make_job):
        """Test fix-pos creates the missing PO."""
        job = make_job()

        result = _invoke(runner, test_config, "fix-pos", job.id)

        assert result.exit_code == 0
        assert "Created: Impact Direct → Bradford PO" in result.output

    def test_complete_then_report(self, runner, test_config, make_job):
        """Test completing a job from the CLI leaves a clean report."""
        job = make_job(bradford_po="600", jd_po="400")

        result = _invoke(runner, test_config, "complete", job.id)
        assert result.exit_code == 0
        assert f"Job {job.job_no} completed" in result.output

        report = _invoke(runner, test_config, "report")
        assert report.exit_code == 0
        assert "0 job(s) with issues" in report.output

    def test_update_po_and_sync_log(self, runner, test_config, service, make_job):
        """Test update-po propagates and sync-log shows the entry."""
        job = make_job(bradford_po="600", jd_po="400")
        service.complete_job_and_generate_invoices(job.id)
        po = service.purchase_orders.latest_for_leg(job.id, BRADFORD, JD)

        result = _invoke(runner, test_config, "update-po", po.id, "--vendor-amount", "425.50",
                         "--changed-by", "alice")
        assert result.exit_code == 0
        assert "$425.50" in result.output

        log = _invoke(runner, test_config, "sync-log", "--job", job.id)
        assert "PO_UPDATE" in log.output
        assert service.invoices.latest_for_leg(job.id, JD, BRADFORD).amount == Decimal("425.50")

    def test_invalid_amount(self, runner, test_config):
        """Test a non-numeric amount is a usage error."""
        result = _invoke(runner, test_config, "update-invoice", "inv-1", "--amount", "abc")
        assert result.exit_code == 2

    @pytest.mark.parametrize("amount", ["NaN", "Infinity", "sNaN"])
    def test_non_finite_amount(self, runner, test_config, amount):
        """Test NaN and infinite amounts are usage errors."""
        result = _invoke(runner, test_config, "update-po", "po-1", "--vendor-amount", amount)
        assert result.exit_code == 2
        assert "is not a finite amount" in result.output

    def test_batch_fix_failure_exit_code(self, runner, test_config, make_job):
        """Test batch-fix exits 1 when any job failed."""
        job = make_job()

        result = _invoke(runner, test_config, "batch-fix", job.id, "missing", "--type", "pos")

        assert result.exit_code == 1
        assert "1 ok, 1 failed" in result.output
