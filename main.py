#!/usr/bin/env python3
"""
Print-job reconciliation — CLI entry point.

Usage examples:
  python main.py init-db                            # Create the database schema
  python main.py audit <job id>                     # Audit one job's POs and invoices
  python main.py report                             # All jobs with issues
  python main.py report --page 2 --limit 20
  python main.py validate <job id>                  # Amount mismatches only

  python main.py fix-pos <job id>                   # Create a missing Impact → Bradford PO
  python main.py fix-invoices <job id>              # Generate a COMPLETED job's missing invoices
  python main.py batch-fix <id> <id> --type both
  python main.py complete <job id>                  # Generate the invoice chain, mark COMPLETED
  python main.py recalc <job id>                    # Re-derive totals and margins from POs

  python main.py update-po <po id> --vendor-amount 412.50 --changed-by alice
  python main.py update-invoice <invoice id> --amount 412.50
  python main.py sync-log --job <job id>

Add --json before the command for machine-readable output.
"""
import json
import logging
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Optional

import click
from pydantic import BaseModel

from config import Config
from models.invoice import InvoicePatch
from models.money import format_money
from models.purchase_order import PurchaseOrderPatch
from reconciliation.errors import ReconciliationError
from reconciliation.service import ReconciliationService


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s  %(levelname)-8s  %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )


class DecimalParam(click.ParamType):
    name = "amount"

    def convert(self, value, param, ctx):
        if isinstance(value, Decimal):
            return value
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            self.fail(f"{value!r} is not a valid amount", param, ctx)
        if not amount.is_finite():
            self.fail(f"{value!r} is not a finite amount", param, ctx)
        return amount


AMOUNT = DecimalParam()


def _service(ctx: click.Context) -> ReconciliationService:
    config = Config()
    if ctx.obj.get("db"):
        config.db_path = Path(ctx.obj["db"])
    return ReconciliationService(config)


def _emit(ctx: click.Context, data) -> bool:
    """Print *data* as JSON when --json was given.  Returns True if it did."""
    if not ctx.obj.get("json"):
        return False
    if isinstance(data, BaseModel):
        click.echo(data.model_dump_json(indent=2))
    elif isinstance(data, list):
        click.echo(json.dumps(
            [d.model_dump(mode="json") if isinstance(d, BaseModel) else d for d in data],
            indent=2,
        ))
    else:
        click.echo(json.dumps(data, indent=2, default=str))
    return True


def _fail(exc: ReconciliationError) -> None:
    click.echo(f"Error: {exc.message}", err=True)
    sys.exit(1)


def _echo_audit(audit) -> None:
    click.echo(f"\n  Job {audit.job_no}  ({audit.status})  customer={audit.customer_id}")
    click.echo(
        f"  Customer total {format_money(audit.customer_total)}  "
        f"Bradford {format_money(audit.bradford_total)}  JD {format_money(audit.jd_total)}"
    )
    click.echo()
    for leg in audit.legs:
        if leg.kind == "matched":
            icon, detail = "✓", f"{leg.document_no or leg.document_id}  {format_money(leg.actual_amount)}"
        elif leg.kind == "mismatched":
            icon, detail = "✗", leg.error
        else:
            icon, detail = ("✗" if leg.required else "·"), leg.error
        click.echo(f"    {icon} {leg.label:<28} {detail}")
    click.echo()
    if audit.issues:
        click.echo(f"  Issues ({audit.issue_count}):")
        for issue in audit.issues:
            click.echo(f"    ⚠ {issue}")
    else:
        click.echo("  ✓ No issues found")
    click.echo()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON")
@click.option("--db", default=None, type=click.Path(dir_okay=False), help="Database file (default: DB_PATH)")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, as_json: bool, db: Optional[str]) -> None:
    """Print-job reconciliation — audit, repair and sync POs and invoices."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["json"] = as_json
    ctx.obj["db"] = db
    _setup_logging(verbose)


# --------------------------------------------------------------------
# setup
# --------------------------------------------------------------------

@cli.command("init-db")
@click.pass_context
def init_db(ctx: click.Context) -> None:
    """Create the database (schema is applied on open)."""
    with _service(ctx) as service:
        stats = service.get_stats()
        if not _emit(ctx, stats):
            click.echo(f"  Database ready: {service.config.db_path}")
            click.echo(f"  Jobs: {stats['jobs']}  POs: {stats['purchase_orders']}  "
                       f"Invoices: {stats['invoices']}  Sync log: {stats['sync_log']}")


# --------------------------------------------------------------------
# audit commands
# --------------------------------------------------------------------

@cli.command()
@click.argument("job_id")
@click.pass_context
def audit(ctx: click.Context, job_id: str) -> None:
    """Audit one job's purchase orders and invoices."""
    with _service(ctx) as service:
        try:
            result = service.audit_job(job_id)
        except ReconciliationError as exc:
            _fail(exc)
        if not _emit(ctx, result):
            _echo_audit(result)


@cli.command()
@click.option("--page", default=1, show_default=True, type=int)
@click.option("--limit", default=50, show_default=True, type=int, help="Jobs per page")
@click.pass_context
def report(ctx: click.Context, page: int, limit: int) -> None:
    """List jobs with missing or mismatched documents."""
    with _service(ctx) as service:
        result = service.list_jobs_with_issues(page=page, limit=limit)
        if _emit(ctx, result):
            return
        p, s = result.pagination, result.summary
        click.echo(f"\n  {p.total_items} job(s) with issues  (page {p.current_page}/{max(p.total_pages, 1)})\n")
        for a in result.jobs:
            click.echo(f"  {a.job_no:<16} {a.status:<16} {a.issue_count} issue(s)")
            for issue in a.issues:
                click.echo(f"      ⚠ {issue}")
        click.echo()
        click.echo(f"  Missing Impact → Bradford POs: {s.missing_impact_to_bradford_pos}")
        click.echo(f"  Missing Bradford → JD POs:     {s.missing_bradford_to_jd_pos}")
        click.echo(f"  Jobs missing invoices:         {s.missing_invoices}")
        click.echo(f"  Jobs with amount mismatches:   {s.amount_mismatches}")
        click.echo()


@cli.command()
@click.argument("job_id")
@click.pass_context
def validate(ctx: click.Context, job_id: str) -> None:
    """Strict amount check: list legs off by more than the tolerance."""
    with _service(ctx) as service:
        try:
            errors = service.validate_amounts(job_id)
        except ReconciliationError as exc:
            _fail(exc)
        if _emit(ctx, {"valid": not errors, "job_id": job_id,
                       "errors": [e.model_dump(mode="json") for e in errors]}):
            return
        if not errors:
            click.echo("  ✓ All amounts are valid")
            return
        for e in errors:
            click.echo(
                f"  ✗ {e.field}: {format_money(e.actual)} vs expected "
                f"{format_money(e.expected)} (off by {format_money(e.difference)})"
            )


# --------------------------------------------------------------------
# repair commands
# --------------------------------------------------------------------

@cli.command("fix-pos")
@click.argument("job_id")
@click.pass_context
def fix_pos(ctx: click.Context, job_id: str) -> None:
    """Create the Impact → Bradford PO if it is missing."""
    with _service(ctx) as service:
        try:
            result = service.auto_fix_missing_pos(job_id)
        except ReconciliationError as exc:
            _fail(exc)
        if not _emit(ctx, result):
            click.echo(f"  Created: {', '.join(result.created)}" if result.created else "  Nothing to fix")


@cli.command("fix-invoices")
@click.argument("job_id")
@click.pass_context
def fix_invoices(ctx: click.Context, job_id: str) -> None:
    """Generate the invoice chain for a COMPLETED job that has none."""
    with _service(ctx) as service:
        try:
            result = service.auto_fix_missing_invoices(job_id)
        except ReconciliationError as exc:
            _fail(exc)
        if not _emit(ctx, result):
            click.echo(f"  Created: {', '.join(result.created)}" if result.created else "  Nothing to fix")


@cli.command("batch-fix")
@click.argument("job_ids", nargs=-1, required=True)
@click.option("--type", "fix_type", type=click.Choice(["pos", "invoices", "both"]),
              default="both", show_default=True)
@click.pass_context
def batch_fix(ctx: click.Context, job_ids: tuple[str, ...], fix_type: str) -> None:
    """Fix several jobs; one job failing does not stop the rest."""
    with _service(ctx) as service:
        try:
            result = service.batch_fix(job_ids, fix_type)
        except ReconciliationError as exc:
            _fail(exc)
        if _emit(ctx, result):
            return
        click.echo(f"\n  {result.total} job(s): {result.successful} ok, {result.failed} failed\n")
        for d in result.details:
            if not d.success:
                click.echo(f"  ✗ {d.job_id}: {d.error}")
                continue
            click.echo(f"  ✓ {d.job_id}: {', '.join(d.actions) or 'nothing to fix'}")
            for w in d.warnings:
                click.echo(f"      ⚠ {w}")
        if result.failed:
            sys.exit(1)


@cli.command()
@click.argument("job_id")
@click.pass_context
def complete(ctx: click.Context, job_id: str) -> None:
    """Generate the three-invoice chain and mark the job COMPLETED."""
    with _service(ctx) as service:
        try:
            result = service.complete_job_and_generate_invoices(job_id)
        except ReconciliationError as exc:
            _fail(exc)
        if _emit(ctx, result):
            return
        click.echo(f"\n  Job {result.job_no} completed\n")
        for invoice, delivery in zip(result.invoices, result.deliveries):
            click.echo(f"  ✓ {delivery.label:<20} {invoice.invoice_no}  {format_money(invoice.amount)}")
            for err in delivery.errors:
                click.echo(f"      ⚠ {err}")
        click.echo()


@cli.command()
@click.argument("job_id")
@click.pass_context
def recalc(ctx: click.Context, job_id: str) -> None:
    """Re-derive a job's totals and margins from its purchase orders."""
    with _service(ctx) as service:
        try:
            job = service.recalculate_job_from_pos(job_id)
        except ReconciliationError as exc:
            _fail(exc)
        if not _emit(ctx, job):
            click.echo(f"  Bradford total:  {format_money(job.bradford_total)}")
            click.echo(f"  JD total:        {format_money(job.jd_total)}")
            click.echo(f"  Impact margin:   {format_money(job.impact_margin)}")
            click.echo(f"  Bradford margin: {format_money(job.bradford_total_margin)}")


# --------------------------------------------------------------------
# document updates
# --------------------------------------------------------------------

@cli.command("update-po")
@click.argument("po_id")
@click.option("--vendor-amount", type=AMOUNT, required=True)
@click.option("--changed-by", default=None, help="Who made the change (logged)")
@click.pass_context
def update_po(ctx: click.Context, po_id: str, vendor_amount: Decimal, changed_by: Optional[str]) -> None:
    """Change a PO's vendor amount; its mirror invoice follows."""
    with _service(ctx) as service:
        try:
            po = service.update_purchase_order(
                po_id, PurchaseOrderPatch(vendor_amount=vendor_amount), changed_by
            )
        except ReconciliationError as exc:
            _fail(exc)
        if not _emit(ctx, po):
            click.echo(f"  PO {po.po_number or po.id}: vendor amount {format_money(po.vendor_amount)}")


@cli.command("update-invoice")
@click.argument("invoice_id")
@click.option("--amount", type=AMOUNT, required=True)
@click.option("--changed-by", default=None, help="Who made the change (logged)")
@click.pass_context
def update_invoice(ctx: click.Context, invoice_id: str, amount: Decimal, changed_by: Optional[str]) -> None:
    """Change an invoice amount; its mirror PO follows."""
    with _service(ctx) as service:
        try:
            invoice = service.update_invoice(invoice_id, InvoicePatch(amount=amount), changed_by)
        except ReconciliationError as exc:
            _fail(exc)
        if not _emit(ctx, invoice):
            click.echo(f"  Invoice {invoice.invoice_no}: amount {format_money(invoice.amount)}")


@cli.command("sync-log")
@click.option("--job", "job_id", default=None, help="Only entries for this job")
@click.option("--limit", default=50, show_default=True, type=int)
@click.pass_context
def sync_log(ctx: click.Context, job_id: Optional[str], limit: int) -> None:
    """Show recent PO ↔ invoice sync propagations, newest first."""
    with _service(ctx) as service:
        entries = service.list_sync_log(job_id=job_id, limit=limit)
        if _emit(ctx, entries):
            return
        if not entries:
            click.echo("  No sync entries")
            return
        for e in entries:
            click.echo(f"  {e.created_at[:19]}  {e.trigger:<15} {e.notes}")


if __name__ == "__main__":
    cli()
