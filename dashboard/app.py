"""
Reconciliation Dashboard — FastAPI backend.

Thin HTTP routing over ReconciliationService.  All reconciliation state lives
in a single SQLite database (output/reconciliation.db).

Endpoints
---------
  GET   /api/health                               → health check
  GET   /api/stats                                → row counts, jobs by status
  GET   /api/reconciliation/audit/{job_id}        → full audit of one job
  GET   /api/reconciliation/report                → every job with issues + summary
  GET   /api/reconciliation/issues?page=&limit=   → paginated jobs with issues
  GET   /api/reconciliation/validate/{job_id}     → strict amount validation
  POST  /api/reconciliation/fix-pos/{job_id}      → create missing Impact → Bradford PO
  POST  /api/reconciliation/fix-invoices/{job_id} → generate missing invoice chain
  POST  /api/reconciliation/batch-fix             → {jobIds, fixType} over many jobs
  POST  /api/jobs/{job_id}/complete               → invoice chain + COMPLETED
  PATCH /api/purchase-orders/{po_id}              → edit PO (syncs mirror invoice)
  PATCH /api/invoices/{invoice_id}                → edit invoice (syncs mirror PO)
  GET   /api/sync-log?jobId=&purchaseOrderId=&invoiceId=

Reconciliation errors map to HTTP status codes:
  NotFoundError → 404, ValidationError → 422,
  InvalidStateError / PreconditionError → 409
"""
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from config import Config
from dashboard.models import BatchFixRequest, InvoiceUpdate, PurchaseOrderUpdate
from reconciliation.errors import (
    InvalidStateError,
    NotFoundError,
    PreconditionError,
    ReconciliationError,
    ValidationError,
)
from reconciliation.service import ReconciliationService

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Service, opened on first request so importing the app does not touch disk
# ---------------------------------------------------------------------------
_service: Optional[ReconciliationService] = None


def get_service() -> ReconciliationService:
    global _service
    if _service is None:
        _service = ReconciliationService(Config())
    return _service


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(title="Reconciliation Dashboard", docs_url=None, redoc_url=None)

_STATUS_CODES = {
    NotFoundError: 404,
    ValidationError: 422,
    InvalidStateError: 409,
    PreconditionError: 409,
}


@app.exception_handler(ReconciliationError)
def reconciliation_error_handler(request: Request, exc: ReconciliationError) -> JSONResponse:
    status_code = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(exc, cls)), 400
    )
    if status_code >= 409:
        logger.info("%s %s → %d %s", request.method, request.url.path, status_code, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# ── Routes ───────────────────────────────────────────────────────────────────

@app.get("/api/health")
def health(service: ReconciliationService = Depends(get_service)):
    return {
        "status":  "ok",
        "db_path": str(service.config.db_path),
        "db_open": service.db.is_open,
    }


@app.get("/api/stats")
def stats(service: ReconciliationService = Depends(get_service)):
    return service.get_stats()


@app.get("/api/reconciliation/audit/{job_id}")
def audit_job(job_id: str, service: ReconciliationService = Depends(get_service)):
    return service.audit_job(job_id)


@app.get("/api/reconciliation/report")
def report(service: ReconciliationService = Depends(get_service)):
    return service.find_jobs_with_issues()


@app.get("/api/reconciliation/issues")
def issues(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=500),
    service: ReconciliationService = Depends(get_service),
):
    return service.list_jobs_with_issues(page=page, limit=limit)


@app.get("/api/reconciliation/validate/{job_id}")
def validate(job_id: str, service: ReconciliationService = Depends(get_service)):
    errors = service.validate_amounts(job_id)
    return {
        "valid":   not errors,
        "job_id":  job_id,
        "message": "All amounts are valid" if not errors else f"Found {len(errors)} amount discrepancies",
        "errors":  errors,
    }


@app.post("/api/reconciliation/fix-pos/{job_id}")
def fix_pos(job_id: str, service: ReconciliationService = Depends(get_service)):
    return service.auto_fix_missing_pos(job_id)


@app.post("/api/reconciliation/fix-invoices/{job_id}")
def fix_invoices(job_id: str, service: ReconciliationService = Depends(get_service)):
    return service.auto_fix_missing_invoices(job_id)


@app.post("/api/reconciliation/batch-fix")
def batch_fix(body: BatchFixRequest, service: ReconciliationService = Depends(get_service)):
    return service.batch_fix(body.job_ids, body.fix_type)


@app.post("/api/jobs/{job_id}/complete")
def complete_job(job_id: str, service: ReconciliationService = Depends(get_service)):
    return service.complete_job_and_generate_invoices(job_id)


@app.patch("/api/purchase-orders/{po_id}")
def update_purchase_order(
    po_id: str,
    body: PurchaseOrderUpdate,
    service: ReconciliationService = Depends(get_service),
):
    return service.update_purchase_order(po_id, body.to_patch(), changed_by=body.changed_by)


@app.patch("/api/invoices/{invoice_id}")
def update_invoice(
    invoice_id: str,
    body: InvoiceUpdate,
    service: ReconciliationService = Depends(get_service),
):
    return service.update_invoice(invoice_id, body.to_patch(), changed_by=body.changed_by)


@app.get("/api/sync-log")
def sync_log(
    job_id: Optional[str] = Query(default=None, alias="jobId"),
    purchase_order_id: Optional[str] = Query(default=None, alias="purchaseOrderId"),
    invoice_id: Optional[str] = Query(default=None, alias="invoiceId"),
    limit: int = Query(default=200, ge=1, le=2000),
    offset: int = Query(default=0, ge=0),
    service: ReconciliationService = Depends(get_service),
):
    return service.list_sync_log(
        job_id=job_id,
        purchase_order_id=purchase_order_id,
        invoice_id=invoice_id,
        limit=limit,
        offset=offset,
    )
