from .job import Job
from .purchase_order import PurchaseOrder, PurchaseOrderPatch
from .invoice import Invoice, InvoicePatch
from .sync_log import SyncLog
from .result import (
    MissingLeg, MatchedLeg, MismatchedLeg, JobAudit, IssueReport, IssueSummary,
    AmountDiscrepancy, FixResult, BatchFixResult, ChainResult, LegDelivery,
)

__all__ = [
    "Job",
    "PurchaseOrder", "PurchaseOrderPatch",
    "Invoice", "InvoicePatch",
    "SyncLog",
    "MissingLeg", "MatchedLeg", "MismatchedLeg", "JobAudit", "IssueReport", "IssueSummary",
    "AmountDiscrepancy", "FixResult", "BatchFixResult", "ChainResult", "LegDelivery",
]
