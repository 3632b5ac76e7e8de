from decimal import Decimal
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from .invoice import Invoice


# ---------------------------------------------------------------------------
# Per-leg audit status
# ---------------------------------------------------------------------------

class _LegStatusBase(BaseModel):
    label: str                              # e.g. "Impact → Bradford PO"
    expected_amount: Decimal
    is_valid: bool
    error: Optional[str] = None


class MissingLeg(_LegStatusBase):
    """
    No document exists for the leg.

    required=False means the job's status does not call for the document yet,
    so its absence is valid by non-applicability.
    """
    kind: Literal["missing"] = "missing"
    exists: Literal[False] = False
    required: bool = True
    actual_amount: None = None


class MatchedLeg(_LegStatusBase):
    kind: Literal["matched"] = "matched"
    exists: Literal[True] = True
    document_id: str
    document_no: Optional[str] = None
    actual_amount: Decimal
    is_valid: bool = True


class MismatchedLeg(_LegStatusBase):
    kind: Literal["mismatched"] = "mismatched"
    exists: Literal[True] = True
    document_id: str
    document_no: Optional[str] = None
    actual_amount: Decimal
    difference: Decimal                     # |actual - expected|
    is_valid: bool = False


LegStatus = Annotated[
    Union[MissingLeg, MatchedLeg, MismatchedLeg],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Audit reports
# ---------------------------------------------------------------------------

class JobAudit(BaseModel):
    """Complete reconciliation audit of one job."""
    job_id: str
    job_no: str
    customer_id: str
    status: str

    # Snapshot of the job-level totals the legs were checked against
    customer_total: Decimal
    bradford_total: Decimal
    jd_total: Decimal
    impact_margin: Decimal
    bradford_total_margin: Decimal
    bradford_print_margin: Decimal

    impact_to_bradford_po: LegStatus
    bradford_to_jd_po: LegStatus
    jd_to_bradford_invoice: LegStatus
    bradford_to_impact_invoice: LegStatus
    impact_to_customer_invoice: LegStatus

    issues: list[str] = Field(default_factory=list)
    has_issues: bool = False
    issue_count: int = 0

    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None

    def compute_summary(self) -> None:
        """Populate summary fields from the issues list."""
        self.issue_count = len(self.issues)
        self.has_issues = self.issue_count > 0

    @property
    def po_legs(self) -> list:
        return [self.impact_to_bradford_po, self.bradford_to_jd_po]

    @property
    def invoice_legs(self) -> list:
        return [
            self.jd_to_bradford_invoice,
            self.bradford_to_impact_invoice,
            self.impact_to_customer_invoice,
        ]

    @property
    def legs(self) -> list:
        return self.po_legs + self.invoice_legs


class IssueSummary(BaseModel):
    missing_impact_to_bradford_pos: int = 0
    missing_bradford_to_jd_pos: int = 0
    missing_invoices: int = 0
    amount_mismatches: int = 0


class IssueReport(BaseModel):
    """Population-wide audit: only the jobs that have issues are listed."""
    total: int = 0
    with_issues: int = 0
    jobs: list[JobAudit] = Field(default_factory=list)
    summary: IssueSummary = Field(default_factory=IssueSummary)
    cancelled: bool = False                 # scan stopped early on request


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int


class IssuePage(BaseModel):
    jobs: list[JobAudit] = Field(default_factory=list)
    pagination: Pagination
    summary: IssueSummary


class AmountDiscrepancy(BaseModel):
    """A leg whose document amount differs from the job total by more than the tolerance."""
    field: str
    expected: Decimal
    actual: Decimal
    difference: Decimal
    severity: Literal["error", "warning"] = "error"


# ---------------------------------------------------------------------------
# Repair results
# ---------------------------------------------------------------------------

class FixResult(BaseModel):
    job_id: str
    created: list[str] = Field(default_factory=list)   # document labels


class JobFixOutcome(BaseModel):
    job_id: str
    success: bool = True
    actions: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class BatchFixResult(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    details: list[JobFixOutcome] = Field(default_factory=list)


class LegDelivery(BaseModel):
    """Outcome of rendering and notifying one invoice of the chain."""
    label: str
    invoice_id: str
    file_id: Optional[str] = None
    rendered: bool = False
    notified: bool = False
    errors: list[str] = Field(default_factory=list)


class ChainResult(BaseModel):
    job_id: str
    job_no: str
    invoices: list[Invoice] = Field(default_factory=list)
    deliveries: list[LegDelivery] = Field(default_factory=list)
