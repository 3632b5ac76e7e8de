from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel

from .money import ZERO


JobStatus = Literal[
    "PENDING",
    "IN_PRODUCTION",
    "READY_FOR_PROOF",
    "PROOF_APPROVED",
    "COMPLETED",
    "CANCELLED",
]

STATUS_PENDING         = "PENDING"
STATUS_IN_PRODUCTION   = "IN_PRODUCTION"
STATUS_READY_FOR_PROOF = "READY_FOR_PROOF"
STATUS_PROOF_APPROVED  = "PROOF_APPROVED"
STATUS_COMPLETED       = "COMPLETED"
STATUS_CANCELLED       = "CANCELLED"

# Forward-only lifecycle; CANCELLED sits outside the sequence.
STATUS_SEQUENCE = (
    STATUS_PENDING,
    STATUS_IN_PRODUCTION,
    STATUS_READY_FOR_PROOF,
    STATUS_PROOF_APPROVED,
    STATUS_COMPLETED,
)
ALL_STATUSES = set(STATUS_SEQUENCE) | {STATUS_CANCELLED}

# Statuses in which the Bradford → JD purchase order must already exist.
PRODUCTION_STATUSES = frozenset({
    STATUS_IN_PRODUCTION,
    STATUS_READY_FOR_PROOF,
    STATUS_PROOF_APPROVED,
    STATUS_COMPLETED,
})


class Job(BaseModel):
    """
    A print job and its job-level financial snapshot.

    customer_total, the paper totals and the routing flags are intake data.
    bradford_total, jd_total and the margin fields are derived; only the job
    ledger writes them.
    """
    id: str
    job_no: str
    customer_id: str
    status: JobStatus = STATUS_PENDING
    customer_po_number: Optional[str] = None

    customer_total: Decimal = ZERO
    bradford_total: Decimal = ZERO
    jd_total: Decimal = ZERO
    impact_margin: Decimal = ZERO
    bradford_total_margin: Decimal = ZERO
    bradford_paper_margin: Decimal = ZERO
    bradford_print_margin: Decimal = ZERO
    paper_cost_total: Decimal = ZERO
    paper_charged_total: Decimal = ZERO

    # Routing mode
    jd_supplies_paper: bool = False
    bradford_waives_paper_margin: bool = False

    created_at: Optional[str] = None        # ISO 8601
    updated_at: Optional[str] = None
    completed_at: Optional[str] = None
