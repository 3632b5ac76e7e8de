from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel

from .money import ZERO


POStatus = Literal["PENDING", "ACCEPTED", "CONFIRMED", "COMPLETED", "CANCELLED"]

PO_STATUS_PENDING   = "PENDING"
PO_STATUS_ACCEPTED  = "ACCEPTED"
PO_STATUS_CONFIRMED = "CONFIRMED"
PO_STATUS_COMPLETED = "COMPLETED"
PO_STATUS_CANCELLED = "CANCELLED"


class PurchaseOrder(BaseModel):
    """
    Money owed downstream on one leg: origin company → target.

    Exactly one of target_company_id / target_vendor_id is set.  Vendor-routed
    orders go to a third-party vendor instead of a company in the chain.
    Purchase orders are never hard-deleted; superseded ones are CANCELLED.
    """
    id: str
    origin_company_id: str
    target_company_id: Optional[str] = None
    target_vendor_id: Optional[str] = None
    job_id: Optional[str] = None

    original_amount: Decimal = ZERO     # what the origin was paid upstream
    vendor_amount: Decimal = ZERO       # what the origin owes the target
    margin_amount: Decimal = ZERO       # original - vendor at creation time

    status: POStatus = PO_STATUS_PENDING
    po_number: Optional[str] = None
    reference_po_number: Optional[str] = None   # customer's PO# when known
    external_ref: Optional[str] = None

    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class PurchaseOrderPatch(BaseModel):
    """Editable purchase order fields.  Only fields explicitly set are applied."""
    original_amount: Optional[Decimal] = None
    vendor_amount: Optional[Decimal] = None
    margin_amount: Optional[Decimal] = None
    status: Optional[POStatus] = None
    po_number: Optional[str] = None
    external_ref: Optional[str] = None
