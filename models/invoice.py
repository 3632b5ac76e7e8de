from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from .money import ZERO


class Invoice(BaseModel):
    """
    Money billed upstream on one leg.

    Direction is the inverse of the purchase order it mirrors:
    invoice.from_company_id = po.target_company_id and
    invoice.to_company_id = po.origin_company_id.
    """
    id: str
    job_id: Optional[str] = None
    from_company_id: str
    to_company_id: str
    invoice_no: str
    amount: Decimal = ZERO
    due_at: Optional[str] = None        # ISO 8601
    issued_at: Optional[str] = None
    paid_at: Optional[str] = None       # set once, never reset
    file_id: Optional[str] = None       # rendered document, when one exists
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class InvoicePatch(BaseModel):
    """Editable invoice fields.  Only fields explicitly set are applied."""
    amount: Optional[Decimal] = None
    due_at: Optional[str] = None
    issued_at: Optional[str] = None
    paid_at: Optional[str] = None
