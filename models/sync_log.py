from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel


SyncTrigger = Literal["PO_UPDATE", "INVOICE_UPDATE"]

TRIGGER_PO_UPDATE      = "PO_UPDATE"
TRIGGER_INVOICE_UPDATE = "INVOICE_UPDATE"


class SyncLog(BaseModel):
    """One propagated cross-document edit.  Append-only."""
    id: int
    trigger: SyncTrigger
    purchase_order_id: Optional[str] = None
    invoice_id: Optional[str] = None
    job_id: Optional[str] = None
    field: str
    old_value: Optional[Decimal] = None
    new_value: Decimal
    changed_by: Optional[str] = None
    notes: Optional[str] = None
    created_at: str
