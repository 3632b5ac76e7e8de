"""
Pydantic models for dashboard API requests.
"""
from typing import Literal, Optional

from pydantic import BaseModel, Field

from models.invoice import InvoicePatch
from models.purchase_order import PurchaseOrderPatch


class BatchFixRequest(BaseModel):
    job_ids: list[str] = Field(alias="jobIds")
    fix_type: Literal["pos", "invoices", "both"] = Field(alias="fixType")

    model_config = {"populate_by_name": True}


class PurchaseOrderUpdate(PurchaseOrderPatch):
    changed_by: Optional[str] = None   # recorded on the sync log

    def to_patch(self) -> PurchaseOrderPatch:
        return PurchaseOrderPatch(**self.model_dump(exclude_unset=True, exclude={"changed_by"}))


class InvoiceUpdate(InvoicePatch):
    changed_by: Optional[str] = None

    def to_patch(self) -> InvoicePatch:
        return InvoicePatch(**self.model_dump(exclude_unset=True, exclude={"changed_by"}))
