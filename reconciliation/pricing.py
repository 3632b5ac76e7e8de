"""
Purchase order creation rules.

Auto purchase orders carry the job's pricing: when the pricing system supplied
an exact vendor amount it is used as-is and the margin is the remainder;
otherwise the original amount is split by ``auto_po_vendor_rate`` (80/20 by
default).

Numbering
---------
  Auto PO     IMP-<customer PO#>, or IMP-<job no> when the job has none
  Vendor PO   XXX-YYY  (3-digit vendor code, 3-digit sequence, max 999)

Creating a purchase order does not touch the job's totals.  Callers that
create a canonical-leg purchase order run the job ledger afterwards.
"""
import logging
import re
from decimal import Decimal
from typing import Optional

from models.money import to_money
from models.purchase_order import PurchaseOrder
from .errors import ValidationError
from .stores import JobStore, PurchaseOrderStore

logger = logging.getLogger(__name__)

AUTO_PO_PREFIX = "IMP-"
MAX_VENDOR_PO_SEQUENCE = 999
_VENDOR_CODE_RE = re.compile(r"^\d{3}$")


def validate_vendor_code(code: str) -> bool:
    """Vendor codes are exactly three digits, e.g. "001"."""
    return bool(code and _VENDOR_CODE_RE.match(code))


def split_amount(original_amount, vendor_rate: Decimal) -> tuple[Decimal, Decimal]:
    """Return (vendor_amount, margin_amount) for an original amount, rounded to cents."""
    original = to_money(original_amount)
    vendor = to_money(original * vendor_rate)
    return vendor, original - vendor


class PricingRules:
    def __init__(
        self,
        jobs: JobStore,
        purchase_orders: PurchaseOrderStore,
        auto_po_vendor_rate: Decimal = Decimal("0.80"),
    ) -> None:
        self.jobs = jobs
        self.purchase_orders = purchase_orders
        self.auto_po_vendor_rate = auto_po_vendor_rate

    def create_purchase_order(
        self,
        origin_company_id: str,
        target_company_id: Optional[str] = None,
        target_vendor_id: Optional[str] = None,
        job_id: Optional[str] = None,
        original_amount=0,
        vendor_amount=0,
        margin_amount=None,
        po_number: Optional[str] = None,
        reference_po_number: Optional[str] = None,
        external_ref: Optional[str] = None,
    ) -> PurchaseOrder:
        """
        Create a purchase order after checking its routing.

        Exactly one of target_company_id / target_vendor_id must be given.
        margin_amount defaults to original - vendor.
        """
        if target_company_id and target_vendor_id:
            raise ValidationError(
                "Purchase order cannot target both a company and a vendor",
                field="target_vendor_id",
            )
        if not target_company_id and not target_vendor_id:
            raise ValidationError(
                "Purchase order must target a company or a vendor",
                field="target_company_id",
            )
        if job_id is not None:
            self.jobs.require(job_id)

        original = to_money(original_amount)
        vendor = to_money(vendor_amount)
        margin = original - vendor if margin_amount is None else to_money(margin_amount)

        po = self.purchase_orders.create(
            origin_company_id=origin_company_id,
            target_company_id=target_company_id,
            target_vendor_id=target_vendor_id,
            job_id=job_id,
            original_amount=original,
            vendor_amount=vendor,
            margin_amount=margin,
            po_number=po_number,
            reference_po_number=reference_po_number,
            external_ref=external_ref,
        )
        logger.info(
            "PO created: %s → %s | PO#: %s | original=%s vendor=%s margin=%s",
            origin_company_id, target_company_id or target_vendor_id,
            po_number or "-", original, vendor, margin,
        )
        return po

    def create_auto_purchase_order(
        self,
        job_id: str,
        origin_company_id: str,
        target_company_id: str,
        original_amount,
        vendor_amount=None,
        customer_po_number: Optional[str] = None,
    ) -> PurchaseOrder:
        """Create a job's purchase order from its pricing (IMP-numbered)."""
        job = self.jobs.require(job_id)

        if vendor_amount is not None:
            original = to_money(original_amount)
            vendor = to_money(vendor_amount)
            margin = original - vendor
        else:
            vendor, margin = split_amount(original_amount, self.auto_po_vendor_rate)
            original = vendor + margin

        reference = customer_po_number or job.customer_po_number
        po_number = f"{AUTO_PO_PREFIX}{reference or job.job_no}"

        return self.create_purchase_order(
            origin_company_id=origin_company_id,
            target_company_id=target_company_id,
            job_id=job_id,
            original_amount=original,
            vendor_amount=vendor,
            margin_amount=margin,
            po_number=po_number,
            reference_po_number=reference,
        )

    def next_vendor_po_number(self, vendor_code: str) -> str:
        """Next XXX-YYY number for a vendor.  The sequence never resets."""
        if not validate_vendor_code(vendor_code):
            raise ValidationError("Vendor code must be exactly 3 digits", field="vendor_code")

        prefix = f"{vendor_code}-"
        last = self.purchase_orders.last_po_number_with_prefix(prefix)
        next_number = 1
        if last:
            next_number = int(last.split("-")[1]) + 1
            if next_number > MAX_VENDOR_PO_SEQUENCE:
                raise ValidationError(
                    f"Vendor {vendor_code} has reached maximum PO count ({MAX_VENDOR_PO_SEQUENCE})",
                    field="po_number",
                )
        return f"{prefix}{next_number:03d}"
