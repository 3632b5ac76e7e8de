"""
Cross-document sync between purchase orders and their mirror invoices.

A purchase order origin → target is mirrored by the invoice target → origin
on the same job.  Editing the amount of one side writes the new amount
straight onto the other side's column (a store-level raw write), so one edit
propagates exactly one hop and can never bounce back.  Each propagation
appends one SyncLog row.

Only the current document on a leg (the newest non-cancelled one) drives its
mirror; edits to cancelled or superseded documents stay local.

The edit, the mirror write, the log row and the job recalculation run inside
one database transaction under the job's lock: they land together or not at
all.
"""
import logging
from typing import Optional

from models.invoice import Invoice, InvoicePatch
from models.money import format_money, to_money
from models.purchase_order import PurchaseOrder, PurchaseOrderPatch
from models.sync_log import TRIGGER_INVOICE_UPDATE, TRIGGER_PO_UPDATE
from .errors import InvalidStateError, ValidationError
from .ledger import JobLedger
from .locks import JobLockRegistry
from .stores import InvoiceStore, PurchaseOrderStore, SyncLogStore

logger = logging.getLogger(__name__)

# Purchase order fields that feed the job ledger's sums
_JOB_AFFECTING_PO_FIELDS = {"vendor_amount", "status"}


class SyncEngine:
    def __init__(
        self,
        purchase_orders: PurchaseOrderStore,
        invoices: InvoiceStore,
        sync_log: SyncLogStore,
        ledger: JobLedger,
        locks: Optional[JobLockRegistry] = None,
    ) -> None:
        self.purchase_orders = purchase_orders
        self.invoices = invoices
        self.sync_log = sync_log
        self.ledger = ledger
        self.locks = locks or ledger.locks
        self.db = purchase_orders.db

    # ------------------------------------------------------------------
    # Mirror lookups
    # ------------------------------------------------------------------

    def related_invoice_for(self, po: PurchaseOrder) -> Optional[Invoice]:
        """Invoice from = po.target, to = po.origin, same job."""
        if not po.target_company_id:
            # Vendor-routed orders have no invoice in the company chain
            return None
        return self.invoices.latest_for_leg(po.job_id, po.target_company_id, po.origin_company_id)

    def related_po_for(self, invoice: Invoice) -> Optional[PurchaseOrder]:
        """PurchaseOrder origin = invoice.to, target = invoice.from, same job."""
        return self.purchase_orders.latest_for_leg(
            invoice.job_id, invoice.to_company_id, invoice.from_company_id
        )

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def update_purchase_order(
        self,
        po_id: str,
        patch: PurchaseOrderPatch,
        changed_by: Optional[str] = None,
    ) -> PurchaseOrder:
        """
        Apply the fields explicitly set on *patch*.

        A vendor_amount change is copied onto the mirror invoice's amount and
        logged.  The job is recalculated when a field the ledger sums changed.
        """
        values = patch.model_dump(exclude_unset=True)
        if "status" in values and values["status"] is None:
            raise ValidationError("Purchase order status cannot be cleared", field="status")
        for key in ("original_amount", "vendor_amount", "margin_amount"):
            if key in values:
                if values[key] is None:
                    raise ValidationError(f"{key} cannot be cleared", field=key)
                values[key] = to_money(values[key])

        job_id = self.purchase_orders.require(po_id).job_id
        with self.locks.job_lock(job_id), self.db.transaction():
            old = self.purchase_orders.require(po_id)
            changed = {k: v for k, v in values.items() if getattr(old, k) != v}
            if not changed:
                logger.debug("PO %s: nothing changed", po_id)
                return old

            self.purchase_orders.write_fields(po_id, changed)

            if "vendor_amount" in changed:
                self._mirror_po_amount(old, changed["vendor_amount"], changed_by)

            if old.job_id and _JOB_AFFECTING_PO_FIELDS & set(changed):
                self.ledger.recalculate_job_from_pos(old.job_id)

            return self.purchase_orders.require(po_id)

    def update_invoice(
        self,
        invoice_id: str,
        patch: InvoicePatch,
        changed_by: Optional[str] = None,
    ) -> Invoice:
        """
        Apply the fields explicitly set on *patch*.

        An amount change is copied onto the mirror purchase order's
        vendor_amount, logged, and the job recalculated.  paid_at is set once:
        changing or clearing it afterwards raises InvalidStateError.
        """
        values = patch.model_dump(exclude_unset=True)
        if "amount" in values:
            if values["amount"] is None:
                raise ValidationError("amount cannot be cleared", field="amount")
            values["amount"] = to_money(values["amount"])

        job_id = self.invoices.require(invoice_id).job_id
        with self.locks.job_lock(job_id), self.db.transaction():
            old = self.invoices.require(invoice_id)
            changed = {k: v for k, v in values.items() if getattr(old, k) != v}
            if "paid_at" in changed and old.paid_at is not None:
                raise InvalidStateError(
                    f"Invoice {old.invoice_no} was already paid at {old.paid_at}",
                )
            if not changed:
                logger.debug("Invoice %s: nothing changed", old.invoice_no)
                return old

            self.invoices.write_fields(invoice_id, changed)

            if "amount" in changed:
                self._mirror_invoice_amount(old, changed["amount"], changed_by)

            return self.invoices.require(invoice_id)

    # ------------------------------------------------------------------
    # One-hop propagation
    # ------------------------------------------------------------------

    def _mirror_po_amount(self, po: PurchaseOrder, new_amount, changed_by: Optional[str]) -> None:
        invoice = self.related_invoice_for(po)
        if invoice is None:
            logger.debug("PO %s has no mirror invoice; nothing to sync", po.id)
            return
        current = self.purchase_orders.latest_for_leg(
            po.job_id, po.origin_company_id, po.target_company_id
        )
        if current is None or current.id != po.id:
            # Only the newest non-cancelled PO on a leg drives its invoice
            logger.debug("PO %s is not the current order on its leg; nothing to sync", po.id)
            return

        self.invoices.write_amount(invoice.id, new_amount)
        self.sync_log.append(
            trigger=TRIGGER_PO_UPDATE,
            purchase_order_id=po.id,
            invoice_id=invoice.id,
            job_id=po.job_id,
            field="vendor_amount",
            old_value=po.vendor_amount,
            new_value=new_amount,
            changed_by=changed_by,
            notes=(
                f"PO {po.po_number or po.id} vendorAmount updated from "
                f"{format_money(po.vendor_amount)} to {format_money(new_amount)}, "
                f"synced invoice {invoice.invoice_no} amount from "
                f"{format_money(invoice.amount)} to {format_money(new_amount)}"
            ),
        )
        logger.info(
            "Synced invoice %s amount: %s → %s (PO %s changed)",
            invoice.invoice_no, invoice.amount, new_amount, po.po_number or po.id,
        )

    def _mirror_invoice_amount(self, invoice: Invoice, new_amount, changed_by: Optional[str]) -> None:
        po = self.related_po_for(invoice)
        if po is None:
            logger.debug("Invoice %s has no mirror PO; nothing to sync", invoice.invoice_no)
            return
        current = self.invoices.latest_for_leg(
            invoice.job_id, invoice.from_company_id, invoice.to_company_id
        )
        if current is None or current.id != invoice.id:
            logger.debug("Invoice %s is not the current invoice on its leg; nothing to sync", invoice.invoice_no)
            return

        self.purchase_orders.write_vendor_amount(po.id, new_amount)
        self.sync_log.append(
            trigger=TRIGGER_INVOICE_UPDATE,
            purchase_order_id=po.id,
            invoice_id=invoice.id,
            job_id=invoice.job_id,
            field="amount",
            old_value=invoice.amount,
            new_value=new_amount,
            changed_by=changed_by,
            notes=(
                f"Invoice {invoice.invoice_no} amount updated from "
                f"{format_money(invoice.amount)} to {format_money(new_amount)}, "
                f"synced PO vendorAmount from {format_money(po.vendor_amount)} "
                f"to {format_money(new_amount)}"
            ),
        )
        logger.info(
            "Synced PO %s vendor_amount: %s → %s (invoice %s changed)",
            po.po_number or po.id, po.vendor_amount, new_amount, invoice.invoice_no,
        )
        if po.job_id:
            self.ledger.recalculate_job_from_pos(po.job_id)
