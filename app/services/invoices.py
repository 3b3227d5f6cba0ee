# services/invoices.py - Invoice Operations
# ============================================================================
#
# Manual invoice CRUD, payment tracking and purchase-order linking. Every
# operation authenticates the caller, validates ownership, mutates the session
# and commits once at the end.

import logging
from decimal import Decimal
from typing import List, Optional
from fastapi import UploadFile
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from app.core.config import settings
from app.core.exceptions import Forbidden, InsufficientCredits, NotFound, ValidationConflict
from app.models.invoice import (
    MANUAL_MIME_TYPE,
    Invoice,
    InvoiceLineItem,
    InvoicePayment,
    InvoiceStatus,
    PaymentStatus,
)
from app.models.notification import NotificationType
from app.models.purchase_order import PurchaseOrder, PurchaseOrderStatus
from app.models.user import User
from app.schemas.invoice import (
    CreateManualInvoiceRequest,
    LineItemInput,
    MarkInvoicePaidRequest,
    UpdateManualInvoiceRequest,
)
from app.services.auth import check_auth, check_organization
from app.services.notifications import NotificationService
from app.services.storage import StorageService

logger = logging.getLogger(__name__)

ALLOWED_UPLOAD_TYPES = ["application/pdf", "image/jpeg", "image/png"]


def calculate_subtotal(line_items: List[LineItemInput]) -> Decimal:
    return sum((item.quantity * item.unit_price for item in line_items), Decimal("0"))


def build_line_items(line_items: List[LineItemInput]) -> List[InvoiceLineItem]:
    """Line numbers start at 1 and follow input order"""
    return [
        InvoiceLineItem(
            line_number=index + 1,
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            tax_amount=item.tax_amount,
            amount=item.quantity * item.unit_price,
            category=item.category,
        )
        for index, item in enumerate(line_items)
    ]


def matches_search(invoice: Invoice, term: Optional[str]) -> bool:
    """Case-insensitive substring match over file name, vendor and number"""
    if not term:
        return True
    term = term.lower()
    fields = (invoice.file_name, invoice.vendor_name, invoice.invoice_number)
    return any(value and term in value.lower() for value in fields)


def _invoice_query():
    return select(Invoice).options(
        selectinload(Invoice.line_items),
        selectinload(Invoice.payment),
        selectinload(Invoice.purchase_order),
    )


class InvoiceService:
    def __init__(self, notifications: Optional[NotificationService] = None):
        self.notifications = notifications or NotificationService()

    # ------------------------------------------------------------------
    # Loading & guards
    # ------------------------------------------------------------------

    async def _load(self, db: AsyncSession, invoice_id: int, refresh: bool = False) -> Optional[Invoice]:
        query = _invoice_query().where(Invoice.id == invoice_id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def _get_owned_invoice(self, user: User, invoice_id: int, db: AsyncSession) -> Invoice:
        invoice = await self._load(db, invoice_id)
        if not invoice:
            raise NotFound("Invoice not found")
        if invoice.user_id != user.id:
            raise Forbidden()
        return invoice

    def _ensure_editable(self, invoice: Invoice, action: str):
        if not invoice.is_manual:
            raise ValidationConflict(f"Can only {action} manually created invoices")
        if invoice.is_paid:
            raise ValidationConflict(f"Cannot {action} paid invoices")

    async def _ensure_unique_number(
        self, user: User, invoice_number: str, db: AsyncSession, exclude_id: Optional[int] = None
    ):
        query = select(Invoice.id).where(
            Invoice.user_id == user.id,
            Invoice.invoice_number == invoice_number,
        )
        if exclude_id is not None:
            query = query.where(Invoice.id != exclude_id)
        result = await db.execute(query.limit(1))
        if result.first() is not None:
            raise ValidationConflict(f"Invoice number {invoice_number} already exists")

    async def _get_linkable_purchase_order(
        self, user: User, purchase_order_id: int, db: AsyncSession
    ) -> PurchaseOrder:
        result = await db.execute(
            select(PurchaseOrder)
            .options(selectinload(PurchaseOrder.linked_invoice))
            .where(PurchaseOrder.id == purchase_order_id)
        )
        purchase_order = result.scalar_one_or_none()

        if not purchase_order:
            raise NotFound("Purchase order not found")
        if purchase_order.organization_id != user.organization_id:
            raise Forbidden()
        if purchase_order.status != PurchaseOrderStatus.APPROVED:
            raise ValidationConflict("Can only create invoices for approved purchase orders")
        if purchase_order.linked_invoice is not None:
            raise ValidationConflict("Purchase order already has an invoice")
        return purchase_order

    async def _link(self, user: User, invoice: Invoice, purchase_order: PurchaseOrder, db: AsyncSession):
        invoice.purchase_order = purchase_order
        purchase_order.status = PurchaseOrderStatus.INVOICED
        await self._flush_or_conflict(db, "Purchase order already has an invoice")

        logger.info(f"🔗 Invoice {invoice.id} linked to PO {purchase_order.po_number}")

        if purchase_order.created_by_id != user.id:
            await self.notifications.notify(
                db,
                user_id=purchase_order.created_by_id,
                type=NotificationType.INVOICE_CREATED,
                title="Invoice Created",
                message=f"Invoice {invoice.invoice_number} created for PO #{purchase_order.po_number}",
            )

    async def _flush_or_conflict(self, db: AsyncSession, detail: str):
        # Unique constraints catch whatever races past the explicit checks
        try:
            await db.flush()
        except IntegrityError as e:
            await db.rollback()
            logger.warning(f"Integrity conflict: {e.orig}")
            raise ValidationConflict(detail)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_manual_invoice(
        self, user: User, data: CreateManualInvoiceRequest, db: AsyncSession
    ) -> Invoice:
        check_organization(user)

        await self._ensure_unique_number(user, data.invoice_number, db)

        purchase_order = None
        if data.purchase_order_id is not None:
            purchase_order = await self._get_linkable_purchase_order(user, data.purchase_order_id, db)

        subtotal = calculate_subtotal(data.line_items)

        invoice = Invoice(
            user_id=user.id,
            invoice_number=data.invoice_number,
            invoice_date=data.invoice_date,
            vendor_name=data.vendor,
            total_amount=data.total_amount,
            currency="USD",
            # Manual invoices skip OCR entirely
            status=InvoiceStatus.COMPLETED,
            file_name=f"Manual Invoice {data.invoice_number}",
            mime_type=MANUAL_MIME_TYPE,
            file_url="",
            file_size=0,
            structured_data={
                "due_date": data.due_date.isoformat() if data.due_date else None,
                "description": data.description,
                "subtotal": float(subtotal),
                "tax_amount": float(data.tax_amount),
            },
            payment_status=PaymentStatus.PENDING,
            line_items=build_line_items(data.line_items),
        )
        db.add(invoice)
        await self._flush_or_conflict(db, f"Invoice number {data.invoice_number} already exists")

        if purchase_order is not None:
            await self._link(user, invoice, purchase_order, db)

        await db.commit()
        logger.info(f"✅ Manual invoice {invoice.invoice_number} created for user {user.id}")

        return await self._load(db, invoice.id, refresh=True)

    async def update_manual_invoice(
        self, user: User, invoice_id: int, data: UpdateManualInvoiceRequest, db: AsyncSession
    ) -> Invoice:
        check_organization(user)

        invoice = await self._get_owned_invoice(user, invoice_id, db)
        self._ensure_editable(invoice, "edit")

        if data.invoice_number and data.invoice_number != invoice.invoice_number:
            await self._ensure_unique_number(user, data.invoice_number, db, exclude_id=invoice.id)
            invoice.invoice_number = data.invoice_number
        if data.invoice_date:
            invoice.invoice_date = data.invoice_date
        if data.vendor:
            invoice.vendor_name = data.vendor
        if data.total_amount is not None:
            invoice.total_amount = data.total_amount

        # JSON columns only detect reassignment
        structured_data = dict(invoice.structured_data or {})
        if data.due_date:
            structured_data["due_date"] = data.due_date.isoformat()
        if data.description:
            structured_data["description"] = data.description
        if data.tax_amount is not None:
            structured_data["tax_amount"] = float(data.tax_amount)

        if data.line_items is not None:
            # delete-orphan cascade removes the previous set on flush
            invoice.line_items = build_line_items(data.line_items)
            structured_data["subtotal"] = float(calculate_subtotal(data.line_items))

        invoice.structured_data = structured_data

        await self._flush_or_conflict(db, f"Invoice number {invoice.invoice_number} already exists")
        await db.commit()
        logger.info(f"✏️ Manual invoice {invoice.id} updated")

        return await self._load(db, invoice.id, refresh=True)

    async def delete_manual_invoice(self, user: User, invoice_id: int, db: AsyncSession) -> dict:
        check_organization(user)

        invoice = await self._get_owned_invoice(user, invoice_id, db)
        self._ensure_editable(invoice, "delete")

        if invoice.purchase_order is not None:
            purchase_order = invoice.purchase_order
            purchase_order.status = PurchaseOrderStatus.APPROVED
            invoice.purchase_order = None
            logger.info(f"PO {purchase_order.po_number} reverted to APPROVED")

        # Line items go with the invoice through the cascade
        await db.delete(invoice)
        await db.commit()
        logger.info(f"🗑️ Manual invoice {invoice_id} deleted")

        return {"success": True}

    async def mark_invoice_paid(
        self, user: User, invoice_id: int, data: MarkInvoicePaidRequest, db: AsyncSession
    ) -> Invoice:
        check_organization(user)

        invoice = await self._get_owned_invoice(user, invoice_id, db)
        if invoice.is_paid:
            raise ValidationConflict("Invoice is already marked as paid")

        invoice.payment_status = PaymentStatus.PAID
        invoice.payment = InvoicePayment(
            recorded_by_id=user.id,
            paid_date=data.paid_date,
            payment_method=data.payment_method,
            payment_reference=data.payment_reference,
        )
        await self._flush_or_conflict(db, "Invoice is already marked as paid")

        await self.notifications.notify(
            db,
            user_id=invoice.user_id,
            type=NotificationType.INVOICE_PAID,
            title="Invoice Paid",
            message=f"Invoice {invoice.invoice_number} has been marked as paid",
        )

        await db.commit()
        logger.info(f"💰 Invoice {invoice.id} marked as paid")

        return await self._load(db, invoice.id, refresh=True)

    async def link_purchase_order(
        self, user: User, invoice_id: int, purchase_order_id: int, db: AsyncSession
    ) -> Invoice:
        check_organization(user)

        invoice = await self._get_owned_invoice(user, invoice_id, db)
        if invoice.is_paid:
            raise ValidationConflict("Cannot link paid invoices")
        if invoice.purchase_order_id is not None:
            raise ValidationConflict("Invoice is already linked to a purchase order")

        purchase_order = await self._get_linkable_purchase_order(user, purchase_order_id, db)
        await self._link(user, invoice, purchase_order, db)

        await db.commit()
        return await self._load(db, invoice.id, refresh=True)

    async def unlink_purchase_order(self, user: User, invoice_id: int, db: AsyncSession) -> Invoice:
        check_organization(user)

        invoice = await self._get_owned_invoice(user, invoice_id, db)
        if invoice.is_paid:
            raise ValidationConflict("Cannot unlink paid invoices")
        if invoice.purchase_order is None:
            raise ValidationConflict("Invoice is not linked to a purchase order")

        purchase_order = invoice.purchase_order
        purchase_order.status = PurchaseOrderStatus.APPROVED
        invoice.purchase_order = None

        await db.commit()
        logger.info(f"Invoice {invoice.id} unlinked from PO {purchase_order.po_number}")

        return await self._load(db, invoice.id, refresh=True)

    async def upload_invoices(self, user: User, files: List[UploadFile], db: AsyncSession) -> List[Invoice]:
        """Store uploaded documents as UPLOADED invoices awaiting processing"""
        check_auth(user)

        if len(files) > settings.MAX_UPLOAD_FILES:
            raise ValidationConflict(f"Max {settings.MAX_UPLOAD_FILES} files")

        accepted = []
        for file in files:
            if file.content_type not in ALLOWED_UPLOAD_TYPES:
                logger.warning(f"Skipping {file.filename}: unsupported type {file.content_type}")
                continue
            accepted.append(file)

        if user.plan == "credit_pack" and user.credits_balance < len(accepted):
            raise InsufficientCredits()

        storage_service = StorageService()
        invoices = []
        saved_paths = []

        for file in accepted:
            file_path, file_size = await storage_service.save_upload(file, user.id)
            saved_paths.append(file_path)

            invoice = Invoice(
                user_id=user.id,
                file_name=file.filename,
                mime_type=file.content_type,
                file_url=file_path,
                file_size=file_size,
                status=InvoiceStatus.UPLOADED,
                structured_data={},
                payment_status=PaymentStatus.PENDING,
            )
            db.add(invoice)
            invoices.append(invoice)

        try:
            await db.commit()
        except SQLAlchemyError:
            await db.rollback()
            for path in saved_paths:
                storage_service.delete_upload(path)
            raise

        logger.info(f"📤 {len(invoices)} invoice(s) uploaded by user {user.id}")
        return invoices

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_user_invoices(
        self, user: User, db: AsyncSession, search: Optional[str] = None
    ) -> List[Invoice]:
        check_auth(user)

        result = await db.execute(
            _invoice_query()
            .where(Invoice.user_id == user.id)
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
            .limit(settings.RECENT_INVOICES_LIMIT)
        )
        return [inv for inv in result.scalars().all() if matches_search(inv, search)]

    async def get_manual_invoices(
        self,
        user: User,
        db: AsyncSession,
        payment_status: Optional[PaymentStatus] = None,
        search: Optional[str] = None,
    ) -> List[Invoice]:
        check_organization(user)

        query = _invoice_query().where(
            Invoice.user_id == user.id,
            Invoice.mime_type == MANUAL_MIME_TYPE,
        )
        if payment_status is not None:
            query = query.where(Invoice.payment_status == payment_status)

        result = await db.execute(query.order_by(Invoice.created_at.desc(), Invoice.id.desc()))
        return [inv for inv in result.scalars().all() if matches_search(inv, search)]

    async def get_invoice_by_id(self, user: User, invoice_id: int, db: AsyncSession) -> Invoice:
        check_auth(user)
        return await self._get_owned_invoice(user, invoice_id, db)
