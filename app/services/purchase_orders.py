from typing import List
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from app.models.purchase_order import PurchaseOrder, PurchaseOrderStatus
from app.models.user import User
from app.services.auth import check_organization


class PurchaseOrderService:

    async def get_approved_pos_without_invoices(self, user: User, db: AsyncSession) -> List[PurchaseOrder]:
        """Approved POs of the caller's organization still open for invoice matching"""
        check_organization(user)

        result = await db.execute(
            select(PurchaseOrder)
            .options(
                selectinload(PurchaseOrder.created_by),
                selectinload(PurchaseOrder.line_items),
            )
            .where(
                PurchaseOrder.organization_id == user.organization_id,
                PurchaseOrder.status == PurchaseOrderStatus.APPROVED,
                ~PurchaseOrder.linked_invoice.has(),
            )
            .order_by(PurchaseOrder.created_at.desc(), PurchaseOrder.id.desc())
        )
        return list(result.scalars().all())
