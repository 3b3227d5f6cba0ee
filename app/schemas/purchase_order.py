from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from app.models.purchase_order import PurchaseOrderStatus

class CreatorSummary(BaseModel):
    id: int
    email: str
    name: Optional[str]

    class Config:
        from_attributes = True

class PurchaseOrderLineItemResponse(BaseModel):
    id: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal

    class Config:
        from_attributes = True

class PurchaseOrderResponse(BaseModel):
    id: int
    organization_id: int
    po_number: str
    vendor: str
    description: Optional[str]
    total_amount: Decimal
    status: PurchaseOrderStatus
    created_by: CreatorSummary
    line_items: List[PurchaseOrderLineItemResponse]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True
