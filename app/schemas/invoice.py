# schemas/invoice.py - Invoice Schemas
# ============================================================================

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List, Dict, Any
from app.models.invoice import InvoiceStatus, PaymentStatus
from app.models.purchase_order import PurchaseOrderStatus

# Request Schemas
class LineItemInput(BaseModel):
    description: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., ge=0)
    unit_price: Decimal
    tax_amount: Decimal = Decimal("0")
    category: Optional[str] = None

class CreateManualInvoiceRequest(BaseModel):
    purchase_order_id: Optional[int] = None
    invoice_number: str = Field(..., min_length=1)
    invoice_date: date
    due_date: Optional[date] = None
    vendor: str = Field(..., min_length=1)
    description: Optional[str] = None
    total_amount: Decimal
    tax_amount: Decimal = Decimal("0")
    line_items: List[LineItemInput] = []

class UpdateManualInvoiceRequest(BaseModel):
    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    vendor: Optional[str] = None
    description: Optional[str] = None
    total_amount: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    line_items: Optional[List[LineItemInput]] = None

class MarkInvoicePaidRequest(BaseModel):
    paid_date: date
    payment_method: Optional[str] = None
    payment_reference: Optional[str] = None

class LinkPurchaseOrderRequest(BaseModel):
    purchase_order_id: int

# Response Schemas
class InvoiceUploadResponse(BaseModel):
    invoice_id: int
    file_name: str
    status: InvoiceStatus

class LineItemResponse(BaseModel):
    id: int
    line_number: int
    description: str
    quantity: Optional[Decimal]
    unit_price: Optional[Decimal]
    tax_amount: Optional[Decimal]
    amount: Decimal
    category: Optional[str]

    class Config:
        from_attributes = True

class InvoicePaymentResponse(BaseModel):
    paid_date: date
    payment_method: Optional[str]
    payment_reference: Optional[str]
    recorded_at: Optional[datetime]

    class Config:
        from_attributes = True

class PurchaseOrderSummary(BaseModel):
    id: int
    po_number: str
    vendor: str
    total_amount: Decimal
    status: PurchaseOrderStatus

    class Config:
        from_attributes = True

class InvoiceResponse(BaseModel):
    id: int
    user_id: int
    purchase_order_id: Optional[int]
    status: InvoiceStatus
    error_message: Optional[str]
    file_name: str
    mime_type: str
    file_url: str
    file_size: int
    invoice_number: Optional[str]
    vendor_name: Optional[str]
    invoice_date: Optional[date]
    total_amount: Optional[Decimal]
    currency: str
    structured_data: Dict[str, Any]
    payment_status: PaymentStatus
    payment: Optional[InvoicePaymentResponse]
    line_items: List[LineItemResponse]
    created_at: Optional[datetime]
    updated_at: Optional[datetime]

    class Config:
        from_attributes = True

class InvoiceDetailResponse(InvoiceResponse):
    purchase_order: Optional[PurchaseOrderSummary]

class SuccessResponse(BaseModel):
    success: bool = True
