# models/invoice.py - Invoice Database Model
# ============================================================================
from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey, Text, Numeric, JSON, UniqueConstraint
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from enum import Enum
from app.core.database import Base

MANUAL_MIME_TYPE = "application/manual"


class InvoiceStatus(str, Enum):
    UPLOADED = "UPLOADED"
    PROCESSING_OCR = "PROCESSING_OCR"
    PROCESSING_LLM = "PROCESSING_LLM"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"

class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("user_id", "invoice_number", name="uq_invoices_user_invoice_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # An invoice settles at most one PO and a PO is settled by at most one invoice
    purchase_order_id = Column(Integer, ForeignKey("purchase_orders.id"), nullable=True, unique=True)
    status = Column(SQLEnum(InvoiceStatus), default=InvoiceStatus.UPLOADED, nullable=False)
    error_message = Column(Text, nullable=True)

    # File metadata (synthetic for manual invoices)
    file_name = Column(String, nullable=False)
    mime_type = Column(String, nullable=False)
    file_url = Column(String, nullable=False, default="")
    file_size = Column(Integer, nullable=False, default=0)

    # Extracted / entered data
    invoice_number = Column(String, nullable=True)
    vendor_name = Column(String, nullable=True)
    invoice_date = Column(Date, nullable=True)
    total_amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=False, default="USD")
    structured_data = Column(JSON, nullable=False, default=dict)  # dueDate, description, subtotal, taxAmount

    payment_status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    user = relationship("User", back_populates="invoices")
    purchase_order = relationship("PurchaseOrder", back_populates="linked_invoice")
    line_items = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.line_number",
    )
    payment = relationship("InvoicePayment", back_populates="invoice", uselist=False, cascade="all, delete-orphan")

    @property
    def is_manual(self) -> bool:
        return self.mime_type == MANUAL_MIME_TYPE

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.PAID

class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    line_number = Column(Integer, nullable=False)
    description = Column(String, nullable=False)
    quantity = Column(Numeric(12, 2), nullable=True)
    unit_price = Column(Numeric(12, 2), nullable=True)
    tax_amount = Column(Numeric(12, 2), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    category = Column(String, nullable=True)

    # Relationships
    invoice = relationship("Invoice", back_populates="line_items")

class InvoicePayment(Base):
    """Records the PENDING -> PAID transition of an invoice"""
    __tablename__ = "invoice_payments"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, unique=True)
    recorded_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    paid_date = Column(Date, nullable=False)
    payment_method = Column(String, nullable=True)
    payment_reference = Column(String, nullable=True)
    recorded_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    invoice = relationship("Invoice", back_populates="payment")
