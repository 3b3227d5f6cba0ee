# main.py - FastAPI Application
# ============================================================================

import logging
import traceback
from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, UploadFile, File, Request, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.core.config import settings
from app.core.database import get_db, init_db
from app.core.exceptions import Unauthenticated
from app.models import invoice, notification, organization, payment, purchase_order  # noqa: F401
from app.models.user import User
from app.models.invoice import PaymentStatus
from app.services.auth import AuthService
from app.services.batch import BatchProcessor
from app.services.invoices import InvoiceService
from app.services.notifications import NotificationService
from app.services.payment import PaymentService
from app.services.processing import ProcessingService
from app.services.purchase_orders import PurchaseOrderService
from app.schemas.auth import UserResponse
from app.schemas.billing import CheckoutRequest, CheckoutResponse
from app.schemas.invoice import (
    CreateManualInvoiceRequest,
    InvoiceDetailResponse,
    InvoiceResponse,
    InvoiceUploadResponse,
    LinkPurchaseOrderRequest,
    MarkInvoicePaidRequest,
    SuccessResponse,
    UpdateManualInvoiceRequest,
)
from app.schemas.notification import NotificationResponse
from app.schemas.purchase_order import PurchaseOrderResponse

# Setup logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await init_db()
        logger.info("✅ Database initialized")
    except Exception as e:
        logger.error(f"❌ Database init failed: {e}")
    yield

app = FastAPI(
    title="Invoice & PO Manager API",
    description="Invoices, purchase-order matching and payment tracking",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.method} {request.url}: {exc}")
    logger.error(f"Full traceback: {traceback.format_exc()}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )

security = HTTPBearer(auto_error=False)

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    if credentials is None:
        raise Unauthenticated()
    user = await AuthService().get_current_user(credentials.credentials, db)
    if not user:
        raise Unauthenticated("Invalid authentication credentials")
    return user

# ============================================================================
# HEALTH & SESSION
# ============================================================================

@app.get("/health")
async def health():
    return {"status": "healthy"}

@app.get("/api/auth/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)):
    return current_user

# ============================================================================
# INVOICES
# ============================================================================

@app.post("/api/invoices/upload", response_model=List[InvoiceUploadResponse])
async def upload_invoices(
    files: List[UploadFile] = File(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    invoices = await InvoiceService().upload_invoices(current_user, files, db)
    return [
        InvoiceUploadResponse(invoice_id=inv.id, file_name=inv.file_name, status=inv.status)
        for inv in invoices
    ]

@app.get("/api/invoices", response_model=List[InvoiceResponse])
async def list_invoices(
    search: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await InvoiceService().get_user_invoices(current_user, db, search=search)

@app.post("/api/invoices/process-all")
async def process_all_invoices(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await BatchProcessor().process_uploaded(current_user, db)

@app.post("/api/invoices/manual", response_model=InvoiceResponse, status_code=201)
async def create_manual_invoice(
    request: CreateManualInvoiceRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await InvoiceService().create_manual_invoice(current_user, request, db)

@app.get("/api/invoices/manual", response_model=List[InvoiceResponse])
async def list_manual_invoices(
    payment_status: Optional[PaymentStatus] = Query(None),
    search: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await InvoiceService().get_manual_invoices(
        current_user, db, payment_status=payment_status, search=search
    )

@app.put("/api/invoices/manual/{invoice_id}", response_model=InvoiceResponse)
async def update_manual_invoice(
    invoice_id: int,
    request: UpdateManualInvoiceRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await InvoiceService().update_manual_invoice(current_user, invoice_id, request, db)

@app.delete("/api/invoices/manual/{invoice_id}", response_model=SuccessResponse)
async def delete_manual_invoice(
    invoice_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await InvoiceService().delete_manual_invoice(current_user, invoice_id, db)

@app.get("/api/invoices/{invoice_id}", response_model=InvoiceDetailResponse)
async def get_invoice(
    invoice_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await InvoiceService().get_invoice_by_id(current_user, invoice_id, db)

@app.post("/api/invoices/{invoice_id}/mark-paid", response_model=InvoiceResponse)
async def mark_invoice_paid(
    invoice_id: int,
    request: MarkInvoicePaidRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await InvoiceService().mark_invoice_paid(current_user, invoice_id, request, db)

@app.post("/api/invoices/{invoice_id}/link", response_model=InvoiceDetailResponse)
async def link_purchase_order(
    invoice_id: int,
    request: LinkPurchaseOrderRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await InvoiceService().link_purchase_order(
        current_user, invoice_id, request.purchase_order_id, db
    )

@app.post("/api/invoices/{invoice_id}/unlink", response_model=InvoiceDetailResponse)
async def unlink_purchase_order(
    invoice_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await InvoiceService().unlink_purchase_order(current_user, invoice_id, db)

@app.post("/api/invoices/{invoice_id}/process")
async def process_invoice(
    invoice_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await ProcessingService().process_pending_invoice(current_user, invoice_id, db)

# ============================================================================
# PURCHASE ORDERS
# ============================================================================

@app.get("/api/purchase-orders/approved-unlinked", response_model=List[PurchaseOrderResponse])
async def approved_purchase_orders_without_invoices(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await PurchaseOrderService().get_approved_pos_without_invoices(current_user, db)

# ============================================================================
# NOTIFICATIONS
# ============================================================================

@app.get("/api/notifications", response_model=List[NotificationResponse])
async def list_notifications(
    unread_only: bool = False,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await NotificationService().list_notifications(current_user, db, unread_only=unread_only)

@app.post("/api/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    return await NotificationService().mark_read(current_user, notification_id, db)

# ============================================================================
# BILLING
# ============================================================================

@app.post("/api/billing/checkout", response_model=CheckoutResponse)
async def buy_credits(
    request: CheckoutRequest,
    current_user: User = Depends(get_current_user)
):
    return await PaymentService().create_checkout_session(current_user, request.price_id)

@app.post("/api/billing/webhook")
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")
    return await PaymentService().handle_webhook(payload, sig_header, db)

@app.get("/")
async def root():
    return {"message": "Invoice & PO Manager API", "version": "1.0.0"}
