"""
Shared fixtures: an in-memory SQLite database seeded with one organization,
its members, an outsider and a handful of purchase orders.

Run with: pytest tests/ -v
"""
import os
import tempfile
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

# Configure before the app modules build their engine and settings
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="invoice-uploads-"))
os.environ.setdefault("BATCH_PROCESS_DELAY_SECONDS", "0")

import httpx
import jwt
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.core.config import settings
from app.core.database import Base, get_db
from app.main import app, get_current_user
from app.models.invoice import Invoice, InvoiceStatus, PaymentStatus
from app.models.organization import Organization
from app.models.purchase_order import PurchaseOrder, PurchaseOrderLineItem, PurchaseOrderStatus
from app.models.user import User
from app.services.auth import ALGORITHM
from app.schemas.invoice import CreateManualInvoiceRequest, LineItemInput


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(engine):
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session


@pytest.fixture
async def org(db):
    organization = Organization(name="Acme Property Group")
    db.add(organization)
    await db.commit()
    return organization


@pytest.fixture
async def other_org(db):
    organization = Organization(name="Globex")
    db.add(organization)
    await db.commit()
    return organization


async def _make_user(db, email, organization=None, credits=10):
    user = User(
        email=email,
        name=email.split("@")[0].title(),
        organization_id=organization.id if organization else None,
        plan="credit_pack",
        credits_balance=credits,
    )
    db.add(user)
    await db.commit()
    return user


@pytest.fixture
async def alice(db, org):
    """Invoice clerk; creates the invoices in most tests"""
    return await _make_user(db, "alice@acme.test", org)


@pytest.fixture
async def bob(db, org):
    """Purchasing manager in the same organization; creates the POs"""
    return await _make_user(db, "bob@acme.test", org)


@pytest.fixture
async def mallory(db, other_org):
    return await _make_user(db, "mallory@globex.test", other_org)


@pytest.fixture
async def loner(db):
    return await _make_user(db, "loner@example.test")


async def _make_po(db, organization, creator, number, status=PurchaseOrderStatus.APPROVED, total="500.00"):
    purchase_order = PurchaseOrder(
        organization_id=organization.id,
        created_by_id=creator.id,
        po_number=number,
        vendor="Office Supplies Co",
        description="Quarterly supplies",
        total_amount=Decimal(total),
        status=status,
        line_items=[
            PurchaseOrderLineItem(
                description="Paper",
                quantity=Decimal("10"),
                unit_price=Decimal("50.00"),
                amount=Decimal("500.00"),
            )
        ],
    )
    db.add(purchase_order)
    await db.commit()
    return purchase_order


@pytest.fixture
def make_po(db):
    async def factory(organization, creator, number, status=PurchaseOrderStatus.APPROVED, total="500.00"):
        return await _make_po(db, organization, creator, number, status, total)
    return factory


@pytest.fixture
async def approved_po(db, org, bob):
    return await _make_po(db, org, bob, "PO-1001")


@pytest.fixture
def manual_invoice_request():
    def factory(invoice_number="INV-001", purchase_order_id=None, line_items=None):
        if line_items is None:
            line_items = [
                LineItemInput(description="Paper", quantity=Decimal("2"), unit_price=Decimal("10.50")),
                LineItemInput(description="Toner", quantity=Decimal("3"), unit_price=Decimal("4.25")),
            ]
        return CreateManualInvoiceRequest(
            purchase_order_id=purchase_order_id,
            invoice_number=invoice_number,
            invoice_date=date(2024, 3, 1),
            due_date=date(2024, 3, 31),
            vendor="Office Supplies Co",
            description="March supplies",
            total_amount=Decimal("36.45"),
            tax_amount=Decimal("2.70"),
            line_items=line_items,
        )
    return factory


@pytest.fixture
def make_uploaded_invoice(db):
    async def factory(owner, file_name="scan.pdf", status=InvoiceStatus.UPLOADED):
        invoice = Invoice(
            user_id=owner.id,
            file_name=file_name,
            mime_type="application/pdf",
            file_url=f"/uploads/{owner.id}/{file_name}",
            file_size=1024,
            status=status,
            structured_data={},
            payment_status=PaymentStatus.PENDING,
        )
        db.add(invoice)
        await db.commit()
        return invoice
    return factory


@pytest.fixture
def as_user(db):
    """Route requests through the app as the given user"""
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    def login(user):
        if user is None:
            app.dependency_overrides.pop(get_current_user, None)
        else:
            app.dependency_overrides[get_current_user] = lambda: user

    yield login
    app.dependency_overrides.clear()


@pytest.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client


@pytest.fixture
def issue_token():
    """Sign a bearer token the way the identity provider does"""
    def sign(user, expires_in=timedelta(minutes=30)):
        payload = {"sub": str(user.id), "exp": datetime.now(timezone.utc) + expires_in}
        return jwt.encode(payload, settings.SECRET_KEY, algorithm=ALGORITHM)
    return sign
