# services/processing.py - Document Processing Client
# ============================================================================
#
# OCR/LLM extraction runs in a separate service. This client only dispatches
# one invoice at a time to it; the remote side owns the status transitions
# (UPLOADED -> PROCESSING_OCR -> PROCESSING_LLM -> COMPLETED/FAILED).

import logging
from typing import Optional
import httpx
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.config import settings
from app.core.exceptions import Forbidden, NotFound, ProcessingFailed, ValidationConflict
from app.models.invoice import Invoice
from app.models.user import User
from app.services.auth import check_auth

logger = logging.getLogger(__name__)


class ProcessingService:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.PROCESSING_SERVICE_URL).rstrip("/")
        self.timeout = timeout or settings.PROCESSING_TIMEOUT_SECONDS
        self.transport = transport

    async def process_pending_invoice(self, user: User, invoice_id: int, db: AsyncSession) -> dict:
        check_auth(user)

        invoice = await db.get(Invoice, invoice_id)
        if not invoice:
            raise NotFound("Invoice not found")
        if invoice.user_id != user.id:
            raise Forbidden()
        if invoice.is_manual:
            raise ValidationConflict("Manual invoices do not need processing")

        return await self.dispatch(invoice_id)

    async def dispatch(self, invoice_id: int) -> dict:
        logger.info(f"🔄 Dispatching invoice {invoice_id} for processing")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    f"{self.base_url}/process",
                    json={"invoice_id": invoice_id},
                )
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"❌ Processing service rejected invoice {invoice_id}: {e.response.status_code}")
            raise ProcessingFailed(f"Processing failed with status {e.response.status_code}")
        except httpx.HTTPError as e:
            logger.error(f"❌ Processing service unreachable for invoice {invoice_id}: {e}")
            raise ProcessingFailed("Processing service unavailable")

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            # Accepted, but the reply carries no JSON payload
            logger.warning(f"⚠️ Non-JSON reply from processing service for invoice {invoice_id}")
            return {}
