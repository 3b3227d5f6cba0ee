# services/batch.py - Sequential Batch Processing
# ============================================================================

import asyncio
import logging
from typing import List, Optional
from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.core.config import settings
from app.models.invoice import Invoice, InvoiceStatus
from app.models.user import User
from app.services.auth import check_auth
from app.services.processing import ProcessingService

logger = logging.getLogger(__name__)


class BatchProcessor:
    """
    Dispatches every UPLOADED invoice of a user to the processing service,
    one at a time with a fixed pause between dispatches. A failing invoice is
    logged and recorded, then the loop moves on to the next one.
    """

    def __init__(self, processing: Optional[ProcessingService] = None, delay: Optional[float] = None):
        self.processing = processing or ProcessingService()
        self.delay = settings.BATCH_PROCESS_DELAY_SECONDS if delay is None else delay

    async def process_uploaded(self, user: User, db: AsyncSession) -> dict:
        check_auth(user)

        result = await db.execute(
            select(Invoice)
            .where(Invoice.user_id == user.id, Invoice.status == InvoiceStatus.UPLOADED)
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        )
        pending: List[Invoice] = list(result.scalars().all())

        summary = {"total": len(pending), "processed": 0, "failed": 0, "results": []}
        if not pending:
            logger.info(f"No invoices to process for user {user.id}")
            return summary

        logger.info(f"Processing {len(pending)} invoices for user {user.id}")

        for index, invoice in enumerate(pending):
            try:
                await self.processing.dispatch(invoice.id)
            except HTTPException as e:
                logger.error(f"Failed to process {invoice.file_name}: {e.detail}")
                summary["failed"] += 1
                summary["results"].append({"invoice_id": invoice.id, "success": False, "error": e.detail})
            except Exception as e:
                logger.exception(f"Unexpected error processing {invoice.file_name}")
                summary["failed"] += 1
                summary["results"].append({"invoice_id": invoice.id, "success": False, "error": str(e)})
            else:
                logger.info(f"Processed {invoice.file_name}")
                summary["processed"] += 1
                summary["results"].append({"invoice_id": invoice.id, "success": True, "error": None})

            if index < len(pending) - 1:
                await asyncio.sleep(self.delay)

        logger.info(f"Batch processing complete: {summary['processed']} ok, {summary['failed']} failed")
        return summary
