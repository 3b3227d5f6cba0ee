# services/payment.py - Credit Purchases (Stripe)
# ============================================================================

import logging
from typing import Optional
import stripe
from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from app.models.user import User
from app.models.payment import Payment
from app.core.config import settings
from app.services.auth import check_auth

logger = logging.getLogger(__name__)

stripe.api_key = settings.STRIPE_SECRET_KEY

class PaymentService:

    async def create_checkout_session(self, user: User, price_id: Optional[str] = None) -> dict:
        check_auth(user)

        session = stripe.checkout.Session.create(
            payment_method_types=['card'],
            line_items=[{
                'price': price_id or settings.STRIPE_CREDITS_PRICE_ID,
                'quantity': 1,
            }],
            mode='payment',
            success_url=f"{settings.FRONTEND_URL}/invoices?success=true",
            cancel_url=f"{settings.FRONTEND_URL}/invoices?canceled=true",
            customer_email=user.email,
            metadata={
                'user_id': str(user.id),
            }
        )

        logger.info(f"Checkout session {session.id} created for user {user.id}")
        return {"checkout_url": session.url}

    async def handle_webhook(self, payload: bytes, sig_header: str, db: AsyncSession) -> dict:
        try:
            event = stripe.Webhook.construct_event(
                payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
            )
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid payload")
        except stripe.SignatureVerificationError:
            raise HTTPException(status_code=400, detail="Invalid signature")

        if event['type'] != 'checkout.session.completed':
            return {"received": True}

        session = event['data']['object']
        user_id = int(session['metadata']['user_id'])

        # Stripe retries deliveries; credit each session once
        existing = await db.execute(select(Payment.id).where(Payment.stripe_session_id == session['id']))
        if existing.first() is not None:
            return {"received": True}

        user = await db.get(User, user_id)
        if not user:
            logger.warning(f"Checkout {session['id']} completed for unknown user {user_id}")
            return {"received": True}

        user.credits_balance += settings.CREDITS_PER_PACK
        db.add(Payment(
            user_id=user_id,
            stripe_session_id=session['id'],
            amount=session['amount_total'] / 100,  # Convert from cents
            credits_granted=settings.CREDITS_PER_PACK,
            status="completed"
        ))
        await db.commit()

        logger.info(f"💳 Added {settings.CREDITS_PER_PACK} credits to user {user_id}")
        return {"received": True}
