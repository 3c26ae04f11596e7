"""
Stripe Webhook Handler
Records captured checkouts in escrow when Stripe confirms payment
"""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..domain.escrow.service import EscrowService
from ..errors import InvalidInput, NotFound
from ..providers import get_stripe_service
from ..services.stripe_service import StripeService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["webhooks"])


@router.post("/webhook")
async def handle_stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    """
    Handle Stripe webhook events

    Events handled:
    - checkout.session.completed - hosted checkout paid; creates transactions and holds
    - account.updated - Connect onboarding progress (logged only)
    """
    body = await request.body()
    event = stripe_service.construct_event(body, request.headers.get("stripe-signature"))

    event_type = event.get("type")
    logger.info(f"📥 Received Stripe webhook: {event_type} ({event.get('id')})")

    if event_type == "checkout.session.completed":
        session = event.get("data", {}).get("object", {})
        return handle_checkout_completed(session, db)

    if event_type == "account.updated":
        account = event.get("data", {}).get("object", {})
        logger.info(
            f"ℹ️ Connect account {account.get('id')} updated: "
            f"charges={account.get('charges_enabled')} payouts={account.get('payouts_enabled')}"
        )
    else:
        logger.info(f"ℹ️ Unhandled event type: {event_type}")

    return {"received": True, "eventType": event_type}


def handle_checkout_completed(session: dict, db: Session) -> dict:
    session_id = session.get("id")
    if session.get("mode") != "payment":
        logger.info(f"ℹ️ Ignoring checkout session {session_id} in {session.get('mode')} mode")
        return {"received": True, "ignored": "not a payment session"}
    if session.get("payment_status") not in (None, "paid"):
        logger.warning(f"⚠️ Checkout session {session_id} unpaid ({session.get('payment_status')})")
        return {"received": True, "ignored": "payment not completed"}

    customer_details = session.get("customer_details") or {}
    buyer_email = customer_details.get("email") or session.get("customer_email")

    try:
        transactions = EscrowService(db).record_captured_checkout(
            provider="stripe",
            provider_reference=session_id,
            provider_payment_id=session.get("payment_intent"),
            buyer_email=buyer_email,
        )
    except (NotFound, InvalidInput) as e:
        # Not one of our checkouts; acknowledge so Stripe stops retrying
        logger.warning(f"⚠️ Checkout session {session_id} not recorded: {e.message}")
        return {"received": True, "ignored": e.message}

    return {"received": True, "transactionIds": [transaction.id for transaction in transactions]}
