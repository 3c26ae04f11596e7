"""Payouts router - cron trigger, manual payouts and Stripe Connect onboarding"""

import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.orm import Session

from ... import config
from ...auth import get_current_user
from ...database import get_db
from ...errors import InvalidInput, MethodNotAllowed, Unauthorized
from ...models import User
from ...providers import get_paypal_service, get_stripe_service
from ...services.paypal_service import PayPalService
from ...services.stripe_service import StripeService
from .schemas import ConnectAccountRequest, PayoutMethod, PayoutRequest, PayoutRunResponse
from .service import ConnectService, PayoutProcessor, estimate_payout

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Payouts"])


def get_payout_processor(
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
    paypal_service: PayPalService = Depends(get_paypal_service),
) -> PayoutProcessor:
    """Dependency injection for PayoutProcessor"""
    return PayoutProcessor(db, stripe_service, paypal_service)


def get_connect_service(
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
) -> ConnectService:
    return ConnectService(db, stripe_service)


def verify_cron_secret(authorization: Optional[str] = Header(None)) -> None:
    """Require Authorization: Bearer <CRON_SECRET>"""
    expected = f"Bearer {config.CRON_SECRET}"
    if not authorization or not secrets.compare_digest(authorization.encode(), expected.encode()):
        logger.warning("🚫 Payout cron called without a valid secret")
        raise Unauthorized("Unauthorized")


# ============================================================================
# SCHEDULED PAYOUTS
# ============================================================================


@router.post("/cron/payouts", response_model=PayoutRunResponse, dependencies=[Depends(verify_cron_secret)])
async def run_scheduled_payouts(processor: PayoutProcessor = Depends(get_payout_processor)):
    """Process scheduled payouts (called by the scheduler)"""
    logger.info("🔄 Processing scheduled payouts...")
    result = await processor.process_scheduled_payouts()
    return {"success": True, "message": "Scheduled payouts processed successfully", **result.to_dict()}


@router.get("/cron/payouts", response_model=PayoutRunResponse)
async def run_scheduled_payouts_dev(processor: PayoutProcessor = Depends(get_payout_processor)):
    """Manual trigger without the secret, development only"""
    if config.ENVIRONMENT != "development":
        raise MethodNotAllowed("Method not allowed in production")
    logger.info("🔄 [DEV] Manually processing scheduled payouts...")
    result = await processor.process_scheduled_payouts()
    return {"success": True, "message": "Scheduled payouts processed successfully (dev mode)", **result.to_dict()}


# ============================================================================
# SELLER PAYOUTS
# ============================================================================


@router.post("/payouts")
async def create_payout(
    body: PayoutRequest,
    user: User = Depends(get_current_user),
    processor: PayoutProcessor = Depends(get_payout_processor),
):
    """Pay out a released transaction now"""
    return await processor.payout_transaction(user, body.transaction_id)


@router.get("/payouts/history")
async def get_payout_history(
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    processor: PayoutProcessor = Depends(get_payout_processor),
):
    """Seller's payout history"""
    return processor.get_history(user, limit)


@router.get("/payouts/estimate")
async def get_payout_estimate(
    amount: float = Query(..., gt=0),
    method: PayoutMethod = "stripe",
    user: User = Depends(get_current_user),
):
    """What the seller would receive for a sale of the given amount"""
    return {"success": True, "calculation": estimate_payout(amount, user.subscription_tier, method)}


# ============================================================================
# STRIPE CONNECT
# ============================================================================


@router.post("/stripe/connect/account")
async def connect_account_action(
    body: ConnectAccountRequest,
    user: User = Depends(get_current_user),
    service: ConnectService = Depends(get_connect_service),
):
    """Create and manage the seller's Connect account"""
    if body.action == "create_account":
        return await service.create_account(user)
    if body.action == "create_onboarding_link":
        return await service.create_onboarding_link(user)
    if body.action == "get_status":
        return await service.get_status(user)
    if body.action == "create_dashboard_link":
        return await service.create_dashboard_link(user)
    raise InvalidInput("Invalid action", details={"action": body.action})


@router.get("/stripe/connect/account")
async def get_connect_account(
    user: User = Depends(get_current_user),
    service: ConnectService = Depends(get_connect_service),
):
    """Connect account status"""
    return await service.get_status(user)
