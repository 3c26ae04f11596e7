"""Checkout router - FastAPI endpoints for Stripe checkout and PayPal orders"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ...providers import get_paypal_service, get_shipping_service, get_stripe_service
from ...services.paypal_service import PayPalService
from ...services.shipping_service import ShippingService
from ...services.stripe_service import StripeService
from .commission import SUBSCRIPTION_TIERS, calculate_commission
from .schemas import (
    CaptureResponse,
    CheckoutRequest,
    CheckoutResponse,
    CommissionQuoteResponse,
    OrderRequest,
    OrderResponse,
)
from .service import CheckoutOrchestrator, CheckoutService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Checkout"])


def get_checkout_service(
    db: Session = Depends(get_db),
    shipping_service: ShippingService = Depends(get_shipping_service),
    stripe_service: StripeService = Depends(get_stripe_service),
    paypal_service: PayPalService = Depends(get_paypal_service),
) -> CheckoutService:
    """Dependency injection for CheckoutService"""
    return CheckoutService(db, CheckoutOrchestrator(shipping_service), stripe_service, paypal_service)


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    body: CheckoutRequest,
    service: CheckoutService = Depends(get_checkout_service),
):
    """Create a Stripe hosted checkout session for a product"""
    return await service.create_stripe_checkout(body)


@router.get("/checkout/commission", response_model=CommissionQuoteResponse)
async def get_commission_quote(
    amount: float = Query(..., gt=0),
    tier: Optional[str] = None,
):
    """Commission a seller pays on a sale of the given amount"""
    breakdown = calculate_commission(amount, tier)
    return {
        "amount": amount,
        "tier": tier if tier in SUBSCRIPTION_TIERS else "free",
        "rate": float(breakdown.rate),
        "commissionAmount": float(breakdown.commission_amount),
        "sellerReceives": float(breakdown.seller_receives),
    }


@router.post("/orders", response_model=OrderResponse)
async def create_order(
    body: OrderRequest,
    user: User = Depends(get_current_user),
    service: CheckoutService = Depends(get_checkout_service),
):
    """Create a PayPal order for a product or a cart"""
    return await service.create_paypal_order(body, user)


@router.post("/orders/{order_id}/capture", response_model=CaptureResponse)
async def capture_order(
    order_id: str,
    user: User = Depends(get_current_user),
    service: CheckoutService = Depends(get_checkout_service),
):
    """Capture an approved PayPal order"""
    return await service.capture_paypal_order(order_id, user)
