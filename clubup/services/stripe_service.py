"""Stripe service - Checkout sessions, webhooks and Connect payouts"""

import json
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

import stripe

from ..errors import InvalidInput, UpstreamFailure

logger = logging.getLogger(__name__)

STRIPE_API_VERSION = "2025-06-30.basil"
PLATFORM_NAME = "clubup"


def to_minor_units(amount: Decimal) -> int:
    """Pounds to pence"""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeService:
    """Service for Stripe API operations"""

    def __init__(
        self,
        api_key: Optional[str],
        webhook_secret: Optional[str] = None,
        frontend_url: str = "http://localhost:3000",
        connect_country: str = "GB",
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.frontend_url = frontend_url
        self.connect_country = connect_country

        if not self.api_key:
            logger.warning("STRIPE_SECRET_KEY not set; Stripe endpoints will fail until configured")
        else:
            logger.info("Stripe client configured")

    def is_available(self) -> bool:
        return bool(self.api_key)

    def _require_client(self) -> None:
        if not self.api_key:
            raise UpstreamFailure("Stripe is not configured")

    def _options(self) -> dict:
        return {"api_key": self.api_key, "stripe_version": STRIPE_API_VERSION}

    async def create_checkout_session(
        self,
        intent,
        success_url: str,
        cancel_url: str,
        customer_email: Optional[str] = None,
        description: Optional[str] = None,
    ) -> dict:
        """Create a hosted checkout session for a checkout intent"""
        self._require_client()

        currency = intent.currency.lower()
        line_items = []
        for item in intent.line_items:
            product_data: dict[str, Any] = {"name": item.name}
            if item.description:
                product_data["description"] = item.description
            if item.image:
                product_data["images"] = [item.image]
            line_items.append(
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": product_data,
                        "unit_amount": to_minor_units(item.unit_amount),
                    },
                    "quantity": item.quantity,
                }
            )

        if intent.shipping_cost > 0:
            line_items.append(
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {
                            "name": "Shipping",
                            "description": intent.shipping_description or "Delivery",
                        },
                        "unit_amount": to_minor_units(intent.shipping_cost),
                    },
                    "quantity": 1,
                }
            )

        try:
            session = await stripe.checkout.Session.create_async(
                mode="payment",
                line_items=line_items,
                success_url=f"{success_url}?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=cancel_url,
                customer_email=customer_email,
                metadata=intent.provider_metadata,
                payment_intent_data={
                    "description": description or "ClubUp purchase",
                    "metadata": intent.provider_metadata,
                },
                **self._options(),
            )
            return {"id": session.id, "url": session.url}
        except stripe.StripeError as e:
            logger.error(f"Failed to create checkout session: {e}")
            raise UpstreamFailure("Checkout failed", details=str(e)) from e

    def construct_event(self, payload: bytes, signature: Optional[str]) -> dict:
        """Verify a webhook signature and return the event as a plain dict"""
        if not self.webhook_secret:
            raise UpstreamFailure("Stripe webhook secret is not configured")
        if not signature:
            raise InvalidInput("Invalid signature")

        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), signature, self.webhook_secret
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"🚫 Webhook signature verification failed: {e}")
            raise InvalidInput("Invalid signature") from e
        return json.loads(payload)

    async def create_connect_account(self, seller_id: int, email: str) -> dict:
        """Create an Express Connect account for a seller"""
        self._require_client()
        try:
            account = await stripe.Account.create_async(
                type="express",
                country=self.connect_country,
                email=email,
                capabilities={
                    "card_payments": {"requested": True},
                    "transfers": {"requested": True},
                },
                business_type="individual",
                metadata={"sellerId": str(seller_id), "platform": PLATFORM_NAME},
                **self._options(),
            )
            return {"id": account.id}
        except stripe.StripeError as e:
            logger.error(f"Error creating Stripe Connect account: {e}")
            raise UpstreamFailure("Failed to create payout account", details=str(e)) from e

    async def create_account_link(self, account_id: str) -> dict:
        """Onboarding link for a Connect account"""
        self._require_client()
        try:
            link = await stripe.AccountLink.create_async(
                account=account_id,
                refresh_url=f"{self.frontend_url}/dashboard/seller?refresh={account_id}",
                return_url=f"{self.frontend_url}/dashboard/seller?connected={account_id}",
                type="account_onboarding",
                **self._options(),
            )
            return {"url": link.url}
        except stripe.StripeError as e:
            logger.error(f"Error creating account link: {e}")
            raise UpstreamFailure("Failed to create onboarding link", details=str(e)) from e

    async def get_account_status(self, account_id: str) -> dict:
        self._require_client()
        try:
            account = await stripe.Account.retrieve_async(account_id, **self._options())
        except stripe.StripeError as e:
            logger.error(f"Error getting account status: {e}")
            raise UpstreamFailure("Failed to get account status", details=str(e)) from e

        requirements = getattr(account, "requirements", None)
        currently_due = list(getattr(requirements, "currently_due", None) or [])
        return {
            "id": account.id,
            "chargesEnabled": bool(account.charges_enabled),
            "payoutsEnabled": bool(account.payouts_enabled),
            "detailsSubmitted": bool(account.details_submitted),
            "requiresAction": len(currently_due) > 0,
            "currentlyDue": currently_due,
            "pendingVerification": list(getattr(requirements, "pending_verification", None) or []),
            "country": account.country,
            "defaultCurrency": account.default_currency,
        }

    async def create_dashboard_link(self, account_id: str) -> dict:
        self._require_client()
        try:
            link = await stripe.Account.create_login_link_async(account_id, **self._options())
            return {"url": link.url}
        except stripe.StripeError as e:
            logger.error(f"Error creating dashboard link: {e}")
            raise UpstreamFailure("Failed to create dashboard link", details=str(e)) from e

    async def create_transfer(
        self,
        account_id: str,
        amount: Decimal,
        currency: str,
        description: str,
        idempotency_key: str,
        metadata: Optional[dict] = None,
    ) -> dict:
        """
        Transfer funds to a seller's Connect account.

        Stripe returns the original transfer for a repeated idempotency key,
        so retrying a failed payout run cannot pay twice.
        """
        self._require_client()
        try:
            transfer = await stripe.Transfer.create_async(
                amount=to_minor_units(amount),
                currency=currency.lower(),
                destination=account_id,
                description=description,
                metadata={"platform": PLATFORM_NAME, **(metadata or {})},
                idempotency_key=idempotency_key,
                **self._options(),
            )
            logger.info(f"✅ Stripe transfer {transfer.id} to {account_id}: {amount} {currency}")
            return {"id": transfer.id}
        except stripe.StripeError as e:
            logger.error(f"Error creating transfer to {account_id}: {e}")
            raise UpstreamFailure("Failed to transfer funds", details=str(e)) from e
