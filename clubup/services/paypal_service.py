"""
PayPal Service
Orders (buyer checkout) and Payouts (seller transfers) over the PayPal REST API
"""
import logging
import time
from decimal import Decimal
from typing import Any, Optional
from urllib.parse import urlencode

import httpx

from ..errors import UpstreamFailure

logger = logging.getLogger(__name__)

PAYPAL_API_URLS = {
    "live": "https://api-m.paypal.com",
    "sandbox": "https://api-m.sandbox.paypal.com",
}

BRAND_NAME = "ClubUp Golf Marketplace"
CUSTOM_ID_MAX_LENGTH = 127
# Issue text PayPal returns when a sender_batch_id has been used before
DUPLICATE_BATCH_ISSUE = "sender_batch_id already exists"


def normalize_paypal_environment(env: Optional[str]) -> str:
    value = (env or "sandbox").strip().lower()
    if value in {"live", "production", "prod"}:
        return "live"
    if value not in {"sandbox", "test", "development", "dev"}:
        logger.warning(f"Unknown PAYPAL environment '{env}', defaulting to sandbox")
    return "sandbox"


def format_paypal_amount(amount: Decimal) -> str:
    return f"{Decimal(str(amount)):.2f}"


class PayPalService:
    """Service for PayPal REST API operations"""

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        environment: Optional[str] = "sandbox",
        frontend_url: str = "http://localhost:3000",
        timeout: float = 30.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.environment = normalize_paypal_environment(environment)
        self.base_url = PAYPAL_API_URLS[self.environment]
        self.frontend_url = frontend_url
        self.timeout = timeout
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

        if not (self.client_id and self.client_secret):
            logger.warning("PayPal credentials not set; PayPal endpoints will fail until configured")
        else:
            logger.info(f"PayPal client configured (env={self.environment})")

    def is_available(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def _get_access_token(self, http_client: httpx.AsyncClient) -> str:
        if self._access_token and time.time() < self._token_expires_at:
            return self._access_token

        response = await http_client.post(
            f"{self.base_url}/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        if response.status_code != 200:
            logger.error(f"❌ PayPal token request failed: HTTP {response.status_code}")
            raise UpstreamFailure("PayPal authentication failed", details=response.text)

        data = response.json()
        self._access_token = data["access_token"]
        # Refresh a minute early
        self._token_expires_at = time.time() + int(data.get("expires_in", 300)) - 60
        return self._access_token

    async def _request(
        self,
        method: str,
        path: str,
        json_body: Optional[dict] = None,
        request_id: Optional[str] = None,
    ) -> dict[str, Any]:
        if not self.is_available():
            raise UpstreamFailure("PayPal is not configured")

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as http_client:
                token = await self._get_access_token(http_client)
                headers = {
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                }
                if request_id:
                    # PayPal returns the original result for a repeated request id
                    headers["PayPal-Request-Id"] = request_id
                response = await http_client.request(
                    method, f"{self.base_url}{path}", json=json_body, headers=headers
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ PayPal request {method} {path} failed: {e}")
            raise UpstreamFailure("PayPal request failed", details=str(e)) from e

        if response.status_code >= 400:
            logger.error(f"❌ PayPal API error {response.status_code} on {method} {path}: {response.text[:500]}")
            raise UpstreamFailure("PayPal API error", details=response.text)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            logger.error(f"❌ PayPal returned invalid JSON on {method} {path}")
            raise UpstreamFailure("PayPal returned an invalid response", details=response.text[:500]) from e

    async def create_order(self, intent, reference_id: str) -> dict:
        """Create a CAPTURE order for a checkout intent"""
        currency = intent.currency.upper()
        item_total = sum((item.unit_amount * item.quantity for item in intent.line_items), Decimal("0"))
        purchase_unit = {
            "reference_id": reference_id,
            "custom_id": reference_id[:CUSTOM_ID_MAX_LENGTH],
            "invoice_id": f"INV-{int(time.time() * 1000)}",
            "amount": {
                "currency_code": currency,
                "value": format_paypal_amount(intent.total),
                "breakdown": {
                    "item_total": {"currency_code": currency, "value": format_paypal_amount(item_total)},
                    "shipping": {
                        "currency_code": currency,
                        "value": format_paypal_amount(intent.shipping_cost),
                    },
                },
            },
            "items": [
                {
                    "name": item.name[:127],
                    "description": (item.description or "")[:127],
                    "unit_amount": {
                        "currency_code": currency,
                        "value": format_paypal_amount(item.unit_amount),
                    },
                    "quantity": str(item.quantity),
                }
                for item in intent.line_items
            ],
        }

        order = await self._request(
            "POST",
            "/v2/checkout/orders",
            {
                "intent": "CAPTURE",
                "purchase_units": [purchase_unit],
                "application_context": {
                    "return_url": f"{self.frontend_url}/checkout/paypal/success",
                    "cancel_url": f"{self.frontend_url}/checkout/paypal/cancel",
                    "brand_name": BRAND_NAME,
                    "locale": "en-GB",
                    "landing_page": "BILLING",
                    "user_action": "PAY_NOW",
                },
            },
            request_id=reference_id,
        )

        approval_url = next(
            (link.get("href") for link in order.get("links", []) if link.get("rel") == "approve"),
            None,
        )
        logger.info(f"✅ PayPal order created: {order.get('id')} ({order.get('status')})")
        return {"id": order.get("id"), "status": order.get("status"), "approval_url": approval_url}

    async def get_order(self, order_id: str) -> dict:
        return await self._request("GET", f"/v2/checkout/orders/{order_id}")

    async def capture_order(self, order_id: str) -> dict:
        """Capture an approved order, returning the order id, status and capture id"""
        result = await self._request(
            "POST", f"/v2/checkout/orders/{order_id}/capture", {}, request_id=f"capture-{order_id}"
        )
        capture_id = None
        captured_amount = None
        currency = None
        for unit in result.get("purchase_units", []):
            for capture in unit.get("payments", {}).get("captures", []):
                capture_id = capture.get("id")
                captured_amount = capture.get("amount", {}).get("value")
                currency = capture.get("amount", {}).get("currency_code")
                break
        return {
            "id": result.get("id"),
            "status": result.get("status"),
            "capture_id": capture_id,
            "amount": captured_amount,
            "currency": currency,
            "payer_email": result.get("payer", {}).get("email_address"),
        }

    async def create_payout(
        self,
        receiver_email: str,
        amount: Decimal,
        currency: str,
        note: str,
        sender_item_id: str,
        sender_batch_id: str,
    ) -> dict:
        """
        Send a payout to a seller's PayPal account.

        PayPal rejects a reused sender_batch_id, so the batch id doubles as the
        idempotency key for a sale. When PayPal reports the batch as already
        submitted, the existing batch is looked up and returned instead.
        """
        body = {
            "sender_batch_header": {
                "sender_batch_id": sender_batch_id,
                "email_subject": "ClubUp Seller Payout",
                "email_message": "You have received a payout from ClubUp for your recent sale.",
            },
            "items": [
                {
                    "recipient_type": "EMAIL",
                    "amount": {"value": format_paypal_amount(amount), "currency": currency.upper()},
                    "note": note,
                    "sender_item_id": sender_item_id,
                    "receiver": receiver_email,
                    "notification_language": "en-GB",
                }
            ],
        }
        try:
            result = await self._request("POST", "/v1/payments/payouts", body)
        except UpstreamFailure as e:
            if DUPLICATE_BATCH_ISSUE not in str(e.details or "").lower():
                raise
            logger.warning(f"⚠️ PayPal payout batch {sender_batch_id} was already submitted, looking it up")
            result = await self.find_payout_batch(sender_batch_id)

        header = result.get("batch_header", {})
        logger.info(f"✅ PayPal payout batch {header.get('payout_batch_id')} for {receiver_email}")
        return {"id": header.get("payout_batch_id"), "status": header.get("batch_status")}

    async def find_payout_batch(self, sender_batch_id: str) -> dict:
        """Look up a payout batch by the sender_batch_id it was submitted with"""
        query = urlencode({"sender_batch_id": sender_batch_id})
        result = await self._request("GET", f"/v1/payments/payouts?{query}")
        if not result.get("batch_header", {}).get("payout_batch_id"):
            raise UpstreamFailure("PayPal payout batch not found", details={"senderBatchId": sender_batch_id})
        return result
