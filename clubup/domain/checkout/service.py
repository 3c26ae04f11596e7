"""Checkout service - builds checkout intents and hands them to a payment provider"""

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ...config import FRONTEND_URL, MARKETPLACE_CURRENCY
from ...errors import (
    Conflict,
    EmptyCart,
    Forbidden,
    InvalidInput,
    InvalidShippingOption,
    NotFound,
    ProductUnavailable,
    ShippingQuoteError,
    UpstreamFailure,
)
from ...models import Product, User
from ...services.paypal_service import PayPalService
from ...services.shipping_service import (
    ShippingAddress,
    ShippingDimensions,
    ShippingOption,
    ShippingQuoteRequest,
    ShippingService,
    get_standard_dimensions,
    normalize_postcode,
    validate_postcode,
)
from ...services.stripe_service import StripeService
from ...shared.activity import find_activity, log_activity
from ..escrow.service import EscrowService
from .commission import calculate_commission, round2, to_decimal
from .repository import CheckoutRepository
from .schemas import CheckoutRequest, OrderRequest

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Provider metadata stores are string maps with a per-value limit
METADATA_VALUE_MAX_LENGTH = 500

CART_FREE_SHIPPING_THRESHOLD = Decimal("50.00")
CART_SHIPPING_FEE = Decimal("5.99")


@dataclass(frozen=True)
class LineItem:
    product_id: int
    seller_id: int
    name: str
    unit_amount: Decimal
    quantity: int = 1
    description: Optional[str] = None
    image: Optional[str] = None
    commission_rate: Decimal = ZERO
    commission_amount: Decimal = ZERO
    seller_receives: Decimal = ZERO
    # Shipping the seller is paid for this item (single-product checkouts)
    shipping_cost: Decimal = ZERO

    @property
    def amount(self) -> Decimal:
        return self.unit_amount * self.quantity

    def to_record(self) -> dict:
        """JSON-safe form stored on the checkout activity"""
        return {
            "productId": self.product_id,
            "sellerId": self.seller_id,
            "name": self.name,
            "unitAmount": str(self.unit_amount),
            "quantity": self.quantity,
            "amount": str(self.amount),
            "commissionRate": str(self.commission_rate),
            "commissionAmount": str(self.commission_amount),
            "sellerReceives": str(self.seller_receives),
            "shippingCost": str(self.shipping_cost),
        }


@dataclass(frozen=True)
class CheckoutIntent:
    """Provider-agnostic summary of a pending purchase"""

    gross_amount: Decimal
    currency: str
    commission_rate: Decimal
    commission_amount: Decimal
    seller_receives: Decimal
    shipping_cost: Decimal
    shipping_description: Optional[str]
    provider_metadata: dict[str, str]
    line_items: tuple[LineItem, ...] = field(default_factory=tuple)
    order_type: str = "single"

    @property
    def total(self) -> Decimal:
        return self.gross_amount + self.shipping_cost

    def line_item_records(self) -> list[dict]:
        return [item.to_record() for item in self.line_items]


def build_provider_metadata(values: dict) -> dict[str, str]:
    """Stringify metadata values, dropping None and truncating long values"""
    return {
        key: str(value)[:METADATA_VALUE_MAX_LENGTH]
        for key, value in values.items()
        if value is not None
    }


def _first_image(product: Product) -> Optional[str]:
    images = product.images or []
    if images and isinstance(images[0], str):
        return images[0]
    return None


def _item_description(product: Product) -> Optional[str]:
    parts = [part for part in (product.brand, product.condition) if part]
    return " - ".join(parts) or None


class CheckoutOrchestrator:
    """Turns products and a shipping selection into a CheckoutIntent"""

    def __init__(self, shipping_service: ShippingService, currency: str = MARKETPLACE_CURRENCY):
        self.shipping_service = shipping_service
        self.currency = currency

    async def resolve_shipping(
        self, product: Product, shipping_option_id: str, buyer_postcode: str
    ) -> ShippingOption:
        """
        Quote shipping for a product and pick the selected option.

        Raises:
            InvalidShippingOption: postcode malformed or option not offered
            ShippingQuoteError: the quote collaborator failed
        """
        destination = normalize_postcode(buyer_postcode)
        if not validate_postcode(destination):
            raise InvalidShippingOption("Invalid postcode", details=buyer_postcode)

        shipping_data = product.shipping or {}
        origin = shipping_data.get("postcode")
        if not origin:
            raise ShippingQuoteError("Seller postcode unknown")

        dimensions = shipping_data.get("dimensions") or get_standard_dimensions(product.category)
        quote = await self.shipping_service.calculate_shipping(
            ShippingQuoteRequest(
                from_address=ShippingAddress(postcode=normalize_postcode(origin)),
                to_address=ShippingAddress(postcode=destination),
                dimensions=ShippingDimensions.from_dict(dimensions),
                value=float(product.price),
                category=product.category or "golf-equipment",
            )
        )
        if not quote.success:
            raise ShippingQuoteError(quote.error or "Shipping quote failed")

        for option in quote.options:
            if option.id == shipping_option_id:
                return option
        raise InvalidShippingOption("Shipping option not available", details=shipping_option_id)

    async def build_checkout_intent(
        self,
        product: Optional[Product],
        shipping_option_id: Optional[str] = None,
        buyer_postcode: Optional[str] = None,
    ) -> CheckoutIntent:
        """Checkout intent for a single product"""
        if product is None:
            raise ProductUnavailable("Product not found")
        if product.status != "active":
            raise ProductUnavailable("Product is no longer available", details={"status": product.status})

        price = to_decimal(product.price)
        if price <= ZERO:
            raise InvalidInput("Invalid product price")

        shipping_cost = ZERO
        shipping_description = None
        shipping_data = product.shipping or {}
        if not shipping_data.get("included") and shipping_option_id and buyer_postcode:
            try:
                option = await self.resolve_shipping(product, shipping_option_id, buyer_postcode)
                shipping_cost = round2(to_decimal(option.price))
                shipping_description = f"{option.carrier} {option.service}"
            except (InvalidShippingOption, ShippingQuoteError) as e:
                logger.warning(f"⚠️ Shipping for product {product.id} unavailable, continuing without: {e.message}")
            except Exception as e:
                logger.warning(f"⚠️ Shipping quote failed for product {product.id}, continuing without: {e}")

        seller = product.seller
        commission = calculate_commission(price, seller.subscription_tier if seller else None)

        item = LineItem(
            product_id=product.id,
            seller_id=product.seller_id,
            name=product.title,
            unit_amount=price,
            description=_item_description(product),
            image=_first_image(product),
            commission_rate=commission.rate,
            commission_amount=commission.commission_amount,
            seller_receives=commission.seller_receives,
            shipping_cost=shipping_cost,
        )

        metadata = build_provider_metadata(
            {
                "productId": product.id,
                "sellerId": product.seller_id,
                "commissionRate": commission.rate,
                "commissionAmount": commission.commission_amount,
                "sellerReceives": commission.seller_receives,
                "shippingCost": shipping_cost,
                "shippingOption": shipping_option_id if shipping_cost > ZERO else None,
                "orderType": "single",
            }
        )

        return CheckoutIntent(
            gross_amount=price,
            currency=self.currency,
            commission_rate=commission.rate,
            commission_amount=commission.commission_amount,
            seller_receives=commission.seller_receives,
            shipping_cost=shipping_cost,
            shipping_description=shipping_description,
            provider_metadata=metadata,
            line_items=(item,),
        )

    def build_cart_checkout_intent(self, items: Iterable[tuple[Optional[Product], int]]) -> CheckoutIntent:
        """
        Checkout intent for a cart.

        Commission is summed per line item; one flat shipping fee applies
        below the free-shipping threshold.
        """
        items = list(items)
        if not items:
            raise EmptyCart("Cart is empty")

        line_items = []
        subtotal = ZERO
        commission_total = ZERO
        seller_receives_total = ZERO
        seen_ids = set()
        for product, quantity in items:
            if product is None:
                raise ProductUnavailable("Product not found")
            if product.id in seen_ids:
                raise InvalidInput("Product listed more than once in cart", details={"productId": product.id})
            seen_ids.add(product.id)
            # Listings are single items; the product is sold once
            if quantity != 1:
                raise InvalidInput(
                    "Each listing can only be bought once", details={"productId": product.id, "quantity": quantity}
                )
            if product.status != "active":
                raise ProductUnavailable(
                    f"{product.title} is no longer available", details={"productId": product.id}
                )
            price = to_decimal(product.price)
            if price <= ZERO:
                raise InvalidInput("Invalid product price", details={"productId": product.id})

            seller = product.seller
            commission = calculate_commission(price * quantity, seller.subscription_tier if seller else None)
            line_items.append(
                LineItem(
                    product_id=product.id,
                    seller_id=product.seller_id,
                    name=product.title,
                    unit_amount=price,
                    quantity=quantity,
                    description=_item_description(product),
                    image=_first_image(product),
                    commission_rate=commission.rate,
                    commission_amount=commission.commission_amount,
                    seller_receives=commission.seller_receives,
                )
            )
            subtotal += price * quantity
            commission_total += commission.commission_amount
            seller_receives_total += commission.seller_receives

        if subtotal >= CART_FREE_SHIPPING_THRESHOLD:
            shipping_cost = ZERO
            shipping_description = "Free shipping"
        else:
            shipping_cost = CART_SHIPPING_FEE
            shipping_description = "Standard shipping"

        average_rate = (commission_total / subtotal).quantize(Decimal("0.0001"))
        seller_ids = {item.seller_id for item in line_items}

        metadata = build_provider_metadata(
            {
                "orderType": "cart",
                "productId": ",".join(str(item.product_id) for item in line_items),
                "sellerId": next(iter(seller_ids)) if len(seller_ids) == 1 else "multiple",
                "itemCount": sum(item.quantity for item in line_items),
                "commissionRate": average_rate,
                "commissionAmount": commission_total,
                "sellerReceives": seller_receives_total,
                "shippingCost": shipping_cost,
                "shippingOption": "free" if shipping_cost == ZERO else "standard",
            }
        )

        return CheckoutIntent(
            gross_amount=subtotal,
            currency=self.currency,
            commission_rate=average_rate,
            commission_amount=commission_total,
            seller_receives=seller_receives_total,
            shipping_cost=shipping_cost,
            shipping_description=shipping_description,
            provider_metadata=metadata,
            line_items=tuple(line_items),
            order_type="cart",
        )


def _summary(intent: CheckoutIntent) -> dict:
    return {
        "commission": {
            "rate": float(intent.commission_rate),
            "amount": float(intent.commission_amount),
            "sellerReceives": float(intent.seller_receives),
        },
        "shipping": {
            "cost": float(intent.shipping_cost),
            "description": intent.shipping_description,
        },
        "total": float(intent.total),
    }


class CheckoutService:
    """Service for checkout with Stripe and PayPal"""

    def __init__(
        self,
        db: Session,
        orchestrator: CheckoutOrchestrator,
        stripe_service: StripeService,
        paypal_service: PayPalService,
    ):
        self.db = db
        self.repo = CheckoutRepository()
        self.orchestrator = orchestrator
        self.stripe = stripe_service
        self.paypal = paypal_service

    def _activity_details(self, intent: CheckoutIntent, provider: str, buyer_email: Optional[str]) -> dict:
        return {
            "provider": provider,
            "orderType": intent.order_type,
            "buyerEmail": buyer_email,
            "currency": intent.currency,
            "total": str(intent.total),
            "shippingCost": str(intent.shipping_cost),
            "shippingDescription": intent.shipping_description,
            "metadata": intent.provider_metadata,
            "lineItems": intent.line_item_records(),
        }

    async def create_stripe_checkout(self, request: CheckoutRequest) -> dict:
        """Create a Stripe hosted checkout session for one product"""
        if not request.product_id:
            raise InvalidInput("Product ID is required")

        product = self.repo.get_product(self.db, request.product_id)
        intent = await self.orchestrator.build_checkout_intent(
            product, request.shipping_option_id, request.buyer_postcode
        )

        session = await self.stripe.create_checkout_session(
            intent,
            success_url=request.success_url or f"{FRONTEND_URL}/checkout/success",
            cancel_url=request.cancel_url or f"{FRONTEND_URL}/products/{product.id}",
            customer_email=request.buyer_email,
            description=f"Purchase of {product.title}",
        )

        log_activity(
            self.db,
            "checkout_initiated",
            f"Checkout started for {product.title}",
            reference_id=session["id"],
            details=self._activity_details(intent, "stripe", request.buyer_email),
        )
        logger.info(f"✅ Stripe checkout {session['id']} for product {product.id}: total {intent.total}")

        return {"success": True, "sessionId": session["id"], "url": session["url"], **_summary(intent)}

    async def _build_order_intent(self, request: OrderRequest) -> CheckoutIntent:
        if request.order_type == "cart":
            if not request.items:
                raise EmptyCart("Cart is empty")
            products = self.repo.get_products(self.db, [item.product_id for item in request.items])
            return self.orchestrator.build_cart_checkout_intent(
                (products.get(item.product_id), item.quantity) for item in request.items
            )

        if not request.product_id:
            raise InvalidInput("Product ID is required")
        product = self.repo.get_product(self.db, request.product_id)
        return await self.orchestrator.build_checkout_intent(
            product, request.shipping_option_id, request.buyer_postcode
        )

    async def create_paypal_order(self, request: OrderRequest, user: User) -> dict:
        """Create a PayPal order for a single product or a cart"""
        intent = await self._build_order_intent(request)

        checkout_reference = f"clubup-{uuid.uuid4().hex}"
        order = await self.paypal.create_order(intent, checkout_reference)

        log_activity(
            self.db,
            "paypal_order_created",
            f"PayPal order created for {len(intent.line_items)} item(s)",
            user_id=user.id,
            reference_id=order["id"],
            details={
                **self._activity_details(intent, "paypal", user.email),
                "checkoutReference": checkout_reference,
            },
        )
        logger.info(f"✅ PayPal order {order['id']} for user {user.id}: total {intent.total}")

        return {
            "success": True,
            "paypalOrderId": order["id"],
            "approvalUrl": order["approval_url"],
            "amount": float(intent.total),
            "currency": intent.currency,
            **_summary(intent),
        }

    async def capture_paypal_order(self, order_id: str, user: User) -> dict:
        """Capture an approved PayPal order and hold the funds in escrow"""
        activity = find_activity(self.db, order_id, ["paypal_order_created"])
        if not activity:
            raise NotFound("Order not found")
        if activity.user_id != user.id:
            raise Forbidden("Not your order")

        order = await self.paypal.get_order(order_id)
        status = order.get("status")
        if status == "COMPLETED":
            raise Conflict("Order already captured")
        if status != "APPROVED":
            raise InvalidInput("Order has not been approved", details={"status": status})

        capture = await self.paypal.capture_order(order_id)
        if capture["status"] != "COMPLETED":
            logger.error(f"❌ PayPal capture for {order_id} returned {capture['status']}")
            raise UpstreamFailure("Payment capture failed", details={"status": capture["status"]})

        transactions = EscrowService(self.db).record_captured_checkout(
            provider="paypal",
            provider_reference=order_id,
            provider_payment_id=capture["capture_id"],
            buyer_email=capture.get("payer_email") or user.email,
        )

        return {
            "success": True,
            "orderId": order_id,
            "captureId": capture["capture_id"],
            "status": capture["status"],
            "transactionIds": [transaction.id for transaction in transactions],
        }
