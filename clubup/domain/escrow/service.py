"""
Escrow service - payment holds between capture and delivery confirmation.

A captured checkout becomes one Transaction and one PaymentHold per line
item. Funds stay held until the buyer confirms delivery, at which point a
payout is scheduled for the payout processor. A seller whose buyer never
responds can request release once the item has been in transit long enough;
the hold is released automatically if the buyer stays silent.
"""

import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import (
    AUTO_RELEASE_GRACE_HOURS,
    MARKETPLACE_CURRENCY,
    PAYOUT_DELAY_HOURS,
    RELEASE_REQUEST_WAIT_DAYS,
)
from ...errors import Conflict, Forbidden, InvalidInput, NotFound
from ...models import PaymentHold, Transaction, User
from ...shared.activity import find_activity, log_activity
from ..checkout.commission import processing_fee_for, round2
from .repository import EscrowRepository

logger = logging.getLogger(__name__)

CHECKOUT_ACTIVITY_TYPES = ("checkout_initiated", "paypal_order_created")


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_hold(hold: Optional[PaymentHold]) -> Optional[dict]:
    if hold is None:
        return None
    return {
        "id": hold.id,
        "status": hold.status,
        "reason": hold.reason,
        "heldAmount": hold.held_amount,
        "commissionHeld": hold.commission_held,
        "processingFeeHeld": hold.processing_fee_held,
        "currency": hold.currency,
        "heldAt": _iso(hold.held_at),
        "releasedAt": _iso(hold.released_at),
        "releaseRequestedAt": _iso(hold.release_requested_at),
        "autoReleaseEligibleAt": _iso(hold.auto_release_eligible_at),
        "payoutScheduledAt": _iso(hold.payout_scheduled_at),
        "payoutStatus": hold.payout_status,
    }


def serialize_transaction(transaction: Transaction) -> dict:
    return {
        "id": transaction.id,
        "productId": transaction.product_id,
        "sellerId": transaction.seller_id,
        "buyerEmail": transaction.buyer_email,
        "amount": transaction.amount,
        "shippingCost": transaction.shipping_cost,
        "commissionAmount": transaction.commission_amount,
        "sellerAmount": transaction.seller_amount,
        "currency": transaction.currency,
        "status": transaction.status,
        "holdStatus": transaction.hold_status,
        "paymentProvider": transaction.payment_provider,
        "trackingNumber": transaction.tracking_number,
        "carrier": transaction.carrier,
        "shippedAt": _iso(transaction.shipped_at),
        "deliveryConfirmedAt": _iso(transaction.delivery_confirmed_at),
        "releaseRequestedAt": _iso(transaction.release_requested_at),
        "paymentHold": serialize_hold(transaction.payment_hold),
    }


class EscrowService:
    """Service for payment holds"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = EscrowRepository()

    def record_captured_checkout(
        self,
        provider: str,
        provider_reference: str,
        provider_payment_id: Optional[str] = None,
        buyer_email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> list[Transaction]:
        """
        Create transactions and holds for a captured checkout.

        Safe to call repeatedly for the same provider reference; later calls
        return the transactions created by the first one.
        """
        existing = self.repo.get_transactions_by_reference(self.db, provider_reference)
        if existing:
            logger.info(f"⏭️ Checkout {provider_reference} already recorded ({len(existing)} transactions)")
            return existing

        activity = find_activity(self.db, provider_reference, CHECKOUT_ACTIVITY_TYPES)
        if not activity:
            logger.error(f"❌ No checkout activity for {provider} reference {provider_reference}")
            raise NotFound("Checkout not found", details={"reference": provider_reference})

        details = activity.details or {}
        line_items = details.get("lineItems") or []
        if not line_items:
            raise InvalidInput("Checkout has no line items", details={"reference": provider_reference})

        now = now or datetime.utcnow()
        buyer_email = (buyer_email or details.get("buyerEmail") or "").lower() or None
        currency = details.get("currency") or MARKETPLACE_CURRENCY

        transactions = []
        try:
            for item in line_items:
                transactions.append(
                    self._record_line_item(
                        item, provider, provider_reference, provider_payment_id, buyer_email, currency, now
                    )
                )
            self.db.commit()
        except IntegrityError:
            # A concurrent delivery of the same event got there first
            self.db.rollback()
            existing = self.repo.get_transactions_by_reference(self.db, provider_reference)
            if not existing:
                logger.error(f"❌ Checkout {provider_reference} could not be recorded; nothing was written")
                raise Conflict("Checkout could not be recorded", details={"reference": provider_reference})
            logger.warning(f"⚠️ Checkout {provider_reference} recorded concurrently, returning existing rows")
            return existing

        for transaction in transactions:
            self.db.refresh(transaction)
        logger.info(f"✅ Recorded {len(transactions)} transaction(s) for {provider} checkout {provider_reference}")
        return transactions

    def _record_line_item(
        self,
        item: dict,
        provider: str,
        provider_reference: str,
        provider_payment_id: Optional[str],
        buyer_email: Optional[str],
        currency: str,
        now: datetime,
    ) -> Transaction:
        product_id = int(item["productId"])
        amount = Decimal(item["amount"])
        shipping_cost = Decimal(item.get("shippingCost") or "0")
        commission_amount = Decimal(item["commissionAmount"])
        seller_receives = Decimal(item["sellerReceives"])

        sold = self.repo.mark_product_sold(self.db, product_id)
        if not sold:
            logger.error(
                f"❌ Product {product_id} was already sold; payment {provider_reference} needs a manual refund"
            )

        transaction = Transaction(
            product_id=product_id,
            seller_id=int(item["sellerId"]),
            buyer_email=buyer_email,
            amount=float(amount),
            shipping_cost=float(shipping_cost),
            commission_rate=float(Decimal(item["commissionRate"])),
            commission_amount=float(commission_amount),
            seller_amount=float(seller_receives),
            currency=currency,
            status="pending" if sold else "conflict",
            hold_status="payment_held",
            payment_provider=provider,
            provider_reference=provider_reference,
            provider_payment_id=provider_payment_id,
            paid_at=now,
        )

        hold = None
        if sold:
            held_amount = amount + shipping_cost
            hold = PaymentHold(
                held_amount=float(held_amount),
                currency=currency,
                commission_held=float(commission_amount),
                processing_fee_held=float(processing_fee_for(held_amount, provider)),
                status="held",
                reason="payment_captured",
                held_at=now,
            )

        self.repo.add_transaction(self.db, transaction, hold)
        log_activity(
            self.db,
            "payment_captured" if sold else "checkout_conflict",
            f"Payment of {round2(amount + shipping_cost)} {currency} captured for product {product_id}",
            user_id=transaction.seller_id,
            reference_id=str(transaction.id),
            details={"provider": provider, "providerReference": provider_reference, "sold": sold},
            commit=False,
        )
        return transaction

    def _get_for_action(self, transaction_id: int) -> Transaction:
        transaction = self.repo.get_transaction(self.db, transaction_id)
        if not transaction:
            raise NotFound("Transaction not found")
        if transaction.payment_hold is None:
            raise InvalidInput("Transaction has no payment hold", details={"status": transaction.status})
        return transaction

    def mark_shipped(
        self,
        user: User,
        transaction_id: int,
        tracking_number: Optional[str] = None,
        carrier: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """Seller marks the item as shipped"""
        transaction = self._get_for_action(transaction_id)
        if transaction.seller_id != user.id:
            raise Forbidden("Only the seller can mark this item as shipped")

        hold = transaction.payment_hold
        if hold.status != "held":
            raise InvalidInput("Payment is no longer held", details={"holdStatus": hold.status})

        now = now or datetime.utcnow()
        transaction.hold_status = "shipped"
        transaction.tracking_number = tracking_number
        transaction.carrier = carrier
        transaction.shipped_at = now
        hold.reason = "awaiting_delivery"

        log_activity(
            self.db,
            "item_shipped",
            f"Item shipped for transaction {transaction.id}",
            user_id=user.id,
            reference_id=str(transaction.id),
            details={"trackingNumber": tracking_number, "carrier": carrier},
            commit=False,
        )
        self.db.commit()
        logger.info(f"📦 Transaction {transaction.id} marked shipped ({carrier or 'no carrier'})")

        return {
            "success": True,
            "message": "Item marked as shipped. Buyer will be asked to confirm delivery.",
            "transaction": serialize_transaction(transaction),
        }

    def confirm_delivery(
        self,
        user: User,
        transaction_id: int,
        satisfied: bool = True,
        dispute_reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> dict:
        """Buyer confirms delivery (releasing the hold) or raises a dispute"""
        transaction = self._get_for_action(transaction_id)
        if (transaction.buyer_email or "").lower() != user.email.lower():
            raise Forbidden("Only the buyer can confirm delivery")

        hold = transaction.payment_hold
        if hold.status != "held":
            raise InvalidInput("Payment is no longer held", details={"holdStatus": hold.status})

        now = now or datetime.utcnow()
        if not satisfied:
            transaction.hold_status = "disputed"
            transaction.disputed_at = now
            transaction.dispute_reason = dispute_reason
            hold.status = "disputed"
            hold.dispute_reason = dispute_reason
            log_activity(
                self.db,
                "delivery_disputed",
                f"Buyer disputed transaction {transaction.id}",
                user_id=user.id,
                reference_id=str(transaction.id),
                details={"reason": dispute_reason},
                commit=False,
            )
            self.db.commit()
            logger.warning(f"⚠️ Transaction {transaction.id} disputed: {dispute_reason}")
            return {
                "success": True,
                "message": "Dispute raised. Our team will review the transaction.",
                "disputed": True,
                "transaction": serialize_transaction(transaction),
            }

        payout_at = now + timedelta(hours=PAYOUT_DELAY_HOURS)
        transaction.hold_status = "confirmed"
        transaction.delivery_confirmed_at = now
        hold.status = "released"
        hold.reason = "buyer_confirmed"
        hold.released_at = now
        hold.payout_scheduled_at = payout_at
        hold.payout_status = "scheduled"

        log_activity(
            self.db,
            "delivery_confirmed",
            f"Buyer confirmed delivery for transaction {transaction.id}",
            user_id=user.id,
            reference_id=str(transaction.id),
            details={"payoutScheduledAt": payout_at.isoformat()},
            commit=False,
        )
        self.db.commit()
        logger.info(f"💰 Payout scheduled for transaction {transaction.id} at {payout_at.isoformat()}")

        return {
            "success": True,
            "message": f"Delivery confirmed. Seller will be paid in {PAYOUT_DELAY_HOURS} hours.",
            "confirmed": True,
            "payoutScheduledAt": payout_at.isoformat(),
            "transaction": serialize_transaction(transaction),
        }

    def request_release(self, user: User, transaction_id: int, now: Optional[datetime] = None) -> dict:
        """
        Seller asks for the held payment when the buyer has not responded.

        Allowed once RELEASE_REQUEST_WAIT_DAYS have passed since the item was
        shipped. The buyer then has AUTO_RELEASE_GRACE_HOURS to confirm or
        dispute before the hold is released automatically.
        """
        transaction = self._get_for_action(transaction_id)
        if transaction.seller_id != user.id:
            raise Forbidden("Only the seller can request payment release")

        hold = transaction.payment_hold
        if hold.status != "held":
            raise InvalidInput("Payment is no longer held", details={"holdStatus": hold.status})
        if hold.reason == "seller_requested":
            raise InvalidInput(
                "Release already requested", details={"autoReleaseEligibleAt": _iso(hold.auto_release_eligible_at)}
            )
        if transaction.shipped_at is None:
            raise InvalidInput("Cannot request release until the item is marked as shipped")

        now = now or datetime.utcnow()
        waited = now - transaction.shipped_at
        required = timedelta(days=RELEASE_REQUEST_WAIT_DAYS)
        if waited < required:
            days_left = math.ceil((required - waited).total_seconds() / 86400)
            raise InvalidInput(
                f"Must wait {days_left} more day(s) after shipping before requesting release",
                details={"daysRemaining": days_left},
            )

        eligible_at = now + timedelta(hours=AUTO_RELEASE_GRACE_HOURS)
        transaction.hold_status = "release_requested"
        transaction.release_requested_at = now
        hold.reason = "seller_requested"
        hold.release_requested_at = now
        hold.auto_release_eligible_at = eligible_at

        log_activity(
            self.db,
            "release_requested",
            f"Seller requested payment release for transaction {transaction.id}",
            user_id=user.id,
            reference_id=str(transaction.id),
            details={"requestedAt": now.isoformat(), "autoReleaseAt": eligible_at.isoformat()},
            commit=False,
        )
        self.db.commit()
        logger.info(f"⏳ Release requested for transaction {transaction.id} (auto-release {eligible_at.isoformat()})")

        return {
            "success": True,
            "message": (
                f"Release requested. Buyer has {AUTO_RELEASE_GRACE_HOURS} hours to respond, "
                "then payment will be automatically released."
            ),
            "releaseDeadline": eligible_at.isoformat(),
            "transaction": serialize_transaction(transaction),
        }

    def auto_release(self, user: User, transaction_id: int, now: Optional[datetime] = None) -> dict:
        """Release a hold whose seller release request went unanswered"""
        transaction = self._get_for_action(transaction_id)
        is_buyer = (transaction.buyer_email or "").lower() == user.email.lower()
        if transaction.seller_id != user.id and not is_buyer:
            raise Forbidden("Not your transaction")

        hold = transaction.payment_hold
        if hold.status != "held" or hold.reason != "seller_requested" or hold.auto_release_eligible_at is None:
            raise InvalidInput("Auto-release not eligible", details={"holdStatus": hold.status, "reason": hold.reason})

        now = now or datetime.utcnow()
        if now < hold.auto_release_eligible_at:
            raise InvalidInput(
                "Auto-release time not reached yet",
                details={"autoReleaseEligibleAt": _iso(hold.auto_release_eligible_at)},
            )

        self._release_unanswered(transaction, hold, now)
        self.db.commit()
        return {
            "success": True,
            "message": "Payment automatically released to seller",
            "autoReleased": True,
            "transaction": serialize_transaction(transaction),
        }

    def release_unanswered_requests(self, now: Optional[datetime] = None) -> int:
        """Auto-release every hold whose release deadline has passed; returns how many"""
        now = now or datetime.utcnow()
        holds = self.repo.get_auto_release_due(self.db, now)
        for hold in holds:
            self._release_unanswered(hold.transaction, hold, now)
        if holds:
            self.db.commit()
            logger.info(f"🔓 Auto-released {len(holds)} payment hold(s)")
        return len(holds)

    def _release_unanswered(self, transaction: Transaction, hold: PaymentHold, now: datetime) -> None:
        transaction.hold_status = "released"
        hold.status = "released"
        hold.reason = "auto_release"
        hold.released_at = now
        hold.auto_released_at = now
        hold.payout_scheduled_at = now
        hold.payout_status = "scheduled"

        log_activity(
            self.db,
            "auto_release_executed",
            f"Payment automatically released for transaction {transaction.id}",
            user_id=transaction.seller_id,
            reference_id=str(transaction.id),
            details={"releasedAt": now.isoformat(), "reason": "auto_release_timeout"},
            commit=False,
        )
        logger.info(f"🔓 Transaction {transaction.id} auto-released, payout scheduled")

    def get_transaction_status(self, user: User, transaction_id: int) -> dict:
        transaction = self.repo.get_transaction(self.db, transaction_id)
        if not transaction:
            raise NotFound("Transaction not found")

        is_buyer = (transaction.buyer_email or "").lower() == user.email.lower()
        is_seller = transaction.seller_id == user.id
        if not (is_buyer or is_seller):
            raise Forbidden("Not your transaction")

        return {
            "success": True,
            "transaction": serialize_transaction(transaction),
            "userRole": "buyer" if is_buyer else "seller",
        }

    def list_transactions(self, user: User, role: Optional[str] = None, hold_status: Optional[str] = None) -> dict:
        transactions = self.repo.list_transactions_for_user(self.db, user.id, user.email.lower(), role, hold_status)
        return {"success": True, "transactions": [serialize_transaction(t) for t in transactions]}
