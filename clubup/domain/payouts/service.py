"""
Payout service - transfers released escrow funds to sellers.

Each sale has at most one Payout row, keyed by ``payout-<transaction id>``.
The row is written before the provider call and the same key is sent to the
provider on every attempt, so a retried run never pays a seller twice.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ...config import MARKETPLACE_CURRENCY, MAX_PAYOUT_ATTEMPTS
from ...errors import Conflict, Forbidden, InvalidInput, MarketplaceError, NotFound, UpstreamFailure
from ...models import PaymentHold, Payout, Transaction, User
from ...services.paypal_service import PayPalService
from ...services.stripe_service import StripeService
from ...shared.activity import log_activity
from ..checkout.commission import calculate_seller_payout, round2, to_decimal
from ..escrow.service import EscrowService
from .repository import PayoutRepository

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def payout_idempotency_key(transaction_id: int) -> str:
    return f"payout-{transaction_id}"


@dataclass
class PayoutAttempt:
    transaction_id: int
    success: bool
    amount: Decimal = ZERO
    method: Optional[str] = None
    reference_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class PayoutRunResult:
    processed_count: int = 0
    successful_count: int = 0
    total_amount: Decimal = ZERO
    failures: list[dict] = field(default_factory=list)

    def record(self, attempt: PayoutAttempt) -> None:
        self.processed_count += 1
        if attempt.success:
            self.successful_count += 1
            self.total_amount += attempt.amount
        else:
            self.failures.append({"transactionId": attempt.transaction_id, "error": attempt.error})

    def to_dict(self) -> dict:
        return {
            "processedCount": self.processed_count,
            "successfulCount": self.successful_count,
            "totalAmount": float(self.total_amount),
            "failures": self.failures,
        }


def serialize_payout(payout: Payout) -> dict:
    return {
        "id": payout.id,
        "transactionId": payout.transaction_id,
        "grossAmount": payout.gross_amount,
        "commissionAmount": payout.commission_amount,
        "processingFee": payout.processing_fee,
        "netAmount": payout.net_amount,
        "currency": payout.currency,
        "method": payout.method,
        "status": payout.status,
        "referenceId": payout.reference_id,
        "attempts": payout.attempts,
        "error": payout.error,
        "processedAt": payout.processed_at.isoformat() if payout.processed_at else None,
        "createdAt": payout.created_at.isoformat() if payout.created_at else None,
    }


class PayoutProcessor:
    """Pays sellers for holds released by the buyer or by auto-release"""

    def __init__(
        self,
        db: Session,
        stripe_service: StripeService,
        paypal_service: PayPalService,
        max_attempts: int = MAX_PAYOUT_ATTEMPTS,
    ):
        self.db = db
        self.repo = PayoutRepository()
        self.stripe = stripe_service
        self.paypal = paypal_service
        self.max_attempts = max_attempts

    async def process_scheduled_payouts(self, now: Optional[datetime] = None) -> PayoutRunResult:
        """Release unanswered seller requests, then pay every released hold whose payout time has passed"""
        now = now or datetime.utcnow()
        EscrowService(self.db).release_unanswered_requests(now)
        holds = self.repo.get_due_holds(self.db, now)
        result = PayoutRunResult()
        logger.info(f"🔄 Processing {len(holds)} scheduled payout(s)")

        for hold in holds:
            transaction_id = hold.transaction_id
            try:
                attempt = await self._pay_hold(hold, now, activity_prefix="scheduled_payout")
            except Exception as e:
                # One bad row must not stop the rest of the run
                self.db.rollback()
                logger.error(f"❌ Unexpected payout error for transaction {transaction_id}: {e}")
                attempt = PayoutAttempt(transaction_id=transaction_id, success=False, error=str(e))
            result.record(attempt)

        logger.info(
            f"✅ Payout run complete: {result.successful_count}/{result.processed_count} paid, "
            f"total {result.total_amount}"
        )
        return result

    async def payout_transaction(self, user: User, transaction_id: int, now: Optional[datetime] = None) -> dict:
        """Manually pay out one released transaction for its seller"""
        transaction = self.repo.get_transaction(self.db, transaction_id)
        if not transaction:
            raise NotFound("Transaction not found")
        if transaction.seller_id != user.id:
            raise Forbidden("Only the seller can request this payout")

        payout = transaction.payout
        if payout and payout.status == "completed":
            raise Conflict("Payout already processed for this transaction", details={"payoutId": payout.id})

        hold = transaction.payment_hold
        if hold is None or hold.status != "released":
            raise InvalidInput("Payment has not been released by the buyer yet")

        attempt = await self._pay_hold(hold, now or datetime.utcnow(), activity_prefix="payout")
        if not attempt.success:
            raise UpstreamFailure("Failed to process payout", details=attempt.error)

        return {
            "success": True,
            "message": "Payout processed successfully",
            "payout": serialize_payout(transaction.payout),
        }

    def _net_amount(self, hold: PaymentHold) -> Decimal:
        net = to_decimal(hold.held_amount) - to_decimal(hold.commission_held or 0) - to_decimal(
            hold.processing_fee_held or 0
        )
        return max(ZERO, round2(net))

    def _choose_method(self, seller: Optional[User]) -> Optional[str]:
        if seller is None:
            return None
        if seller.stripe_account_id:
            return "stripe"
        if seller.paypal_email:
            return "paypal"
        return None

    async def _pay_hold(self, hold: PaymentHold, now: datetime, activity_prefix: str) -> PayoutAttempt:
        transaction: Transaction = hold.transaction
        seller = transaction.seller
        payout = transaction.payout

        if payout is not None and payout.status == "completed":
            # Paid by an earlier run; only the hold was left behind
            hold.payout_status = "completed"
            transaction.status = "completed"
            self.db.commit()
            logger.info(f"⏭️ Transaction {transaction.id} already paid out ({payout.reference_id})")
            return PayoutAttempt(transaction.id, True, method=payout.method, reference_id=payout.reference_id)

        net_amount = self._net_amount(hold)
        method = self._choose_method(seller)
        currency = hold.currency or MARKETPLACE_CURRENCY

        if payout is None:
            payout = Payout(
                transaction_id=transaction.id,
                seller_id=transaction.seller_id,
                idempotency_key=payout_idempotency_key(transaction.id),
                gross_amount=hold.held_amount,
                commission_amount=hold.commission_held or 0,
                processing_fee=hold.processing_fee_held or 0,
                net_amount=float(net_amount),
                currency=currency,
                attempts=0,
            )
            self.db.add(payout)
            transaction.payout = payout

        payout.method = method
        payout.status = "processing"
        payout.error = None
        payout.attempts = (payout.attempts or 0) + 1
        self.db.commit()

        try:
            if net_amount <= ZERO:
                raise InvalidInput("Payout amount is zero or negative after fees")
            if method is None:
                raise InvalidInput("Seller has no payout account")
            reference_id = await self._transfer(method, seller, transaction, payout, net_amount, currency)
        except MarketplaceError as e:
            error = f"{e.message}: {e.details}" if e.details else e.message
            return self._record_failure(hold, payout, error, activity_prefix)
        except Exception as e:
            logger.exception(f"❌ Unexpected error transferring payout for transaction {transaction.id}")
            return self._record_failure(hold, payout, f"{type(e).__name__}: {e}", activity_prefix)

        payout.status = "completed"
        payout.reference_id = reference_id
        payout.processed_at = now
        hold.payout_status = "completed"
        transaction.status = "completed"
        log_activity(
            self.db,
            f"{activity_prefix}_completed",
            f"Payout processed: £{net_amount:.2f}",
            user_id=transaction.seller_id,
            reference_id=str(transaction.id),
            details={
                "payoutId": payout.id,
                "method": method,
                "referenceId": reference_id,
                "grossAmount": str(to_decimal(hold.held_amount)),
                "netAmount": str(net_amount),
            },
            commit=False,
        )
        self.db.commit()
        logger.info(f"✅ Paid {net_amount} {currency} to seller {transaction.seller_id} via {method}")
        return PayoutAttempt(transaction.id, True, net_amount, method, reference_id)

    async def _transfer(
        self,
        method: str,
        seller: User,
        transaction: Transaction,
        payout: Payout,
        amount: Decimal,
        currency: str,
    ) -> str:
        description = f"ClubUp sale payout - Transaction {transaction.id}"
        if method == "stripe":
            transfer = await self.stripe.create_transfer(
                seller.stripe_account_id,
                amount,
                currency,
                description=description,
                idempotency_key=payout.idempotency_key,
                metadata={
                    "transactionId": str(transaction.id),
                    "sellerId": str(seller.id),
                    "grossAmount": str(payout.gross_amount),
                    "commissionAmount": str(payout.commission_amount),
                },
            )
            return transfer["id"]

        batch = await self.paypal.create_payout(
            seller.paypal_email,
            amount,
            currency,
            note=description,
            sender_item_id=f"transaction-{transaction.id}",
            sender_batch_id=payout.idempotency_key,
        )
        return batch["id"]

    def _record_failure(self, hold: PaymentHold, payout: Payout, error: str, activity_prefix: str) -> PayoutAttempt:
        transaction = hold.transaction
        payout.status = "failed"
        payout.error = error
        exhausted = payout.attempts >= self.max_attempts
        if exhausted:
            hold.payout_status = "failed"

        log_activity(
            self.db,
            f"{activity_prefix}_failed",
            f"Payout failed: {error}",
            user_id=transaction.seller_id,
            reference_id=str(transaction.id),
            details={"error": error, "attempts": payout.attempts, "exhausted": exhausted},
            commit=False,
        )
        self.db.commit()
        logger.error(
            f"❌ Payout for transaction {transaction.id} failed "
            f"(attempt {payout.attempts}/{self.max_attempts}): {error}"
        )
        return PayoutAttempt(transaction.id, False, method=payout.method, error=error)

    def get_history(self, user: User, limit: int = 50) -> dict:
        payouts = self.repo.list_payouts_for_seller(self.db, user.id, limit)
        completed = [p for p in payouts if p.status == "completed"]
        return {
            "success": True,
            "payouts": [serialize_payout(p) for p in payouts],
            "totalPaid": float(sum((to_decimal(p.net_amount) for p in completed), ZERO)),
            "completedCount": len(completed),
        }


def estimate_payout(amount: float, subscription_tier: Optional[str], method: str) -> dict:
    breakdown = calculate_seller_payout(amount, subscription_tier, method)
    return {
        "grossAmount": float(breakdown.gross_amount),
        "commissionRate": float(breakdown.commission_rate),
        "commissionAmount": float(breakdown.commission_amount),
        "processingFee": float(breakdown.processing_fee),
        "netAmount": float(breakdown.net_amount),
        "method": breakdown.method,
        "subscriptionTier": subscription_tier or "free",
    }


class ConnectService:
    """Stripe Connect onboarding for sellers"""

    def __init__(self, db: Session, stripe_service: StripeService):
        self.db = db
        self.repo = PayoutRepository()
        self.stripe = stripe_service

    def _require_account(self, user: User) -> str:
        if not user.stripe_account_id:
            raise InvalidInput("No Connect account found")
        return user.stripe_account_id

    async def create_account(self, user: User) -> dict:
        if user.stripe_account_id:
            raise Conflict("Connect account already exists", details={"accountId": user.stripe_account_id})

        account = await self.stripe.create_connect_account(user.id, user.email)
        self.repo.set_stripe_account(self.db, user, account["id"])
        link = await self.stripe.create_account_link(account["id"])

        log_activity(
            self.db,
            "connect_account_created",
            "Stripe Connect account created",
            user_id=user.id,
            reference_id=account["id"],
        )
        logger.info(f"✅ Connect account {account['id']} created for user {user.id}")
        return {
            "success": True,
            "accountId": account["id"],
            "onboardingUrl": link["url"],
            "message": "Connect account created. Complete onboarding to receive payouts.",
        }

    async def create_onboarding_link(self, user: User) -> dict:
        account_id = self._require_account(user)
        link = await self.stripe.create_account_link(account_id)
        return {"success": True, "onboardingUrl": link["url"]}

    async def get_status(self, user: User) -> dict:
        if not user.stripe_account_id:
            return {"connected": False, "message": "No Connect account found"}
        status = await self.stripe.get_account_status(user.stripe_account_id)
        return {
            "connected": True,
            "accountId": user.stripe_account_id,
            "status": status,
            "subscriptionTier": user.subscription_tier or "free",
        }

    async def create_dashboard_link(self, user: User) -> dict:
        account_id = self._require_account(user)
        link = await self.stripe.create_dashboard_link(account_id)
        return {"success": True, "dashboardUrl": link["url"]}
