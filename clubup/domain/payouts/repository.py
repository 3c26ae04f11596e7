"""Payouts repository - Database operations for payouts"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import PaymentHold, Payout, Transaction, User

# Hold reasons that make a released hold payable
RELEASE_REASONS = ("buyer_confirmed", "auto_release")


class PayoutRepository:
    """Repository for payout database operations"""

    @staticmethod
    def get_due_holds(db: Session, now: datetime) -> list[PaymentHold]:
        """Released holds whose scheduled payout time has passed"""
        return (
            db.query(PaymentHold)
            .options(
                joinedload(PaymentHold.transaction).joinedload(Transaction.seller),
                joinedload(PaymentHold.transaction).joinedload(Transaction.payout),
            )
            .filter(
                PaymentHold.status == "released",
                PaymentHold.reason.in_(RELEASE_REASONS),
                PaymentHold.payout_status == "scheduled",
                PaymentHold.payout_scheduled_at.isnot(None),
                PaymentHold.payout_scheduled_at <= now,
            )
            .order_by(PaymentHold.payout_scheduled_at, PaymentHold.id)
            .all()
        )

    @staticmethod
    def get_transaction(db: Session, transaction_id: int) -> Optional[Transaction]:
        return (
            db.query(Transaction)
            .options(
                joinedload(Transaction.payment_hold),
                joinedload(Transaction.seller),
                joinedload(Transaction.payout),
            )
            .filter(Transaction.id == transaction_id)
            .first()
        )

    @staticmethod
    def list_payouts_for_seller(db: Session, seller_id: int, limit: int = 50) -> list[Payout]:
        return (
            db.query(Payout)
            .filter(Payout.seller_id == seller_id)
            .order_by(Payout.created_at.desc(), Payout.id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def set_stripe_account(db: Session, user: User, account_id: str) -> User:
        user.stripe_account_id = account_id
        db.commit()
        db.refresh(user)
        return user
