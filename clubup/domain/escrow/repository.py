"""Escrow repository - Database operations for transactions and payment holds"""

from datetime import datetime
from typing import Optional

from sqlalchemy import or_, update
from sqlalchemy.orm import Session, joinedload

from ...models import PaymentHold, Product, Transaction


class EscrowRepository:
    """Repository for escrow database operations"""

    @staticmethod
    def get_transaction(db: Session, transaction_id: int) -> Optional[Transaction]:
        """Get transaction with its hold and product loaded"""
        return (
            db.query(Transaction)
            .options(joinedload(Transaction.payment_hold), joinedload(Transaction.product))
            .filter(Transaction.id == transaction_id)
            .first()
        )

    @staticmethod
    def get_transactions_by_reference(db: Session, provider_reference: str) -> list[Transaction]:
        return (
            db.query(Transaction)
            .filter(Transaction.provider_reference == provider_reference)
            .order_by(Transaction.id)
            .all()
        )

    @staticmethod
    def list_transactions_for_user(
        db: Session, user_id: int, email: str, role: Optional[str] = None, hold_status: Optional[str] = None
    ) -> list[Transaction]:
        """Transactions where the user is the seller or the buyer"""
        query = db.query(Transaction).options(joinedload(Transaction.payment_hold))
        if role == "seller":
            query = query.filter(Transaction.seller_id == user_id)
        elif role == "buyer":
            query = query.filter(Transaction.buyer_email == email)
        else:
            query = query.filter(or_(Transaction.seller_id == user_id, Transaction.buyer_email == email))
        if hold_status:
            query = query.filter(Transaction.hold_status == hold_status)
        return query.order_by(Transaction.created_at.desc(), Transaction.id.desc()).all()

    @staticmethod
    def mark_product_sold(db: Session, product_id: int) -> bool:
        """
        Move a product from active to sold.

        Returns False when another checkout already sold it. Does not commit.
        """
        result = db.execute(
            update(Product)
            .where(Product.id == product_id, Product.status == "active")
            .values(status="sold")
        )
        return result.rowcount == 1

    @staticmethod
    def add_transaction(db: Session, transaction: Transaction, hold: Optional[PaymentHold] = None) -> Transaction:
        """Stage a transaction and its hold in the current unit of work"""
        db.add(transaction)
        if hold is not None:
            hold.transaction = transaction
            db.add(hold)
        db.flush()
        return transaction

    @staticmethod
    def get_auto_release_due(db: Session, now: datetime) -> list[PaymentHold]:
        """Held payments whose seller release request has gone unanswered past its deadline"""
        return (
            db.query(PaymentHold)
            .options(joinedload(PaymentHold.transaction))
            .filter(
                PaymentHold.status == "held",
                PaymentHold.reason == "seller_requested",
                PaymentHold.auto_release_eligible_at.isnot(None),
                PaymentHold.auto_release_eligible_at <= now,
            )
            .order_by(PaymentHold.auto_release_eligible_at, PaymentHold.id)
            .all()
        )
