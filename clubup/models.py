from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    # free, pro, business, pga-pro - null is treated as free
    subscription_tier = Column(String(50), nullable=True, default="free")
    # Stripe Connect account used as payout destination
    stripe_account_id = Column(String(255), nullable=True, unique=True)
    paypal_email = Column(String(255), nullable=True)  # PayPal payout fallback
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    products = relationship("Product", back_populates="seller")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    price = Column(Float, nullable=False)  # Major currency units (pounds)
    brand = Column(String(100), nullable=True)
    condition = Column(String(50), nullable=True)
    category = Column(String(100), nullable=True)
    images = Column(JSON, default=list)
    status = Column(String(50), default="active", index=True)  # active, sold, draft, removed
    # {"included": bool, "postcode": str, "dimensions": {"length", "width", "height", "weight"}}
    shipping = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    seller = relationship("User", back_populates="products")


class Activity(Base):
    """Audit log of checkout, escrow and payout events"""

    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    type = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=True)
    # Provider session/order id or transaction id the entry refers to
    reference_id = Column(String(255), nullable=True, index=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime, server_default=func.now())


class Transaction(Base):
    """A completed sale of one product, created when the provider confirms payment"""

    __tablename__ = "transactions"
    __table_args__ = (UniqueConstraint("provider_reference", "product_id"),)

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    buyer_email = Column(String(255), nullable=True)

    # Amounts
    amount = Column(Float, nullable=False)  # Item total paid for this product
    shipping_cost = Column(Float, default=0)
    commission_rate = Column(Float, nullable=False)
    commission_amount = Column(Float, nullable=False)
    seller_amount = Column(Float, nullable=False)
    currency = Column(String(10), default="GBP")

    # pending (held), completed (paid out), conflict (product already sold)
    status = Column(String(50), default="pending")
    # payment_held, shipped, release_requested, confirmed, released, disputed
    hold_status = Column(String(50), default="payment_held")

    # Provider references
    payment_provider = Column(String(50), nullable=False)  # stripe, paypal
    provider_reference = Column(String(255), nullable=False, index=True)  # session/order id
    provider_payment_id = Column(String(255), nullable=True)  # payment intent / capture id

    # Shipping and delivery
    tracking_number = Column(String(255), nullable=True)
    carrier = Column(String(100), nullable=True)
    shipped_at = Column(DateTime, nullable=True)
    delivery_confirmed_at = Column(DateTime, nullable=True)
    disputed_at = Column(DateTime, nullable=True)
    dispute_reason = Column(Text, nullable=True)
    release_requested_at = Column(DateTime, nullable=True)

    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    product = relationship("Product")
    seller = relationship("User")
    payment_hold = relationship("PaymentHold", back_populates="transaction", uselist=False)
    payout = relationship("Payout", back_populates="transaction", uselist=False)


class PaymentHold(Base):
    """Funds held by the platform until the buyer confirms delivery"""

    __tablename__ = "payment_holds"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), unique=True, nullable=False)

    held_amount = Column(Float, nullable=False)
    currency = Column(String(10), default="GBP")
    commission_held = Column(Float, default=0)
    processing_fee_held = Column(Float, default=0)

    status = Column(String(50), default="held")  # held, released, disputed
    # payment_captured, awaiting_delivery, seller_requested, buyer_confirmed, auto_release
    reason = Column(String(100), default="payment_captured")
    dispute_reason = Column(Text, nullable=True)

    held_at = Column(DateTime, server_default=func.now())
    released_at = Column(DateTime, nullable=True)

    # Seller release requests
    release_requested_at = Column(DateTime, nullable=True)
    auto_release_eligible_at = Column(DateTime, nullable=True, index=True)
    auto_released_at = Column(DateTime, nullable=True)

    # Payout scheduling
    payout_scheduled_at = Column(DateTime, nullable=True, index=True)
    payout_status = Column(String(50), nullable=True)  # scheduled, completed, failed

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    transaction = relationship("Transaction", back_populates="payment_hold")


class Payout(Base):
    """Transfer of a sale's net amount to the seller; at most one per transaction"""

    __tablename__ = "payouts"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), unique=True, nullable=False)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # Sent to the provider so retries never transfer twice
    idempotency_key = Column(String(255), unique=True, nullable=False)

    gross_amount = Column(Float, nullable=False)
    commission_amount = Column(Float, nullable=False)
    processing_fee = Column(Float, default=0)
    net_amount = Column(Float, nullable=False)
    currency = Column(String(10), default="GBP")

    method = Column(String(50), nullable=True)  # stripe, paypal
    status = Column(String(50), default="processing")  # processing, completed, failed
    reference_id = Column(String(255), nullable=True)  # Stripe transfer id / PayPal batch id
    attempts = Column(Integer, default=0, nullable=False)
    error = Column(Text, nullable=True)

    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    transaction = relationship("Transaction", back_populates="payout")
