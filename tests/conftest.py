"""
Pytest fixtures and configuration for ClubUp backend tests

Provides an in-memory database, fake payment and shipping providers and an
API client wired to both.
"""

import json
import os
from datetime import datetime, timedelta

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clubup.auth import create_access_token
from clubup.database import Base, get_db
from clubup.domain.checkout.service import CheckoutOrchestrator
from clubup.errors import InvalidInput, UpstreamFailure
from clubup.main import app
from clubup.models import PaymentHold, Product, Transaction, User
from clubup.services.shipping_service import ShippingOption, ShippingQuoteResult
from clubup.shared.activity import log_activity


class FakeStripeService:
    """Records calls instead of talking to Stripe"""

    def __init__(self):
        self.sessions = []
        self.transfers = []
        self.accounts = []
        self.fail_transfers = False

    def is_available(self):
        return True

    async def create_checkout_session(self, intent, success_url, cancel_url, customer_email=None, description=None):
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append(
            {
                "id": session_id,
                "intent": intent,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "customer_email": customer_email,
            }
        )
        return {"id": session_id, "url": f"https://checkout.stripe.test/{session_id}"}

    def construct_event(self, payload, signature):
        if signature != "valid-signature":
            raise InvalidInput("Invalid signature")
        return json.loads(payload)

    async def create_connect_account(self, seller_id, email):
        account_id = f"acct_test_{seller_id}"
        self.accounts.append(account_id)
        return {"id": account_id}

    async def create_account_link(self, account_id):
        return {"url": f"https://connect.stripe.test/onboarding/{account_id}"}

    async def get_account_status(self, account_id):
        return {"id": account_id, "chargesEnabled": True, "payoutsEnabled": True, "requiresAction": False}

    async def create_dashboard_link(self, account_id):
        return {"url": f"https://connect.stripe.test/dashboard/{account_id}"}

    async def create_transfer(self, account_id, amount, currency, description, idempotency_key, metadata=None):
        self.transfers.append(
            {
                "account_id": account_id,
                "amount": amount,
                "currency": currency,
                "idempotency_key": idempotency_key,
                "metadata": metadata,
            }
        )
        if self.fail_transfers:
            raise UpstreamFailure("Failed to transfer funds", details="insufficient platform balance")
        return {"id": f"tr_test_{len(self.transfers)}"}


class FakePayPalService:
    """Records calls instead of talking to PayPal"""

    def __init__(self):
        self.orders = []
        self.payouts = []
        self.order_status = "APPROVED"

    def is_available(self):
        return True

    async def create_order(self, intent, reference_id):
        order_id = f"PAYPAL-ORDER-{len(self.orders) + 1}"
        self.orders.append({"id": order_id, "intent": intent, "reference_id": reference_id})
        return {
            "id": order_id,
            "status": "CREATED",
            "approval_url": f"https://www.sandbox.paypal.test/checkoutnow?token={order_id}",
        }

    async def get_order(self, order_id):
        return {"id": order_id, "status": self.order_status}

    async def capture_order(self, order_id):
        return {
            "id": order_id,
            "status": "COMPLETED",
            "capture_id": f"CAPTURE-{order_id}",
            "amount": None,
            "currency": "GBP",
            "payer_email": None,
        }

    async def create_payout(self, receiver_email, amount, currency, note, sender_item_id, sender_batch_id):
        self.payouts.append(
            {
                "receiver_email": receiver_email,
                "amount": amount,
                "currency": currency,
                "sender_batch_id": sender_batch_id,
            }
        )
        return {"id": f"BATCH-{len(self.payouts)}", "status": "PENDING"}


class FakeShippingService:
    """Fixed quote, or a failure when ``error`` is set"""

    def __init__(self, options=None, error=None):
        self.options = options if options is not None else [
            ShippingOption("collection", "Collection", "Collect in Person", 0.0),
            ShippingOption("royal-mail-2nd", "Royal Mail", "2nd Class", 8.76),
            ShippingOption("royal-mail-tracked-24", "Royal Mail", "Tracked 24", 17.52),
        ]
        self.error = error
        self.requests = []

    async def calculate_shipping(self, request):
        self.requests.append(request)
        if isinstance(self.error, Exception):
            raise self.error
        if self.error:
            return ShippingQuoteResult(success=False, error=self.error)
        return ShippingQuoteResult(success=True, options=list(self.options))


@pytest.fixture
def db_session():
    """
    Provides a fresh in-memory database for each test

    Scope: function (new schema per test)
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def stripe_service():
    return FakeStripeService()


@pytest.fixture
def paypal_service():
    return FakePayPalService()


@pytest.fixture
def shipping_service():
    return FakeShippingService()


@pytest.fixture
def make_shipping_service():
    """Factory for shipping fakes with custom options or failures"""
    return FakeShippingService


@pytest.fixture
def client(db_session, stripe_service, paypal_service, shipping_service):
    """
    API client using the test database and fake providers
    """

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.state.stripe_service = stripe_service
    app.state.paypal_service = paypal_service
    app.state.shipping_service = shipping_service
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def seller(db_session):
    user = User(email="seller@example.com", name="Sam Seller", subscription_tier="free")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def buyer(db_session):
    user = User(email="buyer@example.com", name="Bea Buyer", subscription_tier="free")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def make_product(db_session, seller):
    """Factory for active products owned by the seller fixture"""

    def _make(price=240.0, title="TaylorMade Stealth Driver", shipping=None, owner=None, status="active"):
        product = Product(
            seller_id=(owner or seller).id,
            title=title,
            price=price,
            brand="TaylorMade",
            condition="Excellent",
            category="drivers",
            images=["https://images.example.com/driver.jpg"],
            status=status,
            shipping=shipping if shipping is not None else {"included": False, "postcode": "SW1A 1AA"},
        )
        db_session.add(product)
        db_session.commit()
        db_session.refresh(product)
        return product

    return _make


@pytest.fixture
def product(make_product):
    return make_product()


@pytest.fixture
def auth_headers():
    """Bearer header for any user"""

    def _headers(user):
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers


@pytest.fixture
def buyer_headers(auth_headers, buyer):
    return auth_headers(buyer)


@pytest.fixture
def seller_headers(auth_headers, seller):
    return auth_headers(seller)


@pytest.fixture
def log_checkout(db_session, shipping_service):
    """Record a checkout activity the way the checkout service does"""

    async def _log(products, reference_id="cs_test_1", buyer_email="buyer@example.com", provider="stripe"):
        orchestrator = CheckoutOrchestrator(shipping_service)
        if len(products) == 1:
            intent = await orchestrator.build_checkout_intent(products[0])
        else:
            intent = orchestrator.build_cart_checkout_intent([(product, 1) for product in products])
        log_activity(
            db_session,
            "checkout_initiated" if provider == "stripe" else "paypal_order_created",
            "Checkout started",
            reference_id=reference_id,
            details={
                "provider": provider,
                "buyerEmail": buyer_email,
                "currency": intent.currency,
                "lineItems": intent.line_item_records(),
            },
        )
        return intent

    return _log


@pytest.fixture
def make_sale(db_session, seller, make_product):
    """Factory for a paid sale with a payment hold in a given state"""

    def _make(
        price=100.0,
        hold_status="released",
        reason="buyer_confirmed",
        payout_status="scheduled",
        scheduled_at=None,
        provider="stripe",
        processing_fee=3.10,
        buyer_email="buyer@example.com",
    ):
        product = make_product(price=price, status="sold")
        commission = round(price * 0.05, 2)
        transaction = Transaction(
            product_id=product.id,
            seller_id=seller.id,
            buyer_email=buyer_email,
            amount=price,
            shipping_cost=0,
            commission_rate=0.05,
            commission_amount=commission,
            seller_amount=price - commission,
            currency="GBP",
            status="pending",
            hold_status="confirmed" if hold_status == "released" else "payment_held",
            payment_provider=provider,
            provider_reference=f"ref-{product.id}",
        )
        hold = PaymentHold(
            transaction=transaction,
            held_amount=price,
            currency="GBP",
            commission_held=commission,
            processing_fee_held=processing_fee,
            status=hold_status,
            reason=reason,
            payout_status=payout_status,
            payout_scheduled_at=scheduled_at or (datetime.utcnow() - timedelta(minutes=5)),
        )
        db_session.add_all([transaction, hold])
        db_session.commit()
        db_session.refresh(transaction)
        return transaction

    return _make
