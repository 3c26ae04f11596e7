"""
Tests for payment holds: capture, shipping, delivery confirmation
"""

from datetime import datetime, timedelta

import pytest

from clubup.config import AUTO_RELEASE_GRACE_HOURS, PAYOUT_DELAY_HOURS
from clubup.domain.escrow.service import EscrowService
from clubup.errors import Conflict, Forbidden, InvalidInput, NotFound
from clubup.models import Activity, PaymentHold, Product, Transaction


async def test_capture_creates_transaction_and_hold(db_session, product, log_checkout):
    await log_checkout([product], reference_id="cs_test_1")

    transactions = EscrowService(db_session).record_captured_checkout(
        "stripe", "cs_test_1", provider_payment_id="pi_123", buyer_email="Buyer@Example.com"
    )

    assert len(transactions) == 1
    transaction = transactions[0]
    assert transaction.status == "pending"
    assert transaction.amount == 240.0
    assert transaction.commission_amount == 12.0
    assert transaction.seller_amount == 228.0
    assert transaction.buyer_email == "buyer@example.com"
    assert transaction.provider_payment_id == "pi_123"

    hold = transaction.payment_hold
    assert hold.status == "held"
    assert hold.reason == "payment_captured"
    assert hold.held_amount == 240.0
    assert hold.commission_held == 12.0
    # 2.9% of 240 + 20p
    assert hold.processing_fee_held == pytest.approx(7.16)

    assert db_session.get(Product, product.id).status == "sold"


async def test_capture_is_idempotent(db_session, product, log_checkout):
    await log_checkout([product], reference_id="cs_test_1")
    service = EscrowService(db_session)

    first = service.record_captured_checkout("stripe", "cs_test_1")
    second = service.record_captured_checkout("stripe", "cs_test_1")

    assert [t.id for t in first] == [t.id for t in second]
    assert db_session.query(Transaction).count() == 1
    assert db_session.query(PaymentHold).count() == 1


async def test_cart_capture_creates_one_hold_per_item(db_session, make_product, log_checkout):
    products = [make_product(price=30.0), make_product(price=15.0)]
    await log_checkout(products, reference_id="PAYPAL-ORDER-1", provider="paypal")

    transactions = EscrowService(db_session).record_captured_checkout("paypal", "PAYPAL-ORDER-1")

    assert len(transactions) == 2
    assert sorted(t.amount for t in transactions) == [15.0, 30.0]
    for transaction in transactions:
        assert transaction.payment_hold.processing_fee_held == pytest.approx(0.20)


async def test_already_sold_product_records_conflict(db_session, product, log_checkout):
    await log_checkout([product], reference_id="cs_test_1")
    await log_checkout([product], reference_id="cs_test_2")
    service = EscrowService(db_session)

    service.record_captured_checkout("stripe", "cs_test_1")
    late = service.record_captured_checkout("stripe", "cs_test_2")

    assert late[0].status == "conflict"
    assert late[0].payment_hold is None
    conflicts = db_session.query(Activity).filter(Activity.type == "checkout_conflict").count()
    assert conflicts == 1


async def test_capture_with_repeated_listing_is_not_reported_as_recorded(db_session, product, log_checkout):
    intent = await log_checkout([product], reference_id="PAYPAL-ORDER-1", provider="paypal")
    activity = db_session.query(Activity).filter(Activity.reference_id == "PAYPAL-ORDER-1").one()
    record = intent.line_item_records()[0]
    activity.details = {**activity.details, "lineItems": [record, dict(record)]}
    db_session.commit()

    with pytest.raises(Conflict):
        EscrowService(db_session).record_captured_checkout("paypal", "PAYPAL-ORDER-1")

    assert db_session.query(Transaction).count() == 0
    assert db_session.query(PaymentHold).count() == 0
    assert db_session.get(Product, product.id).status == "active"


def test_unknown_checkout_is_not_found(db_session):
    with pytest.raises(NotFound):
        EscrowService(db_session).record_captured_checkout("stripe", "cs_unknown")


@pytest.fixture
async def held_sale(db_session, product, log_checkout):
    await log_checkout([product], reference_id="cs_test_1")
    return EscrowService(db_session).record_captured_checkout("stripe", "cs_test_1")[0]


async def test_seller_marks_shipped(db_session, held_sale, seller):
    result = EscrowService(db_session).mark_shipped(seller, held_sale.id, "RM123456789GB", "Royal Mail")

    assert result["success"]
    db_session.refresh(held_sale)
    assert held_sale.hold_status == "shipped"
    assert held_sale.tracking_number == "RM123456789GB"
    assert held_sale.payment_hold.reason == "awaiting_delivery"


async def test_only_seller_marks_shipped(db_session, held_sale, buyer):
    with pytest.raises(Forbidden):
        EscrowService(db_session).mark_shipped(buyer, held_sale.id, "RM1", "Royal Mail")


async def test_buyer_confirmation_schedules_payout(db_session, held_sale, buyer):
    now = datetime(2026, 5, 1, 12, 0, 0)

    result = EscrowService(db_session).confirm_delivery(buyer, held_sale.id, now=now)

    assert result["confirmed"]
    hold = db_session.get(PaymentHold, held_sale.payment_hold.id)
    assert hold.status == "released"
    assert hold.reason == "buyer_confirmed"
    assert hold.payout_status == "scheduled"
    assert hold.payout_scheduled_at == now + timedelta(hours=PAYOUT_DELAY_HOURS)


async def test_unsatisfied_buyer_disputes(db_session, held_sale, buyer):
    result = EscrowService(db_session).confirm_delivery(
        buyer, held_sale.id, satisfied=False, dispute_reason="Shaft is cracked"
    )

    assert result["disputed"]
    hold = held_sale.payment_hold
    assert hold.status == "disputed"
    assert hold.payout_status is None
    assert held_sale.dispute_reason == "Shaft is cracked"


async def test_only_buyer_confirms_delivery(db_session, held_sale, seller):
    with pytest.raises(Forbidden):
        EscrowService(db_session).confirm_delivery(seller, held_sale.id)


SHIPPED_AT = datetime(2026, 5, 1, 9, 0, 0)


@pytest.fixture
async def shipped_sale(db_session, held_sale, seller):
    EscrowService(db_session).mark_shipped(seller, held_sale.id, "RM123456789GB", "Royal Mail", now=SHIPPED_AT)
    return held_sale


async def test_release_request_opens_buyer_window(db_session, shipped_sale, seller):
    now = SHIPPED_AT + timedelta(days=7)

    result = EscrowService(db_session).request_release(seller, shipped_sale.id, now=now)

    eligible_at = now + timedelta(hours=AUTO_RELEASE_GRACE_HOURS)
    assert result["releaseDeadline"] == eligible_at.isoformat()
    hold = db_session.get(PaymentHold, shipped_sale.payment_hold.id)
    assert hold.status == "held"
    assert hold.reason == "seller_requested"
    assert hold.release_requested_at == now
    assert hold.auto_release_eligible_at == eligible_at
    assert shipped_sale.hold_status == "release_requested"
    assert db_session.query(Activity).filter(Activity.type == "release_requested").count() == 1


async def test_release_request_too_soon_after_shipping(db_session, shipped_sale, seller):
    with pytest.raises(InvalidInput) as exc_info:
        EscrowService(db_session).request_release(seller, shipped_sale.id, now=SHIPPED_AT + timedelta(days=5))

    assert exc_info.value.details == {"daysRemaining": 2}
    assert shipped_sale.payment_hold.reason == "awaiting_delivery"


async def test_release_request_before_shipping(db_session, held_sale, seller):
    with pytest.raises(InvalidInput):
        EscrowService(db_session).request_release(seller, held_sale.id)


async def test_only_seller_requests_release(db_session, shipped_sale, buyer):
    with pytest.raises(Forbidden):
        EscrowService(db_session).request_release(buyer, shipped_sale.id, now=SHIPPED_AT + timedelta(days=8))


async def test_auto_release_after_deadline(db_session, shipped_sale, seller):
    service = EscrowService(db_session)
    requested_at = SHIPPED_AT + timedelta(days=7)
    service.request_release(seller, shipped_sale.id, now=requested_at)
    now = requested_at + timedelta(hours=AUTO_RELEASE_GRACE_HOURS)

    result = service.auto_release(seller, shipped_sale.id, now=now)

    assert result["autoReleased"]
    hold = db_session.get(PaymentHold, shipped_sale.payment_hold.id)
    assert hold.status == "released"
    assert hold.reason == "auto_release"
    assert hold.auto_released_at == now
    assert hold.payout_status == "scheduled"
    assert hold.payout_scheduled_at == now
    assert shipped_sale.hold_status == "released"
    assert db_session.query(Activity).filter(Activity.type == "auto_release_executed").count() == 1


async def test_auto_release_before_deadline(db_session, shipped_sale, seller):
    service = EscrowService(db_session)
    requested_at = SHIPPED_AT + timedelta(days=7)
    service.request_release(seller, shipped_sale.id, now=requested_at)

    with pytest.raises(InvalidInput) as exc_info:
        service.auto_release(seller, shipped_sale.id, now=requested_at + timedelta(hours=1))

    assert exc_info.value.message == "Auto-release time not reached yet"
    assert shipped_sale.payment_hold.status == "held"


async def test_auto_release_without_request(db_session, shipped_sale, seller):
    with pytest.raises(InvalidInput):
        EscrowService(db_session).auto_release(seller, shipped_sale.id)


async def test_buyer_dispute_during_window_blocks_auto_release(db_session, shipped_sale, seller, buyer):
    service = EscrowService(db_session)
    requested_at = SHIPPED_AT + timedelta(days=7)
    service.request_release(seller, shipped_sale.id, now=requested_at)
    service.confirm_delivery(buyer, shipped_sale.id, satisfied=False, dispute_reason="Never arrived")

    released = service.release_unanswered_requests(now=requested_at + timedelta(days=2))

    assert released == 0
    assert shipped_sale.payment_hold.status == "disputed"


async def test_unanswered_requests_are_released_in_bulk(db_session, shipped_sale, seller):
    service = EscrowService(db_session)
    requested_at = SHIPPED_AT + timedelta(days=7)
    service.request_release(seller, shipped_sale.id, now=requested_at)

    assert service.release_unanswered_requests(now=requested_at + timedelta(hours=1)) == 0
    assert service.release_unanswered_requests(now=requested_at + timedelta(days=1)) == 1
    assert shipped_sale.payment_hold.reason == "auto_release"
