"""
Tests for the Stripe and PayPal provider wrappers, with the network calls stubbed
"""

import hashlib
import hmac
import json
import time
from decimal import Decimal
from types import SimpleNamespace

import pytest
import stripe

from clubup.domain.checkout.service import CheckoutOrchestrator
from clubup.errors import InvalidInput, UpstreamFailure
from clubup.services.paypal_service import PayPalService, format_paypal_amount, normalize_paypal_environment
from clubup.services.stripe_service import StripeService, to_minor_units

WEBHOOK_SECRET = "whsec_test"


def sign(payload: bytes, secret=WEBHOOK_SECRET, timestamp=None):
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def stripe_provider():
    return StripeService("sk_test_123", webhook_secret=WEBHOOK_SECRET)


@pytest.fixture
def recording_paypal(monkeypatch):
    service = PayPalService("client-id", "client-secret", environment="sandbox")
    calls = []
    responses = {}
    errors = {}

    async def fake_request(method, path, json_body=None, request_id=None):
        calls.append({"method": method, "path": path, "json": json_body, "request_id": request_id})
        if (method, path) in errors:
            raise errors[(method, path)]
        return responses.get(path, {})

    monkeypatch.setattr(service, "_request", fake_request)
    service.calls = calls
    service.responses = responses
    service.errors = errors
    return service


def test_minor_units_round_half_up():
    assert to_minor_units(Decimal("240.00")) == 24000
    assert to_minor_units(Decimal("8.765")) == 877
    assert to_minor_units(19.99) == 1999


def test_webhook_with_valid_signature(stripe_provider):
    payload = json.dumps({"id": "evt_1", "type": "checkout.session.completed"}).encode()

    event = stripe_provider.construct_event(payload, sign(payload))

    assert event["type"] == "checkout.session.completed"


def test_webhook_with_wrong_secret(stripe_provider):
    payload = json.dumps({"id": "evt_1"}).encode()

    with pytest.raises(InvalidInput):
        stripe_provider.construct_event(payload, sign(payload, secret="whsec_other"))


def test_webhook_without_signature(stripe_provider):
    with pytest.raises(InvalidInput):
        stripe_provider.construct_event(b"{}", None)


def test_webhook_without_configured_secret():
    with pytest.raises(UpstreamFailure):
        StripeService("sk_test_123").construct_event(b"{}", "t=1,v1=abc")


async def test_unconfigured_stripe_fails_fast():
    with pytest.raises(UpstreamFailure):
        await StripeService(None).create_transfer("acct_1", Decimal("10"), "GBP", "payout", "payout-1")


async def test_transfer_sends_idempotency_key(stripe_provider, monkeypatch):
    captured = {}

    async def fake_create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="tr_123")

    monkeypatch.setattr(stripe.Transfer, "create_async", fake_create)

    transfer = await stripe_provider.create_transfer(
        "acct_1", Decimal("91.90"), "GBP", "payout", idempotency_key="payout-7", metadata={"transactionId": "7"}
    )

    assert transfer == {"id": "tr_123"}
    assert captured["amount"] == 9190
    assert captured["currency"] == "gbp"
    assert captured["destination"] == "acct_1"
    assert captured["idempotency_key"] == "payout-7"
    assert captured["metadata"] == {"platform": "clubup", "transactionId": "7"}


async def test_checkout_session_adds_shipping_line(stripe_provider, make_product, make_shipping_service, monkeypatch):
    captured = {}

    async def fake_create(**kwargs):
        captured.update(kwargs)
        return SimpleNamespace(id="cs_live_1", url="https://checkout.stripe.com/c/cs_live_1")

    monkeypatch.setattr(stripe.checkout.Session, "create_async", fake_create)
    intent = await CheckoutOrchestrator(make_shipping_service()).build_checkout_intent(
        make_product(price=200.0), "royal-mail-2nd", "M1 1AE"
    )

    session = await stripe_provider.create_checkout_session(intent, "https://clubup.test/ok", "https://clubup.test/no")

    assert session["id"] == "cs_live_1"
    assert captured["mode"] == "payment"
    assert [line["price_data"]["unit_amount"] for line in captured["line_items"]] == [20000, 876]
    assert captured["metadata"] == intent.provider_metadata
    assert captured["success_url"] == "https://clubup.test/ok?session_id={CHECKOUT_SESSION_ID}"


async def test_stripe_errors_become_upstream_failures(stripe_provider, monkeypatch):
    async def failing(**kwargs):
        raise stripe.APIConnectionError("network down")

    monkeypatch.setattr(stripe.Transfer, "create_async", failing)

    with pytest.raises(UpstreamFailure) as exc_info:
        await stripe_provider.create_transfer("acct_1", Decimal("5"), "GBP", "payout", "payout-1")
    assert "network down" in exc_info.value.details


@pytest.mark.parametrize(
    "value,expected",
    [("live", "live"), ("Production", "live"), ("sandbox", "sandbox"), (None, "sandbox"), ("staging", "sandbox")],
)
def test_paypal_environment(value, expected):
    assert normalize_paypal_environment(value) == expected


def test_paypal_amount_format():
    assert format_paypal_amount(Decimal("5.9")) == "5.90"
    assert format_paypal_amount(Decimal("50")) == "50.00"


async def test_paypal_order_breakdown(recording_paypal, make_product):
    recording_paypal.responses["/v2/checkout/orders"] = {
        "id": "ORDER-1",
        "status": "CREATED",
        "links": [{"rel": "approve", "href": "https://www.sandbox.paypal.com/checkoutnow?token=ORDER-1"}],
    }
    intent = CheckoutOrchestrator(None).build_cart_checkout_intent(
        [(make_product(price=20.0), 1), (make_product(price=12.5), 1), (make_product(price=12.5), 1)]
    )

    order = await recording_paypal.create_order(intent, "clubup-abc")

    assert order == {
        "id": "ORDER-1",
        "status": "CREATED",
        "approval_url": "https://www.sandbox.paypal.com/checkoutnow?token=ORDER-1",
    }
    call = recording_paypal.calls[0]
    assert call["request_id"] == "clubup-abc"
    unit = call["json"]["purchase_units"][0]
    assert call["json"]["intent"] == "CAPTURE"
    assert unit["amount"]["value"] == "50.99"
    assert unit["amount"]["breakdown"]["item_total"]["value"] == "45.00"
    assert unit["amount"]["breakdown"]["shipping"]["value"] == "5.99"
    assert [item["quantity"] for item in unit["items"]] == ["1", "1", "1"]


async def test_paypal_capture_parsing(recording_paypal):
    recording_paypal.responses["/v2/checkout/orders/ORDER-1/capture"] = {
        "id": "ORDER-1",
        "status": "COMPLETED",
        "payer": {"email_address": "payer@example.com"},
        "purchase_units": [
            {"payments": {"captures": [{"id": "CAP-1", "amount": {"value": "50.99", "currency_code": "GBP"}}]}}
        ],
    }

    capture = await recording_paypal.capture_order("ORDER-1")

    assert capture == {
        "id": "ORDER-1",
        "status": "COMPLETED",
        "capture_id": "CAP-1",
        "amount": "50.99",
        "currency": "GBP",
        "payer_email": "payer@example.com",
    }
    assert recording_paypal.calls[0]["request_id"] == "capture-ORDER-1"


async def test_paypal_payout_uses_batch_id(recording_paypal):
    recording_paypal.responses["/v1/payments/payouts"] = {
        "batch_header": {"payout_batch_id": "BATCH-9", "batch_status": "PENDING"}
    }

    result = await recording_paypal.create_payout(
        "seller@example.com", Decimal("47.3"), "gbp", "sale payout", "transaction-3", "payout-3"
    )

    assert result == {"id": "BATCH-9", "status": "PENDING"}
    body = recording_paypal.calls[0]["json"]
    assert body["sender_batch_header"]["sender_batch_id"] == "payout-3"
    assert body["items"][0]["amount"] == {"value": "47.30", "currency": "GBP"}


async def test_paypal_payout_already_submitted_returns_existing_batch(recording_paypal):
    recording_paypal.errors[("POST", "/v1/payments/payouts")] = UpstreamFailure(
        "PayPal API error",
        details=json.dumps(
            {
                "name": "USER_BUSINESS_ERROR",
                "details": [
                    {"field": "SENDER_BATCH_ID", "issue": "Batch with given sender_batch_id already exists"}
                ],
            }
        ),
    )
    recording_paypal.responses["/v1/payments/payouts?sender_batch_id=payout-3"] = {
        "batch_header": {"payout_batch_id": "BATCH-9", "batch_status": "SUCCESS"}
    }

    result = await recording_paypal.create_payout(
        "seller@example.com", Decimal("47.3"), "GBP", "sale payout", "transaction-3", "payout-3"
    )

    assert result == {"id": "BATCH-9", "status": "SUCCESS"}
    assert [(call["method"], call["path"]) for call in recording_paypal.calls] == [
        ("POST", "/v1/payments/payouts"),
        ("GET", "/v1/payments/payouts?sender_batch_id=payout-3"),
    ]


async def test_paypal_payout_other_errors_are_raised(recording_paypal):
    recording_paypal.errors[("POST", "/v1/payments/payouts")] = UpstreamFailure(
        "PayPal API error", details='{"name": "INSUFFICIENT_FUNDS"}'
    )

    with pytest.raises(UpstreamFailure):
        await recording_paypal.create_payout(
            "seller@example.com", Decimal("47.3"), "GBP", "sale payout", "transaction-3", "payout-3"
        )
    assert len(recording_paypal.calls) == 1


async def test_paypal_duplicate_batch_missing_on_lookup(recording_paypal):
    recording_paypal.errors[("POST", "/v1/payments/payouts")] = UpstreamFailure(
        "PayPal API error", details="Batch with given sender_batch_id already exists"
    )

    with pytest.raises(UpstreamFailure) as exc_info:
        await recording_paypal.create_payout(
            "seller@example.com", Decimal("47.3"), "GBP", "sale payout", "transaction-3", "payout-3"
        )
    assert exc_info.value.message == "PayPal payout batch not found"


async def test_unconfigured_paypal_fails_fast():
    with pytest.raises(UpstreamFailure):
        await PayPalService(None, None).get_order("ORDER-1")
