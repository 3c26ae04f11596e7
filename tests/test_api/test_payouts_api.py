"""
Tests for the payout cron trigger, seller payouts and Stripe Connect onboarding
"""

import pytest

from clubup import config

CRON_HEADERS = {"Authorization": "Bearer test-cron-secret"}


@pytest.fixture
def connected_seller(db_session, seller):
    seller.stripe_account_id = "acct_seller"
    db_session.commit()
    return seller


def test_cron_requires_secret(client):
    assert client.post("/cron/payouts").status_code == 401
    response = client.post("/cron/payouts", headers={"Authorization": "Bearer wrong"})

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_cron_processes_due_payouts(client, connected_seller, make_sale, stripe_service):
    make_sale(price=100.0)
    make_sale(price=50.0)

    response = client.post("/cron/payouts", headers=CRON_HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["processedCount"] == 2
    assert data["successfulCount"] == 2
    # (100 - 5 - 3.10) + (50 - 2.50 - 3.10)
    assert data["totalAmount"] == pytest.approx(136.30)
    assert len(stripe_service.transfers) == 2


def test_cron_with_nothing_due(client):
    response = client.post("/cron/payouts", headers=CRON_HEADERS)

    assert response.status_code == 200
    assert response.json()["processedCount"] == 0


def test_dev_trigger_disabled_outside_development(client):
    response = client.get("/cron/payouts")

    assert response.status_code == 405


def test_dev_trigger_in_development(client, monkeypatch):
    monkeypatch.setattr(config, "ENVIRONMENT", "development")

    response = client.get("/cron/payouts")

    assert response.status_code == 200
    assert response.json()["processedCount"] == 0


def test_manual_payout(client, connected_seller, make_sale, seller_headers):
    sale = make_sale()

    response = client.post("/payouts", json={"transactionId": sale.id}, headers=seller_headers)

    assert response.status_code == 200
    assert response.json()["payout"]["netAmount"] == pytest.approx(91.90)

    again = client.post("/payouts", json={"transactionId": sale.id}, headers=seller_headers)
    assert again.status_code == 409


def test_manual_payout_for_unknown_transaction(client, seller_headers):
    response = client.post("/payouts", json={"transactionId": 999}, headers=seller_headers)

    assert response.status_code == 404


def test_payout_history(client, connected_seller, make_sale, seller_headers):
    make_sale()
    client.post("/cron/payouts", headers=CRON_HEADERS)

    response = client.get("/payouts/history", headers=seller_headers)

    data = response.json()
    assert response.status_code == 200
    assert data["completedCount"] == 1
    assert data["totalPaid"] == pytest.approx(91.90)
    assert data["payouts"][0]["method"] == "stripe"


def test_payout_estimate(client, seller_headers):
    response = client.get("/payouts/estimate", params={"amount": 100}, headers=seller_headers)

    calculation = response.json()["calculation"]
    assert calculation["commissionAmount"] == 5.0
    assert calculation["processingFee"] == 3.1
    assert calculation["netAmount"] == 91.9


def test_create_connect_account(client, seller_headers, stripe_service):
    response = client.post("/stripe/connect/account", json={"action": "create_account"}, headers=seller_headers)

    data = response.json()
    assert response.status_code == 200
    assert data["accountId"].startswith("acct_test_")
    assert data["onboardingUrl"].startswith("https://connect.stripe.test/onboarding/")

    again = client.post("/stripe/connect/account", json={"action": "create_account"}, headers=seller_headers)
    assert again.status_code == 409


def test_connect_status(client, connected_seller, seller_headers):
    response = client.get("/stripe/connect/account", headers=seller_headers)

    data = response.json()
    assert data["connected"] is True
    assert data["accountId"] == "acct_seller"
    assert data["status"]["payoutsEnabled"] is True


def test_connect_status_without_account(client, seller_headers):
    response = client.post("/stripe/connect/account", json={"action": "get_status"}, headers=seller_headers)

    assert response.json()["connected"] is False


def test_dashboard_link_requires_account(client, seller_headers):
    response = client.post(
        "/stripe/connect/account", json={"action": "create_dashboard_link"}, headers=seller_headers
    )

    assert response.status_code == 400


def test_unknown_connect_action(client, seller_headers):
    response = client.post("/stripe/connect/account", json={"action": "delete_account"}, headers=seller_headers)

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid action"
