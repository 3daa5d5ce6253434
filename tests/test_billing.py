import json
from unittest.mock import MagicMock, patch

import pytest
import stripe

import billing
import config
import models


@pytest.fixture
def stripe_key(monkeypatch):
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "sk_test_123")


def fake_subscription(sub_id="sub_123", status="incomplete"):
    subscription = MagicMock()
    subscription.id = sub_id
    subscription.status = status
    subscription.latest_invoice.payment_intent.client_secret = "pi_secret_abc"
    return subscription


def test_plans(client, auth_headers):
    plans = client.get("/api/subscription/plans", headers=auth_headers).json()
    assert {p["id"]: p["price"] for p in plans} == {"basic": 999, "pro": 2999}
    assert "Backtesting features" in plans[1]["features"]


def test_plans_require_login(client):
    assert client.get("/api/subscription/plans").status_code == 401


def test_subscribe_without_stripe(client, auth_headers):
    response = client.post("/api/subscription", json={"plan_id": "pro"}, headers=auth_headers)
    assert response.status_code == 501
    assert response.json()["detail"] == "Stripe service not configured"


def test_subscribe_unknown_plan(client, auth_headers, stripe_key):
    response = client.post("/api/subscription", json={"plan_id": "gold"}, headers=auth_headers)
    assert response.status_code == 400


def test_subscribe_creates_customer_and_subscription(client, auth_headers, stripe_key, db_session, user):
    with patch("billing.stripe.Customer.create", return_value=MagicMock(id="cus_1")) as create_customer, \
            patch("billing.stripe.Price.create", return_value=MagicMock(id="price_1")) as create_price, \
            patch("billing.stripe.Subscription.create", return_value=fake_subscription()) as create_sub:
        response = client.post("/api/subscription", json={"plan_id": "pro"}, headers=auth_headers)

    assert response.status_code == 201
    assert response.json() == {
        "subscription_id": "sub_123",
        "plan_id": "pro",
        "status": "incomplete",
        "client_secret": "pi_secret_abc",
    }
    create_customer.assert_called_once_with(email="trader@example.com", name="Ada Trader")
    assert create_price.call_args.kwargs["unit_amount"] == 2999
    assert create_price.call_args.kwargs["recurring"] == {"interval": "month"}
    sub_kwargs = create_sub.call_args.kwargs
    assert sub_kwargs["customer"] == "cus_1"
    assert sub_kwargs["items"] == [{"price": "price_1"}]
    assert sub_kwargs["payment_behavior"] == "default_incomplete"
    assert sub_kwargs["expand"] == ["latest_invoice.payment_intent"]

    db_session.expire_all()
    assert db_session.get(models.User, user.id).stripe_customer_id == "cus_1"
    stored = client.get("/api/subscription", headers=auth_headers).json()
    assert stored[0]["stripe_subscription_id"] == "sub_123"


def test_subscribe_reuses_customer(client, auth_headers, stripe_key, db_session, user):
    user.stripe_customer_id = "cus_existing"
    db_session.commit()
    with patch("billing.stripe.Customer.create") as create_customer, \
            patch("billing.stripe.Price.create", return_value=MagicMock(id="price_1")), \
            patch("billing.stripe.Subscription.create", return_value=fake_subscription()) as create_sub:
        client.post("/api/subscription", json={"plan_id": "basic"}, headers=auth_headers)
    create_customer.assert_not_called()
    assert create_sub.call_args.kwargs["customer"] == "cus_existing"


def test_subscribe_stripe_failure(client, auth_headers, stripe_key):
    with patch("billing.stripe.Customer.create", side_effect=stripe.StripeError("card declined")):
        response = client.post("/api/subscription", json={"plan_id": "pro"}, headers=auth_headers)
    assert response.status_code == 500
    assert response.json()["detail"].startswith("Failed to create customer")


def test_create_subscription_unknown_plan(stripe_key):
    with pytest.raises(billing.BillingError, match="Plan with ID gold not found"):
        billing.create_subscription("cus_1", "gold")


def test_cancel_and_get_helpers(stripe_key):
    with patch("billing.stripe.Subscription.cancel", side_effect=stripe.StripeError("gone")):
        assert billing.cancel_subscription("sub_1") is False
    with patch("billing.stripe.Subscription.retrieve", side_effect=stripe.StripeError("gone")):
        assert billing.get_subscription("sub_1") is None
    with patch("billing.stripe.Subscription.retrieve", return_value=fake_subscription("sub_1", "active")):
        assert billing.get_subscription("sub_1").status == "active"


def _store_subscription(db_session, user, sub_id="sub_123"):
    record = models.Subscription(user_id=user.id, stripe_subscription_id=sub_id, plan_id="pro", status="active")
    db_session.add(record)
    db_session.commit()
    return record


def test_cancel_endpoint(client, auth_headers, other_headers, stripe_key, db_session, user):
    _store_subscription(db_session, user)

    assert client.delete("/api/subscription/sub_123", headers=other_headers).status_code == 404

    with patch("billing.stripe.Subscription.cancel") as cancel:
        response = client.delete("/api/subscription/sub_123", headers=auth_headers)
    assert response.status_code == 200
    cancel.assert_called_once_with("sub_123")
    assert client.get("/api/subscription", headers=auth_headers).json()[0]["status"] == "canceled"


def test_cancel_endpoint_stripe_refuses(client, auth_headers, stripe_key, db_session, user):
    _store_subscription(db_session, user)
    with patch("billing.stripe.Subscription.cancel", side_effect=stripe.StripeError("nope")):
        response = client.delete("/api/subscription/sub_123", headers=auth_headers)
    assert response.status_code == 500


def test_webhook_syncs_status(client, auth_headers, db_session, user):
    _store_subscription(db_session, user)
    event = {"type": "customer.subscription.updated", "data": {"object": {"id": "sub_123", "status": "past_due"}}}
    response = client.post("/api/subscription/webhook", content=json.dumps(event))
    assert response.json() == {"received": True}
    assert client.get("/api/subscription", headers=auth_headers).json()[0]["status"] == "past_due"

    event["type"] = "customer.subscription.deleted"
    client.post("/api/subscription/webhook", content=json.dumps(event))
    assert client.get("/api/subscription", headers=auth_headers).json()[0]["status"] == "canceled"


def test_webhook_rejects_bad_signature(client, monkeypatch):
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", "whsec_test")
    response = client.post("/api/subscription/webhook", content=b"{}", headers={"Stripe-Signature": "t=1,v1=bad"})
    assert response.status_code == 400


@pytest.mark.parametrize("body", [
    {"id": "evt_1"},
    [],
    {"type": 5},
    {"type": "customer.subscription.updated"},
    {"type": "customer.subscription.updated", "data": {"object": {"status": "active"}}},
    {"type": "customer.subscription.updated", "data": {"object": {"id": "sub_123"}}},
    {"type": "customer.subscription.deleted", "data": []},
])
def test_webhook_rejects_malformed_events(client, body):
    response = client.post("/api/subscription/webhook", content=json.dumps(body))
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid webhook payload"


def test_webhook_ignores_other_event_types(client):
    response = client.post("/api/subscription/webhook", content=json.dumps({"type": "invoice.paid"}))
    assert response.json() == {"received": True}
