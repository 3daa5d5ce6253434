"""
Billing
Stripe subscriptions for the paid plans.
"""
import json
import logging
from datetime import datetime
from typing import List, Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy import desc
from sqlalchemy.orm import Session

import auth
import config
import models
from database import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/subscription", tags=["billing"])

# Amounts in cents, billed monthly
SUBSCRIPTION_PLANS = {
    "basic": {
        "id": "basic",
        "name": "Basic Plan",
        "price": 999,
        "interval": "month",
        "features": [
            "Up to 100 trades per month",
            "Basic analytics",
            "Email support",
        ],
    },
    "pro": {
        "id": "pro",
        "name": "Pro Plan",
        "price": 2999,
        "interval": "month",
        "features": [
            "Unlimited trades",
            "Advanced analytics",
            "Priority support",
            "Backtesting features",
        ],
    },
}

# Webhook events that carry a subscription status change
SUBSCRIPTION_EVENTS = ("customer.subscription.updated", "customer.subscription.deleted")


class BillingError(Exception):
    """Stripe call failed or billing is misconfigured."""


def _configure():
    if not config.STRIPE_SECRET_KEY:
        raise BillingError("Stripe service not configured")
    stripe.api_key = config.STRIPE_SECRET_KEY


def create_customer(email: str, name: Optional[str] = None):
    _configure()
    try:
        return stripe.Customer.create(email=email, name=name)
    except stripe.StripeError as e:
        logger.error("Error creating Stripe customer: %s", e)
        raise BillingError(f"Failed to create customer: {e}") from e


def create_subscription(customer_id: str, plan_id: str):
    """
    Start a subscription that waits for the first payment.

    The client confirms the returned payment intent; until then Stripe keeps
    the subscription in `incomplete`.
    """
    plan = SUBSCRIPTION_PLANS.get(plan_id)
    if not plan:
        raise BillingError(f"Plan with ID {plan_id} not found")
    _configure()

    try:
        price = stripe.Price.create(
            unit_amount=plan["price"],
            currency=config.STRIPE_CURRENCY,
            recurring={"interval": plan["interval"]},
            product_data={"name": plan["name"]},
        )
        return stripe.Subscription.create(
            customer=customer_id,
            items=[{"price": price.id}],
            payment_behavior="default_incomplete",
            payment_settings={"save_default_payment_method": "on_subscription"},
            expand=["latest_invoice.payment_intent"],
            metadata={"plan_id": plan_id},
        )
    except stripe.StripeError as e:
        logger.error("Error creating Stripe subscription: %s", e)
        raise BillingError(f"Failed to create subscription: {e}") from e


def cancel_subscription(subscription_id: str) -> bool:
    _configure()
    try:
        stripe.Subscription.cancel(subscription_id)
        return True
    except stripe.StripeError as e:
        logger.error("Error canceling subscription %s: %s", subscription_id, e)
        return False


def get_subscription(subscription_id: str):
    _configure()
    try:
        return stripe.Subscription.retrieve(subscription_id)
    except stripe.StripeError as e:
        logger.error("Error retrieving subscription %s: %s", subscription_id, e)
        return None


def _client_secret(subscription) -> Optional[str]:
    invoice = getattr(subscription, "latest_invoice", None)
    intent = getattr(invoice, "payment_intent", None)
    return getattr(intent, "client_secret", None)


def _subscription_change(event: dict):
    """(stripe subscription id, new status) carried by a subscription event."""
    data = event.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict) or not isinstance(obj.get("id"), str):
        raise HTTPException(status_code=400, detail="Invalid webhook payload")
    if event["type"] == "customer.subscription.deleted":
        return obj["id"], "canceled"
    if not isinstance(obj.get("status"), str):
        raise HTTPException(status_code=400, detail="Invalid webhook payload")
    return obj["id"], obj["status"]


# Pydantic Models
class SubscriptionCreate(BaseModel):
    plan_id: str


class SubscriptionResponse(BaseModel):
    id: str
    stripe_subscription_id: str
    plan_id: str
    status: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# --- API Endpoints ---

@router.get("/plans")
def list_plans(current_user: models.User = Depends(auth.get_current_user)):
    """Plans offered to signed-in users"""
    return list(SUBSCRIPTION_PLANS.values())


@router.get("", response_model=List[SubscriptionResponse])
def list_subscriptions(current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    return db.query(models.Subscription).filter(
        models.Subscription.user_id == current_user.id
    ).order_by(desc(models.Subscription.created_at)).all()


@router.post("", status_code=201)
def subscribe(sub_in: SubscriptionCreate, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    if not config.STRIPE_SECRET_KEY:
        raise HTTPException(status_code=501, detail="Stripe service not configured")
    if sub_in.plan_id not in SUBSCRIPTION_PLANS:
        raise HTTPException(status_code=400, detail=f"Plan with ID {sub_in.plan_id} not found")

    try:
        if not current_user.stripe_customer_id:
            customer = create_customer(current_user.email, current_user.full_name)
            current_user.stripe_customer_id = customer.id
            db.commit()

        subscription = create_subscription(current_user.stripe_customer_id, sub_in.plan_id)
    except BillingError as e:
        raise HTTPException(status_code=500, detail=str(e))

    record = models.Subscription(
        user_id=current_user.id,
        stripe_subscription_id=subscription.id,
        plan_id=sub_in.plan_id,
        status=subscription.status,
    )
    db.add(record)
    db.commit()
    logger.info("User %s subscribed to %s (%s)", current_user.id, sub_in.plan_id, subscription.id)

    return {
        "subscription_id": subscription.id,
        "plan_id": sub_in.plan_id,
        "status": subscription.status,
        "client_secret": _client_secret(subscription),
    }


@router.delete("/{subscription_id}")
def cancel(subscription_id: str, current_user: models.User = Depends(auth.get_current_user), db: Session = Depends(get_db)):
    """Cancel by Stripe subscription id or local record id"""
    record = db.query(models.Subscription).filter(
        models.Subscription.user_id == current_user.id,
        (models.Subscription.stripe_subscription_id == subscription_id) | (models.Subscription.id == subscription_id),
    ).first()
    if not record:
        raise HTTPException(status_code=404, detail="Subscription not found")
    if not config.STRIPE_SECRET_KEY:
        raise HTTPException(status_code=501, detail="Stripe service not configured")

    if not cancel_subscription(record.stripe_subscription_id):
        raise HTTPException(status_code=500, detail="Failed to cancel subscription")

    record.status = "canceled"
    db.commit()
    return {"message": "Subscription canceled successfully"}


@router.post("/webhook")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Sync subscription status from Stripe events"""
    payload = await request.body()
    signature = request.headers.get("Stripe-Signature")

    if config.STRIPE_WEBHOOK_SECRET:
        try:
            event = stripe.Webhook.construct_event(payload, signature, config.STRIPE_WEBHOOK_SECRET)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("Rejected Stripe webhook: %s", e)
            raise HTTPException(status_code=400, detail="Invalid webhook signature")
    else:
        try:
            event = json.loads(payload)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid webhook payload")

    if not isinstance(event, dict) or not isinstance(event.get("type"), str):
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    event_type = event["type"]
    if event_type in SUBSCRIPTION_EVENTS:
        sub_id, status = _subscription_change(event)
        record = db.query(models.Subscription).filter(
            models.Subscription.stripe_subscription_id == sub_id
        ).first()
        if record:
            record.status = status
            db.commit()
            logger.info("Subscription %s is now %s", record.stripe_subscription_id, record.status)
        else:
            logger.warning("Webhook for unknown subscription %s", sub_id)

    return {"received": True}
