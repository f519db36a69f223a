from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError, ValidationError
from app.core.permissions import require_permission
from app.core.security import get_current_user
from app.database import get_db
from app.integrations.billing import BillingClient, get_billing_client
from app.models import Subscription, SubscriptionPlan, User
from app.schemas.subscription import CheckoutRequest, serialize_plan, serialize_subscription
from app.services.subscription_lifecycle import SubscriptionLifecycle, get_current_subscription

logger = logging.getLogger(__name__)

router = APIRouter()


def _customer_id(db: Session, user_id: str) -> str | None:
    row = (
        db.query(Subscription.stripe_customer_id)
        .filter(Subscription.user_id == user_id, Subscription.stripe_customer_id.isnot(None))
        .order_by(Subscription.start_date.desc())
        .first()
    )
    return row[0] if row else None


@router.get("/plans")
async def list_plans(
    _: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    plans = (
        db.query(SubscriptionPlan)
        .filter(SubscriptionPlan.is_active.is_(True))
        .order_by(SubscriptionPlan.price.asc())
        .all()
    )
    return {"plans": [serialize_plan(p) for p in plans]}


@router.get("/subscription")
async def current_subscription(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> dict[str, Any]:
    return {"subscription": serialize_subscription(get_current_subscription(db, user.id))}


@router.get("/billing-history")
async def billing_history(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    billing: BillingClient = Depends(get_billing_client),
) -> dict[str, Any]:
    customer_id = _customer_id(db, user.id)
    if not customer_id:
        return {"invoices": []}
    return {"invoices": await run_in_threadpool(billing.list_invoices, customer_id)}


@router.post("/create-checkout-session")
async def create_checkout_session(
    payload: CheckoutRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    billing: BillingClient = Depends(get_billing_client),
) -> dict[str, Any]:
    plan = db.get(SubscriptionPlan, payload.plan_id)
    if plan is None or not plan.is_active:
        raise NotFoundError("Subscription plan not found")
    unit_amount = int((Decimal(plan.price) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return await run_in_threadpool(
        lambda: billing.create_checkout_session(
            user_id=user.id,
            email=user.email,
            plan_id=plan.id,
            plan_name=plan.name,
            plan_description=plan.description,
            unit_amount=unit_amount,
            currency=plan.currency,
            interval=plan.billing_interval.lower(),
        )
    )


@router.post("/cancel-subscription")
async def cancel_subscription(
    user: User = Depends(require_permission("subscriptions:write")),
    db: Session = Depends(get_db),
    billing: BillingClient = Depends(get_billing_client),
) -> dict[str, Any]:
    sub = get_current_subscription(db, user.id)
    if sub is None:
        raise NotFoundError("No active subscription found")
    if sub.stripe_subscription_id:
        await run_in_threadpool(billing.cancel_subscription, sub.stripe_subscription_id)
    sub = await run_in_threadpool(SubscriptionLifecycle(db).cancel, sub)
    logger.info("User %s canceled subscription %s", user.id, sub.id)
    return {"message": "Subscription canceled successfully", "subscription": serialize_subscription(sub)}


@router.post("/update-payment-method")
async def update_payment_method(
    user: User = Depends(require_permission("subscriptions:write")),
    db: Session = Depends(get_db),
    billing: BillingClient = Depends(get_billing_client),
) -> dict[str, str]:
    customer_id = _customer_id(db, user.id)
    if not customer_id:
        raise ValidationError("No billing customer on file")
    client_secret = await run_in_threadpool(billing.create_setup_intent, customer_id)
    return {"client_secret": client_secret}


@router.post("/webhook", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    billing: BillingClient = Depends(get_billing_client),
) -> dict[str, Any]:
    """Stripe webhook. Signature is checked on the raw body before anything is parsed or stored."""
    payload = await request.body()
    event = billing.construct_event(payload, request.headers.get("stripe-signature"))
    outcome = await run_in_threadpool(SubscriptionLifecycle(db).handle_event, event)
    logger.info("Billing event %s (%s): %s", event.get("id"), event.get("type"), outcome)
    return {"received": True, "outcome": outcome}
