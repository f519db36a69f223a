from __future__ import annotations

from typing import Any

from pydantic import BaseModel

from app.models import Subscription, SubscriptionPlan


class CheckoutRequest(BaseModel):
    plan_id: str


def serialize_plan(plan: SubscriptionPlan) -> dict[str, Any]:
    return {
        "id": plan.id,
        "name": plan.name,
        "description": plan.description,
        "price": float(plan.price),
        "currency": plan.currency,
        "billing_interval": plan.billing_interval,
        "features": plan.features or [],
    }


def serialize_subscription(sub: Subscription | None) -> dict[str, Any] | None:
    if sub is None:
        return None
    return {
        "id": sub.id,
        "status": sub.status,
        "start_date": sub.start_date.isoformat() if sub.start_date else None,
        "end_date": sub.end_date.isoformat() if sub.end_date else None,
        "stripe_subscription_id": sub.stripe_subscription_id,
        "plan": serialize_plan(sub.plan) if sub.plan else None,
    }
