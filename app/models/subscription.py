"""Subscription plans, subscriptions and processed billing events."""
from __future__ import annotations

from sqlalchemy import DECIMAL, Boolean, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.models.base import Base, JSONType, as_utc, new_id, utcnow

ACTIVE = "active"
INACTIVE = "inactive"
CANCELED = "canceled"
PAYMENT_FAILED = "payment_failed"

SUBSCRIPTION_STATUSES = (ACTIVE, INACTIVE, CANCELED, PAYMENT_FAILED)


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(Text, nullable=False, unique=True)
    description = Column(Text)
    price = Column(DECIMAL(10, 2), nullable=False)
    currency = Column(Text, nullable=False, default="usd")
    billing_interval = Column(Text, nullable=False, default="month")
    features = Column(JSONType, default=list)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_id = Column(String(36), ForeignKey("subscription_plans.id"), nullable=False)
    stripe_subscription_id = Column(Text, index=True)
    stripe_customer_id = Column(Text)
    stripe_checkout_session_id = Column(Text, unique=True)
    status = Column(Text, nullable=False, default=ACTIVE)
    start_date = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    end_date = Column(DateTime(timezone=True))
    last_event_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="subscriptions")
    plan = relationship("SubscriptionPlan")

    def is_current(self, now=None) -> bool:
        """Open-ended or ending in the future."""
        end = as_utc(self.end_date)
        return end is None or end > (now or utcnow())


class BillingEvent(Base):
    """Provider events already applied; used to skip redelivered webhooks."""

    __tablename__ = "billing_events"

    id = Column(String(36), primary_key=True, default=new_id)
    provider_event_id = Column(Text, nullable=False, unique=True)
    event_type = Column(Text, nullable=False)
    processed_at = Column(DateTime(timezone=True), default=utcnow)
