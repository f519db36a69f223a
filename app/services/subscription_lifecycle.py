"""
Subscription lifecycle driven by Stripe webhook events.

Local subscription rows and the paid/free role memberships are kept in step
with billing state so permission checks never call out to Stripe. Every
event is applied in one transaction, serialized per provider subscription,
and recorded so redeliveries are skipped.

States: none -> active -> {canceled, payment_failed}; active <-> payment_failed.
``canceled`` is terminal.
"""
from __future__ import annotations

import logging
import threading
import zlib
from contextlib import contextmanager, nullcontext
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.models import BillingEvent, Subscription, SubscriptionPlan, User
from app.models.base import as_utc, utcnow
from app.models.subscription import ACTIVE, CANCELED, INACTIVE, PAYMENT_FAILED
from app.services.roles import grant_role, revoke_role

logger = logging.getLogger(__name__)

PROCESSED = "processed"
DUPLICATE = "duplicate"
IGNORED = "ignored"
FAILED = "failed"

LOCK_STRIPES = 64

# Fixed pool; ids that hash to the same stripe simply share a lock.
_locks = [threading.Lock() for _ in range(LOCK_STRIPES)]


@contextmanager
def _subscription_lock(key: str) -> Iterator[None]:
    with _locks[zlib.crc32(key.encode("utf-8")) % LOCK_STRIPES]:
        yield


def _from_epoch(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _invoice_subscription_id(invoice: Dict[str, Any]) -> Optional[str]:
    # Newer API versions nest the subscription under parent.subscription_details.
    sub_id = invoice.get("subscription")
    if isinstance(sub_id, dict):
        sub_id = sub_id.get("id")
    if sub_id:
        return sub_id
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return details.get("subscription")


class SubscriptionLifecycle:
    def __init__(
        self,
        db: Session,
        paid_role: str | None = None,
        default_role: str | None = None,
    ):
        self.db = db
        self.paid_role = paid_role or settings.paid_role
        self.default_role = default_role or settings.default_role
        self._handlers: Dict[str, Callable[[Dict[str, Any], datetime], None]] = {
            "checkout.session.completed": self.checkout_completed,
            "customer.subscription.updated": self.subscription_updated,
            "customer.subscription.deleted": self.subscription_deleted,
            "invoice.payment_failed": self.payment_failed,
            "invoice.payment_succeeded": self.payment_succeeded,
        }

    def handle_event(self, event: Dict[str, Any]) -> str:
        """Apply one verified provider event. Never raises for processing errors."""
        event_id = event.get("id")
        event_type = event.get("type") or ""
        obj = (event.get("data") or {}).get("object") or {}

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info("Unhandled billing event type %s", event_type)
            return IGNORED

        if event_id and self._already_processed(event_id):
            logger.info("Billing event %s already processed", event_id)
            return DUPLICATE

        occurred_at = _from_epoch(event.get("created")) or utcnow()
        key = self._lock_key(event_type, obj)
        try:
            with _subscription_lock(key) if key else nullcontext():
                handler(obj, occurred_at)
                if event_id:
                    self.db.add(BillingEvent(provider_event_id=event_id, event_type=event_type))
                self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info("Billing event %s raced with a concurrent delivery", event_id)
            return DUPLICATE
        except Exception:
            self.db.rollback()
            logger.exception("Failed to process billing event %s (%s)", event_id, event_type)
            return FAILED
        return PROCESSED

    def _already_processed(self, event_id: str) -> bool:
        return (
            self.db.query(BillingEvent.id)
            .filter(BillingEvent.provider_event_id == event_id)
            .first()
            is not None
        )

    @staticmethod
    def _lock_key(event_type: str, obj: Dict[str, Any]) -> Optional[str]:
        if event_type.startswith("invoice."):
            return _invoice_subscription_id(obj)
        if event_type == "checkout.session.completed":
            return obj.get("subscription") or obj.get("id")
        return obj.get("id")

    def _rows_for(self, stripe_subscription_id: Optional[str]) -> list[Subscription]:
        if not stripe_subscription_id:
            return []
        return (
            self.db.query(Subscription)
            .filter(Subscription.stripe_subscription_id == stripe_subscription_id)
            .with_for_update()
            .all()
        )

    @staticmethod
    def _is_stale(sub: Subscription, occurred_at: datetime) -> bool:
        last = as_utc(sub.last_event_at)
        return last is not None and occurred_at < last

    @classmethod
    def _applies(cls, sub: Subscription, occurred_at: datetime) -> bool:
        return sub.is_current(occurred_at) and not cls._is_stale(sub, occurred_at)

    # Event handlers

    def checkout_completed(self, session: Dict[str, Any], occurred_at: datetime) -> None:
        metadata = session.get("metadata") or {}
        user_id = metadata.get("accountId") or metadata.get("userId") or session.get("client_reference_id")
        plan_id = metadata.get("planId")
        session_id = session.get("id")
        if not user_id or not plan_id:
            logger.warning("Checkout session %s missing account/plan metadata", session_id)
            return

        if session_id and (
            self.db.query(Subscription.id)
            .filter(Subscription.stripe_checkout_session_id == session_id)
            .first()
        ):
            logger.info("Checkout session %s already recorded", session_id)
            return

        if self.db.get(User, user_id) is None:
            logger.warning("Checkout session %s references unknown account %s", session_id, user_id)
            return
        if self.db.get(SubscriptionPlan, plan_id) is None:
            logger.warning("Checkout session %s references unknown plan %s", session_id, plan_id)
            return

        for previous in self.current_subscriptions(user_id):
            previous.end_date = occurred_at
            if previous.status in (ACTIVE, PAYMENT_FAILED):
                previous.status = INACTIVE

        self.db.add(
            Subscription(
                user_id=user_id,
                plan_id=plan_id,
                stripe_subscription_id=session.get("subscription"),
                stripe_customer_id=session.get("customer"),
                stripe_checkout_session_id=session_id,
                status=ACTIVE,
                start_date=occurred_at,
                end_date=None,
                last_event_at=occurred_at,
            )
        )
        grant_role(self.db, user_id, self.paid_role)
        logger.info("Activated plan %s for account %s", plan_id, user_id)

    def subscription_updated(self, provider_sub: Dict[str, Any], occurred_at: datetime) -> None:
        new_status = ACTIVE if provider_sub.get("status") == "active" else INACTIVE
        for sub in self._rows_for(provider_sub.get("id")):
            if sub.status == CANCELED:
                logger.info("Ignoring update for canceled subscription %s", sub.id)
                continue
            if not sub.is_current(occurred_at):
                logger.info("Ignoring update for closed subscription %s", sub.id)
                continue
            if self._is_stale(sub, occurred_at):
                logger.info("Ignoring stale update for subscription %s", sub.id)
                continue
            sub.status = new_status
            sub.last_event_at = occurred_at

    def subscription_deleted(self, provider_sub: Dict[str, Any], occurred_at: datetime) -> None:
        rows = self._rows_for(provider_sub.get("id"))
        if not rows:
            logger.info("No local subscription for provider id %s", provider_sub.get("id"))
            return
        for sub in rows:
            if sub.status == CANCELED:
                continue
            self._close(sub, occurred_at)
        for user_id in {sub.user_id for sub in rows}:
            self._downgrade_if_unpaid(user_id)

    def payment_failed(self, invoice: Dict[str, Any], occurred_at: datetime) -> None:
        for sub in self._rows_for(_invoice_subscription_id(invoice)):
            if sub.status == CANCELED or not self._applies(sub, occurred_at):
                continue
            sub.status = PAYMENT_FAILED
            sub.last_event_at = occurred_at

    def payment_succeeded(self, invoice: Dict[str, Any], occurred_at: datetime) -> None:
        for sub in self._rows_for(_invoice_subscription_id(invoice)):
            if sub.status != PAYMENT_FAILED or not self._applies(sub, occurred_at):
                continue
            sub.status = ACTIVE
            sub.last_event_at = occurred_at

    # Shared with the user-initiated cancellation route

    def cancel(self, sub: Subscription, at: datetime | None = None) -> Subscription:
        """Soft-close ``sub`` and drop the paid role if nothing else is active. Commits."""
        key = sub.stripe_subscription_id
        try:
            with _subscription_lock(key) if key else nullcontext():
                self._close(sub, at or utcnow())
                self._downgrade_if_unpaid(sub.user_id)
                self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(sub)
        return sub

    def current_subscriptions(self, user_id: str) -> list[Subscription]:
        now = utcnow()
        rows = (
            self.db.query(Subscription)
            .filter(Subscription.user_id == user_id)
            .order_by(Subscription.start_date.desc())
            .all()
        )
        return [row for row in rows if row.is_current(now)]

    def _close(self, sub: Subscription, at: datetime) -> None:
        sub.status = CANCELED
        sub.end_date = at
        sub.last_event_at = at

    def _downgrade_if_unpaid(self, user_id: str) -> None:
        self.db.flush()
        # A superseded row may still read active; its end date rules it out.
        still_active = any(sub.status == ACTIVE for sub in self.current_subscriptions(user_id))
        if still_active:
            return
        revoke_role(self.db, user_id, self.paid_role)
        grant_role(self.db, user_id, self.default_role)
        logger.info("Account %s downgraded to %s", user_id, self.default_role)


def get_current_subscription(db: Session, user_id: str) -> Subscription | None:
    """Most recent subscription whose end is null or in the future."""
    current = SubscriptionLifecycle(db).current_subscriptions(user_id)
    return current[0] if current else None
