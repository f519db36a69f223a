"""
Stripe billing adapter: checkout, cancellation, invoices, payment methods
and webhook authenticity.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import stripe

from app.config import settings
from app.core.exceptions import IntegrationNotConfigured, UpstreamError, WebhookSignatureError

logger = logging.getLogger(__name__)

SIGNATURE_TOLERANCE_SECONDS = 300


class BillingError(UpstreamError):
    """Stripe SDK call failed."""


class BillingClient:
    """Thin wrapper over the Stripe SDK that translates its failures."""

    def __init__(self, api_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key.get_secret_value()
        self.webhook_secret = (
            webhook_secret
            if webhook_secret is not None
            else settings.stripe_webhook_secret.get_secret_value()
        )

    def _require_key(self) -> str:
        if not self.api_key:
            raise IntegrationNotConfigured("STRIPE_SECRET_KEY is not configured")
        return self.api_key

    def create_checkout_session(
        self,
        *,
        user_id: str,
        email: str,
        plan_id: str,
        plan_name: str,
        plan_description: str | None,
        unit_amount: int,
        currency: str,
        interval: str,
    ) -> Dict[str, Any]:
        """
        Create a subscription-mode Checkout session.

        Metadata carries ``accountId`` and ``planId`` back through the
        ``checkout.session.completed`` webhook.
        """
        api_key = self._require_key()
        product_data: Dict[str, Any] = {"name": plan_name}
        if plan_description:
            product_data["description"] = plan_description
        try:
            session = stripe.checkout.Session.create(
                api_key=api_key,
                mode="subscription",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency,
                            "product_data": product_data,
                            "unit_amount": unit_amount,
                            "recurring": {"interval": interval, "interval_count": 1},
                        },
                        "quantity": 1,
                    }
                ],
                success_url=f"{settings.frontend_url}/payment-success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{settings.frontend_url}/pricing",
                customer_email=email,
                client_reference_id=user_id,
                metadata={"accountId": user_id, "planId": plan_id},
            )
        except stripe.StripeError as exc:
            logger.error("Stripe checkout session failed for user %s: %s", user_id, exc)
            raise BillingError(f"Failed to create checkout session: {exc}") from exc
        return {"session_id": session["id"], "url": session["url"]}

    def cancel_subscription(self, stripe_subscription_id: str) -> None:
        api_key = self._require_key()
        try:
            stripe.Subscription.cancel(stripe_subscription_id, api_key=api_key)
        except stripe.StripeError as exc:
            logger.error("Stripe cancel failed for %s: %s", stripe_subscription_id, exc)
            raise BillingError(f"Failed to cancel subscription: {exc}") from exc

    def list_invoices(self, customer_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        api_key = self._require_key()
        try:
            invoices = stripe.Invoice.list(customer=customer_id, limit=limit, api_key=api_key)
        except stripe.StripeError as exc:
            logger.error("Stripe invoice listing failed for %s: %s", customer_id, exc)
            raise BillingError(f"Failed to list invoices: {exc}") from exc
        return [
            {
                "id": inv.get("id"),
                "number": inv.get("number"),
                "status": inv.get("status"),
                "amount_due": inv.get("amount_due"),
                "amount_paid": inv.get("amount_paid"),
                "currency": inv.get("currency"),
                "created": inv.get("created"),
                "hosted_invoice_url": inv.get("hosted_invoice_url"),
                "invoice_pdf": inv.get("invoice_pdf"),
            }
            for inv in invoices.get("data", [])
        ]

    def create_setup_intent(self, customer_id: str) -> str:
        api_key = self._require_key()
        try:
            intent = stripe.SetupIntent.create(
                customer=customer_id, payment_method_types=["card"], api_key=api_key
            )
        except stripe.StripeError as exc:
            logger.error("Stripe setup intent failed for %s: %s", customer_id, exc)
            raise BillingError(f"Failed to create setup intent: {exc}") from exc
        return intent["client_secret"]

    def construct_event(self, payload: bytes, signature_header: str | None) -> Dict[str, Any]:
        """Verify the raw body against ``Stripe-Signature`` and parse it.

        Nothing is parsed before the signature checks out.
        """
        if not self.webhook_secret:
            raise IntegrationNotConfigured("STRIPE_WEBHOOK_SECRET is not configured")
        if not signature_header:
            raise WebhookSignatureError("Missing Stripe-Signature header")
        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as exc:
            raise WebhookSignatureError("Webhook payload is not valid UTF-8") from exc
        try:
            stripe.WebhookSignature.verify_header(
                body, signature_header, self.webhook_secret, tolerance=SIGNATURE_TOLERANCE_SECONDS
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("Stripe webhook signature verification failed: %s", exc)
            raise WebhookSignatureError() from exc
        try:
            event = json.loads(body)
        except ValueError as exc:
            raise WebhookSignatureError("Webhook payload is not valid JSON") from exc
        if not isinstance(event, dict) or "type" not in event:
            raise WebhookSignatureError("Webhook payload is not an event")
        return event


def get_billing_client() -> BillingClient:
    return BillingClient()
