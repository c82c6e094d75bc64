"""
Payment Service using Stripe Checkout
"""
import json
import logging
from urllib.parse import quote

import stripe

from repair_booking.config import settings
from repair_booking.errors import BadPayload, BadSignature, NotConfiguredError, UpstreamError

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
WEBHOOK_TOLERANCE_SECONDS = 300


class PaymentService:
    """Creates checkout sessions and verifies webhook events"""

    def __init__(
        self,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        fee_cents: int | None = None,
    ):
        self.secret_key = secret_key if secret_key is not None else settings.stripe_secret_key
        self.webhook_secret = webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret
        self.fee_cents = fee_cents if fee_cents is not None else settings.booking_fee_cents

    def create_checkout_session(self, offer_token: str, request_id: int, customer_email: str | None = None) -> dict:
        """
        Create a Stripe Checkout Session for the booking fee.

        The offer token and request id travel in the session metadata and
        come back on the completion webhook.

        Returns:
            dict with ``id`` and ``url`` of the session
        """
        if not self.secret_key:
            raise NotConfiguredError("Payments are not configured")

        origin = settings.public_origin.rstrip("/")
        params = {
            "mode": "payment",
            "line_items": [{
                "quantity": 1,
                "price_data": {
                    "currency": settings.booking_currency,
                    "unit_amount": self.fee_cents,
                    "product_data": {"name": settings.booking_product_name},
                },
            }],
            "success_url": f"{origin}/booked?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{origin}/book?token={quote(offer_token, safe='')}",
            "metadata": {"offer_token": offer_token, "request_id": str(request_id)},
            "api_key": self.secret_key,
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(**params)
        except stripe.StripeError as e:
            logger.error("Checkout session creation failed for request %s: %s", request_id, e)
            raise UpstreamError("Could not start checkout") from e

        logger.info("Checkout session %s created for request %s", session.id, request_id)
        return {"id": session.id, "url": session.url}

    def parse_webhook(self, payload: bytes, signature: str | None) -> dict:
        """
        Verify the Stripe-Signature header and decode the event.

        Raises:
            NotConfiguredError: no webhook secret
            BadSignature: header missing or does not match the payload
            BadPayload: body is not a JSON object
        """
        if not self.webhook_secret:
            raise NotConfiguredError("Payment webhooks are not configured")
        if not signature:
            raise BadSignature("Missing Stripe-Signature header")

        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        try:
            stripe.WebhookSignature.verify_header(body, signature, self.webhook_secret, WEBHOOK_TOLERANCE_SECONDS)
        except stripe.SignatureVerificationError as e:
            logger.warning("Webhook signature verification failed: %s", e)
            raise BadSignature("Webhook signature verification failed") from e

        try:
            event = json.loads(body)
        except ValueError:
            raise BadPayload("Webhook body is not JSON") from None
        if not isinstance(event, dict):
            raise BadPayload("Webhook body is not a JSON object")
        return event


# Global instance
_payment_service = None


def get_payment_service() -> PaymentService:
    """Get or create payment service instance"""
    global _payment_service
    if _payment_service is None:
        _payment_service = PaymentService()
    return _payment_service
