"""
Payment Integration Module

Creates payment authorizations for contest entries. The ledger never
calls the gateway itself; it only receives the confirmation id once the
payment has been confirmed.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

import stripe

from .errors import PaymentGatewayError
from .models import PaymentAuthorization

logger = logging.getLogger(__name__)


class PaymentGateway:
    def create_authorization(
        self, amount_minor_units: int, currency: str, contact_email: str
    ) -> PaymentAuthorization:
        raise NotImplementedError


class StripeGateway(PaymentGateway):
    """
    Stripe PaymentIntent integration.

    Set STRIPE_SECRET_KEY in .env
    """

    CONTEST_TAG = "sports_dugout_1000"

    def __init__(self, api_key: str, description: str = "Sports Dugout Contest Entry",
                 client: Optional[stripe.StripeClient] = None):
        self.description = description
        self.client = client or stripe.StripeClient(api_key)

    def create_authorization(
        self, amount_minor_units: int, currency: str, contact_email: str
    ) -> PaymentAuthorization:
        try:
            intent = self.client.payment_intents.create(params={
                "amount": int(amount_minor_units),
                "currency": currency.lower(),
                "automatic_payment_methods": {"enabled": True},
                "metadata": {
                    "contest": self.CONTEST_TAG,
                    "email": contact_email,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                },
                "receipt_email": contact_email,
                "description": self.description,
            })
        except stripe.StripeError as e:
            logger.error("Stripe rejected payment intent: %s", e, extra={"operation": "create_authorization"})
            raise PaymentGatewayError(str(e), code=getattr(e, "code", None)) from e

        logger.info("Payment intent %s created", intent.id, extra={"operation": "create_authorization"})
        return PaymentAuthorization(confirmation_id=intent.id, client_secret=intent.client_secret)
