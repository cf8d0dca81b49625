import logging
import math
from typing import Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_API_BASE = "https://api.stripe.com"
PAYMENT_REQUEST_TIMEOUT = 15


class PaymentIntentError(Exception):
    """The payment processor could not create an intent."""


def price_to_minor_units(price) -> int:
    try:
        numeric = float(price)
    except (TypeError, ValueError):
        raise ValueError("A numeric price is required.")
    if not math.isfinite(numeric) or numeric <= 0:
        raise ValueError("Price must be a positive number.")
    return int(round(numeric * 100))


class PaymentIntentClient:
    def __init__(
        self,
        secret_key: Optional[str],
        api_base: str = DEFAULT_PAYMENT_API_BASE,
        currency: str = "usd",
    ):
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")
        self.currency = currency

    def create_payment_intent(self, price) -> str:
        """Create a card payment intent and return its client secret."""
        amount = price_to_minor_units(price)
        if not self.secret_key:
            raise PaymentIntentError("Payment configuration is incomplete.")

        try:
            response = requests.post(
                f"{self.api_base}/v1/payment_intents",
                data={
                    "amount": amount,
                    "currency": self.currency,
                    "payment_method_types[]": "card",
                },
                auth=(self.secret_key, ""),
                timeout=PAYMENT_REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            logger.error("Payment intent request failed: %s", exc)
            raise PaymentIntentError("Failed to reach payment provider.") from exc

        if response.status_code != 200:
            logger.error("Payment intent rejected: %s", response.text)
            raise PaymentIntentError("Failed to create payment intent.")

        client_secret = response.json().get("client_secret")
        if not client_secret:
            raise PaymentIntentError("Payment provider returned no client secret.")
        logger.info("Created payment intent for %s %s", amount, self.currency)
        return client_secret
