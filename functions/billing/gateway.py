"""
Thin wrapper over the Stripe API calls billing needs.

Every call carries its own API key and goes through an HTTP client with a
bounded timeout. Stripe exceptions are translated into billing errors so the
webhook handler can decide between a retryable 500 and a terminal 200.
"""

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Optional

import stripe

from billing.errors import ProviderRequestError, ProviderUnavailableError
from shared.logging_utils import log_external_call

logger = logging.getLogger(__name__)

STRIPE_TIMEOUT_SECONDS = float(os.environ.get("STRIPE_TIMEOUT_SECONDS") or "10")
STRIPE_MAX_NETWORK_RETRIES = int(os.environ.get("STRIPE_MAX_NETWORK_RETRIES") or "1")

_http_client_configured = False


def configure_http_client(timeout: float = STRIPE_TIMEOUT_SECONDS) -> None:
    """Install a timeout-bounded HTTP client for all Stripe calls (once per container)."""
    global _http_client_configured
    if _http_client_configured:
        return
    stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
    stripe.max_network_retries = STRIPE_MAX_NETWORK_RETRIES
    _http_client_configured = True


def _field(obj: Any, key: str) -> Any:
    """Bracket access that works for both StripeObject and plain dicts."""
    try:
        return obj[key]
    except (KeyError, TypeError, IndexError):
        return None


@dataclass(frozen=True)
class SubscriptionSnapshot:
    subscription_id: str
    status: Optional[str]
    price_id: Optional[str]
    current_period_end: Optional[int]
    cancel_at_period_end: bool


class StripeGateway:
    """Stripe collaborator used by reconciliation and the session endpoints."""

    def __init__(self, api_key: str):
        self.api_key = api_key

    def _call(self, operation: str, func, *args, **kwargs):
        start = time.time()
        try:
            result = func(*args, api_key=self.api_key, **kwargs)
        except (stripe.APIConnectionError, stripe.RateLimitError, stripe.APIError) as e:
            log_external_call(logger, "stripe", operation, False, (time.time() - start) * 1000, str(e))
            raise ProviderUnavailableError(f"Stripe {operation} failed: {e}") from e
        except stripe.StripeError as e:
            log_external_call(logger, "stripe", operation, False, (time.time() - start) * 1000, str(e))
            raise ProviderRequestError(f"Stripe {operation} rejected: {e}") from e
        log_external_call(logger, "stripe", operation, True, (time.time() - start) * 1000)
        return result

    def get_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        """Fetch a subscription's current price and billing period."""
        subscription = self._call("subscription.retrieve", stripe.Subscription.retrieve, subscription_id)

        items = _field(_field(subscription, "items"), "data") or []
        item = items[0] if items else None
        price_id = _field(_field(item, "price"), "id")
        # current_period_end lives on the item in newer API versions
        period_end = _field(item, "current_period_end") or _field(subscription, "current_period_end")

        return SubscriptionSnapshot(
            subscription_id=subscription_id,
            status=_field(subscription, "status"),
            price_id=price_id,
            current_period_end=int(period_end) if period_end else None,
            cancel_at_period_end=bool(_field(subscription, "cancel_at_period_end")),
        )

    def create_checkout_session(
        self,
        *,
        price_id: str,
        user_id: str,
        plan: str,
        billing_cycle: str,
        success_url: str,
        cancel_url: str,
        customer_id: Optional[str] = None,
        email: Optional[str] = None,
    ) -> str:
        """Create a subscription Checkout session and return its URL.

        The metadata and client_reference_id set here are what the webhook
        later uses to resolve the user.
        """
        metadata = {"user_id": user_id, "plan": plan, "billing_cycle": billing_cycle}
        params = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url,
            "cancel_url": cancel_url,
            "client_reference_id": user_id,
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
            "allow_promotion_codes": True,
        }
        if customer_id:
            params["customer"] = customer_id
        elif email:
            params["customer_email"] = email

        session = self._call("checkout.session.create", stripe.checkout.Session.create, **params)
        return _field(session, "url")

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        """Create a Billing Portal session and return its URL."""
        session = self._call(
            "billing_portal.session.create",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )
        return _field(session, "url")
