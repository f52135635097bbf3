"""
Error types for webhook reconciliation.

Each error carries the HTTP status the webhook handler should answer with.
Stripe only retries on 5xx, so anything that will never succeed on redelivery
maps to 2xx/4xx.
"""

from typing import Optional


class BillingError(Exception):
    """Base class for reconciliation errors."""

    code = "billing_error"
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class SignatureError(BillingError):
    """Payload failed the Stripe-Signature authenticity check."""

    code = "invalid_signature"
    status_code = 400


class MalformedEvent(BillingError):
    """Signed payload is not a usable Stripe event object."""

    code = "invalid_webhook_payload"
    status_code = 400


class IdentityUnresolved(BillingError):
    """No user could be matched to the event through any fallback."""

    code = "identity_unresolved"
    status_code = 200

    def __init__(self, event_id: str, event_type: str, customer_id: Optional[str] = None):
        super().__init__(f"Could not resolve user for {event_type} ({event_id})")
        self.event_id = event_id
        self.customer_id = customer_id


class UnknownPriceError(BillingError):
    """Price id is not present in the configured price catalog."""

    code = "unknown_price"
    status_code = 200

    def __init__(self, price_id: Optional[str]):
        super().__init__(f"Price {price_id!r} is not mapped to a plan")
        self.price_id = price_id


class PersistenceError(BillingError):
    """DynamoDB was unavailable during claim or apply."""

    code = "temporary_error"
    status_code = 500


class ProviderUnavailableError(BillingError):
    """Transient Stripe failure (connection, rate limit, 5xx)."""

    code = "stripe_error"
    status_code = 500


class ProviderRequestError(BillingError):
    """Permanent Stripe failure (invalid request, auth). Redelivery won't help."""

    code = "stripe_validation_error"
    status_code = 200


class NotificationError(BillingError):
    """Outbound email failed. Never escapes the notifier."""

    code = "notification_failed"
    status_code = 200
