"""
Stripe Webhook Endpoint - POST /webhooks/stripe

Keeps user subscription profiles in sync with Stripe's event stream.
Uses Stripe signature verification instead of session auth.

Response contract (Stripe only retries on 5xx):
- 200 for applied, duplicate, stale, ignored, unresolved-identity and
  unknown-price events
- 400 for signature failures and unusable payloads
- 500 when DynamoDB or Stripe is temporarily unavailable
"""

import logging
from typing import Optional

from billing.errors import BillingError, MalformedEvent, SignatureError
from billing.events import parse_event
from billing.reconciler import Outcome, reconcile
from billing.services import BillingServices, build_services
from billing.signature import get_signature_header, raw_body_from_event, verify
from shared.billing_utils import get_stripe_secrets
from shared.logging_utils import configure_structured_logging, set_request_id, set_stripe_event_id
from shared.response_utils import error_response, success_response

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Built on first use and reused for the life of the container
_services: Optional[BillingServices] = None
_services_key: Optional[str] = None


def get_services(stripe_api_key: str) -> BillingServices:
    global _services, _services_key
    if _services is None or _services_key != stripe_api_key:
        _services = build_services(stripe_api_key)
        _services_key = stripe_api_key
    return _services


def handler(event, context, services: Optional[BillingServices] = None):
    """
    Lambda handler for Stripe webhooks.

    Handles:
    - checkout.session.completed: Activate the purchased plan
    - customer.subscription.created/updated: Sync plan, status and period
    - customer.subscription.deleted: Downgrade to free, keep grace boundary
    - invoice.payment_succeeded / invoice.paid: Refresh billing period
    - invoice.payment_failed: Track failures, downgrade on the final one
    """
    configure_structured_logging()
    set_request_id(event)

    stripe_api_key, webhook_secret = get_stripe_secrets()
    if not stripe_api_key or not webhook_secret:
        logger.error("Stripe secrets not configured")
        return error_response(500, "stripe_not_configured", "Stripe not configured")

    try:
        raw_body = raw_body_from_event(event)
        payload = verify(raw_body, get_signature_header(event.get("headers")), webhook_secret)
        billing_event = parse_event(payload)
    except SignatureError as e:
        logger.warning(f"Rejected webhook: {e.message}")
        return error_response(400, e.code, "Invalid signature")
    except MalformedEvent as e:
        logger.warning(f"Rejected webhook: {e.message}")
        return error_response(400, e.code, "Invalid webhook payload")

    set_stripe_event_id(billing_event.event_id)
    logger.info(f"Processing Stripe event: {billing_event.event_type} (id={billing_event.event_id})")

    if services is None:
        services = get_services(stripe_api_key)

    try:
        result = reconcile(billing_event, services)
    except BillingError as e:
        return error_response(e.status_code, e.code, "Temporary error, please retry")
    except Exception:
        # reconcile() already logged it and marked the claim failed
        return error_response(500, "processing_failed", "Processing failed")

    body = {"received": True, "outcome": result.outcome.value}
    if result.outcome is Outcome.DUPLICATE:
        body["duplicate"] = True
    return success_response(body)
