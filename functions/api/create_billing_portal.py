"""
Create Billing Portal Session Endpoint - POST /billing-portal/create

Creates a Stripe Billing Portal session for subscription management.
Requires a profile that already has a Stripe customer.
"""

import json
import logging
import os

from billing.errors import BillingError
from billing.gateway import StripeGateway, configure_http_client
from billing.profiles import ProfileStore
from shared.billing_utils import get_stripe_api_key
from shared.logging_utils import configure_structured_logging, set_request_id
from shared.response_utils import error_response, get_origin, success_response

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

FRONTEND_URL = os.environ.get("FRONTEND_URL") or "https://sprouttie.app"


def handler(event, context, profiles: ProfileStore = None, gateway: StripeGateway = None):
    """
    Lambda handler for POST /billing-portal/create.

    Request body:
    {
        "user_id": "..."
    }

    Returns:
    {
        "portal_url": "https://billing.stripe.com/..."
    }
    """
    configure_structured_logging()
    set_request_id(event)
    origin = get_origin(event)

    stripe_api_key = get_stripe_api_key()
    if not stripe_api_key:
        logger.error("Stripe API key not configured")
        return error_response(500, "stripe_not_configured", "Payment system not configured", origin=origin)

    try:
        body = json.loads(event.get("body") or "{}")
    except json.JSONDecodeError:
        return error_response(400, "invalid_json", "Request body must be valid JSON", origin=origin)

    user_id = body.get("user_id") if isinstance(body, dict) else None
    if not user_id:
        return error_response(400, "missing_user", "user_id is required", origin=origin)

    profiles = profiles or ProfileStore()
    try:
        profile = profiles.get(user_id) or {}
    except BillingError as e:
        logger.error(f"Profile lookup failed for {user_id}: {e}")
        return error_response(500, "internal_error", "An error occurred", origin=origin)

    stripe_customer_id = profile.get("stripe_customer_id")
    if not stripe_customer_id:
        return error_response(
            400,
            "no_subscription",
            "No subscription found. You are on the free plan.",
            origin=origin,
        )

    if gateway is None:
        configure_http_client()
        gateway = StripeGateway(stripe_api_key)

    try:
        # portal_return=1 tells the frontend to refresh subscription data
        portal_url = gateway.create_portal_session(
            stripe_customer_id, return_url=f"{FRONTEND_URL}/plans?portal_return=1"
        )
    except BillingError as e:
        logger.error(f"Stripe error creating billing portal session: {e}")
        return error_response(500, "stripe_error", "Failed to create billing portal session", origin=origin)

    logger.info(f"Created billing portal session for user {user_id}")
    return success_response({"portal_url": portal_url}, origin=origin)
