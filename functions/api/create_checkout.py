"""
Create Checkout Session Endpoint - POST /checkout/create

Creates a Stripe Checkout session for a paid plan. The session carries the
user id as client_reference_id and in metadata so the webhook can resolve
the user when the checkout completes.
"""

import json
import logging
import os

from billing.errors import BillingError
from billing.gateway import StripeGateway, configure_http_client
from billing.plans import BILLING_CYCLES, CYCLE_MONTHLY, PLAN_FREE, PLAN_TIERS
from billing.profiles import ProfileStore
from billing.services import get_price_catalog
from shared.billing_utils import get_stripe_api_key
from shared.logging_utils import configure_structured_logging, mask_email, set_request_id
from shared.response_utils import error_response, get_origin, success_response

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

FRONTEND_URL = os.environ.get("FRONTEND_URL") or "https://sprouttie.app"

# Subscriptions in these states must be changed through the billing portal
LIVE_STATUSES = ("active", "trialing", "past_due")


def handler(event, context, profiles: ProfileStore = None, gateway: StripeGateway = None):
    """
    Lambda handler for POST /checkout/create.

    Request body:
    {
        "plan": "print" | "pro",
        "billing_cycle": "monthly" | "annual",   (optional, default monthly)
        "user_id": "...",
        "email": "..."
    }

    Returns:
    {
        "checkout_url": "https://checkout.stripe.com/..."
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
    if not isinstance(body, dict):
        return error_response(400, "invalid_json", "Request body must be a JSON object", origin=origin)

    plan = str(body.get("plan") or "").lower()
    billing_cycle = str(body.get("billing_cycle") or CYCLE_MONTHLY).lower()
    user_id = body.get("user_id")
    email = body.get("email")

    logger.info(f"Checkout requested: plan={plan}, cycle={billing_cycle}, user={user_id}, email={mask_email(email)}")

    if not user_id:
        return error_response(400, "missing_user", "user_id is required", origin=origin)

    catalog = get_price_catalog()
    if plan not in PLAN_TIERS or plan == PLAN_FREE or billing_cycle not in BILLING_CYCLES:
        return error_response(400, "invalid_plan", "Invalid plan selected", origin=origin)

    price_id = catalog.price_for(plan, billing_cycle)
    if not price_id:
        logger.error(f"Price ID not configured for {plan}/{billing_cycle}")
        return error_response(500, "price_not_configured", "Pricing not configured for this plan", origin=origin)

    profiles = profiles or ProfileStore()
    try:
        profile = profiles.get(user_id) or {}
    except BillingError as e:
        logger.error(f"Profile lookup failed for {user_id}: {e}")
        return error_response(500, "internal_error", "An error occurred", origin=origin)

    if profile.get("subscription_status") in LIVE_STATUSES and profile.get("plan", PLAN_FREE) != PLAN_FREE:
        return error_response(
            409,
            "already_subscribed",
            "You already have a subscription. Use the billing portal to change plans.",
            origin=origin,
        )

    if gateway is None:
        configure_http_client()
        gateway = StripeGateway(stripe_api_key)

    try:
        checkout_url = gateway.create_checkout_session(
            price_id=price_id,
            user_id=user_id,
            plan=plan,
            billing_cycle=billing_cycle,
            success_url=f"{FRONTEND_URL}/pdf-success",
            cancel_url=f"{FRONTEND_URL}/plans",
            customer_id=profile.get("stripe_customer_id"),
            email=email or profile.get("email"),
        )
    except BillingError as e:
        logger.error(f"Stripe error creating checkout session: {e}")
        return error_response(500, "stripe_error", "Unable to create checkout session", origin=origin)

    logger.info(f"Created checkout session for user {user_id}, plan {plan}/{billing_cycle}")
    return success_response({"checkout_url": checkout_url}, origin=origin)
