"""
Resolve which user a Stripe event belongs to.

Fallback chain, first hit wins:
1. metadata["user_id"] set when the checkout session was created
2. client_reference_id on the checkout session
3. existing profile with the event's Stripe customer ID
4. existing profile with the event's email, backfilling the customer ID so
   the next event for this customer resolves at step 3
"""

import logging
from dataclasses import dataclass
from typing import Optional

from billing.errors import IdentityUnresolved
from billing.events import BillingEvent, CheckoutCompleted
from billing.profiles import ProfileStore
from shared.logging_utils import mask_email

logger = logging.getLogger(__name__)

RESOLVED_BY_METADATA = "metadata"
RESOLVED_BY_CLIENT_REFERENCE = "client_reference_id"
RESOLVED_BY_CUSTOMER_ID = "customer_id"
RESOLVED_BY_EMAIL = "email"


@dataclass(frozen=True)
class UserIdentity:
    user_id: str
    email: Optional[str]
    resolved_by: str
    profile: Optional[dict] = None


def resolve(event: BillingEvent, profiles: ProfileStore) -> UserIdentity:
    """Map an event to an internal user.

    Raises:
        IdentityUnresolved: if no step of the chain matched.
        PersistenceError: if a profile lookup failed.
    """
    user_id = event.metadata.get("user_id")
    if user_id:
        return _identity(user_id, event, RESOLVED_BY_METADATA, profiles)

    if isinstance(event, CheckoutCompleted) and event.client_reference_id:
        return _identity(event.client_reference_id, event, RESOLVED_BY_CLIENT_REFERENCE, profiles)

    if event.customer_id:
        profile = profiles.find_by_customer_id(event.customer_id)
        if profile:
            return UserIdentity(
                user_id=profile["pk"],
                email=profile.get("email") or event.customer_email,
                resolved_by=RESOLVED_BY_CUSTOMER_ID,
                profile=profile,
            )

    if event.customer_email:
        profile = profiles.find_by_email(event.customer_email)
        if profile:
            if event.customer_id and profile.get("stripe_customer_id") != event.customer_id:
                if profile.get("stripe_customer_id"):
                    logger.warning(
                        f"Reassigning Stripe customer on {profile['pk']}: "
                        f"{profile['stripe_customer_id']} -> {event.customer_id}"
                    )
                profiles.set_customer_id(profile["pk"], event.customer_id)
                profile = {**profile, "stripe_customer_id": event.customer_id}
                logger.info(f"Backfilled Stripe customer {event.customer_id} onto {profile['pk']}")
            return UserIdentity(
                user_id=profile["pk"],
                email=profile.get("email") or event.customer_email,
                resolved_by=RESOLVED_BY_EMAIL,
                profile=profile,
            )

    logger.error(
        f"Could not resolve user for {event.event_type} ({event.event_id}): "
        f"customer={event.customer_id}, email={mask_email(event.customer_email)}"
    )
    raise IdentityUnresolved(event.event_id, event.event_type, event.customer_id)


def _identity(user_id: str, event: BillingEvent, resolved_by: str, profiles: ProfileStore) -> UserIdentity:
    # The profile may not exist yet; the reconciler creates it lazily
    profile = profiles.get(user_id)
    email = (profile or {}).get("email") or event.customer_email
    return UserIdentity(user_id=user_id, email=email, resolved_by=resolved_by, profile=profile)
