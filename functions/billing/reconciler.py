"""
Apply Stripe events to user subscription profiles.

reconcile() is the single entry point: claim the event id, resolve the user,
apply the event's effect, then send the activation email for checkouts.
apply() is a pure function of the event and the stored profile, so running it
again for a redelivered event is harmless.

Ordering: Stripe does not guarantee delivery order, so every profile write
that carries a billing period end is conditional on not moving
current_period_end backwards while the stored subscription is live, and no
event other than a cancellation may touch a subscription already recorded
as canceled.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from billing.errors import (
    IdentityUnresolved,
    PersistenceError,
    ProviderRequestError,
    ProviderUnavailableError,
    UnknownPriceError,
)
from billing.events import (
    BillingEvent,
    CheckoutCompleted,
    IgnoredEvent,
    InvoicePaid,
    PaymentFailed,
    SubscriptionCanceled,
    SubscriptionChanged,
)
from billing.identity import UserIdentity, resolve
from billing.idempotency import ClaimResult
from billing.plans import BILLING_CYCLES, PLAN_FREE, PriceMapping, mask_price_id
from billing.services import BillingServices
from shared.alerts import alert_operator
from shared.logging_utils import mask_email
from shared.metrics import emit_metric, emit_webhook_outcome

logger = logging.getLogger(__name__)

STATUS_ACTIVE = "active"
STATUS_CANCELED = "canceled"

# Placeholders shared by the guard expressions below
_GUARD_NAMES = {"#cpe": "current_period_end", "#subst": "subscription_status", "#subid": "stripe_subscription_id"}


class Outcome(str, Enum):
    APPLIED = "applied"
    DUPLICATE = "duplicate"
    STALE = "stale"
    IGNORED = "ignored"
    IDENTITY_UNRESOLVED = "identity_unresolved"
    UNKNOWN_PRICE = "unknown_price"
    REJECTED = "rejected"


@dataclass(frozen=True)
class ReconciliationOutcome:
    outcome: Outcome
    event_id: str
    event_type: str
    user_id: Optional[str] = None
    plan: Optional[str] = None

    @property
    def applied(self) -> bool:
        return self.outcome is Outcome.APPLIED


@dataclass
class _Write:
    """One conditional profile update."""

    set_fields: dict
    set_if_missing: Optional[dict] = None
    period_end: Optional[int] = None
    subscription_id: Optional[str] = None
    is_cancellation: bool = False

    def guard(self) -> tuple[Optional[str], dict, dict]:
        clauses = []
        values = {}
        if self.is_cancellation:
            # Cancellation is terminal and ignores period ordering, but a
            # late delete for a superseded subscription must not cancel the
            # one that replaced it
            if self.subscription_id:
                clauses.append("(attribute_not_exists(#subid) OR #subid = :subid)")
                values[":subid"] = self.subscription_id
        else:
            if self.period_end is not None:
                clauses.append("(attribute_not_exists(#cpe) OR #cpe <= :cpe OR #subst = :canceled)")
                values[":cpe"] = self.period_end
                values[":canceled"] = STATUS_CANCELED
            if self.subscription_id:
                clauses.append("NOT (#subid = :subid AND #subst = :canceled)")
                values[":subid"] = self.subscription_id
                values[":canceled"] = STATUS_CANCELED
        if not clauses:
            return None, {}, {}
        condition = " AND ".join(clauses)
        names = {k: v for k, v in _GUARD_NAMES.items() if k in condition}
        return condition, names, values


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _checkout_plan(event: CheckoutCompleted, services: BillingServices) -> tuple[PriceMapping, Optional[int]]:
    """Plan and period end for a completed checkout.

    Metadata is trusted here because we wrote it when creating the session.
    Without it, the price is read from the expanded line items or, failing
    that, from the subscription itself.
    """
    plan = event.metadata.get("plan")
    if plan:
        if plan in services.catalog.plans:
            cycle = event.metadata.get("billing_cycle")
            return PriceMapping(plan=plan, billing_cycle=cycle if cycle in BILLING_CYCLES else None), None
        logger.warning(f"Ignoring checkout metadata plan {plan!r}: not a configured plan")

    if event.price_id:
        return services.catalog.map_price(event.price_id), event.current_period_end

    if event.subscription_id:
        snapshot = services.gateway.get_subscription(event.subscription_id)
        return services.catalog.map_price(snapshot.price_id), snapshot.current_period_end

    raise UnknownPriceError(None)


def _check_customer(identity: UserIdentity, event: BillingEvent) -> None:
    stored = (identity.profile or {}).get("stripe_customer_id")
    if stored and event.customer_id and stored != event.customer_id:
        logger.warning(
            f"Stripe customer mismatch for {identity.user_id}: stored={stored}, "
            f"event={event.customer_id}; reassigning"
        )
        alert_operator(
            "Stripe customer reassigned",
            f"User {identity.user_id} moved from customer {stored} to {event.customer_id} "
            f"by {event.event_type} ({event.event_id}).",
        )


def _plan_for(event: BillingEvent, identity: UserIdentity, services: BillingServices) -> tuple[_Write, Optional[str]]:
    """Translate an event into the profile write it implies."""
    if isinstance(event, CheckoutCompleted):
        mapping, period_end = _checkout_plan(event, services)
        return _Write(
            set_fields={
                "plan": mapping.plan,
                "billing_cycle": mapping.billing_cycle,
                "subscription_status": STATUS_ACTIVE,
                "stripe_customer_id": event.customer_id,
                "stripe_subscription_id": event.subscription_id,
                "email": identity.email,
                "current_period_end": period_end,
                "cancel_at_period_end": False,
                "payment_failures": 0,
                "plan_updated_at": _now_iso(),
            },
            period_end=period_end,
            subscription_id=event.subscription_id,
        ), mapping.plan

    if isinstance(event, SubscriptionChanged):
        # Metadata can be stale after portal plan switches; the price is authoritative
        mapping = services.catalog.map_price(event.price_id)
        return _Write(
            set_fields={
                "plan": mapping.plan,
                "billing_cycle": mapping.billing_cycle,
                "subscription_status": event.status,
                "stripe_customer_id": event.customer_id,
                "stripe_subscription_id": event.subscription_id,
                "current_period_end": event.current_period_end,
                "cancel_at_period_end": event.cancel_at_period_end,
                "plan_updated_at": _now_iso(),
            },
            set_if_missing={"email": identity.email},
            period_end=event.current_period_end,
            subscription_id=event.subscription_id,
        ), mapping.plan

    if isinstance(event, SubscriptionCanceled):
        return _Write(
            set_fields={
                "plan": PLAN_FREE,
                "subscription_status": STATUS_CANCELED,
                "stripe_customer_id": event.customer_id,
                "cancel_at_period_end": False,
                "plan_updated_at": _now_iso(),
            },
            # The last known period end is the grace boundary; only fill it in
            set_if_missing={
                "current_period_end": event.current_period_end,
                "stripe_subscription_id": event.subscription_id,
                "email": identity.email,
            },
            subscription_id=event.subscription_id,
            is_cancellation=True,
        ), PLAN_FREE

    if isinstance(event, InvoicePaid):
        mapping = services.catalog.get(event.price_id)
        if event.price_id and mapping is None:
            logger.warning(f"Invoice price {mask_price_id(event.price_id)} not in catalog; leaving plan untouched")
            emit_metric("UnknownPrice", dimensions={"EventType": event.event_type})
        return _Write(
            set_fields={
                "stripe_customer_id": event.customer_id,
                "current_period_end": event.current_period_end,
                "payment_failures": 0,
            },
            # Invoices don't carry plan intent; only fill a plan that was never set
            set_if_missing={
                "plan": mapping.plan if mapping else None,
                "billing_cycle": mapping.billing_cycle if mapping else None,
                "stripe_subscription_id": event.subscription_id,
                "email": identity.email,
            },
            period_end=event.current_period_end,
            subscription_id=event.subscription_id,
        ), None

    if isinstance(event, PaymentFailed):
        logger.warning(f"Payment failed for {identity.user_id} (attempt {event.attempt_count})")
        return _Write(
            set_fields={
                "stripe_customer_id": event.customer_id,
                "payment_failures": event.attempt_count,
            },
            set_if_missing={"email": identity.email},
        ), None

    raise TypeError(f"Unsupported event variant {type(event).__name__}")


def apply(identity: UserIdentity, event: BillingEvent, services: BillingServices) -> ReconciliationOutcome:
    """Apply one event to the resolved user's profile.

    Returns:
        APPLIED when the profile was written, STALE when the ordering guard
        rejected the write, IGNORED for event kinds we don't act on.

    Raises:
        UnknownPriceError: the event's price is not in the catalog.
        PersistenceError: DynamoDB was unavailable.
        ProviderUnavailableError / ProviderRequestError: Stripe lookup failed.
    """
    if isinstance(event, IgnoredEvent):
        return ReconciliationOutcome(Outcome.IGNORED, event.event_id, event.event_type, identity.user_id)

    write, plan = _plan_for(event, identity, services)
    _check_customer(identity, event)

    condition, names, values = write.guard()
    written = services.profiles.update(
        identity.user_id,
        write.set_fields,
        set_if_missing=write.set_if_missing,
        condition=condition,
        condition_names=names,
        condition_values=values,
    )

    if not written:
        stored = identity.profile or {}
        logger.info(
            f"Skipping stale {event.event_type} ({event.event_id}) for {identity.user_id}: "
            f"incoming period_end={write.period_end}, stored period_end={stored.get('current_period_end')}, "
            f"stored status={stored.get('subscription_status')}"
        )
        return ReconciliationOutcome(Outcome.STALE, event.event_id, event.event_type, identity.user_id)

    logger.info(
        f"Applied {event.event_type} ({event.event_id}) to {identity.user_id}"
        + (f": plan={plan}" if plan else "")
    )
    return ReconciliationOutcome(Outcome.APPLIED, event.event_id, event.event_type, identity.user_id, plan)


def reconcile(event: BillingEvent, services: BillingServices) -> ReconciliationOutcome:
    """Process one verified Stripe event end to end.

    Only PersistenceError and ProviderUnavailableError (and unexpected bugs)
    escape; the handler turns them into a 500 so Stripe redelivers. Every
    other condition is final and answered with a 200.
    """
    claim = services.ledger.claim(event.event_id, event.event_type, event.customer_id, event.livemode)
    if claim is ClaimResult.ALREADY_PROCESSED:
        logger.info(f"Skipping duplicate event {event.event_id}")
        emit_webhook_outcome(Outcome.DUPLICATE.value, event.event_type)
        return ReconciliationOutcome(Outcome.DUPLICATE, event.event_id, event.event_type)

    identity = None
    try:
        if isinstance(event, IgnoredEvent):
            logger.info(f"Unhandled event type: {event.event_type}")
            result = ReconciliationOutcome(Outcome.IGNORED, event.event_id, event.event_type)
        else:
            identity = resolve(event, services.profiles)
            result = apply(identity, event, services)
    except IdentityUnresolved as e:
        emit_metric("IdentityUnresolved", dimensions={"EventType": event.event_type})
        alert_operator(
            "Unresolved billing event",
            f"{event.event_type} ({event.event_id}) for customer {e.customer_id} "
            f"(email {mask_email(event.customer_email)}) matched no user. "
            f"The entitlement change was not applied.",
        )
        result = ReconciliationOutcome(Outcome.IDENTITY_UNRESOLVED, event.event_id, event.event_type)
    except UnknownPriceError as e:
        logger.error(f"Unknown price {mask_price_id(e.price_id)} in {event.event_type} ({event.event_id})")
        emit_metric("UnknownPrice", dimensions={"EventType": event.event_type})
        alert_operator(
            "Unknown Stripe price",
            f"{event.event_type} ({event.event_id}) references price {e.price_id!r}, which is not in "
            f"the STRIPE_PRICE_* configuration. The user's plan was not updated.",
        )
        result = ReconciliationOutcome(
            Outcome.UNKNOWN_PRICE, event.event_id, event.event_type, identity.user_id if identity else None
        )
    except ProviderRequestError as e:
        logger.error(f"Permanent Stripe error handling {event.event_type}: {e}")
        result = ReconciliationOutcome(Outcome.REJECTED, event.event_id, event.event_type)
    except (PersistenceError, ProviderUnavailableError) as e:
        logger.error(f"Transient error handling {event.event_type} ({event.event_id}): {e}")
        services.ledger.mark_failed(event.event_id, str(e))
        raise
    except Exception as e:
        logger.error(f"Unexpected error handling {event.event_type}: {e}", exc_info=True)
        services.ledger.mark_failed(event.event_id, str(e))
        raise

    services.ledger.mark_processed(event.event_id, result.outcome.value)
    emit_webhook_outcome(result.outcome.value, event.event_type)

    if result.applied and isinstance(event, CheckoutCompleted):
        _notify(result, identity, services)

    return result


def _notify(result: ReconciliationOutcome, identity: UserIdentity, services: BillingServices) -> None:
    # The profile and ledger are committed; the acknowledgment no longer depends on email
    try:
        services.notifier.notify(result.plan, identity.email)
    except Exception as e:
        logger.error(
            f"Notifier failed after applying {result.event_type} ({result.event_id}) "
            f"for {result.user_id}: {e}",
            exc_info=True,
        )
        emit_metric("NotificationFailed", dimensions={"Plan": result.plan or "unknown"})
