"""
Typed view of the Stripe events the reconciler understands.

Stripe payloads are loosely shaped and vary by API version, so all the
defensive field access lives here. Everything downstream works with one of
the frozen dataclasses below; event kinds we don't act on become
``IgnoredEvent`` instead of falling through.
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

from billing.errors import MalformedEvent

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAID = "invoice.paid"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

CANCEL_REASON_DELETED = "deleted"
CANCEL_REASON_PAYMENT_FAILED = "payment_failed"

_EMPTY: Mapping[str, str] = MappingProxyType({})


@dataclass(frozen=True)
class BillingEvent:
    """Fields every reconcilable event carries."""

    event_id: str
    event_type: str
    customer_id: Optional[str] = None
    customer_email: Optional[str] = None
    metadata: Mapping[str, str] = field(default_factory=lambda: _EMPTY)
    created: Optional[int] = None
    livemode: bool = False


@dataclass(frozen=True)
class CheckoutCompleted(BillingEvent):
    subscription_id: Optional[str] = None
    client_reference_id: Optional[str] = None
    price_id: Optional[str] = None
    current_period_end: Optional[int] = None


@dataclass(frozen=True)
class SubscriptionChanged(BillingEvent):
    """customer.subscription.created / customer.subscription.updated."""

    subscription_id: Optional[str] = None
    status: Optional[str] = None
    price_id: Optional[str] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False


@dataclass(frozen=True)
class SubscriptionCanceled(BillingEvent):
    """Subscription deleted, or its final payment attempt failed."""

    subscription_id: Optional[str] = None
    current_period_end: Optional[int] = None
    reason: str = CANCEL_REASON_DELETED


@dataclass(frozen=True)
class PaymentFailed(BillingEvent):
    """A payment attempt failed but Stripe will retry."""

    subscription_id: Optional[str] = None
    attempt_count: int = 1


@dataclass(frozen=True)
class InvoicePaid(BillingEvent):
    subscription_id: Optional[str] = None
    price_id: Optional[str] = None
    current_period_end: Optional[int] = None


@dataclass(frozen=True)
class IgnoredEvent(BillingEvent):
    pass


Event = Union[
    CheckoutCompleted,
    SubscriptionChanged,
    SubscriptionCanceled,
    PaymentFailed,
    InvoicePaid,
    IgnoredEvent,
]


def _get(obj: Any, *path: str) -> Any:
    """Walk nested dicts, returning None on any missing or non-dict hop."""
    for key in path:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def _str(value: Any) -> Optional[str]:
    # Expanded objects arrive as dicts with an id instead of a bare string
    if isinstance(value, dict):
        value = value.get("id")
    if value is None or value == "":
        return None
    return str(value)


def _int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _metadata(value: Any) -> Mapping[str, str]:
    if not isinstance(value, dict) or not value:
        return _EMPTY
    return MappingProxyType({str(k): str(v) for k, v in value.items() if v is not None})


def _first_item(obj: dict) -> dict:
    items = _get(obj, "items", "data") or []
    return items[0] if items and isinstance(items[0], dict) else {}


def _subscription_period_end(subscription: dict) -> Optional[int]:
    # Newer API versions moved the billing period onto the subscription item
    item = _first_item(subscription)
    return _int(item.get("current_period_end")) or _int(subscription.get("current_period_end"))


def _line_price_id(line: dict) -> Optional[str]:
    return _str(_get(line, "price", "id")) or _str(_get(line, "pricing", "price_details", "price"))


def _invoice_subscription_line(invoice: dict) -> dict:
    lines = _get(invoice, "lines", "data") or []
    for line in lines:
        if not isinstance(line, dict):
            continue
        if line.get("type") == "subscription" or _get(line, "parent", "type") == "subscription_item_details":
            return line
    return lines[0] if lines and isinstance(lines[0], dict) else {}


def _invoice_subscription_id(invoice: dict) -> Optional[str]:
    return _str(invoice.get("subscription")) or _str(
        _get(invoice, "parent", "subscription_details", "subscription")
    )


def _invoice_metadata(invoice: dict) -> Mapping[str, str]:
    return _metadata(
        _get(invoice, "subscription_details", "metadata")
        or _get(invoice, "parent", "subscription_details", "metadata")
        or invoice.get("metadata")
    )


def parse_event(payload: dict) -> Event:
    """Build the typed event for a verified Stripe webhook payload.

    Raises:
        MalformedEvent: if the payload lacks an id, a type or a data object.
    """
    if not isinstance(payload, dict):
        raise MalformedEvent("Webhook payload is not a JSON object")

    event_id = _str(payload.get("id"))
    event_type = _str(payload.get("type"))
    obj = _get(payload, "data", "object")
    if not event_id or not event_type or not isinstance(obj, dict):
        raise MalformedEvent("Webhook payload is missing id, type or data.object")

    common = {
        "event_id": event_id,
        "event_type": event_type,
        "customer_id": _str(obj.get("customer")),
        "created": _int(payload.get("created")),
        "livemode": bool(payload.get("livemode", False)),
    }

    if event_type == CHECKOUT_COMPLETED:
        line_items = _get(obj, "line_items", "data") or []
        price_id = _line_price_id(line_items[0]) if line_items and isinstance(line_items[0], dict) else None
        return CheckoutCompleted(
            **common,
            customer_email=_str(obj.get("customer_email")) or _str(_get(obj, "customer_details", "email")),
            metadata=_metadata(obj.get("metadata")),
            subscription_id=_str(obj.get("subscription")),
            client_reference_id=_str(obj.get("client_reference_id")),
            price_id=price_id,
        )

    if event_type in (SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED):
        return SubscriptionChanged(
            **common,
            metadata=_metadata(obj.get("metadata")),
            subscription_id=_str(obj.get("id")),
            status=_str(obj.get("status")),
            price_id=_str(_get(_first_item(obj), "price", "id")),
            current_period_end=_subscription_period_end(obj),
            cancel_at_period_end=bool(obj.get("cancel_at_period_end", False)),
        )

    if event_type == SUBSCRIPTION_DELETED:
        return SubscriptionCanceled(
            **common,
            metadata=_metadata(obj.get("metadata")),
            subscription_id=_str(obj.get("id")),
            current_period_end=_subscription_period_end(obj),
            reason=CANCEL_REASON_DELETED,
        )

    if event_type in (INVOICE_PAYMENT_SUCCEEDED, INVOICE_PAID):
        line = _invoice_subscription_line(obj)
        return InvoicePaid(
            **common,
            customer_email=_str(obj.get("customer_email")),
            metadata=_invoice_metadata(obj),
            subscription_id=_invoice_subscription_id(obj),
            price_id=_line_price_id(line),
            current_period_end=_int(_get(line, "period", "end")),
        )

    if event_type == INVOICE_PAYMENT_FAILED:
        attempt_count = _int(obj.get("attempt_count")) or 1
        subscription_id = _invoice_subscription_id(obj)
        # Stripe clears next_payment_attempt once smart retries are exhausted
        if subscription_id and obj.get("next_payment_attempt") is None and "next_payment_attempt" in obj:
            return SubscriptionCanceled(
                **common,
                customer_email=_str(obj.get("customer_email")),
                metadata=_invoice_metadata(obj),
                subscription_id=subscription_id,
                reason=CANCEL_REASON_PAYMENT_FAILED,
            )
        return PaymentFailed(
            **common,
            customer_email=_str(obj.get("customer_email")),
            metadata=_invoice_metadata(obj),
            subscription_id=subscription_id,
            attempt_count=attempt_count,
        )

    return IgnoredEvent(**common)
