"""
Dependencies the reconciler needs, bundled so handlers build them once per
container and tests can swap in fakes per case.
"""

from dataclasses import dataclass
from typing import Optional

from billing.gateway import StripeGateway, configure_http_client
from billing.idempotency import EventLedger
from billing.notifier import Notifier
from billing.plans import PriceCatalog
from billing.profiles import ProfileStore


@dataclass
class BillingServices:
    profiles: ProfileStore
    ledger: EventLedger
    catalog: PriceCatalog
    gateway: StripeGateway
    notifier: Notifier


_catalog: Optional[PriceCatalog] = None


def get_price_catalog() -> PriceCatalog:
    """Price catalog loaded once per container."""
    global _catalog
    if _catalog is None:
        _catalog = PriceCatalog.from_env()
    return _catalog


def build_services(stripe_api_key: str) -> BillingServices:
    """Wire production dependencies from the environment."""
    configure_http_client()
    return BillingServices(
        profiles=ProfileStore(),
        ledger=EventLedger(),
        catalog=get_price_catalog(),
        gateway=StripeGateway(stripe_api_key),
        notifier=Notifier(),
    )


def reset_services() -> None:
    """Forget the cached catalog. Used in tests."""
    global _catalog
    _catalog = None
