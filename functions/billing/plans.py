"""
Stripe price catalog.

Maps each configured Stripe price id to an internal plan tier and billing
cycle. Loaded once per container from the environment and immutable after.
"""

import logging
import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional

from billing.errors import UnknownPriceError

logger = logging.getLogger(__name__)

PLAN_FREE = "free"
PLAN_PRINT = "print"
PLAN_PRO = "pro"

PLAN_TIERS = (PLAN_FREE, PLAN_PRINT, PLAN_PRO)

CYCLE_MONTHLY = "monthly"
CYCLE_ANNUAL = "annual"
BILLING_CYCLES = (CYCLE_MONTHLY, CYCLE_ANNUAL)

# (plan, billing_cycle) -> environment variable holding its price id
PRICE_ENV_VARS = {
    (PLAN_PRINT, CYCLE_MONTHLY): "STRIPE_PRICE_PRINT_MONTHLY",
    (PLAN_PRINT, CYCLE_ANNUAL): "STRIPE_PRICE_PRINT_ANNUAL",
    (PLAN_PRO, CYCLE_MONTHLY): "STRIPE_PRICE_PRO_MONTHLY",
    (PLAN_PRO, CYCLE_ANNUAL): "STRIPE_PRICE_PRO_ANNUAL",
}


@dataclass(frozen=True)
class PriceMapping:
    plan: str
    billing_cycle: str


def mask_price_id(price_id: Optional[str]) -> Optional[str]:
    """Shorten a price id for logs: price_1Abc...xyz123."""
    if isinstance(price_id, str) and price_id.startswith("price_") and len(price_id) > 14:
        return f"{price_id[:8]}...{price_id[-6:]}"
    return price_id


class PriceCatalog:
    """Read-only price_id -> (plan, billing_cycle) table."""

    def __init__(self, prices: Mapping[str, PriceMapping]):
        for price_id, mapping in prices.items():
            if mapping.plan not in PLAN_TIERS or mapping.plan == PLAN_FREE:
                raise ValueError(f"Price {price_id} maps to invalid paid plan {mapping.plan!r}")
            if mapping.billing_cycle not in BILLING_CYCLES:
                raise ValueError(f"Price {price_id} has invalid billing cycle {mapping.billing_cycle!r}")
        self._prices = MappingProxyType(dict(prices))
        self._by_plan = MappingProxyType(
            {(m.plan, m.billing_cycle): price_id for price_id, m in self._prices.items()}
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "PriceCatalog":
        """Build the catalog from STRIPE_PRICE_* variables.

        Empty or missing variables are skipped with a warning so a partially
        configured stage still boots.
        """
        environ = os.environ if environ is None else environ
        prices = {}
        for (plan, cycle), var in PRICE_ENV_VARS.items():
            price_id = environ.get(var) or None
            if not price_id:
                logger.warning(f"Missing price configuration {var}")
                continue
            prices[price_id] = PriceMapping(plan=plan, billing_cycle=cycle)

        logger.info(
            "Loaded price catalog",
            extra={"prices": {mask_price_id(p): f"{m.plan}/{m.billing_cycle}" for p, m in prices.items()}},
        )
        return cls(prices)

    @property
    def plans(self) -> frozenset:
        """Paid plans that have at least one configured price."""
        return frozenset(m.plan for m in self._prices.values())

    def get(self, price_id: Optional[str]) -> Optional[PriceMapping]:
        """Look up a price id, returning None when it is not configured."""
        if not price_id:
            return None
        return self._prices.get(price_id)

    def map_price(self, price_id: Optional[str]) -> PriceMapping:
        """Look up a price id.

        Raises:
            UnknownPriceError: the price is missing from the catalog, which
                means the Stripe catalog and our configuration have drifted.
        """
        mapping = self.get(price_id)
        if mapping is None:
            raise UnknownPriceError(price_id)
        return mapping

    def price_for(self, plan: str, billing_cycle: str = CYCLE_MONTHLY) -> Optional[str]:
        """Price id used when creating a checkout session for a plan."""
        return self._by_plan.get((plan, billing_cycle))

    def __contains__(self, price_id: object) -> bool:
        return price_id in self._prices

    def __len__(self) -> int:
        return len(self._prices)
