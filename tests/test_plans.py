"""
Tests for the Stripe price catalog.
"""

import pytest


class TestPriceCatalog:
    """Tests for price id to plan mapping."""

    @pytest.mark.parametrize(
        "price_id,plan,cycle",
        [
            ("price_print_monthly", "print", "monthly"),
            ("price_print_annual", "print", "annual"),
            ("price_pro_monthly", "pro", "monthly"),
            ("price_pro_annual", "pro", "annual"),
        ],
    )
    def test_maps_configured_prices(self, price_catalog, price_id, plan, cycle):
        mapping = price_catalog.map_price(price_id)

        assert mapping.plan == plan
        assert mapping.billing_cycle == cycle

    def test_unknown_price_raises(self, price_catalog):
        from billing.errors import UnknownPriceError

        with pytest.raises(UnknownPriceError) as exc_info:
            price_catalog.map_price("price_legacy")

        assert exc_info.value.price_id == "price_legacy"

    def test_missing_price_raises(self, price_catalog):
        from billing.errors import UnknownPriceError

        with pytest.raises(UnknownPriceError):
            price_catalog.map_price(None)

    def test_get_returns_none_for_unknown(self, price_catalog):
        assert price_catalog.get("price_legacy") is None
        assert price_catalog.get("") is None

    def test_price_for_plan(self, price_catalog):
        assert price_catalog.price_for("pro", "annual") == "price_pro_annual"
        assert price_catalog.price_for("print") == "price_print_monthly"
        assert price_catalog.price_for("free") is None

    def test_plans_and_membership(self, price_catalog):
        assert price_catalog.plans == frozenset({"print", "pro"})
        assert "price_pro_monthly" in price_catalog
        assert "price_free" not in price_catalog
        assert len(price_catalog) == 4

    def test_rejects_free_plan_mapping(self):
        from billing.plans import PriceCatalog, PriceMapping

        with pytest.raises(ValueError):
            PriceCatalog({"price_x": PriceMapping(plan="free", billing_cycle="monthly")})

    def test_rejects_unknown_cycle(self):
        from billing.plans import PriceCatalog, PriceMapping

        with pytest.raises(ValueError):
            PriceCatalog({"price_x": PriceMapping(plan="pro", billing_cycle="weekly")})


class TestFromEnv:
    """Tests for loading the catalog from STRIPE_PRICE_* variables."""

    def test_loads_all_four_prices(self):
        from billing.plans import PriceCatalog

        catalog = PriceCatalog.from_env({
            "STRIPE_PRICE_PRINT_MONTHLY": "price_a",
            "STRIPE_PRICE_PRINT_ANNUAL": "price_b",
            "STRIPE_PRICE_PRO_MONTHLY": "price_c",
            "STRIPE_PRICE_PRO_ANNUAL": "price_d",
        })

        assert len(catalog) == 4
        assert catalog.map_price("price_d").plan == "pro"

    def test_skips_empty_variables(self):
        """CDK passes empty strings for unset prices."""
        from billing.plans import PriceCatalog

        catalog = PriceCatalog.from_env({
            "STRIPE_PRICE_PRINT_MONTHLY": "price_a",
            "STRIPE_PRICE_PRO_MONTHLY": "",
        })

        assert len(catalog) == 1
        assert "" not in catalog
        assert catalog.plans == frozenset({"print"})


class TestMaskPriceId:
    def test_masks_long_price_ids(self):
        from billing.plans import mask_price_id

        assert mask_price_id("price_1AbCdEfGhIjKlMnOp") == "price_1A...KlMnOp"

    def test_leaves_short_values(self):
        from billing.plans import mask_price_id

        assert mask_price_id("price_pro") == "price_pro"
        assert mask_price_id(None) is None
