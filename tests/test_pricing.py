"""
Tests for the pricing calculator and the quote service.
"""

from datetime import timedelta
from decimal import Decimal

import pytest

from src.lifecycle import (
    AddOn,
    InvalidInput,
    NotFound,
    ProductStatus,
    QuoteStatus,
    Tariff,
    Vehicle,
)
from src.pricing import price, round_money

from conftest import CLIENT, FIXED_NOW


def make_vehicle(market_value) -> Vehicle:
    return Vehicle(owner=CLIENT.id, plate_number="TEST-1", market_value=market_value)


# ============================================================================
# Test: Calculator
# ============================================================================


class TestPrice:
    """Base rate is a percentage up to 100 and a flat amount above it."""

    def test_percentage_base_rate(self):
        breakdown = price(make_vehicle(Decimal("10000")), Tariff(base_rate=Decimal("50"), vehicle_value_rate=Decimal("2.5")))
        assert breakdown.base == Decimal("5000.00")
        assert breakdown.value_part == Decimal("250.00")
        assert breakdown.add_ons_total == Decimal("0.00")
        assert breakdown.total == Decimal("5250.00")

    def test_flat_base_rate(self):
        breakdown = price(make_vehicle(Decimal("10000")), Tariff(base_rate=Decimal("300"), vehicle_value_rate=Decimal("1.5")))
        assert breakdown.base == Decimal("300.00")
        assert breakdown.value_part == Decimal("150.00")
        assert breakdown.total == Decimal("450.00")

    def test_base_rate_of_exactly_100_is_a_percentage(self):
        breakdown = price(make_vehicle(Decimal("800")), Tariff(base_rate=Decimal("100"), vehicle_value_rate=Decimal("0")))
        assert breakdown.base == Decimal("800.00")

    def test_add_ons_are_summed(self):
        add_ons = [
            AddOn(code="ASSIST", label="Roadside assistance", price=Decimal("1500")),
            AddOn(code="GLASS", label="Glass breakage", price=Decimal("2000.50")),
        ]
        breakdown = price(
            make_vehicle(Decimal("10000")),
            Tariff(base_rate=Decimal("50"), vehicle_value_rate=Decimal("2.5")),
            add_ons,
        )
        assert breakdown.add_ons_total == Decimal("3500.50")
        assert breakdown.total == Decimal("8750.50")

    def test_components_rounded_half_up(self):
        breakdown = price(
            make_vehicle(Decimal("12345.67")),
            Tariff(base_rate=Decimal("3.333"), vehicle_value_rate=Decimal("1.5")),
        )
        assert breakdown.base == Decimal("411.48")
        assert breakdown.value_part == Decimal("185.19")
        assert breakdown.total == Decimal("596.67")
        assert breakdown.base + breakdown.value_part + breakdown.add_ons_total == breakdown.total

    def test_deterministic(self):
        vehicle = make_vehicle(Decimal("23750"))
        tariff = Tariff(base_rate=Decimal("4.2"), vehicle_value_rate=Decimal("0.75"))
        assert price(vehicle, tariff) == price(vehicle, tariff)

    def test_round_money(self):
        assert round_money(Decimal("2.005")) == Decimal("2.01")
        assert round_money(Decimal("2.004")) == Decimal("2.00")


class TestPriceValidation:
    """Missing or non-positive inputs raise InvalidInput."""

    TARIFF = Tariff(base_rate=Decimal("50"), vehicle_value_rate=Decimal("2.5"))

    @pytest.mark.parametrize("market_value", [None, Decimal("0"), Decimal("-100")])
    def test_bad_market_value(self, market_value):
        with pytest.raises(InvalidInput):
            price(make_vehicle(market_value), self.TARIFF)

    def test_missing_vehicle(self):
        with pytest.raises(InvalidInput):
            price(None, self.TARIFF)

    def test_missing_tariff(self):
        with pytest.raises(InvalidInput):
            price(make_vehicle(Decimal("10000")), None)

    @pytest.mark.parametrize(
        "tariff",
        [
            Tariff(base_rate=None, vehicle_value_rate=Decimal("2.5")),
            Tariff(base_rate=Decimal("50"), vehicle_value_rate=None),
            Tariff(base_rate=Decimal("-1"), vehicle_value_rate=Decimal("2.5")),
        ],
    )
    def test_incomplete_tariff(self, tariff):
        with pytest.raises(InvalidInput):
            price(make_vehicle(Decimal("10000")), tariff)


# ============================================================================
# Test: Quote Service
# ============================================================================


class TestQuoteService:
    """Quotes freeze the tariff and expire after the validity period."""

    def test_create_quote(self, quotes, vehicle, product):
        quote = quotes.create_quote(CLIENT.id, vehicle.vehicle_id, product.product_id, ["ASSIST"])

        assert quote.status == QuoteStatus.PENDING
        assert quote.breakdown.total == Decimal("6750.00")
        assert [a.code for a in quote.selected_add_ons] == ["ASSIST"]
        assert quote.pricing_snapshot.code == "TIERS"
        assert quote.pricing_snapshot.base_rate == Decimal("50")
        assert quote.expires_at == FIXED_NOW + timedelta(days=7)
        assert quote.currency == "XOF"

    def test_quote_is_persisted(self, quotes, store, vehicle, product):
        quote = quotes.create_quote(CLIENT.id, vehicle.vehicle_id, product.product_id)
        stored = store.get_quote(quote.quote_id)
        assert stored.breakdown == quote.breakdown
        assert stored.expires_at == quote.expires_at

    def test_duplicate_add_on_codes_count_once(self, quotes, vehicle, product):
        quote = quotes.create_quote(CLIENT.id, vehicle.vehicle_id, product.product_id, ["GLASS", "GLASS"])
        assert quote.breakdown.add_ons_total == Decimal("2000.00")

    def test_unknown_add_on(self, quotes, vehicle, product):
        with pytest.raises(InvalidInput):
            quotes.create_quote(CLIENT.id, vehicle.vehicle_id, product.product_id, ["TURBO"])

    def test_inactive_product(self, quotes, store, vehicle, product):
        store.save_product(product.model_copy(update={"status": ProductStatus.INACTIVE}))
        with pytest.raises(InvalidInput):
            quotes.create_quote(CLIENT.id, vehicle.vehicle_id, product.product_id)

    def test_unknown_vehicle(self, quotes, product):
        with pytest.raises(NotFound):
            quotes.create_quote(CLIENT.id, "VEH-MISSING", product.product_id)

    def test_tariff_edit_does_not_change_existing_quote(self, quotes, store, vehicle, product):
        quote = quotes.create_quote(CLIENT.id, vehicle.vehicle_id, product.product_id)
        store.save_product(
            product.model_copy(update={"tariff": Tariff(base_rate=Decimal("300"), vehicle_value_rate=Decimal("1.5"))})
        )
        assert store.get_quote(quote.quote_id).breakdown.total == Decimal("5250.00")

    def test_expire_quote(self, quotes, quote):
        assert quotes.expire_quote(quote.quote_id).status == QuoteStatus.EXPIRED
        # Second call is a no-op
        assert quotes.expire_quote(quote.quote_id).status == QuoteStatus.EXPIRED
