"""
Quote pricing.

Pricing rules:
- Base: ``base_rate`` is a flat amount when greater than 100, otherwise a
  percentage of the vehicle market value (legacy convention, kept as is)
- Value part: ``vehicle_value_rate`` is always a percentage of market value
- Add-ons: sum of the selected add-on prices

Each component is rounded to 2 decimals before summation and the total is
rounded again. The calculator is pure: same inputs, same breakdown.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Sequence

from ..lifecycle.errors import InvalidInput
from ..lifecycle.schema import AddOn, PricingBreakdown, PricingSnapshot, Product, Tariff, Vehicle

CENT = Decimal("0.01")
HUNDRED = Decimal("100")

# Above this value base_rate is read as a flat amount
FLAT_BASE_RATE_THRESHOLD = Decimal("100")


def round_money(value: Decimal) -> Decimal:
    """Round half-up to 2 decimals."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _as_decimal(value, label: str) -> Decimal:
    if value is None:
        raise InvalidInput(f"{label} is missing")
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidInput(f"{label} is not a number: {value!r}") from e
    if not result.is_finite():
        raise InvalidInput(f"{label} is not a finite number: {value!r}")
    return result


def price(
    vehicle: Optional[Vehicle],
    tariff: Optional[Tariff],
    add_ons: Sequence[AddOn] = (),
) -> PricingBreakdown:
    """
    Price a vehicle against a tariff and a set of add-ons.

    Args:
        vehicle: Vehicle with a positive market value
        tariff: Tariff with both base_rate and vehicle_value_rate
        add_ons: Selected add-ons

    Returns:
        PricingBreakdown with base, value_part, add_ons_total and total

    Raises:
        InvalidInput: market value missing or non-positive, or tariff incomplete
    """
    if vehicle is None or vehicle.market_value is None:
        raise InvalidInput("Invalid vehicle: market value missing")
    market_value = _as_decimal(vehicle.market_value, "market_value")
    if market_value <= 0:
        raise InvalidInput(f"Invalid vehicle: market value must be positive (got {market_value})")

    if tariff is None:
        raise InvalidInput("Invalid product: tariff missing")
    base_rate = _as_decimal(tariff.base_rate, "tariff.base_rate")
    value_rate = _as_decimal(tariff.vehicle_value_rate, "tariff.vehicle_value_rate")
    if base_rate < 0 or value_rate < 0:
        raise InvalidInput("Invalid product: tariff rates must not be negative")

    if base_rate > FLAT_BASE_RATE_THRESHOLD:
        base = base_rate
    else:
        base = market_value * base_rate / HUNDRED

    value_part = market_value * value_rate / HUNDRED
    add_ons_total = sum((_as_decimal(a.price, f"add-on {a.code} price") for a in add_ons), Decimal("0"))

    base = round_money(base)
    value_part = round_money(value_part)
    add_ons_total = round_money(add_ons_total)

    return PricingBreakdown(
        base=base,
        value_part=value_part,
        add_ons_total=add_ons_total,
        total=round_money(base + value_part + add_ons_total),
    )


def create_pricing_snapshot(product: Product) -> PricingSnapshot:
    """Freeze the tariff parameters of ``product`` for a quote."""
    if product.tariff is None:
        raise InvalidInput(f"Invalid product {product.code}: tariff missing")
    return PricingSnapshot(
        code=product.code,
        name=product.name,
        base_rate=_as_decimal(product.tariff.base_rate, "tariff.base_rate"),
        vehicle_value_rate=_as_decimal(product.tariff.vehicle_value_rate, "tariff.vehicle_value_rate"),
        franchise=product.franchise,
    )
