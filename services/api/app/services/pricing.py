"""Package pricing.

Prices are computed in ``Decimal`` so the psychological .99 ending never picks up
binary float residue (e.g. ``69.99000000000001``).
"""

from __future__ import annotations

from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal

from services.api.app.config import PricingSettings

CENT = Decimal("0.01")
WHOLE_UNIT = Decimal("1")


def _to_decimal(value: Decimal | int | float | str) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def price(
    meal_count: int,
    delivery_count: int,
    meal_unit_cost: Decimal | int | float | str,
    delivery_unit_cost: Decimal | int | float | str,
    margin_fraction: Decimal | int | float | str,
    *,
    rounding_step: Decimal = WHOLE_UNIT,
) -> Decimal:
    meals = max(0, int(meal_count))
    deliveries = max(0, int(delivery_count))

    if meals == 0 or deliveries == 0:
        return Decimal("0.00")

    base = meals * _to_decimal(meal_unit_cost) + deliveries * _to_decimal(delivery_unit_cost)
    with_margin = base * (1 + _to_decimal(margin_fraction))

    steps = (with_margin / rounding_step).to_integral_value(rounding=ROUND_CEILING)
    rounded_up = steps * rounding_step

    return (rounded_up - CENT).quantize(CENT, rounding=ROUND_HALF_UP)


def price_from_settings(
    meal_count: int, delivery_count: int, settings: PricingSettings | None = None
) -> Decimal:
    settings = settings or PricingSettings.from_env()
    return price(
        meal_count,
        delivery_count,
        settings.meal_unit_cost,
        settings.delivery_unit_cost,
        settings.margin_fraction,
        rounding_step=settings.rounding_step,
    )
