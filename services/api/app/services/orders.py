from __future__ import annotations

from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from uuid import uuid4

from packages.shared.schemas.payment_v1 import (
    DeliveryMealStatusV1,
    DeliveryStatusV1,
    OrderStatusV1,
)
from services.api.app.config import PricingSettings
from services.api.app.db.models import (
    DeliveryMeal,
    DiscountCode,
    Order,
    OrderDelivery,
    utc_now,
)
from services.api.app.errors import PersistenceError, ValidationError
from services.api.app.log import get_logger
from services.api.app.services.pricing import CENT, price_from_settings
from services.api.app.services.scheduling import (
    DeliveryPlan,
    MealSelection,
    PackageSpec,
    schedule,
)
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

logger = get_logger("orders")


def package_price(
    package: PackageSpec,
    listed_price: Decimal,
    delivery_count: int,
    pricing: PricingSettings | None = None,
) -> Decimal:
    """Custom packages are priced from meal and delivery counts, others use the list price."""

    if package.is_custom:
        return price_from_settings(package.meals, delivery_count, pricing)
    return Decimal(str(listed_price)).quantize(CENT, rounding=ROUND_HALF_UP)


def apply_discount(amount: Decimal, discount: DiscountCode | None) -> Decimal:
    if discount is None:
        return amount
    pct = max(0, min(100, discount.discount_percentage))
    discounted = amount * (Decimal(100) - pct) / Decimal(100)
    return discounted.quantize(CENT, rounding=ROUND_HALF_UP)


def create_order(
    db: Session,
    *,
    user_id: str,
    package: PackageSpec,
    listed_price: Decimal,
    selections: list[MealSelection],
    delivery_address: dict,
    personal_note: str | None = None,
    discount_code: str | None = None,
    today: date | None = None,
    pricing: PricingSettings | None = None,
) -> tuple[Order, list[DeliveryPlan]]:
    """Persist an order with its scheduled deliveries and meals.

    The total is computed here once and stored; later price changes never touch it.
    """

    selected_total = sum(s.count for s in selections)
    if selected_total <= 0:
        raise ValidationError("At least one meal must be selected")
    if selected_total != package.meals:
        raise ValidationError(
            f"Package {package.id!r} includes {package.meals} meals, got {selected_total}"
        )

    discount: DiscountCode | None = None
    if discount_code:
        discount = db.scalars(
            select(DiscountCode).where(
                func.upper(DiscountCode.code) == discount_code.strip().upper()
            )
        ).first()
        if discount is None:
            raise ValidationError(f"Unknown discount code: {discount_code!r}")

    plans = schedule(package, selections, today=today)
    base_price = package_price(package, listed_price, len(plans), pricing)
    total = apply_discount(base_price, discount)

    order = Order(
        id=uuid4().hex,
        user_id=user_id,
        package_data={
            "id": package.id,
            "name": package.name,
            "meals": package.meals,
            "price": str(base_price),
            "description": package.description,
        },
        meals_data=[
            {"meal_id": s.meal.id, "name": s.meal.name, "quantity": s.count} for s in selections
        ],
        delivery_address_data=delivery_address,
        personal_note=personal_note,
        total=total,
        status=OrderStatusV1.PENDING.value,
        discount_code_id=discount.id if discount else None,
        created_at=utc_now(),
    )

    try:
        db.add(order)
        for plan in plans:
            delivery_id = uuid4().hex
            db.add(
                OrderDelivery(
                    id=delivery_id,
                    order_id=order.id,
                    scheduled_date=plan.date,
                    status=DeliveryStatusV1.PENDING.value,
                )
            )
            for position, meal in enumerate(plan.meals):
                db.add(
                    DeliveryMeal(
                        id=uuid4().hex,
                        delivery_id=delivery_id,
                        meal_id=meal.id,
                        meal_name=meal.name,
                        position=position,
                        status=DeliveryMealStatusV1.PENDING.value,
                    )
                )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        raise PersistenceError(f"Could not store order: {e}") from e

    logger.info(
        "order_created",
        order_id=order.id,
        package_id=package.id,
        total=str(total),
        deliveries=len(plans),
        discounted=discount is not None,
    )
    return order, plans
