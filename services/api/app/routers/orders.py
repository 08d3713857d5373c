from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends
from services.api.app.db.deps import get_current_user, get_db, get_ledger
from services.api.app.db.models import Order
from services.api.app.errors import CantinaError, NotFoundError
from services.api.app.models.order import (
    DeliveryMealOut,
    DeliveryOut,
    OrderCreateRequest,
    OrderOut,
)
from services.api.app.routers.http_errors import raise_http_error
from services.api.app.services.ledger import PaymentOrderLedger
from services.api.app.services.orders import create_order
from services.api.app.services.scheduling import MealRef, MealSelection, PackageSpec
from sqlalchemy.orm import Session

router = APIRouter(prefix="/api/orders")


def _order_out(order: Order, ledger: PaymentOrderLedger) -> OrderOut:
    deliveries = [
        DeliveryOut(
            id=d.id,
            scheduled_date=d.scheduled_date,
            status=d.status,
            delivered_at=d.delivered_at,
            notes=d.notes,
            meals=[
                DeliveryMealOut(
                    id=m.id,
                    meal_id=m.meal_id,
                    meal_name=m.meal_name,
                    status=m.status,
                    completed_at=m.completed_at,
                )
                for m in ledger.meals_for(d.id)
            ],
        )
        for d in ledger.deliveries_for(order.id)
    ]
    return OrderOut(
        id=order.id,
        user_id=order.user_id,
        status=order.status,
        total=str(Decimal(str(order.total)).quantize(Decimal("0.01"))),
        package=order.package_data,
        meals=order.meals_data,
        delivery_address=order.delivery_address_data,
        personal_note=order.personal_note,
        discount_code_id=order.discount_code_id,
        created_at=order.created_at,
        deliveries=deliveries,
    )


def _owned_order(ledger: PaymentOrderLedger, order_id: str, user_id: str) -> Order:
    order = ledger.get_order(order_id)
    if order.user_id != user_id:
        raise NotFoundError(f"Order {order_id} not found")
    return order


@router.post("", response_model=OrderOut)
def place_order(
    payload: OrderCreateRequest,
    user_id: str = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> OrderOut:
    package = PackageSpec(
        id=payload.package.id,
        name=payload.package.name,
        meals=payload.package.meals,
        description=payload.package.description,
    )
    selections = [
        MealSelection(meal=MealRef(id=m.meal_id, name=m.name), count=m.quantity)
        for m in payload.meals
    ]

    try:
        order, _ = create_order(
            db,
            user_id=user_id,
            package=package,
            listed_price=payload.package.price,
            selections=selections,
            delivery_address=payload.delivery_address,
            personal_note=payload.personal_note,
            discount_code=payload.discount_code,
        )
    except CantinaError as e:
        raise_http_error(e)

    return _order_out(order, PaymentOrderLedger(db))


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: str,
    user_id: str = Depends(get_current_user),
    ledger: PaymentOrderLedger = Depends(get_ledger),
) -> OrderOut:
    try:
        order = _owned_order(ledger, order_id, user_id)
    except CantinaError as e:
        raise_http_error(e)
    return _order_out(order, ledger)


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: str,
    user_id: str = Depends(get_current_user),
    ledger: PaymentOrderLedger = Depends(get_ledger),
) -> OrderOut:
    try:
        _owned_order(ledger, order_id, user_id)
        order = ledger.cancel(order_id)
    except CantinaError as e:
        raise_http_error(e)
    return _order_out(order, ledger)
