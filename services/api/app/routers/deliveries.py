from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from services.api.app.db.deps import get_current_user, get_ledger
from services.api.app.db.models import OrderDelivery
from services.api.app.errors import CantinaError, NotFoundError
from services.api.app.models.delivery import (
    DeliveryStatusUpdate,
    PackagePriceResponse,
    PlannedDeliveryOut,
    PlannedMealOut,
    SchedulePreviewRequest,
    SchedulePreviewResponse,
)
from services.api.app.models.order import DeliveryMealOut, DeliveryOut
from services.api.app.routers.http_errors import raise_http_error
from services.api.app.services.ledger import PaymentOrderLedger
from services.api.app.services.pricing import price_from_settings
from services.api.app.services.scheduling import MealRef, MealSelection, PackageSpec, schedule

router = APIRouter(prefix="/api")


def _delivery_out(ledger: PaymentOrderLedger, delivery_id: str) -> DeliveryOut:
    delivery = ledger.get_delivery(delivery_id)
    return DeliveryOut(
        id=delivery.id,
        scheduled_date=delivery.scheduled_date,
        status=delivery.status,
        delivered_at=delivery.delivered_at,
        notes=delivery.notes,
        meals=[
            DeliveryMealOut(
                id=m.id,
                meal_id=m.meal_id,
                meal_name=m.meal_name,
                status=m.status,
                completed_at=m.completed_at,
            )
            for m in ledger.meals_for(delivery.id)
        ],
    )


def _owned_delivery(ledger: PaymentOrderLedger, delivery_id: str, user_id: str) -> OrderDelivery:
    delivery = ledger.get_delivery(delivery_id)
    if ledger.get_order(delivery.order_id).user_id != user_id:
        raise NotFoundError(f"Delivery {delivery_id} not found")
    return delivery


@router.post("/deliveries/preview", response_model=SchedulePreviewResponse)
def preview_schedule(payload: SchedulePreviewRequest) -> SchedulePreviewResponse:
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
    plans = schedule(package, selections, today=payload.today)

    return SchedulePreviewResponse(
        deliveries=[
            PlannedDeliveryOut(
                scheduled_date=p.date,
                meals=[PlannedMealOut(meal_id=m.id, name=m.name) for m in p.meals],
            )
            for p in plans
        ],
        total_meals=sum(len(p.meals) for p in plans),
    )


@router.post("/deliveries/{delivery_id}/status", response_model=DeliveryOut)
def update_delivery_status(
    delivery_id: str,
    payload: DeliveryStatusUpdate,
    user_id: str = Depends(get_current_user),
    ledger: PaymentOrderLedger = Depends(get_ledger),
) -> DeliveryOut:
    try:
        _owned_delivery(ledger, delivery_id, user_id)
        ledger.update_delivery_status(delivery_id, payload.status, payload.notes)
        return _delivery_out(ledger, delivery_id)
    except CantinaError as e:
        raise_http_error(e)


@router.post("/deliveries/{delivery_id}/meals/{meal_id}/complete", response_model=DeliveryOut)
def complete_delivery_meal(
    delivery_id: str,
    meal_id: str,
    user_id: str = Depends(get_current_user),
    ledger: PaymentOrderLedger = Depends(get_ledger),
) -> DeliveryOut:
    try:
        _owned_delivery(ledger, delivery_id, user_id)
        ledger.complete_delivery_meal(delivery_id, meal_id)
        return _delivery_out(ledger, delivery_id)
    except CantinaError as e:
        raise_http_error(e)


@router.get("/packages/price", response_model=PackagePriceResponse)
def package_price(
    meals: int = Query(..., ge=0),
    deliveries: int = Query(..., ge=0),
) -> PackagePriceResponse:
    return PackagePriceResponse(
        meals=meals,
        deliveries=deliveries,
        price=str(price_from_settings(meals, deliveries)),
    )
