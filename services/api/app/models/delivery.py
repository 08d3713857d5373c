from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field
from services.api.app.models.order import MealSelectionIn, PackageIn


class DeliveryStatusUpdate(BaseModel):
    status: str
    notes: str | None = None


class SchedulePreviewRequest(BaseModel):
    package: PackageIn
    meals: list[MealSelectionIn] = Field(..., min_length=1)
    today: date | None = None


class PlannedMealOut(BaseModel):
    meal_id: str
    name: str


class PlannedDeliveryOut(BaseModel):
    scheduled_date: date
    meals: list[PlannedMealOut]


class SchedulePreviewResponse(BaseModel):
    deliveries: list[PlannedDeliveryOut]
    total_meals: int


class PackagePriceResponse(BaseModel):
    meals: int
    deliveries: int
    price: str
