from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class PackageIn(BaseModel):
    id: str
    name: str
    meals: int = Field(..., ge=1)
    price: Decimal = Field(default=Decimal("0"), ge=0)
    description: str = ""


class MealSelectionIn(BaseModel):
    meal_id: str
    name: str
    quantity: int = Field(..., ge=0)


class OrderCreateRequest(BaseModel):
    package: PackageIn
    meals: list[MealSelectionIn] = Field(..., min_length=1)
    delivery_address: dict
    personal_note: str | None = None
    discount_code: str | None = None


class DeliveryMealOut(BaseModel):
    id: str
    meal_id: str
    meal_name: str
    status: str
    completed_at: datetime | None = None


class DeliveryOut(BaseModel):
    id: str
    scheduled_date: date
    status: str
    delivered_at: datetime | None = None
    notes: str | None = None
    meals: list[DeliveryMealOut] = Field(default_factory=list)


class OrderOut(BaseModel):
    id: str
    user_id: str
    status: str
    total: str
    package: dict
    meals: list
    delivery_address: dict
    personal_note: str | None = None
    discount_code_id: str | None = None
    created_at: datetime
    deliveries: list[DeliveryOut] = Field(default_factory=list)
