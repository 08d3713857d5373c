from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date, timedelta

CUSTOM_PACKAGE_ID = "custom"
FIRST_DELIVERY_OFFSET_DAYS = 2

# "in 3 days" (current copy) and "en 3 días" (original storefront copy).
_DAYS_MARKER = re.compile(r"\b(?:in|en)\s+(\d+)\s+(?:days?|d[ií]as?)\b", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class PackageSpec:
    id: str
    name: str
    meals: int
    description: str = ""

    @property
    def is_custom(self) -> bool:
        return self.id == CUSTOM_PACKAGE_ID


@dataclass(frozen=True, slots=True)
class MealRef:
    id: str
    name: str


@dataclass(frozen=True, slots=True)
class MealSelection:
    meal: MealRef
    count: int


@dataclass(frozen=True, slots=True)
class DeliveryPlan:
    date: date
    meals: list[MealRef] = field(default_factory=list)


def parse_day_count(description: str) -> int | None:
    match = _DAYS_MARKER.search(description or "")
    if not match:
        return None
    days = int(match.group(1))
    return days if days > 0 else None


def schedule(
    package: PackageSpec,
    selected_meals: list[MealSelection],
    *,
    today: date | None = None,
) -> list[DeliveryPlan]:
    """Expand a package and its meal selection into dated deliveries.

    Standard packages deliver one meal a day. Custom packages spread meals over the
    day count in their description; the first ``total % days`` deliveries carry one
    extra meal. Custom schedules stop after ``days`` deliveries even if meals remain.
    """

    today = today or date.today()
    remaining = [[item.meal, max(0, item.count)] for item in selected_meals]
    total = sum(count for _meal, count in remaining)

    total_days = 1
    meals_per_day = 1
    extra_meals = 0
    if package.is_custom:
        total_days = parse_day_count(package.description) or 1
        meals_per_day, extra_meals = divmod(total, total_days)

    deliveries: list[DeliveryPlan] = []
    delivery_date = today + timedelta(days=FIRST_DELIVERY_OFFSET_DAYS)
    cursor = 0

    while total > 0:
        if package.is_custom:
            quota = meals_per_day
            if extra_meals > 0:
                quota += 1
                extra_meals -= 1
            quota = min(quota, total)
        else:
            quota = 1

        meals: list[MealRef] = []
        while len(meals) < quota and cursor < len(remaining):
            entry = remaining[cursor]
            if entry[1] > 0:
                meals.append(entry[0])
                entry[1] -= 1
                total -= 1
            if entry[1] <= 0:
                cursor += 1

        deliveries.append(DeliveryPlan(date=delivery_date, meals=meals))
        delivery_date = delivery_date + timedelta(days=1)

        if package.is_custom and len(deliveries) >= total_days:
            break

    return deliveries
