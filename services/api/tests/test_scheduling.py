from datetime import date, timedelta

from services.api.app.services.scheduling import (
    MealRef,
    MealSelection,
    PackageSpec,
    parse_day_count,
    schedule,
)

TODAY = date(2026, 3, 2)
A = MealRef(id="m-a", name="Arroz con pollo")
B = MealRef(id="m-b", name="Ropa vieja")
C = MealRef(id="m-c", name="Potaje")


def test_standard_package_delivers_one_meal_per_day() -> None:
    package = PackageSpec(id="basic", name="Basic", meals=3)
    plans = schedule(package, [MealSelection(A, 2), MealSelection(B, 1)], today=TODAY)

    assert [p.date for p in plans] == [TODAY + timedelta(days=d) for d in (2, 3, 4)]
    assert [p.meals for p in plans] == [[A], [A], [B]]


def test_custom_package_spreads_meals_over_days() -> None:
    package = PackageSpec(id="custom", name="Custom", meals=7, description="Delivered in 3 days")
    plans = schedule(
        package, [MealSelection(A, 3), MealSelection(B, 2), MealSelection(C, 2)], today=TODAY
    )

    assert [len(p.meals) for p in plans] == [3, 2, 2]
    assert plans[0].date == TODAY + timedelta(days=2)
    assert [m for p in plans for m in p.meals] == [A, A, A, B, B, C, C]


def test_custom_package_accepts_spanish_marker() -> None:
    package = PackageSpec(id="custom", name="Custom", meals=4, description="Entrega en 2 días")
    plans = schedule(package, [MealSelection(A, 4)], today=TODAY)

    assert [len(p.meals) for p in plans] == [2, 2]


def test_custom_package_without_marker_is_a_single_delivery() -> None:
    package = PackageSpec(id="custom", name="Custom", meals=5, description="")
    plans = schedule(package, [MealSelection(A, 2), MealSelection(B, 3)], today=TODAY)

    assert len(plans) == 1
    assert plans[0].meals == [A, A, B, B, B]


def test_custom_package_with_fewer_meals_than_days() -> None:
    package = PackageSpec(id="custom", name="Custom", meals=2, description="in 5 days")
    plans = schedule(package, [MealSelection(A, 1), MealSelection(B, 1)], today=TODAY)

    assert [p.meals for p in plans] == [[A], [B]]


def test_zero_count_selections_are_skipped() -> None:
    package = PackageSpec(id="basic", name="Basic", meals=2)
    plans = schedule(
        package, [MealSelection(A, 0), MealSelection(B, 1), MealSelection(C, 1)], today=TODAY
    )

    assert [p.meals for p in plans] == [[B], [C]]


def test_meal_total_is_preserved() -> None:
    package = PackageSpec(id="custom", name="Custom", meals=11, description="in 4 days")
    selection = [MealSelection(A, 5), MealSelection(B, 4), MealSelection(C, 2)]
    plans = schedule(package, selection, today=TODAY)

    assert sum(len(p.meals) for p in plans) == 11
    assert [len(p.meals) for p in plans] == [3, 3, 3, 2]
    dates = [p.date for p in plans]
    assert dates == sorted(dates)


def test_empty_selection_yields_no_deliveries() -> None:
    package = PackageSpec(id="basic", name="Basic", meals=0)
    assert schedule(package, [], today=TODAY) == []


def test_parse_day_count() -> None:
    assert parse_day_count("Weekly box, in 5 days") == 5
    assert parse_day_count("en 1 día") == 1
    assert parse_day_count("in 0 days") is None
    assert parse_day_count("no marker here") is None
