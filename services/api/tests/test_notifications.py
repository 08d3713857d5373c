from decimal import Decimal

import pytest
from services.api.app.services.notifications import (
    BrevoPurchaseStats,
    LogConfirmationSender,
    LogPurchaseStats,
    PurchaseNotice,
    dispatch_purchase_side_effects,
    get_purchase_stats,
)

NOTICE = PurchaseNotice(
    order_id="o-1",
    user_id="u-1",
    payment_order_id="po-1",
    total=Decimal("23.99"),
    currency="EUR",
    package_id="pack-3",
    package_name="Pack 3",
    package_price=Decimal("29.99"),
    email="ana@example.com",
    coupon="CANTINA20",
)


class Exploding:
    def send_order_confirmation(self, notice: PurchaseNotice) -> None:
        raise RuntimeError("smtp down")

    def register_purchase(self, notice: PurchaseNotice) -> None:
        raise RuntimeError("stats down")


def test_dispatch_swallows_failures() -> None:
    failed = dispatch_purchase_side_effects(NOTICE, confirmation=Exploding(), stats=Exploding())
    assert failed == ["order_confirmation", "purchase_stats"]


def test_dispatch_runs_every_side_effect() -> None:
    failed = dispatch_purchase_side_effects(
        NOTICE, confirmation=LogConfirmationSender(), stats=LogPurchaseStats()
    )
    assert failed == []


def test_one_failure_does_not_skip_the_other() -> None:
    registered: list[PurchaseNotice] = []

    class Stats:
        def register_purchase(self, notice: PurchaseNotice) -> None:
            registered.append(notice)

    failed = dispatch_purchase_side_effects(NOTICE, confirmation=Exploding(), stats=Stats())

    assert failed == ["order_confirmation"]
    assert registered == [NOTICE]


def test_brevo_payload_shape() -> None:
    payload = BrevoPurchaseStats(api_key="k").build_payload(NOTICE)

    order = payload["orders"][0]
    assert order["id"] == "o-1"
    assert order["identifiers"] == {"email_id": "ana@example.com"}
    assert order["amount"] == 23.99
    assert order["coupons"] == ["CANTINA20"]
    assert order["products"] == [{"productId": "pack-3", "quantity": 1, "price": 29.99}]
    assert order["storeId"] == "cantinaxl"


def test_get_purchase_stats_selection(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CANTINA_STATS_ADAPTER", raising=False)
    assert isinstance(get_purchase_stats(), LogPurchaseStats)

    monkeypatch.setenv("CANTINA_STATS_ADAPTER", "brevo")
    monkeypatch.delenv("BREVO_API_KEY", raising=False)
    with pytest.raises(ValueError, match="BREVO_API_KEY"):
        get_purchase_stats()

    monkeypatch.setenv("BREVO_API_KEY", "k")
    assert isinstance(get_purchase_stats(), BrevoPurchaseStats)

    monkeypatch.setenv("CANTINA_STATS_ADAPTER", "nope")
    with pytest.raises(ValueError, match="Unknown CANTINA_STATS_ADAPTER"):
        get_purchase_stats()
