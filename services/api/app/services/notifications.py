from __future__ import annotations

import json
import os
import urllib.error
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Protocol

from services.api.app.db.models import Order, PaymentOrder
from services.api.app.log import get_logger

logger = get_logger("notifications")

BREVO_API_URL = "https://api.brevo.com/v3"


@dataclass(frozen=True, slots=True)
class PurchaseNotice:
    order_id: str
    user_id: str
    payment_order_id: str
    total: Decimal
    currency: str
    package_id: str
    package_name: str
    package_price: Decimal
    email: str | None = None
    coupon: str | None = None


class ConfirmationSender(Protocol):
    def send_order_confirmation(self, notice: PurchaseNotice) -> None: ...


class PurchaseStats(Protocol):
    def register_purchase(self, notice: PurchaseNotice) -> None: ...


class LogConfirmationSender:
    """Records the confirmation request; actual email dispatch lives outside this service."""

    def send_order_confirmation(self, notice: PurchaseNotice) -> None:
        logger.info(
            "order_confirmation_requested",
            order_id=notice.order_id,
            payment_order_id=notice.payment_order_id,
            has_email=bool(notice.email),
        )


class LogPurchaseStats:
    def register_purchase(self, notice: PurchaseNotice) -> None:
        logger.info(
            "purchase_registered",
            order_id=notice.order_id,
            package_id=notice.package_id,
            total=str(notice.total),
        )


class BrevoPurchaseStats:
    def __init__(self, *, api_key: str, store_id: str = "cantinaxl") -> None:
        self._api_key = api_key
        self._store_id = store_id

    @classmethod
    def from_env(cls) -> "BrevoPurchaseStats":
        api_key = os.getenv("BREVO_API_KEY", "").strip()
        if not api_key:
            raise ValueError("BREVO_API_KEY is required when CANTINA_STATS_ADAPTER=brevo")
        return cls(api_key=api_key, store_id=os.getenv("CANTINA_STATS_STORE_ID", "cantinaxl"))

    def build_payload(self, notice: PurchaseNotice) -> dict:
        now = datetime.now(timezone.utc).isoformat()
        return {
            "historical": True,
            "orders": [
                {
                    "identifiers": {"email_id": notice.email},
                    "id": notice.order_id,
                    "createdAt": now,
                    "updatedAt": now,
                    "status": "completed",
                    "amount": float(notice.total),
                    "storeId": self._store_id,
                    "coupons": [notice.coupon or ""],
                    "products": [
                        {
                            "productId": notice.package_id,
                            "quantity": 1,
                            "price": float(notice.package_price),
                        }
                    ],
                }
            ],
        }

    def register_purchase(self, notice: PurchaseNotice) -> None:
        req = urllib.request.Request(f"{BREVO_API_URL}/orders/status/batch", method="POST")
        req.add_header("api-key", self._api_key)
        req.add_header("Accept", "application/json")
        req.add_header("Content-Type", "application/json")

        body = json.dumps(self.build_payload(notice)).encode("utf-8")
        try:
            with urllib.request.urlopen(req, data=body, timeout=15) as resp:
                resp.read()
        except urllib.error.HTTPError as e:
            raw = e.read().decode("utf-8", errors="replace")
            raise RuntimeError(f"Brevo HTTP {e.code}: {raw[:200]}") from e

        logger.info("purchase_registered_brevo", order_id=notice.order_id)


def get_confirmation_sender() -> ConfirmationSender:
    return LogConfirmationSender()


def get_purchase_stats() -> PurchaseStats:
    provider = os.getenv("CANTINA_STATS_ADAPTER", "log").strip().lower()

    if provider == "log":
        return LogPurchaseStats()

    if provider == "brevo":
        return BrevoPurchaseStats.from_env()

    raise ValueError(f"Unknown CANTINA_STATS_ADAPTER={provider!r}. Expected log or brevo.")


def purchase_notice(order: Order, payment: PaymentOrder) -> PurchaseNotice:
    package = order.package_data or {}
    address = order.delivery_address_data or {}
    return PurchaseNotice(
        order_id=order.id,
        user_id=order.user_id,
        payment_order_id=payment.id,
        total=Decimal(str(order.total)),
        currency=payment.currency,
        package_id=str(package.get("id", "")),
        package_name=str(package.get("name", "")),
        package_price=Decimal(str(package.get("price", order.total))),
        email=address.get("email"),
        coupon=order.discount_code_id,
    )


def dispatch_purchase_side_effects(
    notice: PurchaseNotice,
    *,
    confirmation: ConfirmationSender,
    stats: PurchaseStats,
) -> list[str]:
    """Run post-payment side effects. Failures are logged and never raised.

    Returns the names of the side effects that failed.
    """

    failed: list[str] = []
    actions = (
        ("order_confirmation", confirmation.send_order_confirmation),
        ("purchase_stats", stats.register_purchase),
    )
    for name, action in actions:
        try:
            action(notice)
        except Exception:
            logger.exception("side_effect_failed", side_effect=name, order_id=notice.order_id)
            failed.append(name)
    return failed
