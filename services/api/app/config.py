from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal

DEFAULT_GATEWAY_BASE_URL = "https://tropipay-dev.herokuapp.com/api/v2"


def _parse_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "y"}


def _parse_tokens(raw: str) -> dict[str, str]:
    # "token-a:user-1,token-b:user-2"
    tokens: dict[str, str] = {}
    for pair in raw.split(","):
        token, sep, user_id = pair.strip().partition(":")
        if sep and token and user_id:
            tokens[token] = user_id
    return tokens


@dataclass(frozen=True, slots=True)
class GatewaySettings:
    adapter: str = "mock"
    mock_payment: bool = False
    client_id: str = ""
    client_secret: str = ""
    base_url: str = DEFAULT_GATEWAY_BASE_URL
    notification_url: str = ""
    environment: str = "development"
    notification_url_overrides: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        overrides = {
            key.removeprefix("CANTINA_NOTIFICATION_URL_").lower(): value
            for key, value in os.environ.items()
            if key.startswith("CANTINA_NOTIFICATION_URL_") and value.strip()
        }
        return cls(
            adapter=os.getenv("CANTINA_GATEWAY_ADAPTER", "mock").strip().lower(),
            mock_payment=_parse_bool(os.getenv("CANTINA_MOCK_PAYMENT", "false")),
            client_id=os.getenv("CANTINA_GATEWAY_CLIENT_ID", "").strip(),
            client_secret=os.getenv("CANTINA_GATEWAY_CLIENT_SECRET", "").strip(),
            base_url=os.getenv("CANTINA_GATEWAY_BASE_URL", DEFAULT_GATEWAY_BASE_URL).rstrip("/"),
            notification_url=os.getenv("CANTINA_NOTIFICATION_URL", "").strip(),
            environment=current_environment(),
            notification_url_overrides=overrides,
        )

    def resolve_notification_url(self, requested: str | None) -> str | None:
        override = self.notification_url_overrides.get(self.environment)
        return override or self.notification_url or requested


@dataclass(frozen=True, slots=True)
class PricingSettings:
    meal_unit_cost: Decimal = Decimal("6.00")
    delivery_unit_cost: Decimal = Decimal("2.50")
    margin_fraction: Decimal = Decimal("0.17")
    rounding_step: Decimal = Decimal("1")

    @classmethod
    def from_env(cls) -> "PricingSettings":
        return cls(
            meal_unit_cost=Decimal(os.getenv("CANTINA_MEAL_COST", "6.00")),
            delivery_unit_cost=Decimal(os.getenv("CANTINA_DELIVERY_COST", "2.50")),
            margin_fraction=Decimal(os.getenv("CANTINA_PRICE_MARGIN", "0.17")),
            rounding_step=Decimal(os.getenv("CANTINA_PRICE_STEP", "1")),
        )


def current_environment() -> str:
    return os.getenv("CANTINA_ENV", "development").strip().lower()


def is_production() -> bool:
    return current_environment() == "production"


def api_tokens() -> dict[str, str]:
    return _parse_tokens(os.getenv("CANTINA_API_TOKENS", ""))


def auto_create_tables() -> bool:
    return _parse_bool(os.getenv("CANTINA_DB_AUTO_CREATE", "true"))
