from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol

from services.api.app.errors import GatewayError

SHORT_URL_BASE = "https://tppay.me"

# Fixed paymentcard options: single-use direct payment for a service, valid one day.
PAYMENT_CARD_DEFAULTS: dict[str, Any] = {
    "directPayment": True,
    "favorite": False,
    "singleUse": True,
    "reasonId": 4,
    "expirationDays": 1,
}


@dataclass(frozen=True, slots=True)
class ClientInfo:
    name: str
    last_name: str
    address: str
    phone: str
    email: str
    country_iso: str | None = None
    country_id: int = 1

    def to_gateway(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "lastName": self.last_name,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "countryId": self.country_id,
            "termsAndConditions": True,
        }
        if self.country_iso:
            out["countryIso"] = self.country_iso
        return out


@dataclass(frozen=True, slots=True)
class PaymentLinkRequest:
    reference: str
    concept: str
    amount: int  # minor units
    currency: str
    description: str = ""
    url_success: str | None = None
    url_failed: str | None = None
    url_notification: str | None = None
    client: ClientInfo | None = None
    lang: str = "es"

    def to_gateway(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "reference": self.reference,
            "concept": self.concept,
            "description": self.description,
            "currency": self.currency,
            "amount": int(round(self.amount)),
            "lang": self.lang,
            "urlSuccess": self.url_success,
            "urlFailed": self.url_failed,
            "urlNotification": self.url_notification,
            **PAYMENT_CARD_DEFAULTS,
        }
        if self.client is not None:
            payload["client"] = self.client.to_gateway()
        return payload


@dataclass(frozen=True, slots=True)
class PaymentLink:
    id: str
    short_url: str
    amount: int
    currency: str
    raw: dict[str, Any] = field(default_factory=dict)

    def to_response(self) -> dict[str, Any]:
        return {**self.raw, "id": self.id, "shortUrl": self.short_url}


def short_url_for(raw: dict[str, Any]) -> str:
    short_url = raw.get("shortUrl")
    if short_url:
        return str(short_url)
    return f"{SHORT_URL_BASE}/{raw.get('hash', '')}"


def link_from_gateway(raw: dict[str, Any], request: PaymentLinkRequest) -> PaymentLink:
    link_id = raw.get("id") or raw.get("_id")
    if not link_id:
        raise GatewayError(f"Gateway response missing payment card id: {raw!r}")

    return PaymentLink(
        id=str(link_id),
        short_url=short_url_for(raw),
        amount=int(raw.get("amount", request.amount)),
        currency=str(raw.get("currency", request.currency)),
        raw=raw,
    )


class PaymentGatewayAdapter(Protocol):
    vendor: str

    def create_payment_link(self, request: PaymentLinkRequest) -> PaymentLink: ...

    def verify_payment(self, amount: int | str, bank_order_code: str, signature: str) -> bool: ...
