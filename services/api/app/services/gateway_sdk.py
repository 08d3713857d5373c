from __future__ import annotations

from typing import Any, Protocol

from services.api.app.errors import GatewayError
from services.api.app.log import get_logger
from services.api.app.services.gateway_base import (
    PaymentLink,
    PaymentLinkRequest,
    link_from_gateway,
)
from services.api.app.services.signature import SignatureVerifier

logger = get_logger("gateway_sdk")


class PaymentCardClient(Protocol):
    def create_payment_card(self, payload: dict[str, Any]) -> dict[str, Any]: ...


class SdkGatewayAdapter:
    """Pass-through to a vendor SDK client supplied by the caller."""

    vendor = "TROPIPAY_SDK"

    def __init__(self, client: PaymentCardClient, verifier: SignatureVerifier) -> None:
        self._client = client
        self._verifier = verifier

    def create_payment_link(self, request: PaymentLinkRequest) -> PaymentLink:
        try:
            raw = self._client.create_payment_card(request.to_gateway())
        except GatewayError:
            raise
        except Exception as e:
            logger.error("sdk_payment_link_failed", reference=request.reference, error=str(e))
            raise GatewayError(f"Gateway SDK error: {e}") from e

        return link_from_gateway(dict(raw or {}), request)

    def verify_payment(self, amount: int | str, bank_order_code: str, signature: str) -> bool:
        return self._verifier.verify(amount, bank_order_code, signature)
