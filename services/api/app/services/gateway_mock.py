from __future__ import annotations

import secrets
from datetime import datetime, timezone
from uuid import uuid4

from services.api.app.log import get_logger
from services.api.app.services.gateway_base import (
    SHORT_URL_BASE,
    PaymentLink,
    PaymentLinkRequest,
)

logger = get_logger("gateway_mock")

# Gateway paymentcard state for "created, awaiting payment".
PENDING_STATE = 1


class MockGatewayAdapter:
    vendor = "TROPIPAY_MOCK"

    def create_payment_link(self, request: PaymentLinkRequest) -> PaymentLink:
        link_id = str(uuid4())
        link_hash = secrets.token_hex(4)
        short_url = f"{SHORT_URL_BASE}/{link_hash}"
        now = datetime.now(timezone.utc).isoformat()

        raw = {
            **request.to_gateway(),
            "id": link_id,
            "userId": str(uuid4()),
            "state": PENDING_STATE,
            "hash": link_hash,
            "shortUrl": short_url,
            "paymentUrl": short_url,
            "rawUrlPayment": short_url,
            "bankOrderCode": str(secrets.randbelow(10**12)).zfill(12),
            "destinationCurrency": request.currency,
            "createdAt": now,
            "updatedAt": now,
        }
        logger.info("mock_payment_link_created", reference=request.reference, link_id=link_id)

        return PaymentLink(
            id=link_id,
            short_url=short_url,
            amount=request.amount,
            currency=request.currency,
            raw=raw,
        )

    def verify_payment(self, amount: int | str, bank_order_code: str, signature: str) -> bool:
        del amount, bank_order_code, signature
        return True
