from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from packages.shared.schemas.payment_v1 import PaymentStatusV1
from services.api.app.db.models import PaymentOrder
from services.api.app.errors import AuthError, InvalidTransition, NotFoundError, PersistenceError
from services.api.app.log import get_logger
from services.api.app.services.gateway_base import PaymentGatewayAdapter
from services.api.app.services.ledger import PaymentOrderLedger
from services.api.app.services.notifications import (
    ConfirmationSender,
    PurchaseStats,
    dispatch_purchase_side_effects,
    purchase_notice,
)

logger = get_logger("webhook")

SUCCESS_STATUS = "OK"


@dataclass(frozen=True, slots=True)
class WebhookResult:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


def _reject(status_code: int, message: str) -> WebhookResult:
    return WebhookResult(status_code=status_code, body={"message": message})


class WebhookHandler:
    """Applies a gateway payment notification to the ledger.

    Gateways deliver at least once, so every step tolerates redelivery. 4xx answers
    mean "fix the payload"; anything after the state transition answers 200 so the
    gateway stops retrying.
    """

    def __init__(
        self,
        ledger: PaymentOrderLedger,
        gateway: PaymentGatewayAdapter,
        *,
        confirmation: ConfirmationSender,
        stats: PurchaseStats,
        allow_test_mode: bool = False,
    ) -> None:
        self._ledger = ledger
        self._gateway = gateway
        self._confirmation = confirmation
        self._stats = stats
        self._allow_test_mode = allow_test_mode

    def handle(self, payload: Any, *, test_mode: bool = False) -> WebhookResult:
        try:
            return self._handle(payload, test_mode=test_mode)
        except PersistenceError as e:
            logger.error("webhook_store_error", error=str(e))
            return _reject(500, "Store unavailable")
        except Exception:
            logger.exception("webhook_unexpected_error")
            return _reject(500, "Internal Server Error")

    def _handle(self, payload: Any, *, test_mode: bool) -> WebhookResult:
        if not isinstance(payload, dict) or "status" not in payload or "data" not in payload:
            logger.warning("webhook_malformed")
            return _reject(400, "Malformed webhook payload: status and data are required")

        data = payload["data"]
        if not isinstance(data, dict):
            return _reject(400, "Malformed webhook payload: data must be an object")

        status = payload["status"]
        reference = data.get("reference")
        logger.info("webhook_received", status=status, reference=reference)

        if test_mode and self._allow_test_mode:
            logger.warning("webhook_signature_bypassed", reference=reference)
        elif not self._signature_ok(data):
            return _reject(400, "Invalid signature")

        if not reference:
            return _reject(400, "Malformed webhook payload: data.reference is required")

        payment = self._resolve_payment(str(reference))
        if payment is None:
            return _reject(404, f"Payment order not found for reference {reference}")

        try:
            order = self._ledger.get_order(payment.order_id)
        except NotFoundError:
            return _reject(404, f"Order {payment.order_id} not found")

        success = status == SUCCESS_STATUS
        try:
            settlement = self._ledger.settle(
                payment.id,
                success=success,
                gateway_reference=data.get("bankOrderCode"),
                reason=None if success else f"Gateway reported status {status!r}",
            )
        except InvalidTransition as e:
            # Conflicting redelivery; the first terminal state stands.
            current = self._ledger.get_payment_order(payment.id)
            logger.warning(
                "webhook_conflicting_notification",
                payment_order_id=payment.id,
                current_status=current.status,
                notified_status=status,
                error=str(e),
            )
            return WebhookResult(
                status_code=200,
                body={"message": "Payment already settled", "orderStatus": current.status},
            )

        if settlement.payment.status == PaymentStatusV1.COMPLETED.value:
            self._ledger.reconcile_order_status(order.id)
            if settlement.applied:
                dispatch_purchase_side_effects(
                    purchase_notice(order, settlement.payment),
                    confirmation=self._confirmation,
                    stats=self._stats,
                )

        logger.info(
            "webhook_processed",
            payment_order_id=payment.id,
            order_id=order.id,
            payment_status=settlement.payment.status,
            applied=settlement.applied,
        )
        message = "Payment completed" if success else "Payment failed"
        return WebhookResult(
            status_code=200,
            body={"message": message, "orderStatus": settlement.payment.status},
        )

    def _signature_ok(self, data: dict[str, Any]) -> bool:
        signature = data.get("signaturev3") or data.get("signaturev2")
        amount = data.get("originalCurrencyAmount")
        bank_order_code = data.get("bankOrderCode")

        if not signature or amount is None or not bank_order_code:
            logger.warning("webhook_signature_missing_fields")
            return False

        try:
            verified = self._gateway.verify_payment(amount, str(bank_order_code), str(signature))
        except AuthError as e:
            logger.error("webhook_signature_unverifiable", error=str(e))
            return False

        if not verified:
            logger.warning("webhook_signature_invalid", bank_order_code=bank_order_code)
        return verified

    def _resolve_payment(self, reference: str) -> PaymentOrder | None:
        payment = self._ledger.find_by_reference(reference)
        if payment is not None:
            return payment

        try:
            return self._ledger.get_payment_order(reference)
        except NotFoundError:
            pass

        # Older links carried the order id as reference. With several attempts in
        # flight this can pick the wrong one.
        payment = self._ledger.latest_for_order(reference)
        if payment is not None:
            logger.warning(
                "webhook_reference_fallback",
                reference=reference,
                payment_order_id=payment.id,
            )
        return payment
