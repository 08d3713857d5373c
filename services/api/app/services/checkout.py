from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import uuid4

from packages.shared.schemas.payment_v1 import OrderStatusV1, PaymentMethodV1, PaymentStatusV1
from services.api.app.db.models import Order, PaymentOrder
from services.api.app.errors import (
    GatewayError,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from services.api.app.log import get_logger
from services.api.app.services.gateway_base import (
    ClientInfo,
    PaymentGatewayAdapter,
    PaymentLink,
    PaymentLinkRequest,
)
from services.api.app.services.ledger import PaymentOrderLedger
from services.api.app.services.notifications import (
    ConfirmationSender,
    PurchaseStats,
    dispatch_purchase_side_effects,
    purchase_notice,
)

logger = get_logger("checkout")

DEFAULT_CURRENCY = "EUR"

# Card numbers accepted by the synchronous test-card path.
TEST_CARD_NUMBERS = frozenset({"4242424242424242", "5555555555554444"})


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(str(amount)) * 100).to_integral_value())


@dataclass(frozen=True, slots=True)
class CheckoutResult:
    payment_order: PaymentOrder
    link: PaymentLink


class CheckoutService:
    def __init__(
        self,
        ledger: PaymentOrderLedger,
        gateway: PaymentGatewayAdapter,
        *,
        notification_url: str | None = None,
    ) -> None:
        self._ledger = ledger
        self._gateway = gateway
        self._notification_url = notification_url

    def _payable_order(self, order_id: str, user_id: str) -> Order:
        order = self._ledger.get_order(order_id)
        if order.user_id != user_id:
            # Other users' orders are reported as missing.
            raise NotFoundError(f"Order {order_id} not found")
        if order.status != OrderStatusV1.PENDING.value:
            raise InvalidTransition(f"Order {order_id} is {order.status} and cannot be paid")
        if any(
            p.status == PaymentStatusV1.COMPLETED.value
            for p in self._ledger.payment_orders_for(order_id)
        ):
            raise InvalidTransition(f"Order {order_id} is already paid")
        return order

    def start_gateway_checkout(
        self,
        order_id: str,
        *,
        user_id: str,
        url_success: str | None,
        url_failed: str | None,
        client: ClientInfo | None = None,
        currency: str = DEFAULT_CURRENCY,
    ) -> CheckoutResult:
        """Open a payment attempt for the order and obtain a hosted payment link.

        A gateway failure marks the attempt failed so the customer can retry with a
        fresh one.
        """

        order = self._payable_order(order_id, user_id)
        package_name = (order.package_data or {}).get("name", "")
        description = f"Pedido {package_name}".strip()

        payment = self._ledger.create_payment_order(
            order.id, PaymentMethodV1.TROPIPAY.value, order.total, currency, description
        )

        request = PaymentLinkRequest(
            reference=payment.id,
            concept=package_name or "Cantina order",
            amount=to_minor_units(order.total),
            currency=currency,
            description=description,
            url_success=url_success,
            url_failed=url_failed,
            url_notification=self._notification_url,
            client=client,
        )

        try:
            link = self._gateway.create_payment_link(request)
        except GatewayError as e:
            logger.error(
                "checkout_gateway_failed",
                order_id=order.id,
                payment_order_id=payment.id,
                error=str(e),
            )
            self._ledger.mark_failed(payment.id, str(e))
            raise

        payment = self._ledger.attach_gateway_link(payment.id, link.id, link.short_url)
        logger.info(
            "checkout_started",
            order_id=order.id,
            payment_order_id=payment.id,
            vendor=self._gateway.vendor,
        )
        return CheckoutResult(payment_order=payment, link=link)

    def process_card(
        self,
        order_id: str,
        *,
        user_id: str,
        card_number: str,
        confirmation: ConfirmationSender,
        stats: PurchaseStats,
        currency: str = DEFAULT_CURRENCY,
    ) -> PaymentOrder:
        """Settle an order synchronously against the test card list."""

        order = self._payable_order(order_id, user_id)
        payment = self._ledger.create_payment_order(
            order.id, PaymentMethodV1.CARD.value, order.total, currency, "Pago con tarjeta"
        )

        if card_number.replace(" ", "") not in TEST_CARD_NUMBERS:
            self._ledger.mark_failed(payment.id, "Card rejected")
            raise ValidationError("Card rejected")

        settlement = self._ledger.settle(
            payment.id, success=True, gateway_reference=f"card_{uuid4().hex[:9]}"
        )
        if settlement.applied:
            dispatch_purchase_side_effects(
                purchase_notice(order, settlement.payment),
                confirmation=confirmation,
                stats=stats,
            )
        return settlement.payment
