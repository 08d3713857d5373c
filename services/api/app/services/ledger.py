from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from decimal import Decimal
from uuid import uuid4

from packages.shared.schemas.payment_v1 import (
    DeliveryMealStatusV1,
    DeliveryStatusV1,
    OrderStatusV1,
    PaymentMethodV1,
    PaymentStatusV1,
)
from services.api.app.db.models import (
    DeliveryMeal,
    Order,
    OrderDelivery,
    PaymentOrder,
    utc_now,
)
from services.api.app.errors import (
    InvalidTransition,
    NotCancellable,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from services.api.app.log import get_logger
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

logger = get_logger("ledger")

PENDING = PaymentStatusV1.PENDING.value
COMPLETED = PaymentStatusV1.COMPLETED.value
FAILED = PaymentStatusV1.FAILED.value

# Forward order of the non-failed delivery states.
_DELIVERY_RANK = {
    DeliveryStatusV1.PENDING.value: 0,
    DeliveryStatusV1.IN_PROGRESS.value: 1,
    DeliveryStatusV1.READY.value: 2,
    DeliveryStatusV1.DELIVERED.value: 3,
}
_TERMINAL_DELIVERY = {DeliveryStatusV1.DELIVERED.value, DeliveryStatusV1.FAILED.value}


@dataclass(frozen=True, slots=True)
class Settlement:
    payment: PaymentOrder
    # False when the attempt was already in the requested terminal state.
    applied: bool


class PaymentOrderLedger:
    """Owns payment attempt state and the owning order's status.

    Every transition is a conditional UPDATE on the row's current status, so two
    concurrent webhook deliveries for the same attempt cannot both apply.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("ledger_store_error", error=str(e))
            raise PersistenceError(f"Store error: {e}") from e
        except Exception:
            self.db.rollback()
            raise

    # Lookups

    def get_order(self, order_id: str) -> Order:
        order = self.db.get(Order, order_id, populate_existing=True)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def get_payment_order(self, payment_order_id: str) -> PaymentOrder:
        payment = self.db.get(PaymentOrder, payment_order_id, populate_existing=True)
        if payment is None:
            raise NotFoundError(f"Payment order {payment_order_id} not found")
        return payment

    def find_by_reference(self, reference: str) -> PaymentOrder | None:
        return self.db.scalars(
            select(PaymentOrder)
            .where(PaymentOrder.reference == reference)
            .order_by(PaymentOrder.created_at.desc())
            .limit(1)
        ).first()

    def latest_for_order(self, order_id: str) -> PaymentOrder | None:
        return self.db.scalars(
            select(PaymentOrder)
            .where(PaymentOrder.order_id == order_id)
            .order_by(PaymentOrder.created_at.desc())
            .limit(1)
        ).first()

    def payment_orders_for(self, order_id: str) -> list[PaymentOrder]:
        return list(
            self.db.scalars(
                select(PaymentOrder)
                .where(PaymentOrder.order_id == order_id)
                .order_by(PaymentOrder.created_at.desc())
            )
        )

    def deliveries_for(self, order_id: str) -> list[OrderDelivery]:
        return list(
            self.db.scalars(
                select(OrderDelivery)
                .where(OrderDelivery.order_id == order_id)
                .order_by(OrderDelivery.scheduled_date.asc())
            )
        )

    def meals_for(self, delivery_id: str) -> list[DeliveryMeal]:
        return list(
            self.db.scalars(
                select(DeliveryMeal)
                .where(DeliveryMeal.delivery_id == delivery_id)
                .order_by(DeliveryMeal.position.asc())
            )
        )

    # Payment attempts

    def create_payment_order(
        self,
        order_id: str,
        method: str,
        amount: Decimal,
        currency: str,
        description: str | None = None,
    ) -> PaymentOrder:
        try:
            method = PaymentMethodV1(method).value
        except ValueError as e:
            raise ValidationError(f"Unsupported payment method: {method!r}") from e

        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValidationError("Payment amount must be positive")

        with self._transaction():
            if self.db.get(Order, order_id) is None:
                raise PersistenceError(f"Cannot create payment order: order {order_id} missing")

            payment = PaymentOrder(
                id=uuid4().hex,
                order_id=order_id,
                payment_method=method,
                amount=amount,
                currency=currency,
                description=description,
                status=PENDING,
                created_at=utc_now(),
            )
            self.db.add(payment)

        logger.info(
            "payment_order_created",
            payment_order_id=payment.id,
            order_id=order_id,
            method=method,
            amount=str(amount),
            currency=currency,
        )
        return payment

    def attach_gateway_link(
        self, payment_order_id: str, reference: str, short_url: str | None
    ) -> PaymentOrder:
        with self._transaction():
            self.db.execute(
                update(PaymentOrder)
                .where(PaymentOrder.id == payment_order_id, PaymentOrder.status == PENDING)
                .values(reference=reference, short_url=short_url)
                .execution_options(synchronize_session=False)
            )
        return self.get_payment_order(payment_order_id)

    def mark_completed(
        self, payment_order_id: str, gateway_reference: str | None = None
    ) -> PaymentOrder:
        return self._complete(payment_order_id, gateway_reference).payment

    def mark_failed(self, payment_order_id: str, reason: str | None = None) -> PaymentOrder:
        return self._fail(payment_order_id, reason).payment

    def settle(
        self,
        payment_order_id: str,
        *,
        success: bool,
        gateway_reference: str | None = None,
        reason: str | None = None,
    ) -> Settlement:
        if success:
            return self._complete(payment_order_id, gateway_reference)
        return self._fail(payment_order_id, reason)

    def _complete(self, payment_order_id: str, gateway_reference: str | None) -> Settlement:
        current = self.get_payment_order(payment_order_id)
        if current.status == COMPLETED:
            return Settlement(current, applied=False)
        if current.status == FAILED:
            raise InvalidTransition(f"Payment order {payment_order_id} already failed")

        other = aliased(PaymentOrder)
        already_settled = (
            select(other.id)
            .where(
                other.order_id == current.order_id,
                other.status == COMPLETED,
                other.id != current.id,
            )
            .exists()
        )
        values: dict = {"status": COMPLETED, "completed_at": utc_now(), "error_message": None}
        if gateway_reference and not current.reference:
            values["reference"] = gateway_reference

        with self._transaction():
            result = self.db.execute(
                update(PaymentOrder)
                .where(
                    PaymentOrder.id == payment_order_id,
                    PaymentOrder.status == PENDING,
                    ~already_settled,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            applied = result.rowcount == 1

        payment = self.get_payment_order(payment_order_id)
        if applied:
            logger.info(
                "payment_order_completed",
                payment_order_id=payment_order_id,
                order_id=payment.order_id,
            )
            return Settlement(payment, applied=True)

        # Lost the race, or another attempt already settled the order.
        if payment.status == COMPLETED:
            return Settlement(payment, applied=False)
        if payment.status == FAILED:
            raise InvalidTransition(f"Payment order {payment_order_id} already failed")
        raise InvalidTransition(
            f"Order {payment.order_id} already has a completed payment attempt"
        )

    def _fail(self, payment_order_id: str, reason: str | None) -> Settlement:
        current = self.get_payment_order(payment_order_id)
        if current.status == FAILED:
            return Settlement(current, applied=False)
        if current.status == COMPLETED:
            raise InvalidTransition(f"Payment order {payment_order_id} already completed")

        with self._transaction():
            result = self.db.execute(
                update(PaymentOrder)
                .where(PaymentOrder.id == payment_order_id, PaymentOrder.status == PENDING)
                .values(status=FAILED, error_message=reason)
                .execution_options(synchronize_session=False)
            )
            applied = result.rowcount == 1

        payment = self.get_payment_order(payment_order_id)
        if applied:
            logger.info(
                "payment_order_failed",
                payment_order_id=payment_order_id,
                order_id=payment.order_id,
                reason=reason,
            )
            return Settlement(payment, applied=True)

        if payment.status == FAILED:
            return Settlement(payment, applied=False)
        raise InvalidTransition(f"Payment order {payment_order_id} already completed")

    # Order status

    def reconcile_order_status(self, order_id: str) -> str:
        """Move the order forward based on its deliveries.

        completed iff every delivery is delivered; processing once any delivery has
        started. Redundant calls change nothing.
        """

        order = self.get_order(order_id)
        if order.status in (OrderStatusV1.COMPLETED.value, OrderStatusV1.CANCELLED.value):
            return order.status

        statuses = [d.status for d in self.deliveries_for(order_id)]
        started = {
            DeliveryStatusV1.IN_PROGRESS.value,
            DeliveryStatusV1.READY.value,
            DeliveryStatusV1.DELIVERED.value,
        }

        with self._transaction():
            if statuses and all(s == DeliveryStatusV1.DELIVERED.value for s in statuses):
                result = self.db.execute(
                    update(Order)
                    .where(
                        Order.id == order_id,
                        Order.status.in_(
                            [OrderStatusV1.PENDING.value, OrderStatusV1.PROCESSING.value]
                        ),
                    )
                    .values(status=OrderStatusV1.COMPLETED.value)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    logger.info("order_completed", order_id=order_id)
            elif any(s in started for s in statuses):
                self.db.execute(
                    update(Order)
                    .where(Order.id == order_id, Order.status == OrderStatusV1.PENDING.value)
                    .values(status=OrderStatusV1.PROCESSING.value)
                    .execution_options(synchronize_session=False)
                )

        return self.get_order(order_id).status

    def cancel(self, order_id: str) -> Order:
        order = self.get_order(order_id)
        if order.status != OrderStatusV1.PENDING.value:
            raise NotCancellable(order_id, f"order is {order.status}")

        deliveries = self.deliveries_for(order_id)
        if any(d.status != DeliveryStatusV1.PENDING.value for d in deliveries):
            raise NotCancellable(order_id, "a delivery has already started")

        touched_meal = (
            select(DeliveryMeal.id)
            .join(OrderDelivery, OrderDelivery.id == DeliveryMeal.delivery_id)
            .where(
                OrderDelivery.order_id == order_id,
                DeliveryMeal.status != DeliveryMealStatusV1.PENDING.value,
            )
            .exists()
        )
        touched_delivery = (
            select(OrderDelivery.id)
            .where(
                OrderDelivery.order_id == order_id,
                OrderDelivery.status != DeliveryStatusV1.PENDING.value,
            )
            .exists()
        )

        with self._transaction():
            result = self.db.execute(
                update(Order)
                .where(
                    Order.id == order_id,
                    Order.status == OrderStatusV1.PENDING.value,
                    ~touched_delivery,
                    ~touched_meal,
                )
                .values(status=OrderStatusV1.CANCELLED.value)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotCancellable(order_id, "a delivery or meal has already been prepared")

            # Deliveries have no cancelled state; failed is the closest terminal one.
            self.db.execute(
                update(OrderDelivery)
                .where(
                    OrderDelivery.order_id == order_id,
                    OrderDelivery.status == DeliveryStatusV1.PENDING.value,
                )
                .values(status=DeliveryStatusV1.FAILED.value)
                .execution_options(synchronize_session=False)
            )

        logger.info("order_cancelled", order_id=order_id, deliveries=len(deliveries))
        return self.get_order(order_id)

    # Deliveries

    def get_delivery(self, delivery_id: str) -> OrderDelivery:
        delivery = self.db.get(OrderDelivery, delivery_id, populate_existing=True)
        if delivery is None:
            raise NotFoundError(f"Delivery {delivery_id} not found")
        return delivery

    def update_delivery_status(
        self, delivery_id: str, status: str, notes: str | None = None
    ) -> OrderDelivery:
        try:
            status = DeliveryStatusV1(status).value
        except ValueError as e:
            raise ValidationError(f"Unknown delivery status: {status!r}") from e

        delivery = self.get_delivery(delivery_id)
        current = delivery.status

        if current == status:
            if notes is not None:
                with self._transaction():
                    delivery.notes = notes
            return self.get_delivery(delivery_id)

        if current in _TERMINAL_DELIVERY:
            raise InvalidTransition(f"Delivery {delivery_id} is already {current}")

        moving_back = (
            status != DeliveryStatusV1.FAILED.value
            and _DELIVERY_RANK[status] < _DELIVERY_RANK[current]
        )
        if moving_back:
            raise InvalidTransition(f"Delivery {delivery_id} cannot go from {current} to {status}")

        if status == DeliveryStatusV1.READY.value:
            meals = self.meals_for(delivery_id)
            if any(m.status != DeliveryMealStatusV1.COMPLETED.value for m in meals):
                raise InvalidTransition(
                    f"Delivery {delivery_id} cannot be ready until every meal is completed"
                )

        if status == DeliveryStatusV1.DELIVERED.value and current != DeliveryStatusV1.READY.value:
            raise InvalidTransition(f"Delivery {delivery_id} must be ready before delivered")

        values: dict = {"status": status}
        if status == DeliveryStatusV1.DELIVERED.value:
            values["delivered_at"] = utc_now()
        if notes is not None:
            values["notes"] = notes

        with self._transaction():
            result = self.db.execute(
                update(OrderDelivery)
                .where(OrderDelivery.id == delivery_id, OrderDelivery.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise InvalidTransition(f"Delivery {delivery_id} changed concurrently")

        logger.info(
            "delivery_status_changed",
            delivery_id=delivery_id,
            order_id=delivery.order_id,
            from_status=current,
            to_status=status,
        )
        self.reconcile_order_status(delivery.order_id)
        return self.get_delivery(delivery_id)

    def complete_delivery_meal(self, delivery_id: str, delivery_meal_id: str) -> DeliveryMeal:
        delivery = self.get_delivery(delivery_id)
        if delivery.status in _TERMINAL_DELIVERY:
            raise InvalidTransition(f"Delivery {delivery_id} is already {delivery.status}")

        meal = self.db.get(DeliveryMeal, delivery_meal_id, populate_existing=True)
        if meal is None or meal.delivery_id != delivery_id:
            raise NotFoundError(f"Meal {delivery_meal_id} not found in delivery {delivery_id}")

        with self._transaction():
            self.db.execute(
                update(DeliveryMeal)
                .where(
                    DeliveryMeal.id == delivery_meal_id,
                    DeliveryMeal.status == DeliveryMealStatusV1.PENDING.value,
                )
                .values(status=DeliveryMealStatusV1.COMPLETED.value, completed_at=utc_now())
                .execution_options(synchronize_session=False)
            )

        meals = self.meals_for(delivery_id)
        if all(m.status == DeliveryMealStatusV1.COMPLETED.value for m in meals):
            with self._transaction():
                self.db.execute(
                    update(OrderDelivery)
                    .where(
                        OrderDelivery.id == delivery_id,
                        OrderDelivery.status.in_(
                            [DeliveryStatusV1.PENDING.value, DeliveryStatusV1.IN_PROGRESS.value]
                        ),
                    )
                    .values(status=DeliveryStatusV1.READY.value)
                    .execution_options(synchronize_session=False)
                )
            self.reconcile_order_status(delivery.order_id)

        return self.db.get(DeliveryMeal, delivery_meal_id, populate_existing=True)
