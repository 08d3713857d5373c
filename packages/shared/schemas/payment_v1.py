"""Shared order/payment status schema (v1).

The storefront's thank-you page polls payment state with these shapes; the API
returns them from ``GET /api/payments/orders/{order_id}``.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class OrderStatusV1(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatusV1(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class DeliveryStatusV1(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    READY = "ready"
    DELIVERED = "delivered"
    FAILED = "failed"


class DeliveryMealStatusV1(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class PaymentMethodV1(str, Enum):
    TROPIPAY = "tropipay"
    CARD = "card"


TERMINAL_PAYMENT_STATUSES = frozenset({PaymentStatusV1.COMPLETED, PaymentStatusV1.FAILED})


class PaymentOrderV1(BaseModel):
    id: str
    order_id: str
    payment_method: PaymentMethodV1
    amount: str
    currency: str
    description: str | None = None
    reference: str | None = None
    short_url: str | None = None
    status: PaymentStatusV1
    error_message: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class OrderPaymentsV1(BaseModel):
    order_id: str
    order_status: OrderStatusV1
    payment_orders: list[PaymentOrderV1] = Field(default_factory=list)
