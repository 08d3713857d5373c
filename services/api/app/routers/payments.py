from __future__ import annotations

import json
from decimal import Decimal

from fastapi import APIRouter, Depends, Header, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from packages.shared.schemas.payment_v1 import OrderPaymentsV1, PaymentOrderV1
from services.api.app.config import GatewaySettings, is_production
from services.api.app.db.deps import (
    get_confirmation_sender,
    get_current_user,
    get_gateway,
    get_ledger,
    get_purchase_stats,
)
from services.api.app.db.models import PaymentOrder
from services.api.app.errors import CantinaError, GatewayError, NotFoundError
from services.api.app.log import get_logger
from services.api.app.models.payment import (
    CheckoutRequest,
    CheckoutResponse,
    CreatePaymentLinkRequest,
    ProcessCardRequest,
    ProcessCardResponse,
)
from services.api.app.routers.http_errors import raise_http_error
from services.api.app.services.checkout import CheckoutService
from services.api.app.services.gateway_base import PaymentGatewayAdapter, PaymentLinkRequest
from services.api.app.services.ledger import PaymentOrderLedger
from services.api.app.services.notifications import ConfirmationSender, PurchaseStats
from services.api.app.services.webhook import WebhookHandler

logger = get_logger("payments_api")

router = APIRouter(prefix="/api/payments")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, proxy-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def _payment_out(payment: PaymentOrder) -> PaymentOrderV1:
    return PaymentOrderV1(
        id=payment.id,
        order_id=payment.order_id,
        payment_method=payment.payment_method,
        amount=str(Decimal(str(payment.amount)).quantize(Decimal("0.01"))),
        currency=payment.currency,
        description=payment.description,
        reference=payment.reference,
        short_url=payment.short_url,
        status=payment.status,
        error_message=payment.error_message,
        created_at=payment.created_at,
        completed_at=payment.completed_at,
    )


def _checkout_service(
    ledger: PaymentOrderLedger, gateway: PaymentGatewayAdapter
) -> CheckoutService:
    settings = GatewaySettings.from_env()
    notification_url = settings.resolve_notification_url(None)
    return CheckoutService(ledger, gateway, notification_url=notification_url)


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_test_mode: str | None = Header(default=None),
    ledger: PaymentOrderLedger = Depends(get_ledger),
    gateway: PaymentGatewayAdapter = Depends(get_gateway),
    confirmation: ConfirmationSender = Depends(get_confirmation_sender),
    stats: PurchaseStats = Depends(get_purchase_stats),
) -> JSONResponse:
    try:
        payload = json.loads(await request.body() or b"null")
    except ValueError:
        logger.warning("webhook_body_not_json")
        return JSONResponse(status_code=400, content={"message": "Malformed webhook payload"})

    handler = WebhookHandler(
        ledger,
        gateway,
        confirmation=confirmation,
        stats=stats,
        allow_test_mode=not is_production(),
    )
    test_mode = (x_test_mode or "").strip().lower() == "true"
    result = await run_in_threadpool(handler.handle, payload, test_mode=test_mode)
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.post("/create-payment-link", response_model=None)
def create_payment_link(
    payload: CreatePaymentLinkRequest,
    response: Response,
    user_id: str = Depends(get_current_user),
    gateway: PaymentGatewayAdapter = Depends(get_gateway),
) -> dict | JSONResponse:
    response.headers.update(NO_CACHE_HEADERS)

    missing = [
        name
        for name in ("reference", "concept", "amount", "currency")
        if not getattr(payload, name)
    ]
    if missing:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": f"Missing required fields: {', '.join(missing)}"},
            headers=NO_CACHE_HEADERS,
        )

    settings = GatewaySettings.from_env()
    request = PaymentLinkRequest(
        reference=payload.reference,
        concept=payload.concept,
        amount=payload.amount,
        currency=payload.currency,
        description=payload.description,
        url_success=payload.url_success,
        url_failed=payload.url_failed,
        url_notification=settings.resolve_notification_url(payload.url_notification),
        client=payload.client.to_client_info() if payload.client else None,
    )

    try:
        link = gateway.create_payment_link(request)
    except GatewayError as e:
        logger.error("payment_link_failed", reference=payload.reference, error=str(e))
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Error creating payment link"},
            headers=NO_CACHE_HEADERS,
        )

    logger.info("payment_link_created", reference=payload.reference, user_id=user_id)
    return {"success": True, **link.to_response()}


@router.post("/checkout", response_model=CheckoutResponse)
def checkout(
    payload: CheckoutRequest,
    user_id: str = Depends(get_current_user),
    ledger: PaymentOrderLedger = Depends(get_ledger),
    gateway: PaymentGatewayAdapter = Depends(get_gateway),
) -> CheckoutResponse:
    service = _checkout_service(ledger, gateway)
    try:
        result = service.start_gateway_checkout(
            payload.order_id,
            user_id=user_id,
            url_success=payload.url_success,
            url_failed=payload.url_failed,
            client=payload.client.to_client_info() if payload.client else None,
            currency=payload.currency,
        )
    except CantinaError as e:
        raise_http_error(e)

    return CheckoutResponse(
        payment_order_id=result.payment_order.id,
        order_id=result.payment_order.order_id,
        status=result.payment_order.status,
        short_url=result.link.short_url,
        payment_link=result.link.to_response(),
    )


@router.post("/process-card", response_model=ProcessCardResponse)
def process_card(
    payload: ProcessCardRequest,
    user_id: str = Depends(get_current_user),
    ledger: PaymentOrderLedger = Depends(get_ledger),
    gateway: PaymentGatewayAdapter = Depends(get_gateway),
    confirmation: ConfirmationSender = Depends(get_confirmation_sender),
    stats: PurchaseStats = Depends(get_purchase_stats),
) -> ProcessCardResponse:
    service = _checkout_service(ledger, gateway)
    try:
        payment = service.process_card(
            payload.order_id,
            user_id=user_id,
            card_number=payload.card_number,
            confirmation=confirmation,
            stats=stats,
        )
    except CantinaError as e:
        raise_http_error(e)

    return ProcessCardResponse(
        success=True,
        payment_order_id=payment.id,
        transaction_id=payment.reference,
        amount=str(payment.amount),
        status=payment.status,
    )


@router.get("/orders/{order_id}", response_model=OrderPaymentsV1)
def get_order_payments(
    order_id: str,
    user_id: str = Depends(get_current_user),
    ledger: PaymentOrderLedger = Depends(get_ledger),
) -> OrderPaymentsV1:
    try:
        order = ledger.get_order(order_id)
    except CantinaError as e:
        raise_http_error(e)
    if order.user_id != user_id:
        raise_http_error(NotFoundError(f"Order {order_id} not found"))

    return OrderPaymentsV1(
        order_id=order.id,
        order_status=order.status,
        payment_orders=[_payment_out(p) for p in ledger.payment_orders_for(order_id)],
    )
