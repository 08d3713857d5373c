from __future__ import annotations

from collections.abc import Iterator
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from services.api.app.config import GatewaySettings
from services.api.app.db.models import Order, PaymentOrder
from services.api.app.errors import AuthError, PersistenceError
from services.api.app.services.gateway_rest import RestGatewayAdapter
from services.api.app.services.ledger import PaymentOrderLedger
from services.api.app.services.notifications import PurchaseNotice
from services.api.app.services.orders import create_order
from services.api.app.services.scheduling import MealRef, MealSelection, PackageSpec
from services.api.app.services.signature import compute_signature
from services.api.app.services.webhook import WebhookHandler
from sqlalchemy.orm import Session

CLIENT_ID = "cid"
CLIENT_SECRET = "csecret"


class RecordingConfirmation:
    def __init__(self) -> None:
        self.sent: list[PurchaseNotice] = []

    def send_order_confirmation(self, notice: PurchaseNotice) -> None:
        self.sent.append(notice)


class RecordingStats:
    def __init__(self, fail: bool = False) -> None:
        self.registered: list[PurchaseNotice] = []
        self._fail = fail

    def register_purchase(self, notice: PurchaseNotice) -> None:
        if self._fail:
            raise RuntimeError("stats backend down")
        self.registered.append(notice)


@pytest.fixture()
def db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Session]:
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'webhook.db'}")
    monkeypatch.setenv("CANTINA_DB_AUTO_CREATE", "true")

    from services.api.app.db.database import db_session
    from services.api.app.db.init_db import init_db

    init_db()
    session = db_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def gateway() -> RestGatewayAdapter:
    return RestGatewayAdapter(GatewaySettings(client_id=CLIENT_ID, client_secret=CLIENT_SECRET))


def _pending_payment(db: Session) -> tuple[Order, PaymentOrder]:
    order, _ = create_order(
        db,
        user_id="u-1",
        package=PackageSpec(id="pack", name="Pack", meals=1),
        listed_price=Decimal("9.99"),
        selections=[MealSelection(MealRef("m-1", "Potaje"), 1)],
        delivery_address={"email": "ana@example.com"},
        today=date(2026, 3, 2),
    )
    ledger = PaymentOrderLedger(db)
    payment = ledger.create_payment_order(order.id, "tropipay", order.total, "EUR")
    ledger.attach_gateway_link(payment.id, "card-1", "https://tppay.me/abc")
    return order, ledger.get_payment_order(payment.id)


def _payload(
    reference: str, *, status: str = "OK", amount: int = 999, code: str = "BOC-1"
) -> dict:
    return {
        "status": status,
        "data": {
            "reference": reference,
            "originalCurrencyAmount": amount,
            "bankOrderCode": code,
            "signaturev3": compute_signature(amount, code, CLIENT_ID, CLIENT_SECRET),
        },
    }


def _handler(
    db: Session,
    gateway: RestGatewayAdapter,
    *,
    stats: RecordingStats | None = None,
    allow_test_mode: bool = False,
) -> tuple[WebhookHandler, RecordingConfirmation, RecordingStats]:
    confirmation = RecordingConfirmation()
    stats = stats or RecordingStats()
    handler = WebhookHandler(
        PaymentOrderLedger(db),
        gateway,
        confirmation=confirmation,
        stats=stats,
        allow_test_mode=allow_test_mode,
    )
    return handler, confirmation, stats


@pytest.mark.parametrize(
    "payload",
    [None, [], {"status": "OK"}, {"data": {}}, {"status": "OK", "data": "nope"}],
)
def test_malformed_payload_is_rejected(
    db: Session, gateway: RestGatewayAdapter, payload: object
) -> None:
    handler, _, _ = _handler(db, gateway)
    assert handler.handle(payload).status_code == 400


def test_invalid_signature_is_rejected(db: Session, gateway: RestGatewayAdapter) -> None:
    _, payment = _pending_payment(db)
    handler, confirmation, _ = _handler(db, gateway)

    payload = _payload(payment.reference)
    payload["data"]["signaturev3"] = "forged"
    result = handler.handle(payload)

    assert result.status_code == 400
    assert result.body["message"] == "Invalid signature"
    assert PaymentOrderLedger(db).get_payment_order(payment.id).status == "pending"
    assert confirmation.sent == []


def test_missing_signature_fields_are_rejected(db: Session, gateway: RestGatewayAdapter) -> None:
    _, payment = _pending_payment(db)
    handler, _, _ = _handler(db, gateway)

    payload = _payload(payment.reference)
    del payload["data"]["bankOrderCode"]

    assert handler.handle(payload).status_code == 400


def test_missing_credentials_fail_closed(db: Session) -> None:
    _, payment = _pending_payment(db)

    class Unconfigured:
        vendor = "TEST"

        def verify_payment(self, amount, bank_order_code, signature):
            raise AuthError("no credentials")

    handler, _, _ = _handler(db, Unconfigured())  # type: ignore[arg-type]
    assert handler.handle(_payload(payment.reference)).status_code == 400


def test_unknown_reference_is_not_found(db: Session, gateway: RestGatewayAdapter) -> None:
    handler, _, _ = _handler(db, gateway)
    assert handler.handle(_payload("nothing-here")).status_code == 404


def test_success_completes_and_fires_side_effects_once(
    db: Session, gateway: RestGatewayAdapter
) -> None:
    order, payment = _pending_payment(db)
    handler, confirmation, stats = _handler(db, gateway)

    first = handler.handle(_payload(payment.reference))
    second = handler.handle(_payload(payment.reference))

    assert first.status_code == 200
    assert first.body == {"message": "Payment completed", "orderStatus": "completed"}
    assert second.status_code == 200
    assert second.body["orderStatus"] == "completed"
    assert len(confirmation.sent) == 1
    assert len(stats.registered) == 1
    assert confirmation.sent[0].order_id == order.id
    assert confirmation.sent[0].email == "ana@example.com"


def test_failure_notification_marks_attempt_failed(
    db: Session, gateway: RestGatewayAdapter
) -> None:
    _, payment = _pending_payment(db)
    handler, confirmation, _ = _handler(db, gateway)

    result = handler.handle(_payload(payment.reference, status="KO"))

    assert result.status_code == 200
    assert result.body["orderStatus"] == "failed"
    assert confirmation.sent == []


def test_conflicting_notification_keeps_first_terminal_state(
    db: Session, gateway: RestGatewayAdapter
) -> None:
    _, payment = _pending_payment(db)
    handler, _, _ = _handler(db, gateway)

    handler.handle(_payload(payment.reference))
    late = handler.handle(_payload(payment.reference, status="KO"))

    assert late.status_code == 200
    assert late.body["orderStatus"] == "completed"
    assert PaymentOrderLedger(db).get_payment_order(payment.id).status == "completed"


def test_side_effect_failure_still_acknowledges(db: Session, gateway: RestGatewayAdapter) -> None:
    _, payment = _pending_payment(db)
    handler, confirmation, _ = _handler(db, gateway, stats=RecordingStats(fail=True))

    result = handler.handle(_payload(payment.reference))

    assert result.status_code == 200
    assert len(confirmation.sent) == 1


def test_reference_resolves_by_payment_order_id(db: Session, gateway: RestGatewayAdapter) -> None:
    _, payment = _pending_payment(db)
    handler, _, _ = _handler(db, gateway)

    assert handler.handle(_payload(payment.id)).status_code == 200


def test_reference_falls_back_to_latest_attempt_of_order(
    db: Session, gateway: RestGatewayAdapter
) -> None:
    order, payment = _pending_payment(db)
    handler, _, _ = _handler(db, gateway)

    result = handler.handle(_payload(order.id))

    assert result.status_code == 200
    assert PaymentOrderLedger(db).get_payment_order(payment.id).status == "completed"


def test_test_mode_bypass_requires_permission(db: Session, gateway: RestGatewayAdapter) -> None:
    _, payment = _pending_payment(db)
    payload = _payload(payment.reference)
    payload["data"]["signaturev3"] = "mock-signature"

    strict, _, _ = _handler(db, gateway)
    assert strict.handle(payload, test_mode=True).status_code == 400

    lenient, _, _ = _handler(db, gateway, allow_test_mode=True)
    assert lenient.handle(payload, test_mode=True).status_code == 200


def test_store_failure_answers_500(
    db: Session, gateway: RestGatewayAdapter, monkeypatch: pytest.MonkeyPatch
) -> None:
    _, payment = _pending_payment(db)
    handler, _, _ = _handler(db, gateway)

    def broken_settle(*args, **kwargs):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(PaymentOrderLedger, "settle", broken_settle)
    result = handler.handle(_payload(payment.reference))

    assert result.status_code == 500
