from __future__ import annotations

from collections.abc import Generator

from fastapi import Depends, Header, HTTPException, Request
from services.api.app.config import api_tokens
from services.api.app.db.database import db_session
from services.api.app.services.gateway_base import PaymentGatewayAdapter
from services.api.app.services.ledger import PaymentOrderLedger
from services.api.app.services.notifications import ConfirmationSender, PurchaseStats
from sqlalchemy.orm import Session


def get_db() -> Generator[Session, None, None]:
    db = db_session()
    try:
        yield db
    finally:
        db.close()


def get_ledger(db: Session = Depends(get_db)) -> PaymentOrderLedger:
    return PaymentOrderLedger(db)


def get_gateway(request: Request) -> PaymentGatewayAdapter:
    # Selected once at startup; see main._startup.
    return request.app.state.gateway


def get_confirmation_sender(request: Request) -> ConfirmationSender:
    return request.app.state.confirmation


def get_purchase_stats(request: Request) -> PurchaseStats:
    return request.app.state.stats


def get_current_user(authorization: str | None = Header(default=None)) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(status_code=401, detail="Unauthorized")

    user_id = api_tokens().get(token.strip())
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id
