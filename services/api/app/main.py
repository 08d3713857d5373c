"""Cantina payments API service entrypoint."""

from fastapi import FastAPI

from services.api.app.db.init_db import init_db
from services.api.app.log import configure_logging
from services.api.app.routers.deliveries import router as deliveries_router
from services.api.app.routers.orders import router as orders_router
from services.api.app.routers.payments import router as payments_router
from services.api.app.services.gateway_factory import get_gateway_adapter
from services.api.app.services.notifications import get_confirmation_sender, get_purchase_stats

configure_logging()

app = FastAPI(title="Cantina Payments API")

app.include_router(payments_router)
app.include_router(orders_router)
app.include_router(deliveries_router)


@app.on_event("startup")
def _startup() -> None:
    init_db()
    app.state.gateway = get_gateway_adapter()
    app.state.confirmation = get_confirmation_sender()
    app.state.stats = get_purchase_stats()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
