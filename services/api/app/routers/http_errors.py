from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException
from services.api.app.errors import (
    AuthError,
    GatewayError,
    InvalidTransition,
    NotFoundError,
    PersistenceError,
    ValidationError,
)


def raise_http_error(e: Exception) -> NoReturn:
    if isinstance(e, ValidationError):
        raise HTTPException(status_code=400, detail=str(e)) from e

    if isinstance(e, AuthError):
        raise HTTPException(status_code=401, detail=str(e)) from e

    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=404, detail=str(e)) from e

    if isinstance(e, InvalidTransition):
        raise HTTPException(status_code=409, detail=str(e)) from e

    if isinstance(e, GatewayError):
        raise HTTPException(status_code=502, detail=str(e)) from e

    if isinstance(e, PersistenceError):
        raise HTTPException(status_code=500, detail=str(e)) from e

    raise HTTPException(status_code=500, detail="Internal Server Error") from e
