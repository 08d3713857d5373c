from __future__ import annotations


class CantinaError(Exception):
    """Base class for payment core errors."""


class ValidationError(CantinaError):
    """Malformed input. Not retried."""


class AuthError(CantinaError):
    """Bad or missing signature or credentials."""


class NotFoundError(CantinaError):
    pass


class GatewayError(CantinaError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GatewayAuthError(GatewayError):
    """Access token could not be obtained from the gateway."""


class InvalidTransition(CantinaError):
    pass


class NotCancellable(InvalidTransition):
    def __init__(self, order_id: str, reason: str) -> None:
        super().__init__(f"Order {order_id} cannot be cancelled: {reason}")
        self.order_id = order_id
        self.reason = reason


class PersistenceError(CantinaError):
    """Store unavailable or a referenced row is missing. Safe to retry."""
