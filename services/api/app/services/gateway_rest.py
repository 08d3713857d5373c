from __future__ import annotations

import json
import time
import urllib.error
import urllib.request
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from services.api.app.config import GatewaySettings
from services.api.app.errors import GatewayAuthError, GatewayError
from services.api.app.log import get_logger
from services.api.app.services.gateway_base import (
    PaymentLink,
    PaymentLinkRequest,
    link_from_gateway,
)
from services.api.app.services.signature import SignatureVerifier

logger = get_logger("gateway_rest")

DEFAULT_TOKEN_TTL_SECONDS = 3600
HTTP_TIMEOUT_SECONDS = 30


class RestGatewayAdapter:
    """Gateway adapter speaking the REST API directly.

    Holds a client-credentials access token in memory, refreshed once it expires.
    The cache belongs to this instance; two requests racing on expiry may both fetch
    a token, which is harmless.
    """

    vendor = "TROPIPAY_API"

    def __init__(
        self,
        settings: GatewaySettings,
        *,
        verifier: SignatureVerifier | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not settings.client_id or not settings.client_secret:
            raise ValueError(
                "CANTINA_GATEWAY_CLIENT_ID and CANTINA_GATEWAY_CLIENT_SECRET are required "
                "for the api gateway adapter"
            )
        self._settings = settings
        self._verifier = verifier or SignatureVerifier(
            client_id=settings.client_id, client_secret=settings.client_secret
        )
        self._clock = clock
        self._access_token: str | None = None
        self._token_expires_at: float = 0.0

    @classmethod
    def from_env(cls) -> "RestGatewayAdapter":
        return cls(GatewaySettings.from_env())

    def access_token(self) -> str:
        if self._access_token and self._clock() < self._token_expires_at:
            return self._access_token

        body = {
            "grant_type": "client_credentials",
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
        }
        try:
            payload = _http_json("POST", f"{self._settings.base_url}/access/token", body)
        except GatewayError as e:
            logger.error("gateway_token_failed", status_code=e.status_code, error=str(e))
            raise GatewayAuthError(
                f"Could not obtain gateway access token: {e}", status_code=e.status_code
            ) from e

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise GatewayAuthError("Gateway token response did not include access_token")

        ttl = payload.get("expires_in") or DEFAULT_TOKEN_TTL_SECONDS
        self._access_token = str(token)
        self._token_expires_at = self._clock() + float(ttl)
        logger.info("gateway_token_refreshed", expires_in=ttl)
        return self._access_token

    def create_payment_link(self, request: PaymentLinkRequest) -> PaymentLink:
        payload = request.to_gateway()
        payload["urlNotification"] = self._settings.resolve_notification_url(
            request.url_notification
        )
        payload["serviceDate"] = datetime.now(timezone.utc).isoformat()

        token = self.access_token()
        logger.info(
            "gateway_payment_link_requested",
            reference=request.reference,
            amount=request.amount,
            currency=request.currency,
        )
        raw = _http_json(
            "POST",
            f"{self._settings.base_url}/paymentcards",
            payload,
            bearer_token=token,
        )
        if not isinstance(raw, dict) or not raw:
            raise GatewayError("Empty response from gateway when creating payment link")

        link = link_from_gateway(raw, request)
        logger.info("gateway_payment_link_created", reference=request.reference, link_id=link.id)
        return link

    def verify_payment(self, amount: int | str, bank_order_code: str, signature: str) -> bool:
        return self._verifier.verify(amount, bank_order_code, signature)


def _http_json(
    method: str,
    url: str,
    body: dict[str, Any] | None = None,
    *,
    bearer_token: str | None = None,
) -> Any:
    req = urllib.request.Request(url, method=method)
    req.add_header("Content-Type", "application/json")
    req.add_header("Accept", "application/json")
    if bearer_token:
        req.add_header("Authorization", f"Bearer {bearer_token}")

    data = json.dumps(body).encode("utf-8") if body is not None else None
    try:
        with urllib.request.urlopen(req, data=data, timeout=HTTP_TIMEOUT_SECONDS) as resp:
            raw = resp.read().decode("utf-8")
    except urllib.error.HTTPError as e:
        detail = e.read().decode("utf-8", errors="replace")
        raise GatewayError(f"Gateway HTTP {e.code}: {detail}", status_code=e.code) from e
    except urllib.error.URLError as e:
        raise GatewayError(f"Gateway unreachable: {e.reason}") from e

    try:
        return json.loads(raw) if raw else {}
    except json.JSONDecodeError as e:
        raise GatewayError(f"Gateway returned non-JSON body: {raw[:100]!r}") from e
