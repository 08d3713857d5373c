from __future__ import annotations

import hashlib
import hmac

from services.api.app.errors import AuthError


def compute_signature(
    amount_minor_units: int | str,
    bank_order_code: str,
    client_id: str,
    client_secret: str,
) -> str:
    """sha256(bankOrderCode + clientId + sha1(clientSecret) + originalCurrencyAmount)."""

    secret_digest = hashlib.sha1(client_secret.encode("utf-8")).hexdigest()
    material = f"{bank_order_code}{client_id}{secret_digest}{amount_minor_units}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


class SignatureVerifier:
    def __init__(self, *, client_id: str = "", client_secret: str = "", mock: bool = False) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._mock = mock

    @property
    def mock(self) -> bool:
        return self._mock

    def verify(
        self,
        amount_minor_units: int | str,
        bank_order_code: str,
        supplied_signature: str,
        client_id: str | None = None,
        client_secret: str | None = None,
    ) -> bool:
        """Return whether the supplied signature matches.

        Raises AuthError when no credentials are available; callers must treat that
        as unverified.
        """

        if self._mock:
            return True

        client_id = client_id if client_id is not None else self._client_id
        client_secret = client_secret if client_secret is not None else self._client_secret
        if not client_id or not client_secret:
            raise AuthError("Gateway client credentials are required to verify signatures")

        if not supplied_signature:
            return False

        candidate = compute_signature(amount_minor_units, bank_order_code, client_id, client_secret)
        return hmac.compare_digest(
            candidate.encode("utf-8"), str(supplied_signature).encode("utf-8")
        )
