from __future__ import annotations

from services.api.app.config import GatewaySettings
from services.api.app.log import get_logger
from services.api.app.services.gateway_base import PaymentGatewayAdapter
from services.api.app.services.gateway_mock import MockGatewayAdapter
from services.api.app.services.signature import SignatureVerifier

logger = get_logger("gateway_factory")


def get_signature_verifier(settings: GatewaySettings | None = None) -> SignatureVerifier:
    settings = settings or GatewaySettings.from_env()
    return SignatureVerifier(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        mock=settings.mock_payment,
    )


def get_gateway_adapter(settings: GatewaySettings | None = None) -> PaymentGatewayAdapter:
    """Select the gateway adapter once, at startup.

    Defaults to the mock adapter so tests and local dev never reach the real gateway
    unless explicitly configured. CANTINA_MOCK_PAYMENT=true forces the mock as well.
    Production refuses the mock.
    """

    settings = settings or GatewaySettings.from_env()
    mode = settings.adapter
    use_mock = settings.mock_payment or mode == "mock"

    if use_mock and settings.environment == "production":
        # The mock verifier accepts any signature.
        raise ValueError(
            "The mock gateway cannot run with CANTINA_ENV=production; "
            "set CANTINA_GATEWAY_ADAPTER=api and unset CANTINA_MOCK_PAYMENT."
        )

    if use_mock:
        adapter: PaymentGatewayAdapter = MockGatewayAdapter()
    elif mode in ("api", "rest"):
        from services.api.app.services.gateway_rest import RestGatewayAdapter

        adapter = RestGatewayAdapter(settings, verifier=get_signature_verifier(settings))
    elif mode == "sdk":
        raise ValueError(
            "CANTINA_GATEWAY_ADAPTER=sdk needs a vendor client; construct SdkGatewayAdapter "
            "with one and install it on app.state.gateway."
        )
    else:
        raise ValueError(f"Unknown CANTINA_GATEWAY_ADAPTER={mode!r}. Expected mock, api or sdk.")

    logger.info("gateway_adapter_selected", vendor=adapter.vendor, environment=settings.environment)
    return adapter
