from scripts.send_webhook import build_payload
from services.api.app.services.signature import SignatureVerifier


def test_signed_success_payload_verifies() -> None:
    payload = build_payload(
        "po-1", 2999, success=True, failure_state=2, client_id="cid", client_secret="csecret"
    )
    data = payload["data"]

    assert payload["status"] == "OK"
    assert data["state"] == 5
    verifier = SignatureVerifier(client_id="cid", client_secret="csecret")
    assert verifier.verify(
        data["originalCurrencyAmount"], data["bankOrderCode"], data["signaturev3"]
    )


def test_unsigned_failure_payload() -> None:
    payload = build_payload(
        "po-1", 2999, success=False, failure_state=3, client_id="", client_secret=""
    )

    assert payload["status"] == "KO"
    assert payload["data"]["failureReason"] == "Payment link has expired"
    assert "signaturev3" not in payload["data"]
