"""Send a simulated gateway payment notification to a running API.

Signs the payload with CANTINA_GATEWAY_CLIENT_ID / CANTINA_GATEWAY_CLIENT_SECRET
when they are set; otherwise sends it unsigned with ``x-test-mode: true``, which
only non-production deployments honour.
"""

from __future__ import annotations

import argparse
import json
import os
import time
import urllib.error
import urllib.request

from services.api.app.services.signature import compute_signature

DEFAULT_URL = "http://localhost:8000/api/payments/webhook"

# Gateway paymentcard states carried in failure notifications.
FAILURE_STATES = {
    2: "Payment was rejected by the payment processor",
    3: "Payment link has expired",
    4: "Payment was cancelled by the user",
}
SUCCESS_STATE = 5


def build_payload(
    reference: str,
    amount: int,
    *,
    success: bool,
    failure_state: int,
    client_id: str,
    client_secret: str,
) -> dict:
    bank_order_code = f"MOCK-{int(time.time() * 1000)}"
    data: dict = {
        "reference": reference,
        "originalCurrencyAmount": amount,
        "amount": amount,
        "currency": "EUR",
        "bankOrderCode": bank_order_code,
        "state": SUCCESS_STATE if success else failure_state,
        "concept": f"Test payment for {reference}",
    }
    if not success:
        data["failureReason"] = FAILURE_STATES.get(failure_state, "Unknown failure reason")
    if client_id and client_secret:
        data["signaturev3"] = compute_signature(amount, bank_order_code, client_id, client_secret)

    return {"status": "OK" if success else "KO", "data": data}


def main() -> int:
    parser = argparse.ArgumentParser(description="Simulate a gateway payment webhook")
    parser.add_argument("reference", help="Payment order id or gateway reference")
    parser.add_argument("--amount", type=int, default=10000, help="Amount in minor units")
    parser.add_argument("--fail", action="store_true", help="Send a failure notification")
    parser.add_argument("--state", type=int, default=2, choices=sorted(FAILURE_STATES))
    parser.add_argument("--url", default=DEFAULT_URL)
    args = parser.parse_args()

    client_id = os.getenv("CANTINA_GATEWAY_CLIENT_ID", "").strip()
    client_secret = os.getenv("CANTINA_GATEWAY_CLIENT_SECRET", "").strip()
    payload = build_payload(
        args.reference,
        args.amount,
        success=not args.fail,
        failure_state=args.state,
        client_id=client_id,
        client_secret=client_secret,
    )
    print(json.dumps(payload, indent=2))

    req = urllib.request.Request(args.url, method="POST")
    req.add_header("Content-Type", "application/json")
    if "signaturev3" not in payload["data"]:
        req.add_header("x-test-mode", "true")

    try:
        with urllib.request.urlopen(req, data=json.dumps(payload).encode("utf-8")) as resp:
            print(f"{resp.status} {resp.read().decode('utf-8')}")
    except urllib.error.HTTPError as e:
        print(f"{e.code} {e.read().decode('utf-8', errors='replace')}")
        return 1
    except urllib.error.URLError as e:
        print(f"Could not reach {args.url}: {e.reason}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
