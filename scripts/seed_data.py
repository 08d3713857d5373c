from __future__ import annotations

import argparse
from uuid import uuid4

from services.api.app.db.database import session_scope
from services.api.app.db.init_db import init_db
from services.api.app.db.models import DiscountCode
from sqlalchemy import select

DEFAULT_CODES = (
    ("BIENVENIDA10", 10),
    ("CANTINA20", 20),
)


def parse_code(value: str) -> tuple[str, int]:
    code, sep, pct = value.partition(":")
    if not sep or not code.strip() or not pct.strip().isdigit():
        raise argparse.ArgumentTypeError(f"Expected CODE:PERCENT, got {value!r}")
    percentage = int(pct)
    if not 0 < percentage <= 100:
        raise argparse.ArgumentTypeError(f"Percentage must be 1-100, got {percentage}")
    return code.strip().upper(), percentage


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed discount codes for local development")
    parser.add_argument(
        "--code",
        action="append",
        type=parse_code,
        default=[],
        help="Discount as CODE:PERCENT. Repeatable. Defaults to a small built-in set.",
    )
    args = parser.parse_args()

    init_db()

    codes = args.code or list(DEFAULT_CODES)
    created = 0
    with session_scope() as db:
        for code, percentage in codes:
            exists = db.scalars(select(DiscountCode).where(DiscountCode.code == code)).first()
            if exists is not None:
                continue
            db.add(
                DiscountCode(
                    id=uuid4().hex,
                    code=code,
                    discount_percentage=percentage,
                    type="percentage",
                )
            )
            created += 1

    print(f"Seeded {created} discount code(s); {len(codes) - created} already present")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
