"""Payment status poller for the thank-you page.

Read-only: it observes payment attempts until one settles or the time budget runs
out. The hosting view owns the lifecycle and must call ``stop()`` when it goes away.
"""

from __future__ import annotations

import asyncio
import json
import time
import urllib.request
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

import structlog
from packages.shared.schemas.payment_v1 import (
    TERMINAL_PAYMENT_STATUSES,
    OrderPaymentsV1,
    PaymentOrderV1,
    PaymentStatusV1,
)

logger = structlog.get_logger().bind(component="status_poller")

INITIAL_DELAY_SECONDS = 2.0
DELAY_STEP_SECONDS = 0.5
MAX_DELAY_SECONDS = 10.0
BUDGET_SECONDS = 120.0

Fetch = Callable[[str], Awaitable[list[PaymentOrderV1]]]


class PollOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True, slots=True)
class PollResult:
    outcome: PollOutcome
    payment_order: PaymentOrderV1 | None
    attempts: int


def poll_delays(
    initial: float = INITIAL_DELAY_SECONDS,
    step: float = DELAY_STEP_SECONDS,
    cap: float = MAX_DELAY_SECONDS,
) -> Iterator[float]:
    delay = initial
    while True:
        yield min(delay, cap)
        delay += step


def _resolved_at(row: PaymentOrderV1) -> datetime:
    return row.completed_at or row.created_at


def pick_terminal(rows: list[PaymentOrderV1]) -> PaymentOrderV1 | None:
    """Most recently resolved terminal attempt, if it is still the current one.

    A failed attempt older than a pending retry is stale: keep waiting for the retry.
    """

    terminal = [r for r in rows if r.status in TERMINAL_PAYMENT_STATUSES]
    if not terminal:
        return None

    latest = max(terminal, key=_resolved_at)
    if latest.status == PaymentStatusV1.COMPLETED:
        return latest

    newer_pending = any(
        r.status == PaymentStatusV1.PENDING and r.created_at > latest.created_at for r in rows
    )
    return None if newer_pending else latest


class PaymentStatusPoller:
    def __init__(
        self,
        fetch: Fetch,
        order_id: str,
        *,
        on_result: Callable[[PollResult], None] | None = None,
        budget_seconds: float = BUDGET_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch = fetch
        self._order_id = order_id
        self._on_result = on_result
        self._budget = budget_seconds
        self._sleep = sleep
        self._clock = clock
        self._task: asyncio.Task[PollResult] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[PollResult]:
        if self._task is not None:
            raise RuntimeError("Poller already started")
        self._task = asyncio.get_running_loop().create_task(self.run())
        return self._task

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            logger.info("poll_stopped", order_id=self._order_id)

    async def wait(self) -> PollResult:
        if self._task is None:
            raise RuntimeError("Poller not started")
        return await self._task

    async def run(self) -> PollResult:
        started = self._clock()
        attempts = 0

        for delay in poll_delays():
            attempts += 1
            try:
                rows = await self._fetch(self._order_id)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("poll_fetch_failed", order_id=self._order_id, error=str(e))
                rows = []

            terminal = pick_terminal(rows)
            if terminal is not None:
                outcome = (
                    PollOutcome.COMPLETED
                    if terminal.status == PaymentStatusV1.COMPLETED
                    else PollOutcome.FAILED
                )
                return self._finish(PollResult(outcome, terminal, attempts))

            remaining = self._budget - (self._clock() - started)
            if remaining <= 0:
                return self._finish(PollResult(PollOutcome.TIMEOUT, None, attempts))

            await self._sleep(min(delay, remaining))

        raise AssertionError("unreachable")

    def _finish(self, result: PollResult) -> PollResult:
        logger.info(
            "poll_finished",
            order_id=self._order_id,
            outcome=result.outcome.value,
            attempts=result.attempts,
        )
        if self._on_result is not None:
            self._on_result(result)
        return result


def http_fetcher(base_url: str, *, token: str | None = None, timeout: float = 10.0) -> Fetch:
    """Fetch payment rows from ``GET /api/payments/orders/{order_id}``."""

    base_url = base_url.rstrip("/")

    def _get(order_id: str) -> list[PaymentOrderV1]:
        req = urllib.request.Request(f"{base_url}/api/payments/orders/{order_id}", method="GET")
        req.add_header("Accept", "application/json")
        if token:
            req.add_header("Authorization", f"Bearer {token}")
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            payload = json.loads(resp.read().decode("utf-8"))
        return OrderPaymentsV1.model_validate(payload).payment_orders

    async def fetch(order_id: str) -> list[PaymentOrderV1]:
        return await asyncio.to_thread(_get, order_id)

    return fetch
