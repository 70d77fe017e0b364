"""Per-service rate governor for the catalog, LLM and storefront APIs.

Each service gets a fixed-window budget plus an independent *hard throttled*
flag with its own resume time. The flag is armed either preemptively when a
request budget is exhausted or reactively when the remote service reports
throttling (HTTP 429 / ``Retry-After``).

Two metering modes:

* **request** budgets count calls; ``check_budget`` fails once the window is
  full.
* **volume** budgets (LLM tokens) are fed through ``record_usage`` and only
  warn near the high-water mark; ``check_budget`` honours the hard flag only.

State is in-process and never persisted: a restart resets every budget.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

MET = "met"
OPENAI = "openai"
SHOPIFY = "shopify"


class RateLimitExceeded(Exception):
    """Throttling signal: the caller must back off for ``retry_after`` seconds."""

    def __init__(self, service: str, retry_after: float):
        self.service = service
        self.retry_after = max(0.0, float(retry_after))
        super().__init__(
            f"Rate limit for {service} API exceeded. "
            f"Retry after {math.ceil(self.retry_after)} seconds."
        )


@dataclass
class ServiceBudget:
    """Budget definition and live window state for one service."""

    capacity: int
    period: float  # seconds
    metered: bool = False  # True: capacity is a volume (tokens), not a call count
    current: int = 0
    reset_at: float | None = None
    throttled: bool = False
    resume_at: float | None = None


class RateGovernor:
    """Tracks usage per external service against fixed-window budgets."""

    def __init__(
        self,
        budgets: dict[str, ServiceBudget] | None = None,
        clock: Callable[[], float] = time.monotonic,
        warning_ratio: float = 0.9,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._clock = clock
        self._sleep = sleep
        self._warning_ratio = warning_ratio
        self._budgets = budgets if budgets is not None else default_budgets()

    @classmethod
    def from_settings(
        cls,
        settings,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "RateGovernor":
        budgets = {
            MET: ServiceBudget(capacity=settings.met_requests_per_minute, period=60.0),
            OPENAI: ServiceBudget(
                capacity=settings.openai_tokens_per_minute, period=60.0, metered=True
            ),
            SHOPIFY: ServiceBudget(capacity=settings.shopify_requests_per_second, period=1.0),
        }
        return cls(budgets, clock=clock, warning_ratio=settings.usage_warning_ratio, sleep=sleep)

    def _budget(self, service: str) -> ServiceBudget:
        try:
            return self._budgets[service]
        except KeyError:
            raise KeyError(f"Unknown service: {service}") from None

    def _roll_window(self, budget: ServiceBudget, now: float) -> None:
        if budget.reset_at is not None and now >= budget.reset_at:
            budget.current = 0
            budget.reset_at = None
        if budget.reset_at is None:
            budget.reset_at = now + budget.period

    def check_budget(self, service: str) -> None:
        """Consume one request from the window or raise ``RateLimitExceeded``."""
        budget = self._budget(service)
        now = self._clock()

        if budget.throttled:
            if budget.resume_at is not None and now < budget.resume_at:
                raise RateLimitExceeded(service, budget.resume_at - now)
            budget.throttled = False
            budget.resume_at = None

        self._roll_window(budget, now)

        if budget.metered:
            return

        if budget.current >= budget.capacity:
            remaining = budget.reset_at - now
            self.set_throttled(service, remaining)
            raise RateLimitExceeded(service, remaining)

        budget.current += 1

    def acquire(self, service: str, max_wait: float = 0.0) -> None:
        """Like ``check_budget`` but sleeps through throttles no longer than ``max_wait``.

        Longer throttles still raise so the job can pause instead of blocking
        the engine.
        """
        while True:
            try:
                self.check_budget(service)
                return
            except RateLimitExceeded as e:
                if e.retry_after > max_wait:
                    raise
                self._sleep(e.retry_after)

    def record_usage(self, service: str, units: int) -> None:
        """Add consumed volume for a metered service; warn past the high-water mark."""
        budget = self._budget(service)
        self._roll_window(budget, self._clock())
        budget.current += max(0, int(units))
        if budget.current >= budget.capacity * self._warning_ratio:
            logger.warning(
                "%s usage approaching limit: %d/%d", service, budget.current, budget.capacity
            )

    def set_throttled(self, service: str, duration: float) -> None:
        """Arm the hard-throttled flag for ``duration`` seconds."""
        budget = self._budget(service)
        budget.throttled = True
        budget.resume_at = self._clock() + max(0.0, duration)
        logger.warning("Rate limit for %s API set; resuming in %.1fs", service, duration)

    def status(self, service: str) -> dict[str, object]:
        """Snapshot of a service's window, for diagnostics."""
        budget = self._budget(service)
        now = self._clock()
        return {
            "service": service,
            "used": budget.current,
            "capacity": budget.capacity,
            "throttled": budget.throttled and budget.resume_at is not None and now < budget.resume_at,
            "retry_after": max(0.0, budget.resume_at - now) if budget.resume_at else 0.0,
        }


def default_budgets() -> dict[str, ServiceBudget]:
    """Conservative defaults: Met 80/min, OpenAI 10k tokens/min, Shopify 2/s."""
    return {
        MET: ServiceBudget(capacity=80, period=60.0),
        OPENAI: ServiceBudget(capacity=10000, period=60.0, metered=True),
        SHOPIFY: ServiceBudget(capacity=2, period=1.0),
    }


def retry_after_seconds(headers, default: float = 60.0) -> float:
    """Parse a ``Retry-After`` header given in seconds; fall back to ``default``."""
    if headers is None:
        return default
    raw = headers.get("retry-after")
    if raw is None:
        return default
    try:
        return max(0.0, float(raw))
    except (TypeError, ValueError):
        return default
