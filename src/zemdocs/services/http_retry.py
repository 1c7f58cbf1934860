from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

import requests.exceptions

from zemdocs.services.exceptions import SyncCancelled, TaxApiError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class RetryableHTTPError(TaxApiError):
    """Raised for HTTP status codes that are safe to retry (429, 502, 503, 504)."""


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    base_delay: float
    max_delay: float
    backoff_factor: float
    jitter: float
    retryable_exceptions: tuple[type[Exception], ...]
    retryable_status_codes: frozenset[int] = field(default_factory=frozenset)
    # "exponential": base * factor**n, "quadratic": base * (n + 1)**2
    backoff: str = "exponential"


RETRYABLE_STATUS_CODES = frozenset({429, 502, 503, 504})

# Page fetches during a sync: any transport or API failure is retried,
# waiting 1s then 4s.
SYNC_PAGE_FETCH = RetryPolicy(
    max_attempts=3,
    base_delay=1.0,
    max_delay=60.0,
    backoff_factor=1.0,
    jitter=0.0,
    retryable_exceptions=(
        requests.exceptions.RequestException,
        TaxApiError,
    ),
    retryable_status_codes=RETRYABLE_STATUS_CODES,
    backoff="quadratic",
)

API_READ = RetryPolicy(
    max_attempts=3,
    base_delay=1.0,
    max_delay=15.0,
    backoff_factor=2.0,
    jitter=0.25,
    retryable_exceptions=(
        requests.exceptions.ConnectionError,
        requests.exceptions.Timeout,
        RetryableHTTPError,
    ),
    retryable_status_codes=RETRYABLE_STATUS_CODES,
)


def _calc_delay(attempt: int, policy: RetryPolicy) -> float:
    """Calculate delay with exponential or quadratic backoff and jitter.

    *attempt* is 0-indexed (0 = delay after first failure).
    """
    if policy.backoff == "quadratic":
        delay = policy.base_delay * (attempt + 1) ** 2
    else:
        delay = policy.base_delay * (policy.backoff_factor**attempt)
    delay = min(delay, policy.max_delay)
    jitter_range = delay * policy.jitter
    delay += random.uniform(-jitter_range, jitter_range)
    return max(0.0, delay)


def retry_call(
    func: Callable[[], T],
    policy: RetryPolicy,
    *,
    sleep_func: Callable[[float], object] | None = None,
    cancel: threading.Event | None = None,
) -> T:
    """Execute *func()* with retry per *policy*, re-raising on exhaustion.

    Without an explicit *sleep_func* the backoff waits on *cancel* (when
    given) so that a cancellation during the wait raises SyncCancelled
    immediately instead of exhausting the remaining attempts.
    """
    last_exc: Exception | None = None
    for attempt in range(policy.max_attempts):
        if cancel is not None and cancel.is_set():
            raise SyncCancelled("cancelado antes da tentativa")
        try:
            return func()
        except policy.retryable_exceptions as exc:
            last_exc = exc
            if attempt < policy.max_attempts - 1:
                delay = _calc_delay(attempt, policy)
                logger.warning(
                    "Retry %d/%d after %s (%.1fs delay)",
                    attempt + 1,
                    policy.max_attempts,
                    type(exc).__name__,
                    delay,
                )
                if sleep_func is not None:
                    sleep_func(delay)
                elif cancel is not None:
                    cancel.wait(delay)
                else:
                    time.sleep(delay)
                if cancel is not None and cancel.is_set():
                    raise SyncCancelled("cancelado durante o backoff") from exc
    raise last_exc  # type: ignore[misc]
