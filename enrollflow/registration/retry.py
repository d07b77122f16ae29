"""
Retry policy and a generic sequential retry loop.

The policy is pure (attempt number in, delay out) so it can be tested without sleeping;
the loop takes an injectable sleep for the same reason.
"""
from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import httpx

from enrollflow.settings import settings


def backoff_delay_ms(
    attempt: int,
    base_ms: Optional[int] = None,
    cap_ms: Optional[int] = None,
    jitter: Optional[float] = None,
    rng: Optional[random.Random] = None,
) -> int:
    """Delay to wait BEFORE `attempt` (attempt 1 never waits)."""
    if attempt <= 1:
        return 0
    base = int(base_ms if base_ms is not None else settings.REGISTRATION_BASE_DELAY_MS)
    cap = int(cap_ms if cap_ms is not None else settings.REGISTRATION_MAX_DELAY_MS)
    jitter = float(jitter if jitter is not None else settings.REGISTRATION_JITTER)
    delay = base * (2 ** (attempt - 1))
    if jitter > 0:
        delay = delay + delay * jitter * (rng or random).uniform(-1, 1)
    return max(0, min(cap, int(delay)))


def _status_of(exc: Any) -> Optional[int]:
    status = getattr(exc, "status", None)
    if status is None:
        status = getattr(getattr(exc, "response", None), "status_code", None)
    return status if isinstance(status, int) else None


def is_retryable(exc: Any) -> bool:
    """
    Transient: network, timeout, 5xx, 429, "temporarily unavailable".
    Terminal: other 4xx. Unknown errors default to retryable.
    """
    explicit = getattr(exc, "retryable", None)
    if isinstance(explicit, bool):
        return explicit

    name = type(exc).__name__
    message = str(exc).lower()
    if isinstance(exc, (httpx.TransportError, ConnectionError)) or name == "NetworkError" \
            or getattr(exc, "code", None) == "NETWORK_ERROR":
        return True
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)) or name == "TimeoutError" or "timeout" in message:
        return True

    status = _status_of(exc)
    if status is not None and 500 <= status < 600:
        return True
    if status == 429:
        return True
    if "temporarily unavailable" in message:
        return True
    if status is not None and 400 <= status < 500:
        return False
    return True


@dataclass
class RetryOutcome:
    success: bool
    value: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0
    retryable: bool = False
    # every attempt allowed was used and the last error was still retryable
    exhausted: bool = False
    history: List[Dict[str, Any]] = field(default_factory=list)


def retry(
    fn: Callable[[int], Any],
    *,
    max_attempts: int,
    delay_ms: Callable[[int], int] = backoff_delay_ms,
    is_retryable: Callable[[BaseException], bool] = is_retryable,
    sleep: Callable[[float], None] = time.sleep,
    on_attempt: Optional[Callable[[Dict[str, Any]], None]] = None,
) -> RetryOutcome:
    """
    Call fn(attempt) up to max_attempts times, strictly sequentially.
    Stops at the first success or the first non-retryable error. Never raises fn's errors.
    """
    outcome = RetryOutcome(success=False)
    for attempt in range(1, int(max_attempts) + 1):
        if attempt > 1:
            wait = delay_ms(attempt)
            if wait > 0:
                sleep(wait / 1000.0)

        start = time.time()
        try:
            value = fn(attempt)
            err: Optional[BaseException] = None
        except Exception as e:
            value, err = None, e
        duration = int((time.time() - start) * 1000)

        retryable = err is not None and bool(is_retryable(err))
        record = {
            "attempt": attempt,
            "ts": int(start * 1000),
            "durationMs": duration,
            "error": None if err is None else str(err)[:300],
            "retryable": retryable,
            "success": err is None,
        }
        outcome.history.append(record)
        outcome.attempts = attempt
        if on_attempt is not None:
            on_attempt(record)

        if err is None:
            outcome.success = True
            outcome.value = value
            outcome.error = None
            outcome.retryable = False
            return outcome

        outcome.error = err
        outcome.retryable = retryable
        if not retryable:
            return outcome

    outcome.exhausted = outcome.retryable
    return outcome
