"""Bounded retry with exponential backoff and full jitter.

Used for every remote call the pipeline makes: reading the original from
blob storage, uploading renditions, and reverse geocoding.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_BASE_DELAY_MS = 500
DEFAULT_MAX_DELAY_MS = 10_000


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS
    max_delay_ms: int = DEFAULT_MAX_DELAY_MS


STORAGE_RETRY = RetryPolicy(max_attempts=3, base_delay_ms=500, max_delay_ms=5_000)
GEOCODE_RETRY = RetryPolicy(max_attempts=5, base_delay_ms=500, max_delay_ms=10_000)


@dataclass(frozen=True)
class RetrySuccess(Generic[T]):
    value: T
    attempts: int
    ok: bool = field(default=True, init=False)


@dataclass(frozen=True)
class RetryFailure:
    error: BaseException
    attempts: int
    ok: bool = field(default=False, init=False)


RetryResult = Union[RetrySuccess[T], RetryFailure]


def compute_delay_ms(
    attempt: int,
    base_delay_ms: float,
    max_delay_ms: float,
    rng: Callable[[float, float], float] = random.uniform,
) -> float:
    """Full-jitter delay before ``attempt`` (0-indexed): U(0, min(cap, base * 2^attempt))."""
    ceiling = min(max_delay_ms, base_delay_ms * (2**attempt))
    return rng(0.0, ceiling)


def with_retry(
    operation: Callable[[], T],
    *,
    policy: Optional[RetryPolicy] = None,
    max_attempts: Optional[int] = None,
    base_delay_ms: Optional[int] = None,
    max_delay_ms: Optional[int] = None,
    operation_name: str = "operation",
    context: Optional[dict[str, Any]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RetryResult[T]:
    """Call ``operation`` until it succeeds or ``max_attempts`` calls have failed.

    Never raises for failures of ``operation``; the caller decides whether a
    ``RetryFailure`` is fatal. Explicit keyword limits override ``policy``.
    """
    policy = policy or RetryPolicy()
    attempts_allowed = max(1, max_attempts if max_attempts is not None else policy.max_attempts)
    base = base_delay_ms if base_delay_ms is not None else policy.base_delay_ms
    cap = max_delay_ms if max_delay_ms is not None else policy.max_delay_ms
    context = context or {}

    last_error: BaseException = RuntimeError("No attempts made")
    for attempt in range(attempts_allowed):
        if attempt > 0:
            delay_ms = compute_delay_ms(attempt, base, cap)
            logger.info(
                "Retrying %s in %.0fms (attempt %d/%d) %s",
                operation_name,
                delay_ms,
                attempt + 1,
                attempts_allowed,
                context,
            )
            sleep(delay_ms / 1000.0)
        try:
            value = operation()
        except Exception as exc:
            last_error = exc
            logger.warning(
                "%s failed on attempt %d/%d: %s: %s",
                operation_name,
                attempt + 1,
                attempts_allowed,
                type(exc).__name__,
                exc,
            )
            continue
        if attempt > 0:
            logger.info("%s succeeded after %d attempts", operation_name, attempt + 1)
        return RetrySuccess(value=value, attempts=attempt + 1)

    logger.error(
        "%s exhausted %d attempts: %s %s",
        operation_name,
        attempts_allowed,
        last_error,
        context,
    )
    return RetryFailure(error=last_error, attempts=attempts_allowed)
