from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from backend.app.perf.timeouts import PerfTimeoutError, enforce_timeout
from backend.app.reliability.errors import FatalProviderError, TransientProviderError, UpstreamUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    retry_delay_ms: int = 1000
    attempt_timeout_ms: int = 30_000

    def delay_for(self, attempt: int) -> float:
        """Linear backoff: the n-th failed attempt waits n * retry_delay_ms."""
        return max(0, self.retry_delay_ms) * attempt / 1000.0


@dataclass
class RetryResult(Generic[T]):
    value: T
    attempts: int
    latency_ms: int
    last_failure: Optional[str] = None


async def invoke_with_retry(
    policy: RetryPolicy,
    invoke_attempt: Callable[[int], Awaitable[T]],
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryResult[T]:
    """Run one external call with bounded retries.

    Only timeouts and ``TransientProviderError`` are retried. ``FatalProviderError``
    propagates immediately. Exhausting attempts raises ``UpstreamUnavailable``.
    """
    start_ts = time.monotonic()
    attempts = 0
    last_failure: Optional[str] = None
    max_attempts = max(1, policy.max_attempts)

    for attempt_idx in range(max_attempts):
        attempts = attempt_idx + 1
        try:
            value = await enforce_timeout(lambda: invoke_attempt(attempt_idx), policy.attempt_timeout_ms)
        except PerfTimeoutError:
            last_failure = "timeout"
        except TransientProviderError as exc:
            last_failure = str(exc)[:200] or "transient"
        except FatalProviderError:
            logger.warning("[Retry] fatal provider error", extra={"attempt": attempts})
            raise
        else:
            return RetryResult(
                value=value,
                attempts=attempts,
                latency_ms=int((time.monotonic() - start_ts) * 1000),
                last_failure=last_failure,
            )

        logger.warning(
            "[Retry] attempt failed",
            extra={"attempt": attempts, "max_attempts": max_attempts, "failure": last_failure},
        )
        if attempts < max_attempts:
            await sleep(policy.delay_for(attempts))

    raise UpstreamUnavailable(last_failure or "upstream_unavailable", attempts=attempts)


__all__ = ["RetryPolicy", "RetryResult", "invoke_with_retry"]
