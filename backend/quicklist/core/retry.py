import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS = (429, 503)


class RetryableStatus(Exception):
    """Raised inside a retried operation for a 429/503 response."""

    def __init__(self, response: httpx.Response):
        super().__init__(f"retryable status {response.status_code}")
        self.response = response


def _retry_after(exc: BaseException) -> Optional[float]:
    if not isinstance(exc, RetryableStatus):
        return None
    raw = exc.response.headers.get("retry-after")
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """
    Exponential backoff with jitter, capped at max_delay.
    """
    base = min(max_delay, base_delay * (2 ** attempt))
    return base + random.uniform(0.0, 0.5)


async def retry_async(
    op: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    base_delay: float,
    max_delay: float,
    retry_on: tuple = (RetryableStatus, httpx.TransportError),
) -> T:
    """
    Run `op` up to `attempts` times.

    Retries on 429/503 (op raises RetryableStatus) and transport errors.
    Respects Retry-After header when present; otherwise exponential backoff
    with jitter. The last error is re-raised once attempts run out.
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return await op()
        except retry_on as e:
            if attempt >= attempts - 1:
                raise
            wait = _retry_after(e)
            if wait is not None:
                wait = max(0.5, min(wait, max_delay))
            else:
                wait = backoff_delay(attempt, base_delay, max_delay)
            logger.info("Retrying after %s (attempt %d/%d, wait %.1fs)", e, attempt + 1, attempts, wait)
            await asyncio.sleep(wait)

    # Should never hit here, but just in case:
    raise RuntimeError("retry_async exhausted without result")
