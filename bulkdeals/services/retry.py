import asyncio
import httpx
from loguru import logger
from typing import Awaitable, Callable, Optional, Sequence, TypeVar
from bulkdeals.core.config import settings
from bulkdeals.core.exceptions import RemoteServiceError

T = TypeVar("T")

RETRYABLE_STATUS_CODES = {429, 500, 503}
_RETRYABLE_MARKERS = ("429", "500", "503", "timeout")


def is_retryable(error: BaseException) -> bool:
    """Rate limits, server errors and timeouts are worth another attempt."""
    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        return True

    if isinstance(error, RemoteServiceError) and error.status_code is not None:
        return error.status_code in RETRYABLE_STATUS_CODES
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES

    message = str(error).lower()
    return any(marker in message for marker in _RETRYABLE_MARKERS)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    delays: Optional[Sequence[float]] = None,
    description: str = "remote call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """
    Runs ``operation`` and retries it on transient failures.

    One attempt is made per entry of ``delays`` plus the initial one; the
    delay before attempt ``n + 1`` is ``delays[n]``. Non-retryable errors and
    the error of the final attempt propagate unchanged.
    """
    schedule = list(settings.RETRY_DELAYS if delays is None else delays)

    for attempt in range(len(schedule) + 1):
        try:
            return await operation()
        except Exception as e:
            logger.warning(f"{description} failed on attempt {attempt + 1}: {e}")
            if attempt >= len(schedule) or not is_retryable(e):
                raise
            delay = schedule[attempt]
            logger.info(f"Retrying {description} in {delay}s...")
            await sleep(delay)
