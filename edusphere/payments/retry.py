# edusphere/payments/retry.py
import asyncio
from typing import Awaitable, Callable, TypeVar

from ..logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def with_retries(
    operation: Callable[[], Awaitable[T]],
    retries: int = 2,
    base_delay_ms: int = 250,
    label: str = "operation",
) -> T:
    """
    Await operation() up to retries + 1 times with exponential backoff.

    Delay after the i-th failure (0-based) is base_delay_ms * 2^i.
    The last error is re-raised once attempts run out.

    Only wrap calls that are safe to repeat (provider create/capture/query).
    """
    retries = max(0, retries)
    last_error = None

    for attempt in range(retries + 1):
        try:
            return await operation()
        except Exception as e:
            last_error = e
            if attempt == retries:
                break

            delay = (base_delay_ms * (2 ** attempt)) / 1000
            logger.warning(
                f"{label} failed (attempt {attempt + 1}/{retries + 1}), retrying in {delay:.2f}s",
                extra={"extra_data": {
                    "attempt": attempt + 1,
                    "max_attempts": retries + 1,
                    "delay_seconds": delay,
                    "error": str(e)
                }}
            )
            await asyncio.sleep(delay)

    logger.error(
        f"{label} failed after {retries + 1} attempts",
        extra={"extra_data": {"error": str(last_error)}}
    )
    raise last_error
