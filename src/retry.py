"""Bounded retry with exponential backoff for flaky external calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from src.errors import ContractViolation, ExternalServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    description: str = "external call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``fn()`` up to ``attempts`` times.

    The wait after failed attempt ``n`` (1-based) is ``base_delay * n``.
    Exceptions outside ``retry_on`` and ContractViolation propagate immediately.

    Raises:
        ExternalServiceError: When every attempt failed. The last exception
            is chained as ``__cause__``.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    for attempt in range(1, attempts + 1):
        try:
            return await fn()
        except ContractViolation:
            raise
        except retry_on as e:
            if attempt == attempts:
                logger.error("%s failed after %d attempts: %s", description, attempts, e)
                raise ExternalServiceError(
                    f"{description} failed after {attempts} attempts: {e}",
                    attempts=attempts,
                ) from e
            wait = base_delay * attempt
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                description, attempt, attempts, wait, e,
            )
            await sleep(wait)

    raise AssertionError("unreachable")  # pragma: no cover
