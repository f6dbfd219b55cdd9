"""
Retry with timeout for slow, flaky async operations such as model loading.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar('T')

logger = logging.getLogger(__name__)


async def retry_with_timeout(
    operation: Callable[[], Awaitable[T]],
    name: str,
    retries: int = 0,
    backoff: float = 1.0,
    timeout: Optional[float] = None
) -> T:
    """Run ``operation`` up to ``retries + 1`` times.

    Each try is bounded by ``timeout`` seconds (no bound when None). Between
    tries the wait grows linearly: backoff, 2 * backoff, ... The last error
    is re-raised.
    """
    for attempt in range(retries + 1):
        try:
            logger.info(f"{name} (attempt {attempt + 1}/{retries + 1})")
            if timeout is None:
                return await operation()
            return await asyncio.wait_for(operation(), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{name} attempt {attempt + 1} timed out after {timeout}s")
            if attempt == retries:
                raise
        except Exception as e:
            logger.warning(f"{name} attempt {attempt + 1} failed: {e}")
            if attempt == retries:
                raise
        await asyncio.sleep(backoff * (attempt + 1))
