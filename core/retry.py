"""
Retry and timeout helpers for calls to the remote ledger.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from core.errors import TimeoutError, is_retriable

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay_ms: int = 1000,
    description: str = "operation",
    sleep: Optional[Callable[[float], Awaitable[None]]] = None,
) -> T:
    """
    Run an async operation with exponential backoff.

    Only retriable tracker errors (network, timeout, remote query) are retried.
    Anything else propagates on the first failure.

    Args:
        operation: Zero-argument callable returning a fresh awaitable per attempt
        max_attempts: Total number of attempts, including the first one
        base_delay_ms: Delay before the second attempt; doubled for each retry
        description: Used in log messages
        sleep: Injectable sleep coroutine (defaults to asyncio.sleep)

    Returns:
        The operation's result
    """
    sleep = sleep or asyncio.sleep
    attempt = 0

    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as e:
            if not is_retriable(e):
                logger.error(f"{description} failed with non-retriable error: {e}")
                raise
            if attempt >= max_attempts:
                logger.error(f"{description} failed after {attempt} attempts: {e}")
                raise

            delay_ms = base_delay_ms * 2 ** (attempt - 1)
            logger.warning(
                f"{description} failed (attempt {attempt}/{max_attempts}): {e}, "
                f"retrying in {delay_ms}ms"
            )
            await sleep(delay_ms / 1000)


async def with_timeout(awaitable: Awaitable[T], timeout_seconds: float) -> T:
    """Await with a deadline, converting asyncio timeouts into tracker TimeoutError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        raise TimeoutError(f"Operation timed out after {timeout_seconds} seconds")
