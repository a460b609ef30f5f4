"""Retry mechanism with exponential backoff for account store access.

Store reads performed before the paid provider call are safe to repeat, so
transient connection failures are retried a bounded number of times before
the request is rejected.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Tuple, Type, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from solvegate.app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_retries: Maximum number of retry attempts (default: 2)
        base_delay: Initial delay between retries in seconds (default: 0.1)
        max_delay: Maximum delay between retries in seconds (default: 2.0)
        exponential_base: Base for exponential calculation (default: 2.0)
        retryable_exceptions: Tuple of exception types that trigger a retry

    Example:
        >>> policy = RetryPolicy(max_retries=3, base_delay=0.5)
        >>> policy.calculate_delay(attempt=2)
        2.0
    """

    max_retries: int = 2
    base_delay: float = 0.1
    max_delay: float = 2.0
    exponential_base: float = 2.0
    retryable_exceptions: Tuple[Type[BaseException], ...] = (
        OperationalError,
        PoolTimeoutError,
        ConnectionError,
        asyncio.TimeoutError,
    )

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay for a given retry attempt.

        Uses exponential backoff: delay = min(base_delay * (exponential_base ^ attempt), max_delay)

        Args:
            attempt: The current retry attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = self.base_delay * (self.exponential_base**attempt)
        return min(delay, self.max_delay)

    def is_retryable(self, exception: BaseException) -> bool:
        """Check if an exception should trigger a retry.

        DBAPI errors are retried only when the driver reports a dropped
        connection; constraint violations and the like are not transient.
        """
        if isinstance(exception, DBAPIError) and not isinstance(exception, OperationalError):
            return bool(exception.connection_invalidated)
        return isinstance(exception, self.retryable_exceptions)


async def run_with_retry(
    policy: RetryPolicy,
    func: Callable[..., Awaitable[T]],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying transient failures.

    Raises:
        The last exception once retries are exhausted, or immediately for
        non-retryable exceptions.
    """
    name = getattr(func, "__name__", repr(func))

    for attempt in range(policy.max_retries + 1):
        try:
            return await func(*args, **kwargs)
        except Exception as e:
            if not policy.is_retryable(e):
                raise

            if attempt >= policy.max_retries:
                logger.warning(
                    f"Max retries ({policy.max_retries}) exceeded for {name}: "
                    f"{type(e).__name__}: {e}"
                )
                raise

            delay = policy.calculate_delay(attempt)
            logger.warning(
                f"Retry {attempt + 1}/{policy.max_retries} for {name} "
                f"after {type(e).__name__}: {e}. Waiting {delay:.2f}s..."
            )
            await asyncio.sleep(delay)

    raise RuntimeError("unreachable")