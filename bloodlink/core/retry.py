"""Backoff policy for re-establishing change feed subscriptions.

Chat sessions and the request alert worker reopen their channel through
``retry_async`` after the connection drops. Message sends are never retried.
"""
import asyncio
import random
from typing import Any, Callable, Optional

from bloodlink.core.config import Settings
from bloodlink.core.logger import get_logger

logger = get_logger(__name__)


class RetryConfig:
    """How many times to resubscribe and how long to wait in between.

    Waits grow as initial_delay * exponential_base ** attempt, capped at
    max_delay. With jitter on, up to 30% is added so clients that lost the
    same Redis connection do not reconnect in lockstep.
    """

    def __init__(
        self,
        max_retries: int = 3,
        initial_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
    ):
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryConfig":
        return cls(
            max_retries=settings.feed_retry_max_retries,
            initial_delay=settings.feed_retry_initial_delay,
            max_delay=settings.feed_retry_max_delay,
        )

    def get_delay(self, attempt: int) -> float:
        """Seconds to wait after failed attempt number ``attempt`` (0-based)"""
        delay = min(self.initial_delay * (self.exponential_base ** attempt), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, 0.3 * delay)
        return delay


async def retry_async(
    func: Callable[..., Any],
    *args: Any,
    config: Optional[RetryConfig] = None,
    retry_on_exceptions: tuple = (Exception,),
    **kwargs: Any,
) -> Any:
    """Await ``func(*args, **kwargs)`` until it succeeds or the budget runs out.

    Only exceptions in ``retry_on_exceptions`` are retried (callers pass
    ``TransportError``); anything else propagates at once. After
    ``max_retries`` further attempts the last error is re-raised.
    """
    config = config or RetryConfig()
    name = getattr(func, "__name__", repr(func))

    for attempt in range(config.max_retries + 1):
        try:
            result = await func(*args, **kwargs)
        except retry_on_exceptions as e:
            if attempt >= config.max_retries:
                logger.error("Retry budget exhausted", function=name, attempts=attempt + 1, error=str(e))
                raise

            delay = config.get_delay(attempt)
            logger.warning(
                "Attempt failed, backing off",
                function=name,
                attempt=attempt + 1,
                max_retries=config.max_retries,
                delay_seconds=round(delay, 2),
                error=str(e),
            )
            await asyncio.sleep(delay)
            continue

        if attempt > 0:
            logger.info("Succeeded after retry", function=name, attempt=attempt)
        return result

    raise RuntimeError("retry loop exited without a result")
