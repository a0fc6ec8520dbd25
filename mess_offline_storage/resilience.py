"""Retry utilities for store operations and initialization.

Provides retry with linear or exponential backoff around async callables.
The store retries lock contention with a short linear backoff; the
initializer retries whole boot attempts with exponential backoff.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, TypeVar

from .exceptions import is_transient_error

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry with backoff.

    ``max_attempts`` counts the first call, so 3 means one call plus two retries.
    """

    max_attempts: int = 3
    backoff_base: float = 0.1  # seconds
    backoff_max: float = 30.0  # cap
    exponential: bool = False  # linear: base * attempt, exponential: base * 2 ** (attempt - 1)

    def compute_delay(self, attempt: int) -> float:
        """Delay before the retry that follows ``attempt`` (1-based)."""
        if self.exponential:
            delay = self.backoff_base * (2 ** (attempt - 1))
        else:
            delay = self.backoff_base * attempt
        return min(delay, self.backoff_max)


async def retry_with_backoff(
    fn: Callable[..., Coroutine[Any, Any, T]],
    *args: Any,
    config: RetryConfig | None = None,
    is_retryable: Callable[[BaseException], bool] = is_transient_error,
    context_msg: str = "",
    **kwargs: Any,
) -> T:
    """Execute an async function with retry and backoff.

    Args:
        fn: Async callable to execute
        *args: Positional args for fn
        config: Retry configuration (uses defaults if None)
        is_retryable: Predicate deciding whether an error is worth another attempt
        context_msg: Extra context for log messages (e.g. table name)
        **kwargs: Keyword args for fn

    Returns:
        Result of fn

    Raises:
        Exception: Last exception after all attempts exhausted, or the first
            non-retryable one
    """
    cfg = config or RetryConfig()
    ctx = f" [{context_msg}]" if context_msg else ""
    attempts = max(1, cfg.max_attempts)

    for attempt in range(1, attempts + 1):
        try:
            result = await fn(*args, **kwargs)
        except Exception as exc:
            retryable = is_retryable(exc)
            if not retryable or attempt >= attempts:
                if retryable:
                    logger.error(
                        "RETRY_EXHAUSTED: attempt=%d/%d%s: %s", attempt, attempts, ctx, exc
                    )
                raise

            delay = cfg.compute_delay(attempt)
            logger.warning(
                "RETRYING: attempt=%d/%d delay=%.2fs%s: %s", attempt, attempts, delay, ctx, exc
            )
            await asyncio.sleep(delay)
        else:
            if attempt > 1:
                logger.info(
                    "RETRY_RECOVERED: succeeded on attempt %d/%d%s", attempt, attempts, ctx
                )
            return result

    raise RuntimeError("retry_with_backoff exhausted without raising")  # pragma: no cover
