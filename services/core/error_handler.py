"""
Error handling helpers for the Trust Engine

- safe_execute_async: run a follow-up step whose failure must be logged
  but must never undo the work that triggered it.
- retry_on_conflict: re-run a single mutation after ConcurrentUpdateConflict.
"""

from typing import Any, Awaitable, Callable, Coroutine, TypeVar

from exceptions import ConcurrentUpdateConflict
from logging_config import get_logger, log_error

logger = get_logger(__name__)
T = TypeVar('T')


class ErrorHandler:
    """Centralized error handling with proper logging"""

    @staticmethod
    async def safe_execute_async(
        coro: Coroutine[Any, Any, T],
        default: T = None,
        context: dict | None = None,
        log_level: str = "ERROR",
        event: str = "error_occurred"
    ) -> T:
        """
        Safely execute an async operation with error handling.

        Usage:
            decision = await ErrorHandler.safe_execute_async(
                engine.evaluate(website_id, category),
                default=None,
                context={"website_id": website_id},
                event="trust_transition_failed"
            )
        """
        try:
            return await coro
        except Exception as e:
            log_error(e, context, log_level, event)
            return default


async def retry_on_conflict(
    operation: Callable[[], Awaitable[T]],
    attempts: int,
    context: dict | None = None
) -> T:
    """
    Re-run ``operation`` while it raises ConcurrentUpdateConflict.

    Only the single mutation is retried; the last conflict is re-raised
    once ``attempts`` are exhausted.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except ConcurrentUpdateConflict:
            if attempt >= attempts:
                raise
            logger.info("trust_transition_conflict", attempt=attempt, **(context or {}))
