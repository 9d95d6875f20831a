"""
Retry service with exponential backoff for transient backend failures.

Conflicts are never retried: a conditioned update that affected zero rows
will affect zero rows again.
"""
import logging
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, OperationalError
from tenacity import (
    AsyncRetrying,
    after_log,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from occ_repro.core.exceptions import TransientBackendError

logger = logging.getLogger("occ-repro.retry_service")

T = TypeVar("T")


def is_transient_db_error(exception: BaseException) -> bool:
    """
    Determine if a database error is worth retrying.

    Args:
        exception: Exception to check

    Returns:
        True if the error is transient, False otherwise
    """
    if isinstance(exception, TransientBackendError):
        return True

    # Lock contention, dropped connections, server gone away
    if isinstance(exception, OperationalError):
        return True

    if isinstance(exception, DBAPIError) and exception.connection_invalidated:
        return True

    if isinstance(exception, (ConnectionError, TimeoutError)):
        return True

    return False


def create_retrying(
    max_attempts: int = 3,
    min_wait: float = 0.1,
    max_wait: float = 2.0,
    multiplier: float = 1.0
) -> AsyncRetrying:
    """
    Create an async retry controller with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds
        multiplier: Multiplier for exponential backoff

    Returns:
        AsyncRetrying instance retrying on TransientBackendError
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=multiplier, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(TransientBackendError),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        after=after_log(logger, logging.DEBUG),
        reraise=True,
    )


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args,
    max_attempts: int = 3,
    min_wait: float = 0.1,
    max_wait: float = 2.0,
    on_transient: Callable[[], Awaitable[Any]] | None = None,
    **kwargs
) -> T:
    """
    Call an async function, retrying transient database errors.

    Args:
        func: Async function to call
        *args: Positional arguments for the function
        max_attempts: Maximum number of attempts
        min_wait: Minimum backoff in seconds
        max_wait: Maximum backoff in seconds
        on_transient: Awaited after every transient failure, before the
            next attempt (e.g. a transaction rollback)
        **kwargs: Keyword arguments for the function

    Returns:
        Result of the function call

    Raises:
        TransientBackendError: If all attempts fail with transient errors
    """
    retrying = create_retrying(
        max_attempts=max_attempts,
        min_wait=min_wait,
        max_wait=max_wait,
    )

    async for attempt in retrying:
        with attempt:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if not is_transient_db_error(e):
                    raise
                if on_transient is not None:
                    await on_transient()
                if isinstance(e, TransientBackendError):
                    raise
                logger.warning(f"Transient backend error: {e}")
                raise TransientBackendError(
                    f"Transient backend error: {e}",
                    details={"error_type": type(e).__name__},
                ) from e
