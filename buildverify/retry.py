"""
Retry logic with exponential backoff for handling transient failures.

Used for the writes that follow a finished verification, where a
transient store error must not lose a computed verdict.
"""

import time
import functools
from typing import Callable, Type, Tuple, Optional


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable] = None,
):
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential calculation (delay *= base)
        exceptions: Tuple of exceptions to catch and retry
        on_retry: Optional callback function(attempt, exception, delay)

    Example:
        @exponential_backoff(max_retries=3, base_delay=0.5, exceptions=(PersistenceError,))
        def mark_completed(job_id):
            store.update_status(job_id, JobStatus.COMPLETED)
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = base_delay
            last_exception = None

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    last_exception = e

                    # Don't sleep after the last attempt
                    if attempt < max_retries:
                        current_delay = min(delay, max_delay)

                        if on_retry:
                            on_retry(attempt + 1, e, current_delay)

                        time.sleep(current_delay)
                        delay *= exponential_base
                    else:
                        raise RetryError(
                            f"Failed after {max_retries + 1} attempts: {str(e)}"
                        ) from e

            raise RetryError(
                f"Unexpected retry exhaustion: {str(last_exception)}"
            ) from last_exception

        return wrapper
    return decorator


def retry_call(func: Callable, *args, **options):
    """
    Call `func(*args)` under exponential_backoff built from `options`.

    Handy where the retry policy comes from runtime settings rather than
    being fixed at decoration time.
    """
    return exponential_backoff(**options)(func)(*args)
