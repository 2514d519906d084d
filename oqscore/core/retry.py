"""Retry combinator with exponential backoff.

Used identically for model-provider calls and leaderboard fetches. Delays are
blocking (``time.sleep``) and a retry sequence cannot be cancelled from outside.
"""

import time
from functools import wraps
from typing import Any, Callable, Optional, TypeVar, cast

from oqscore.core.logger import logger

F = TypeVar('F', bound=Callable[..., Any])
T = TypeVar('T')

Backoff = Callable[[int], float]


def exponential_backoff(base_delay: float = 1.0) -> Backoff:
    """Return ``attempt -> base_delay * 2**attempt`` (attempt is zero-based)."""
    def backoff(attempt: int) -> float:
        return base_delay * (2 ** attempt)
    return backoff


def call_with_retries(
    func: Callable[[], T],
    max_attempts: int = 3,
    backoff: Optional[Backoff] = None,
    label: str = "",
) -> T:
    """
    Call ``func`` until it succeeds or ``max_attempts`` is exhausted.

    Args:
        func (Callable): Zero-argument callable to invoke.
        max_attempts (int): Total number of attempts, including the first.
        backoff (Backoff): Maps the zero-based failed attempt to a delay in seconds.
        label (str): Name used in log lines. Defaults to ``func.__name__``.

    Returns:
        The first successful return value of ``func``.

    Raises:
        Exception: The exception from the final attempt.
    """
    backoff = backoff or exponential_backoff()
    name = label or getattr(func, "__name__", "call")
    for attempt in range(max_attempts):
        try:
            return func()
        except Exception as e:
            if attempt == max_attempts - 1:
                logger.error(f"'{name}' failed after {max_attempts} attempts: {e}")
                raise

            delay = backoff(attempt)
            logger.warning(
                f"'{name}' failed (attempt {attempt + 1}/{max_attempts}): {e}. "
                f"Retrying in {delay} seconds..."
            )
            time.sleep(delay)

    raise ValueError("max_attempts must be at least 1")


def with_retries(max_attempts: int = 3, initial_delay: float = 1.0) -> Callable[[F], F]:
    """
    A decorator form of :func:`call_with_retries`.

    Args:
        max_attempts (int): Total number of attempts.
        initial_delay (float): Delay after the first failure. Subsequent delays
                               double with each attempt.

    Returns:
        Callable: The decorated function.
    """
    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return call_with_retries(
                lambda: func(*args, **kwargs),
                max_attempts=max_attempts,
                backoff=exponential_backoff(initial_delay),
                label=func.__name__,
            )
        return cast(F, wrapper)
    return decorator
