# ========================
# npiscore/utils/retry.py
# ========================

"""
Retry Helper

Bounded retries with linearly escalating backoff for network writes.
"""

import time
import logging
from typing import Callable, Tuple, Type, TypeVar

import psycopg2

logger = logging.getLogger(__name__)

T = TypeVar('T')

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (
    psycopg2.OperationalError,
    psycopg2.InterfaceError,
    ConnectionError,
    TimeoutError,
)


def with_retry(operation: Callable[[], T],
               label: str,
               max_attempts: int = 5,
               base_delay: float = 3.0,
               retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
               sleep: Callable[[float], None] = time.sleep) -> T:
    """
    Run an operation, retrying transient failures.

    The wait before attempt n+1 is base_delay * n seconds. Errors not listed
    in retry_on propagate immediately.

    Args:
        operation (callable): Zero-argument callable to run
        label (str): Description used in log messages
        max_attempts (int): Total attempts before the last error is re-raised
        base_delay (float): Seconds multiplied by the attempt number
        retry_on (tuple): Exception types treated as transient
        sleep (callable): Sleep function, replaceable in tests

    Returns:
        The operation's return value
    """
    attempt = 1
    while True:
        try:
            return operation()
        except retry_on as e:
            if attempt >= max_attempts:
                logger.error(f"{label} failed after {attempt} attempts: {e}")
                raise
            delay = base_delay * attempt
            logger.warning(
                f"{label} failed (attempt {attempt}/{max_attempts}): {e}. "
                f"Retrying in {delay:.1f}s..."
            )
            sleep(delay)
            attempt += 1
