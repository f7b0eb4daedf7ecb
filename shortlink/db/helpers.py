"""
Storage Call Helpers

Every store round-trip is bounded by a timeout and classified on failure:
driver-level connection problems and timeouts become ``TransientError`` so
callers can tell "try again later" from "does not exist".
"""

import asyncio
import functools
import logging
from typing import Optional

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

from shortlink.core.exceptions import TransientError

logger = logging.getLogger(__name__)


def _is_transient(error: Exception) -> bool:
    if isinstance(error, (asyncio.TimeoutError, OperationalError, InterfaceError)):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


def handle_store_errors(retry: bool = True):
    """
    Decorator for store methods.

    The wrapped method gains a ``timeout`` keyword (falling back to the
    store's ``timeout`` attribute). The timeout bounds the whole call, retries
    included: every attempt gets what is left of one deadline, and no retry
    starts once the deadline has passed. Transient failures are retried up to
    the store's ``retry_attempts`` when ``retry`` is True; writes that are not
    safe to replay pass ``retry=False`` and get a single attempt.
    """

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(self, *args, timeout: Optional[float] = None, **kwargs):
            bound = timeout if timeout is not None else self.timeout
            attempts = 1 + (self.retry_attempts if retry else 0)
            loop = asyncio.get_running_loop()
            deadline = loop.time() + bound
            last_error: Optional[Exception] = None

            for attempt in range(1, attempts + 1):
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                try:
                    return await asyncio.wait_for(func(self, *args, **kwargs), timeout=remaining)
                except Exception as e:
                    if not _is_transient(e):
                        raise
                    last_error = e
                    logger.warning(
                        f"Transient store error in {func.__name__} "
                        f"(attempt {attempt}/{attempts}): {type(e).__name__}: {e}"
                    )

            raise TransientError(
                f"{func.__name__} failed within {bound}s",
                original_error=last_error,
            )

        return wrapper

    return decorator
