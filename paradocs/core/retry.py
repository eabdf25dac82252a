"""
retry.py — Bounded exponential backoff for store calls.

Only connection-level failures are retried (AutoReconnect, NetworkTimeout,
ServerSelectionTimeoutError …, all subclasses of ConnectionFailure).
Anything else — duplicate keys, bad queries — propagates immediately.

Usage:
    docs = await with_retry(lambda: coll.find(q).to_list(None), "fetch reports")
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from pymongo.errors import ConnectionFailure

from paradocs.core.config import settings
from paradocs.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    label: str,
    max_attempts: int | None = None,
    base_delay: float | None = None,
) -> T:
    """
    Await `operation()` up to `max_attempts` times.

    Waits base_delay * 2**attempt between attempts (0.5s, 1s, 2s with the
    defaults). Raises StoreUnavailableError once attempts are exhausted.
    """
    attempts = max_attempts if max_attempts is not None else settings.store_max_attempts
    delay = base_delay if base_delay is not None else settings.store_retry_base_delay
    attempts = max(1, attempts)

    last_exc: Exception | None = None
    for attempt in range(attempts):
        try:
            return await operation()
        except ConnectionFailure as exc:
            last_exc = exc
            if attempt < attempts - 1:
                wait_time = delay * (2 ** attempt)
                logger.warning(
                    "%s: transient store error (%s), retrying in %.2fs (attempt %d/%d)",
                    label, exc, wait_time, attempt + 1, attempts,
                )
                await asyncio.sleep(wait_time)

    logger.error("%s: giving up after %d attempts: %s", label, attempts, last_exc)
    raise StoreUnavailableError(label, attempts, last_exc)
