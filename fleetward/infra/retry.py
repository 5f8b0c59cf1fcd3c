"""Retry with exponential backoff for async calls.

Works with any async function and any exception type. When the failing
exception carries a server-supplied delay (``retry_after``, as
``HttpError`` does for ``Retry-After``), that delay replaces the computed
backoff for that attempt.

Example:
    from fleetward.infra.retry import call_with_retry, transient

    page = await call_with_retry(lambda: fetch_page(token), on=transient)
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable

from botocore.exceptions import ClientError
from loguru import logger

from fleetward.errors import TransientError
from fleetward.infra.http import HttpError, is_transient_status

type RetryPredicate = Callable[[Exception], bool]

# Retrying 3 times after the first attempt, waiting 1s, 2s, 4s.
DEFAULT_ATTEMPTS = 4
DEFAULT_BASE_DELAY = 1.0

_AWS_THROTTLE_CODES = frozenset({
    "Throttling",
    "ThrottlingException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "RequestThrottled",
    "SlowDown",
})


def backoff_delay(
    attempt: int,
    error: Exception,
    *,
    base_delay: float = DEFAULT_BASE_DELAY,
    exponential_base: float = 2.0,
    max_delay: float = 60.0,
    jitter: bool = False,
) -> float:
    """Delay before retry number ``attempt + 1``.

    ``Retry-After`` style hints on the error take precedence over the
    exponential schedule.
    """
    hinted = getattr(error, "retry_after", None)
    if isinstance(hinted, int | float) and hinted > 0:
        return min(float(hinted), max_delay)
    delay = min(base_delay * (exponential_base**attempt), max_delay)
    if jitter:
        delay += random.uniform(0, delay * 0.1)
    return delay


async def call_with_retry[R](
    fn: Callable[[], Awaitable[R]],
    *,
    on: RetryPredicate,
    max_attempts: int = DEFAULT_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    exponential_base: float = 2.0,
    max_delay: float = 60.0,
    jitter: bool = False,
    context: str = "",
) -> R:
    """Await ``fn`` until it succeeds, retrying errors accepted by ``on``.

    Errors rejected by ``on`` propagate unchanged. A retryable error that is
    still failing after ``max_attempts`` is raised as ``TransientError``.
    """
    for attempt in range(max_attempts):
        try:
            return await fn()
        except Exception as e:
            if not on(e):
                raise
            if attempt >= max_attempts - 1:
                raise TransientError(context or "call", max_attempts, e) from e
            delay = backoff_delay(
                attempt, e,
                base_delay=base_delay,
                exponential_base=exponential_base,
                max_delay=max_delay,
                jitter=jitter,
            )
            logger.warning(
                "Retry {n}/{total} {context} after {kind}: {err}. Waiting {delay:.1f}s...",
                n=attempt + 1, total=max_attempts, context=context,
                kind=type(e).__name__, err=e, delay=delay,
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")



def aws_error_status(e: ClientError) -> int:
    return int(e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0)


def transient(e: Exception) -> bool:
    """Network errors, 429 and 5xx, whichever client raised them."""
    match e:
        case HttpError():
            return e.transient
        case ClientError():
            code = e.response.get("Error", {}).get("Code", "")
            return code in _AWS_THROTTLE_CODES or is_transient_status(aws_error_status(e))
        case ConnectionError() | TimeoutError():
            return True
        case _:
            return False


__all__ = [
    "DEFAULT_ATTEMPTS",
    "DEFAULT_BASE_DELAY",
    "RetryPredicate",
    "aws_error_status",
    "backoff_delay",
    "call_with_retry",
    "transient",
]
