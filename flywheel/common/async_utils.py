from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, TypeVar

from .errors import classify_error
from .logging import log_event

T = TypeVar("T")


async def guarded_call(
    action: Callable[[], Awaitable[T] | T],
    *,
    logger: logging.Logger,
    event: str,
    message: str,
    level: str = "warning",
    default: T | None = None,
    **fields: Any,
) -> T | None:
    """Best-effort call: failures are logged with their error kind and yield ``default``."""
    try:
        result = action()
        if inspect.isawaitable(result):
            return await result
        return result
    except asyncio.CancelledError:
        raise
    except Exception as error:
        log_event(
            logger,
            level=level,
            event=event,
            message=message,
            error_kind=classify_error(error).value,
            error=str(error),
            **fields,
        )
        return default


async def retry_until(
    action: Callable[[], Awaitable[T]],
    *,
    predicate: Callable[[T], bool],
    attempts: int,
    interval_seconds: float,
    backoff: float = 1.0,
    max_interval_seconds: float = 5.0,
    default: T | None = None,
    logger: logging.Logger | None = None,
    event: str = "retry_attempt_failed",
    **fields: Any,
) -> T | None:
    """Run ``action`` until ``predicate`` accepts its result or attempts run out.

    Errors raised by ``action`` count as a rejected attempt. The last observed
    result (or ``default`` when every attempt raised) is returned so callers
    can degrade to a best-effort value instead of hanging or failing.
    """
    total_attempts = max(1, int(attempts))
    delay = max(0.0, float(interval_seconds))
    last_result: T | None = default

    for attempt in range(1, total_attempts + 1):
        try:
            last_result = await action()
            if predicate(last_result):
                return last_result
        except asyncio.CancelledError:
            raise
        except Exception as error:
            if logger is not None:
                log_event(
                    logger,
                    level="debug",
                    event=event,
                    message="Bounded retry attempt failed",
                    attempt=attempt,
                    max_attempts=total_attempts,
                    error=str(error),
                    **fields,
                )

        if attempt < total_attempts and delay > 0:
            await asyncio.sleep(delay)
            delay = min(max_interval_seconds, delay * max(1.0, backoff))

    return last_result
