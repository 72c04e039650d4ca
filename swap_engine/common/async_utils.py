from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, TypeVar

from .logging import log_event

T = TypeVar("T")


def error_fields(error: BaseException) -> dict[str, Any]:
    """Structured log fields for an error; ``code`` and ``status`` come from typed errors."""
    fields: dict[str, Any] = {
        "error": str(error) or type(error).__name__,
        "error_type": type(error).__name__,
    }
    code = getattr(error, "code", None)
    if isinstance(code, (str, int)) and not isinstance(code, bool):
        fields["error_code"] = code
    status = getattr(error, "status", None)
    if isinstance(status, int) and not isinstance(status, bool):
        fields["http_status"] = status
    return fields


async def guarded_call(
    action: Callable[[], Awaitable[T] | T],
    *,
    logger: logging.Logger,
    event: str,
    message: str,
    level: str = "warning",
    default: T | None = None,
    reraise: bool = False,
    timeout_seconds: float | None = None,
    **fields: Any,
) -> T | None:
    """Run a collaborator call whose failure must not abort the caller.

    Failures are logged with ``error_fields`` and replaced by ``default``. A
    ``timeout_seconds`` bound applies to awaitable results only.
    """
    try:
        result = action()
        if inspect.isawaitable(result):
            if timeout_seconds is not None:
                return await asyncio.wait_for(result, timeout=timeout_seconds)
            return await result
        return result
    except asyncio.CancelledError:
        raise
    except Exception as error:
        details = error_fields(error)
        if isinstance(error, asyncio.TimeoutError) and timeout_seconds is not None:
            details["error"] = f"no result within {timeout_seconds:g}s"
            details["timeout_seconds"] = timeout_seconds
        log_event(
            logger,
            level=level,
            event=event,
            message=message,
            **{**details, **fields},
        )
        if reraise:
            raise
        return default
