"""Error codes, structured error envelopes, and store failure conversion."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, TypeVar

from pdfbot.schemas import ErrorResponse

LOGGER = logging.getLogger(__name__)

ERROR_INVALID_TOKEN = "INVALID_TOKEN"
ERROR_INVALID_URL = "INVALID_URL"
ERROR_META_NOT_OBJECT = "META_NOT_OBJECT"
ERROR_OPTIONS_NOT_OBJECT = "OPTIONS_NOT_OBJECT"
ERROR_INVALID_JOB_ID = "INVALID_JOB_ID"
ERROR_RENDER = "RENDER_ERROR"
ERROR_STORE = "STORE_ERROR"

_MESSAGES = {
    ERROR_INVALID_TOKEN: "Invalid token.",
    ERROR_INVALID_URL: "Invalid url.",
    ERROR_META_NOT_OBJECT: "Meta data is not a valid object.",
    ERROR_OPTIONS_NOT_OBJECT: "Options are not a valid object.",
    ERROR_INVALID_JOB_ID: "The job does not exist.",
    ERROR_RENDER: "PDF rendering failed:",
    ERROR_STORE: "The job store failed.",
}

T = TypeVar("T")


class StoreError(Exception):
    """Raised when any store operation fails.

    Carries no message or cause; callers treat every store failure the same way.
    """

    code = ERROR_STORE


def error_message(code: str) -> str:
    return _MESSAGES.get(code, code)


def create_error_response(code: str) -> ErrorResponse:
    return ErrorResponse(code=code, message=error_message(code))


def is_error(value: Any) -> bool:
    """Return True for error envelopes (models or plain mappings)."""

    if value is None:
        return False
    if isinstance(value, dict):
        return bool(value.get("error"))
    return bool(getattr(value, "error", False))


async def call_store(operation: Callable[..., T], *args: Any) -> T:
    """Run a synchronous store operation off the event loop.

    Failures are logged and replaced with a bare ``StoreError``.
    """

    try:
        return await asyncio.to_thread(operation, *args)
    except Exception as exc:
        LOGGER.warning("Store error in %s: %s", getattr(operation, "__name__", operation), exc)
        raise StoreError() from None
