from __future__ import annotations

from typing import Any, Dict, Type

from config import Strings
from services.logging_utils import get_logger
from services.record_store import StorageError
from services.activity import TrackingError
from services.wizard import WizardStateError


# Mapping of exception types to user-facing messages
EXCEPTION_MESSAGE_MAP: Dict[Type[BaseException], str] = {
    StorageError: Strings.TRY_AGAIN_LATER,
    WizardStateError: Strings.SURVEY_NOT_FOUND,
}


def map_exception_to_message(exc: BaseException) -> str:
    """Convert a known exception into a user-facing message.

    Unknown exceptions fall back to a safe generic message.
    """

    for etype, message in EXCEPTION_MESSAGE_MAP.items():
        if isinstance(exc, etype):
            return message
    return Strings.TRY_AGAIN_LATER


def is_retryable(exc: BaseException) -> bool:
    """Return True when the caller may simply repeat the operation."""

    return bool(getattr(exc, "retryable", False))


def log_exception_categorized(exc: BaseException, **context: Any) -> None:
    """Log an exception with a category and sanitized context.

    Only non-sensitive fields should be provided in context (survey_id,
    submission_id, step index). Contact details never go into logs.
    """

    category = (
        "storage" if isinstance(exc, StorageError)
        else "tracking" if isinstance(exc, TrackingError)
        else "wizard" if isinstance(exc, WizardStateError)
        else "unexpected"
    )
    log = get_logger(f"error.{category}")
    log.exception("handler failed", extra={"category": category, **context})


def handle_exception(exc: BaseException, **context: Any) -> str:
    """Log a categorized exception and return a user-facing message."""

    log_exception_categorized(exc, **context)
    return map_exception_to_message(exc)
