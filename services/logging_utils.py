from __future__ import annotations
import logging
import contextvars
from typing import Any, Callable, Awaitable, Dict

from aiohttp.web import HTTPException

from config import logger as base_logger

# Context variable to store logging context across async calls
current_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "current_context", default={}
)


class ContextLogger(logging.LoggerAdapter):
    """Logger adapter injecting contextual fields into log records."""

    def process(self, msg, kwargs):
        context = current_context.get().copy()
        context.update(self.extra)
        context.update(kwargs.pop("extra", {}))
        kwargs["extra"] = context
        return msg, kwargs


def get_logger(step_name: str | None = None, payload: Dict[str, Any] | None = None, **extra: Any) -> ContextLogger:
    """Return a logger enriched with execution context.

    ``payload`` may be a submission, an activity event or a request body;
    ``surveyId`` and ``submissionId`` are lifted from it when present.
    """

    ctx = {}
    if payload:
        ctx["survey_id"] = payload.get("surveyId")
        ctx["submission_id"] = payload.get("submissionId")
    if step_name:
        ctx["step_name"] = step_name
    ctx.update({k: v for k, v in extra.items() if v is not None})
    return ContextLogger(base_logger, ctx)


def wrap_handler(step_name: str, func: Callable[[Any], Awaitable[Any]]):
    """Wrap an async aiohttp handler with contextual logging.

    The survey id is taken from the route (``/surveys/{survey_id}``) when
    the route carries one.
    """

    async def wrapper(request: Any):
        match_info = getattr(request, "match_info", {}) or {}
        ctx = {
            "survey_id": match_info.get("survey_id"),
            "step_name": step_name,
        }
        token = current_context.set(ctx)
        log = get_logger(step_name)
        log.info("start")
        try:
            response = await func(request)
            log.debug("response ready", extra={"status": getattr(response, "status", None)})
            log.info("done")
            return response
        except HTTPException as e:
            log.info("done", extra={"status": e.status})
            raise
        except Exception:
            log.exception("failed")
            raise
        finally:
            current_context.reset(token)

    return wrapper
