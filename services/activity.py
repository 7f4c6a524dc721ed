from __future__ import annotations

import asyncio
from typing import Optional, Set

from config import Config
from services.logging_utils import get_logger
from services.record_store import RecordStore
from services.survey_models import ActivityEvent


class TrackingError(Exception):
    """An activity event could not be appended. Never leaves the tracker."""


class ActivityTracker:
    """Fire-and-forget sink for activity events.

    ``emit`` schedules the append on a background task so a slow or failing
    store never holds up a survey step or a submission. Failures are logged
    and dropped. ``drain`` waits for outstanding appends (shutdown, tests).
    """

    def __init__(self, store: RecordStore, collection: Optional[str] = None) -> None:
        self.store = store
        self.collection = collection or Config.ACTIVITY_COLLECTION
        self._pending: Set[asyncio.Task] = set()

    async def append(self, event: ActivityEvent) -> None:
        """Append one event; errors are logged, never raised."""
        log = get_logger("activity.append", {"surveyId": event.survey_id})
        try:
            try:
                await self.store.insert(self.collection, event.to_dict())
            except Exception as e:
                raise TrackingError(f"failed to track {event.type.value}") from e
            log.debug("tracked", extra={"type": event.type.value, "step": event.step})
        except TrackingError:
            log.exception("tracking failed", extra={"type": event.type.value})

    def emit(self, event: ActivityEvent) -> asyncio.Task:
        task = asyncio.ensure_future(self.append(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
