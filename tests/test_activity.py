import logging

import pytest

from config import Config
from config.constants import ActivityType
from services.activity import ActivityTracker
from services.survey_models import ActivityEvent


@pytest.mark.asyncio
async def test_emit_appends_event_with_server_timestamp(store):
    tracker = ActivityTracker(store)
    tracker.emit(ActivityEvent(ActivityType.SURVEY_STARTED, "s-1", 0))
    assert tracker.pending == 1
    await tracker.drain()
    assert tracker.pending == 0

    events = [d.data for d in store._docs(Config.ACTIVITY_COLLECTION).values()]
    assert len(events) == 1
    assert events[0]["type"] == "survey_started"
    assert events[0]["surveyId"] == "s-1"
    assert events[0]["step"] == 0
    assert events[0]["timestamp"] is not None


@pytest.mark.asyncio
async def test_append_failure_is_logged_and_swallowed(store, caplog):
    store.fail_inserts.add(Config.ACTIVITY_COLLECTION)
    tracker = ActivityTracker(store)

    with caplog.at_level(logging.ERROR, logger="surveylink"):
        await tracker.append(ActivityEvent(ActivityType.STEP_COMPLETED, "s-2", 4))
        task = tracker.emit(ActivityEvent(ActivityType.SURVEY_COMPLETED, "s-2", 12))
        await tracker.drain()

    assert task.exception() is None
    failures = [r for r in caplog.records if r.getMessage() == "tracking failed"]
    assert len(failures) == 2
    assert failures[0].survey_id == "s-2"
    assert failures[0].type == "step_completed"


@pytest.mark.asyncio
async def test_extra_payload_is_stored(store):
    tracker = ActivityTracker(store, collection="audit")
    await tracker.append(
        ActivityEvent(ActivityType.SURVEY_COMPLETED, "s-3", 12, extra={"completionTime": 4200})
    )
    (event,) = [d.data for d in store._docs("audit").values()]
    assert event["completionTime"] == 4200
