import logging

import pytest
from aiohttp import web

from config import Strings, setup_logging
from config.logger import ContextDefaultsFilter
from services.error_utils import handle_exception, is_retryable, map_exception_to_message
from services.logging_utils import current_context, get_logger, wrap_handler
from services.record_store import StaleRecordError, StorageError
from services.wizard import WizardStateError


def test_get_logger_lifts_ids_from_payload(caplog):
    log = get_logger("matching.link", {"surveyId": "s-9", "submissionId": "d-1"}, attempt=2)
    with caplog.at_level(logging.INFO, logger="surveylink"):
        log.info("linked", extra={"score": 25})
    record = caplog.records[-1]
    assert record.survey_id == "s-9"
    assert record.submission_id == "d-1"
    assert record.step_name == "matching.link"
    assert record.attempt == 2
    assert record.score == 25


@pytest.mark.asyncio
async def test_wrap_handler_binds_route_context(caplog):
    seen = {}

    async def handler(request):
        seen.update(current_context.get())
        get_logger().info("inside")
        return web.json_response({})

    class Request:
        match_info = {"survey_id": "abc"}

    wrapped = wrap_handler("web.survey.state", handler)
    with caplog.at_level(logging.DEBUG, logger="surveylink"):
        response = await wrapped(Request())

    assert response.status == 200
    assert seen == {"survey_id": "abc", "step_name": "web.survey.state"}
    inside = [r for r in caplog.records if r.getMessage() == "inside"][0]
    assert inside.survey_id == "abc"
    assert current_context.get() == {}
    assert [r.getMessage() for r in caplog.records if r.getMessage() in ("start", "done")] == ["start", "done"]


@pytest.mark.asyncio
async def test_wrap_handler_logs_and_reraises(caplog):
    async def handler(request):
        raise RuntimeError("boom")

    wrapped = wrap_handler("web.fail", handler)
    with caplog.at_level(logging.ERROR, logger="surveylink"):
        with pytest.raises(RuntimeError):
            await wrapped(object())
    assert any(r.getMessage() == "failed" and r.exc_info for r in caplog.records)


def test_handle_exception_categories(caplog):
    with caplog.at_level(logging.ERROR, logger="surveylink"):
        try:
            raise StaleRecordError("revision moved")
        except StorageError as e:
            message = handle_exception(e, survey_id="s-1")
    assert message == Strings.TRY_AGAIN_LATER
    record = caplog.records[-1]
    assert record.category == "storage"
    assert record.survey_id == "s-1"

    assert map_exception_to_message(WizardStateError("closed")) == Strings.SURVEY_NOT_FOUND
    assert map_exception_to_message(KeyError("x")) == Strings.TRY_AGAIN_LATER
    assert is_retryable(StorageError("down"))
    assert not is_retryable(ValueError("bad"))


def test_setup_logging_is_idempotent(tmp_path):
    log = setup_logging("DEBUG", name="surveylink.test", log_dir=tmp_path)
    again = setup_logging(name="surveylink.test")
    assert log is again
    assert len(log.handlers) == 2
    assert log.level == logging.DEBUG
    assert all(any(isinstance(f, ContextDefaultsFilter) for f in h.filters) for h in log.handlers)
    log.info("hello")
    for handler in log.handlers:
        handler.flush()
    assert "[-] -: hello" in (tmp_path / "server.log").read_text()
