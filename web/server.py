import ssl
from typing import Any, Dict, Optional

from aiohttp import web

from config import Config, Strings
from services.activity import ActivityTracker
from services.aggregation import AggregationEngine
from services.date_utils import format_duration
from services.error_utils import handle_exception
from services.logging_utils import get_logger, wrap_handler
from services.matching import MatchingEngine, PendingMatches
from services.payload_models import ApiResponse, ContactPayload
from services.record_store import RecordStore, StaleRecordError, StorageError
from services.survey_models import MatchStatus
from services.wizard import WizardManager, WizardStateError


def _json(output: Any, status: int = 200, message: Optional[str] = None, errors: Optional[list] = None) -> web.Response:
    return web.json_response(ApiResponse(output, message, errors).to_dict(), status=status)


async def _body(request: web.Request) -> Dict[str, Any]:
    if not request.can_read_body:
        return {}
    try:
        data = await request.json()
    except ValueError:
        raise web.HTTPBadRequest(
            text='{"output": null, "message": "Invalid JSON body"}', content_type="application/json"
        )
    return data if isinstance(data, dict) else {}


class WebServer:
    def __init__(
        self,
        store: RecordStore,
        tracker: Optional[ActivityTracker] = None,
        wizards: Optional[WizardManager] = None,
        matcher: Optional[MatchingEngine] = None,
        dashboard: Optional[AggregationEngine] = None,
        pending: Optional[PendingMatches] = None,
    ):
        """Wire the survey, matching and dashboard services around one store."""
        self.store = store
        self.tracker = tracker or ActivityTracker(store)
        self.wizards = wizards or WizardManager(store, self.tracker)
        self.matcher = matcher or MatchingEngine(store, self.tracker, tz=Config.timezone())
        self.dashboard = dashboard or AggregationEngine(store)
        self.pending = pending or PendingMatches()

    @staticmethod
    def _is_authorized(request: web.Request) -> bool:
        """Validate request with X-Auth-Token header when WEB_AUTH_TOKEN is set.

        If `Config.WEB_AUTH_TOKEN` is not set, authorization is not enforced.
        """
        token = Config.WEB_AUTH_TOKEN
        if not token:
            return True
        provided = request.headers.get("X-Auth-Token")
        return provided == token

    def _wizard(self, request: web.Request):
        survey_id = request.match_info["survey_id"]
        engine = self.wizards.get(survey_id)
        if engine is None:
            raise web.HTTPNotFound(
                text=f'{{"output": null, "message": "{Strings.SURVEY_NOT_FOUND}"}}',
                content_type="application/json",
            )
        return engine

    # --- survey wizard ---

    async def start_survey(self, request: web.Request) -> web.Response:
        engine = self.wizards.start()
        return _json(engine.state(), status=201)

    async def survey_state(self, request: web.Request) -> web.Response:
        return _json(self._wizard(request).state())

    async def set_answers(self, request: web.Request) -> web.Response:
        engine = self._wizard(request)
        data = await _body(request)
        answers = data.get("answers", data)
        try:
            engine.set_answers(answers if isinstance(answers, dict) else {})
        except WizardStateError as e:
            return _json(engine.state(), status=409, message=str(e))
        except ValueError as e:
            return _json(engine.state(), status=400, message=str(e))
        return _json(engine.state())

    async def advance(self, request: web.Request) -> web.Response:
        engine = self._wizard(request)
        try:
            result = await engine.advance()
        except WizardStateError as e:
            return _json(engine.state(), status=409, message=str(e))
        if not result.ok:
            return _json(
                engine.state(),
                status=422,
                message=Strings.FIX_REQUIRED_FIELDS,
                errors=[e.to_dict() for e in result.errors],
            )
        return _json(engine.state())

    async def retreat(self, request: web.Request) -> web.Response:
        engine = self._wizard(request)
        try:
            engine.retreat()
        except WizardStateError as e:
            return _json(engine.state(), status=409, message=str(e))
        return _json(engine.state())

    async def submit(self, request: web.Request) -> web.Response:
        engine = self._wizard(request)
        data = await _body(request)
        client_info = data.get("clientInfo")
        try:
            result = await engine.submit(client_info if isinstance(client_info, dict) else None)
        except WizardStateError as e:
            return _json(engine.state(), status=409, message=str(e))
        except StorageError as e:
            return _json(engine.state(), status=503, message=handle_exception(e, survey_id=engine.survey_id))
        if not result.ok:
            return _json(
                engine.state(),
                status=422,
                message=Strings.FIX_REQUIRED_FIELDS,
                errors=[e.to_dict() for e in result.errors],
            )
        completion = engine.clock() - engine.started_at
        message = f"{Strings.SURVEY_SUBMITTED} {Strings.COMPLETION_TIME.format(duration=format_duration(completion))}"
        return _json(engine.state(), message=message)

    async def reset(self, request: web.Request) -> web.Response:
        engine = self.wizards.reset(request.match_info["survey_id"])
        if engine is None:
            return _json(None, status=404, message=Strings.SURVEY_NOT_FOUND)
        return _json(engine.state())

    # --- contact linking ---

    async def contact(self, request: web.Request) -> web.Response:
        data = await _body(request)
        try:
            payload = ContactPayload.from_dict(data)
        except ValueError as e:
            get_logger("web.contact").info("invalid payload", extra={"reason": str(e)})
            return _json(None, status=400, message=Strings.INVALID_PAYLOAD, errors=[str(e)])
        try:
            outcome = await self.matcher.match(payload)
        except StorageError as e:
            return _json(None, status=503, message=handle_exception(e))

        body = outcome.to_dict()
        if outcome.status == MatchStatus.AMBIGUOUS:
            body["token"] = self.pending.put(outcome)
        return _json(body, message=outcome.message)

    async def select_match(self, request: web.Request) -> web.Response:
        token = request.match_info["token"]
        outcome = self.pending.get(token)
        if outcome is None:
            return _json(None, status=404, message=Strings.MATCH_NOT_FOUND)
        data = await _body(request)

        if data.get("cancel"):
            self.pending.pop(token)
            cancelled = self.matcher.cancel(outcome)
            return _json(cancelled.to_dict(), message=cancelled.message)

        try:
            choice = int(data.get("choice"))
        except (TypeError, ValueError):
            return _json(outcome.to_dict(), status=400, message=Strings.INVALID_PAYLOAD)
        try:
            linked = await self.matcher.choose(outcome, choice)
        except StaleRecordError as e:
            # someone else linked it first; the respondent has to start over
            self.pending.pop(token)
            return _json(None, status=409, message=handle_exception(e))
        except StorageError as e:
            return _json(outcome.to_dict(), status=503, message=handle_exception(e))
        except ValueError as e:
            return _json(outcome.to_dict(), status=400, message=str(e))
        self.pending.pop(token)
        return _json(linked.to_dict(), message=linked.message)

    # --- operator dashboard ---

    async def dashboard_snapshot(self, request: web.Request) -> web.Response:
        if not self._is_authorized(request):
            get_logger("web.dashboard").warning("unauthorized", extra={"path": "/dashboard"})
            return _json(None, status=401, message=Strings.UNAUTHORIZED)
        snapshot = self.dashboard.refresh() if self.dashboard.running else self.dashboard.snapshot
        return _json(snapshot.to_dict())

    # --- lifecycle ---

    async def _on_startup(self, app: web.Application) -> None:
        await self.dashboard.start()

    async def _on_cleanup(self, app: web.Application) -> None:
        await self.dashboard.stop()
        await self.tracker.drain()

    def build_app(self) -> web.Application:
        app = web.Application()
        app["server"] = self
        routes = [
            ("POST", "/surveys", "survey.start", self.start_survey),
            ("GET", "/surveys/{survey_id}", "survey.state", self.survey_state),
            ("POST", "/surveys/{survey_id}/answers", "survey.answers", self.set_answers),
            ("POST", "/surveys/{survey_id}/advance", "survey.advance", self.advance),
            ("POST", "/surveys/{survey_id}/retreat", "survey.retreat", self.retreat),
            ("POST", "/surveys/{survey_id}/submit", "survey.submit", self.submit),
            ("POST", "/surveys/{survey_id}/reset", "survey.reset", self.reset),
            ("POST", "/contact", "contact.match", self.contact),
            ("POST", "/contact/{token}/select", "contact.select", self.select_match),
            ("GET", "/dashboard", "dashboard", self.dashboard_snapshot),
        ]
        for method, path, name, handler in routes:
            app.router.add_route(method, path, wrap_handler(f"web.{name}", handler))
        app.on_startup.append(self._on_startup)
        app.on_cleanup.append(self._on_cleanup)
        return app

    @staticmethod
    async def run_server(store: RecordStore) -> web.AppRunner:
        """Run the HTTP/HTTPS server"""
        server = WebServer(store)
        app = server.build_app()

        port = int(Config.PORT or 3000)
        host = Config.HOST
        ssl_context = None

        if Config.SSL_CERT_PATH and Config.SSL_KEY_PATH:
            ssl_context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
            ssl_context.load_cert_chain(
                certfile=Config.SSL_CERT_PATH,
                keyfile=Config.SSL_KEY_PATH
            )

        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, host, port, ssl_context=ssl_context)
        await site.start()
        get_logger("web.server").info("server started", extra={"host": host, "port": port})
        return runner


async def create_and_start_server(store: RecordStore) -> web.AppRunner:
    return await WebServer.run_server(store)
