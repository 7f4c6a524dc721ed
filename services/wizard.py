from __future__ import annotations

import time
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from cachetools import TTLCache

from config import Config, Strings
from config.constants import (
    CHECKBOX,
    RADIO,
    RATING,
    RATING_MAX,
    RATING_MIN,
    TEXT,
    ActivityType,
    FieldSpec,
    SURVEY_STEPS,
    StepSpec,
)
from services.activity import ActivityTracker
from services.logging_utils import get_logger
from services.record_store import RecordStore, StorageError
from services.survey_models import ActivityEvent, FieldError, StepResult, Submission

StepListener = Callable[[int, int], Any]


class WizardStateError(ValueError):
    """Raised when an operation is not accepted in the wizard's current state."""


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


def dedupe_selections(values: Any) -> List[str]:
    """Return checkbox selections without blanks or repeats, first-seen order.

    >>> dedupe_selections(["a", "a", "", "b"])
    ['a', 'b']
    """
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    cleaned = (str(v).strip() for v in values if v is not None)
    return list(dict.fromkeys(v for v in cleaned if v))


def parse_rating(value: Any) -> Optional[int]:
    """Return ``value`` as an int rating 1-5, or None if it is not one."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    try:
        rating = int(str(value).strip())
    except ValueError:
        return None
    return rating if RATING_MIN <= rating <= RATING_MAX else None


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def check_field(spec: FieldSpec, value: Any) -> Optional[FieldError]:
    """Apply one field's rule to a raw or merged value."""

    if spec.kind == CHECKBOX:
        selections = dedupe_selections(value)
        if not selections:
            return FieldError(spec.name, Strings.SELECT_AT_LEAST_ONE) if spec.required else None
        if spec.max_selections is not None and len(selections) > spec.max_selections:
            return FieldError(spec.name, Strings.TOO_MANY_SELECTIONS.format(limit=spec.max_selections))
        return None

    if _is_blank(value):
        if not spec.required:
            return None
        message = Strings.FIELD_REQUIRED if spec.kind == TEXT else Strings.SELECT_OPTION
        return FieldError(spec.name, message)

    if spec.kind == RATING and parse_rating(value) is None:
        return FieldError(spec.name, Strings.INVALID_RATING)
    if spec.kind == RADIO and spec.options and str(value).strip() not in spec.options:
        return FieldError(spec.name, Strings.SELECT_OPTION)
    return None


class WizardEngine:
    """
    Sequences the survey steps for one respondent and builds up the answers.

    Each step keeps a draft of its raw form values. ``advance`` validates
    the current draft, merges it into the cumulative answers and moves
    forward; ``submit`` does the same for the last step and writes the
    Submission. Activity events are fire-and-forget through the tracker.
    """

    def __init__(
        self,
        steps: Sequence[StepSpec],
        store: RecordStore,
        tracker: ActivityTracker,
        survey_id: Optional[str] = None,
        collection: Optional[str] = None,
        clock: Callable[[], float] = _monotonic_ms,
    ) -> None:
        if not steps:
            raise ValueError("a survey needs at least one step")
        self.steps: List[StepSpec] = list(steps)
        self.store = store
        self.tracker = tracker
        self.collection = collection or Config.SUBMISSIONS_COLLECTION
        self.clock = clock
        self.survey_id = survey_id or uuid.uuid4().hex
        self.current_index = 0
        self.answers: Dict[str, Any] = {}
        self.drafts: Dict[int, Dict[str, Any]] = {}
        self.started_at = self.clock()
        self.submitted = False
        self.submission_id: Optional[str] = None
        self._listeners: List[StepListener] = []
        self._log().info("created", extra={"steps": len(self.steps)})

    # --- state ---

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def last_index(self) -> int:
        return len(self.steps) - 1

    def current_step(self) -> StepSpec:
        return self.steps[self.current_index]

    def is_last_step(self) -> bool:
        return self.current_index == self.last_index

    def progress(self) -> int:
        """Percent of the way through the steps, 0 on the first one."""
        if self.last_index == 0:
            return 100
        return int(self.current_index * 100 / self.last_index + 0.5)

    def has_unsaved_changes(self) -> bool:
        return not self.submitted and (
            bool(self.answers) or any(self.drafts.values())
        )

    def state(self) -> Dict[str, Any]:
        return {
            "surveyId": self.survey_id,
            "step": self.current_index,
            "totalSteps": self.total_steps,
            "title": self.current_step().title,
            "fields": [f.name for f in self.current_step().fields],
            "progress": self.progress(),
            "answers": dict(self.answers),
            "draft": dict(self.drafts.get(self.current_index, {})),
            "submitted": self.submitted,
            "submissionId": self.submission_id,
            "canRetreat": not self.submitted and self.current_index > 0,
            "canAdvance": not self.submitted and not self.is_last_step(),
            "canSubmit": not self.submitted and self.is_last_step(),
        }

    def on_step_changed(self, callback: StepListener) -> None:
        """Register ``callback(old_index, new_index)`` for step transitions."""
        self._listeners.append(callback)

    # --- answers ---

    def set_answers(self, values: Dict[str, Any]) -> None:
        """Record raw form values for the current step's draft."""
        self._ensure_open()
        known = {f.name for f in self.current_step().fields}
        unknown = [k for k in values if k not in known]
        if unknown:
            raise ValueError(f"fields {unknown} are not on step {self.current_index}")
        self.drafts.setdefault(self.current_index, {}).update(values)
        self._log().debug("draft updated", extra={"fields": sorted(values)})

    def set_answer(self, name: str, value: Any) -> None:
        self.set_answers({name: value})

    def validate_step(self, index: int) -> List[FieldError]:
        """Return the violated fields of step ``index``; empty means valid."""
        if not 0 <= index < self.total_steps:
            raise IndexError(f"step {index} out of range")
        draft = self.drafts.get(index, {})
        errors = []
        for spec in self.steps[index].fields:
            error = check_field(spec, draft.get(spec.name))
            if error:
                errors.append(error)
        return errors

    def missing_required(self) -> List[FieldError]:
        """Check every step's rules against the merged answers."""
        errors = []
        for step in self.steps:
            for spec in step.fields:
                error = check_field(spec, self.answers.get(spec.name))
                if error:
                    errors.append(error)
        return errors

    def _merge_step(self, index: int) -> None:
        draft = self.drafts.get(index, {})
        for spec in self.steps[index].fields:
            if spec.name not in draft:
                continue
            value = draft[spec.name]
            if spec.kind == CHECKBOX:
                # the current selections replace whatever was checked before
                self.answers[spec.name] = dedupe_selections(value)
            elif _is_blank(value):
                self.answers.pop(spec.name, None)
            elif spec.kind == RATING:
                self.answers[spec.name] = parse_rating(value)
            else:
                self.answers[spec.name] = str(value).strip()

    # --- transitions ---

    async def advance(self) -> StepResult:
        """Validate and merge the current step, then move to the next one."""
        self._ensure_open()
        if self.is_last_step():
            raise WizardStateError("the last step is completed with submit()")

        errors = self.validate_step(self.current_index)
        if errors:
            self._log().info("step invalid", extra={"step": self.current_index, "fields": [e.field for e in errors]})
            return StepResult(ok=False, step=self.current_index, errors=errors)

        self._merge_step(self.current_index)
        left = self.current_index
        self.current_index += 1
        self._log().info("advanced", extra={"step": self.current_index})
        self.tracker.emit(ActivityEvent(ActivityType.STEP_COMPLETED, self.survey_id, left))
        self._notify(left, self.current_index)
        return StepResult(ok=True, step=self.current_index)

    def retreat(self) -> int:
        """Go back one step without validating; a no-op on the first step."""
        self._ensure_open()
        if self.current_index > 0:
            old = self.current_index
            self.current_index -= 1
            self._log().info("retreated", extra={"step": self.current_index})
            self._notify(old, self.current_index)
        return self.current_index

    async def submit(self, client_info: Optional[Dict[str, Any]] = None) -> StepResult:
        """Validate the last step and write the Submission.

        Raises StorageError (retryable) if the write fails; the wizard then
        stays on the last step and submit() may be called again.
        """
        self._ensure_open()
        if not self.is_last_step():
            raise WizardStateError("submit() is only accepted on the last step")

        errors = self.validate_step(self.current_index)
        if errors:
            self._log().info("submit invalid", extra={"fields": [e.field for e in errors]})
            return StepResult(ok=False, step=self.current_index, errors=errors)

        self._merge_step(self.current_index)
        errors = self.missing_required()
        if errors:
            self._log().warning("submit missing answers", extra={"fields": [e.field for e in errors]})
            return StepResult(ok=False, step=self.current_index, errors=errors)

        completion_time = max(0, int(self.clock() - self.started_at))
        submission = Submission(
            survey_id=self.survey_id,
            answers=dict(self.answers),
            completion_time=completion_time,
            client_info=dict(client_info or {}),
        )
        try:
            submission_id = await self.store.insert(self.collection, submission.to_record())
        except StorageError:
            self._log().exception("submission write failed")
            raise

        self.submitted = True
        self.submission_id = submission_id
        self._log().info("submitted", extra={"submission_id": submission_id, "completion_time": completion_time})
        self.tracker.emit(
            ActivityEvent(
                ActivityType.SURVEY_COMPLETED,
                self.survey_id,
                self.current_index,
                extra={"completionTime": completion_time},
            )
        )
        return StepResult(ok=True, step=self.current_index, submission_id=submission_id)

    def reset(self) -> str:
        """Discard this run and start over with a fresh survey id.

        A run dropped before submission is reported as abandoned.
        """
        if self.has_unsaved_changes():
            self.tracker.emit(ActivityEvent(ActivityType.SURVEY_ABANDONED, self.survey_id, self.current_index))
        old = self.current_index
        self.survey_id = uuid.uuid4().hex
        self.current_index = 0
        self.answers = {}
        self.drafts = {}
        self.started_at = self.clock()
        self.submitted = False
        self.submission_id = None
        self.tracker.emit(ActivityEvent(ActivityType.SURVEY_STARTED, self.survey_id, 0))
        self._log().info("reset")
        if old != 0:
            self._notify(old, 0)
        return self.survey_id

    # --- internals ---

    def _ensure_open(self) -> None:
        if self.submitted:
            raise WizardStateError("survey already submitted")

    def _notify(self, old: int, new: int) -> None:
        for callback in list(self._listeners):
            try:
                callback(old, new)
            except Exception:
                self._log().exception("step listener failed")

    def _log(self):
        return get_logger("survey.wizard", {"surveyId": self.survey_id})


class WizardManager:
    """
    Keeps live wizard sessions keyed by survey id.

    Sessions expire after ``Config.SESSION_TTL`` seconds, the server-side
    counterpart of a respondent closing the tab.
    """

    def __init__(
        self,
        store: RecordStore,
        tracker: ActivityTracker,
        steps: Optional[Iterable[StepSpec]] = None,
        ttl: Optional[int] = None,
        maxsize: int = 1024,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.steps: List[StepSpec] = list(steps if steps is not None else SURVEY_STEPS)
        self.sessions: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl or Config.SESSION_TTL)

    def start(self) -> WizardEngine:
        """Create a session and report the start."""
        engine = WizardEngine(self.steps, self.store, self.tracker)
        self.sessions[engine.survey_id] = engine
        self.tracker.emit(ActivityEvent(ActivityType.SURVEY_STARTED, engine.survey_id, 0))
        get_logger("survey.manager", {"surveyId": engine.survey_id}).info("started")
        return engine

    def get(self, survey_id: str) -> Optional[WizardEngine]:
        engine = self.sessions.get(str(survey_id))
        if not engine:
            get_logger("survey.manager", {"surveyId": survey_id}).debug("no active survey")
        return engine

    def reset(self, survey_id: str) -> Optional[WizardEngine]:
        """Restart a session under a new survey id."""
        engine = self.sessions.pop(str(survey_id), None)
        if not engine:
            return None
        engine.reset()
        self.sessions[engine.survey_id] = engine
        return engine

    def end(self, survey_id: str) -> None:
        if self.sessions.pop(str(survey_id), None) is not None:
            get_logger("survey.manager", {"surveyId": survey_id}).info("removed")
        else:
            get_logger("survey.manager", {"surveyId": survey_id}).warning("remove called but none exists")
