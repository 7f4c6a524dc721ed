from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from config.constants import (
    ACTIVITY_TIMESTAMP,
    CLIENT_INFO_FIELDS,
    COMPLETION_TIME,
    HAS_CONTACT_INFO,
    SUBMITTED_AT,
    SURVEY_ID,
    ActivityType,
)
from services.record_store import SERVER_TIMESTAMP


@dataclass(frozen=True)
class FieldError:
    """A required field or group that failed its rule."""

    field: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field, "message": self.message}


@dataclass
class StepResult:
    """Outcome of advance() or submit(). Validation failures are not exceptions."""

    ok: bool
    step: int
    errors: List[FieldError] = field(default_factory=list)
    submission_id: Optional[str] = None

    @property
    def invalid_fields(self) -> List[str]:
        return [e.field for e in self.errors]

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "ok": self.ok,
            "step": self.step,
            "errors": [e.to_dict() for e in self.errors],
        }
        if self.submission_id is not None:
            data["submissionId"] = self.submission_id
        return data


@dataclass(frozen=True)
class ActivityEvent:
    """Append-only telemetry record for a survey lifecycle occurrence."""

    type: ActivityType
    survey_id: Optional[str]
    step: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "type": self.type.value,
            SURVEY_ID: self.survey_id,
            "step": self.step,
            ACTIVITY_TIMESTAMP: SERVER_TIMESTAMP,
        }
        data.update(self.extra)
        return data


@dataclass
class Submission:
    """One respondent's finalized answers, ready to be written once."""

    survey_id: str
    answers: Dict[str, Any]
    completion_time: int
    client_info: Dict[str, Any] = field(default_factory=dict)

    def to_record(self) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            k: v for k, v in self.client_info.items() if k in CLIENT_INFO_FIELDS
        }
        record.update(self.answers)
        record[SURVEY_ID] = self.survey_id
        record[SUBMITTED_AT] = SERVER_TIMESTAMP
        record[COMPLETION_TIME] = self.completion_time
        record[HAS_CONTACT_INFO] = False
        return record


class MatchStatus(str, Enum):
    LINKED = "linked"
    NO_MATCH = "no_match"
    AMBIGUOUS = "ambiguous"
    CANCELLED = "cancelled"


@dataclass
class MatchCandidate:
    """A stored submission retrieved by the discriminator filter."""

    id: str
    score: int
    revision: int
    submitted_at: Any = None
    submitted_label: Optional[str] = None
    survey_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "score": self.score,
            "submittedAt": self.submitted_label,
        }


@dataclass
class MatchOutcome:
    """Result of reconciling a contact payload with stored submissions."""

    status: MatchStatus
    message: str
    candidates: List[MatchCandidate] = field(default_factory=list)
    total_candidates: int = 0
    linked_id: Optional[str] = None
    answers: Dict[str, str] = field(default_factory=dict)
    options: List[str] = field(default_factory=list)
    payload: Any = None  # the contact payload, kept for choose()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": self.status.value, "message": self.message}
        if self.status == MatchStatus.LINKED:
            data["submissionId"] = self.linked_id
        if self.status == MatchStatus.AMBIGUOUS:
            data["candidates"] = [c.to_dict() for c in self.candidates]
            data["totalCandidates"] = self.total_candidates
        if self.status == MatchStatus.NO_MATCH:
            data["answers"] = self.answers
            data["options"] = self.options
        return data


@dataclass(frozen=True)
class DailyCount:
    day: str
    label: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"day": self.day, "label": self.label, "count": self.count}


@dataclass
class DashboardSnapshot:
    """Derived dashboard statistics; recomputed, never stored."""

    total: int = 0
    today: int = 0
    interest: Dict[str, int] = field(default_factory=dict)
    market_obstacle: Dict[str, int] = field(default_factory=dict)
    rating_averages: Dict[str, float] = field(default_factory=dict)
    avg_completion_ms: float = 0.0
    avg_completion: str = "0 min"
    daily_trend: List[DailyCount] = field(default_factory=list)
    completion_rate: int = 0
    activity_counts: Dict[str, int] = field(default_factory=dict)
    recent_activity: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "today": self.today,
            "interest": dict(self.interest),
            "marketObstacle": dict(self.market_obstacle),
            "ratingAverages": dict(self.rating_averages),
            "avgCompletionMs": self.avg_completion_ms,
            "avgCompletionTime": self.avg_completion,
            "dailyTrend": [d.to_dict() for d in self.daily_trend],
            "completionRate": self.completion_rate,
            "activityCounts": dict(self.activity_counts),
            "recentActivity": list(self.recent_activity),
        }
