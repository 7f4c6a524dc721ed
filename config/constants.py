from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple


# Field kinds accepted by the survey wizard
RADIO = "radio"
TEXT = "text"
RATING = "rating"
CHECKBOX = "checkbox"

RATING_MIN = 1
RATING_MAX = 5


@dataclass(frozen=True)
class FieldSpec:
    """One question on a survey step."""

    name: str
    kind: str = RADIO
    required: bool = True
    options: Tuple[str, ...] = ()
    max_selections: Optional[int] = None  # checkbox groups only, None = unlimited


@dataclass(frozen=True)
class StepSpec:
    """An ordered page of the survey wizard."""

    title: str
    fields: Tuple[FieldSpec, ...]


class ActivityType(str, Enum):
    """Wire values of the activity telemetry ``type`` field."""

    SURVEY_STARTED = "survey_started"
    STEP_COMPLETED = "step_completed"
    SURVEY_COMPLETED = "survey_completed"
    SURVEY_ABANDONED = "survey_abandoned"
    CONTACT_LINKED = "contact_linked"


# Discriminator answers
INTEREST_OPTIONS = ("yes", "no", "not_sure")
MARKET_OBSTACLE_OPTIONS = (
    "connections",
    "quality_volume",
    "transport_cost",
    "competition",
    "branding",
)
BUSINESS_TYPE_OPTIONS = ("crop", "livestock", "processing", "trading", "mixed")
INNOVATION_BARRIER_OPTIONS = ("capital", "technical_knowledge", "market_access", "regulatory")

# Ratings averaged on the dashboard
TRAINING_RATING_FIELDS = [
    "financial_proposals",
    "cash_flow",
    "insurance",
    "record_keeping",
    "cooperative",
]

# Submission wire fields
SUBMITTED_AT = "submittedAt"
COMPLETION_TIME = "completionTime"
SURVEY_ID = "surveyId"
HAS_CONTACT_INFO = "hasContactInfo"
CONTACT_UPDATED_AT = "contactUpdatedAt"
IDENTITY_FIELDS = ("fullName", "companyName", "email", "phone")

# Browser metadata accepted with a submission; other keys are dropped
CLIENT_INFO_FIELDS = ("userAgent", "screenResolution", "language", "timezone")

# Activity wire fields
ACTIVITY_TIMESTAMP = "timestamp"


def _ratings(*names: str) -> Tuple[FieldSpec, ...]:
    return tuple(
        FieldSpec(name, RATING, options=tuple(str(v) for v in range(RATING_MIN, RATING_MAX + 1)))
        for name in names
    )


SURVEY_STEPS: List[StepSpec] = [
    StepSpec("Getting Started", (
        FieldSpec("interest", RADIO, options=INTEREST_OPTIONS),
    )),
    StepSpec("Training Needs", _ratings(*TRAINING_RATING_FIELDS)),
    StepSpec("Quality Standards", (
        FieldSpec("quality_standards", CHECKBOX),
        FieldSpec("other_training", TEXT, required=False),
    )),
    StepSpec("Supply Chain & Leadership", (
        FieldSpec("supply_chain", RADIO, options=("yes", "no", "not_sure")),
        FieldSpec("leadership_training", RADIO, options=("yes", "no", "not_sure")),
    )),
    StepSpec("Market Access", (
        FieldSpec("market_obstacle", RADIO, options=MARKET_OBSTACLE_OPTIONS),
        FieldSpec("business_type", RADIO, required=False, options=BUSINESS_TYPE_OPTIONS),
    )),
    StepSpec("Collaboration & Export", _ratings(
        "collab_marketing",
        "collab_purchasing",
        "collab_supply_chain",
        "collab_transport",
        "collab_information",
    ) + (
        FieldSpec("export_support", RADIO, options=("yes", "no", "not_sure")),
    )),
    StepSpec("YEAN Activities", (
        FieldSpec("yean_activities", CHECKBOX),
        FieldSpec("market_info_source", CHECKBOX),
        FieldSpec("ideal_customer", TEXT),
    )),
    StepSpec("Technical Support", (
        FieldSpec("technical_coaching", CHECKBOX),
    )),
    StepSpec("Production Challenges", (
        FieldSpec("livestock_challenge", TEXT),
        FieldSpec("crop_challenge", TEXT),
        FieldSpec("processing_challenge", TEXT),
    )),
    StepSpec("Risk Management", _ratings(
        "confidence_pests",
        "confidence_weather",
        "confidence_postharvest",
        "confidence_equipment",
        "confidence_contamination",
    )),
    StepSpec("Sustainability", (
        FieldSpec("climate_practices", CHECKBOX, required=False),
        FieldSpec("biggest_challenge", TEXT),
    )),
    StepSpec("Innovation & Growth", (
        FieldSpec("innovation_barrier", RADIO, options=INNOVATION_BARRIER_OPTIONS),
        FieldSpec("business_model", TEXT),
        FieldSpec("yean_innovation_support", CHECKBOX),
        FieldSpec("sustainability_concern", TEXT),
        FieldSpec("innovative_idea", TEXT),
    )),
    StepSpec("Final Feedback", (
        FieldSpec("session_feedback", TEXT),
    )),
]

# Declared category sets for dashboard distributions
CATEGORY_SETS: Dict[str, Tuple[str, ...]] = {
    "interest": INTEREST_OPTIONS,
    "market_obstacle": MARKET_OBSTACLE_OPTIONS,
}
