"""Link a later contact-details submission to an earlier anonymous one.

Matching is heuristic: candidates are the submissions whose two
discriminator answers (``interest`` and ``market_obstacle``) equal the
ones given with the contact details. A single candidate is linked
automatically; several are handed back for the respondent to pick from.

Scoring weights::

    10 * [interest matches] + 10 * [market_obstacle matches]
        + 5 * [businessType given and matches business_type]

Since the query already requires both discriminators, every candidate
scores 20 or 25. Ties keep the store's retrieval order (insertion order,
oldest first).
"""

from __future__ import annotations

import uuid
from datetime import tzinfo
from typing import Any, Dict, List, Optional

from cachetools import TTLCache

from config import Config, Strings
from config.constants import (
    CONTACT_UPDATED_AT,
    HAS_CONTACT_INFO,
    SUBMITTED_AT,
    SURVEY_ID,
    ActivityType,
)
from services.activity import ActivityTracker
from services.date_utils import format_timestamp
from services.logging_utils import get_logger
from services.payload_models import ContactPayload
from services.record_store import SERVER_TIMESTAMP, Document, RecordStore
from services.survey_models import ActivityEvent, MatchCandidate, MatchOutcome, MatchStatus

INTEREST_WEIGHT = 10
MARKET_OBSTACLE_WEIGHT = 10
BUSINESS_TYPE_BONUS = 5


def option_label(field_name: str, value: Any) -> str:
    """Return the respondent-facing label of an option value."""
    labels = Strings.OPTION_LABELS.get(field_name, {})
    if value in labels:
        return labels[value]
    if isinstance(value, str):
        return value.replace("_", " ").title()
    return str(value) if value is not None else "N/A"


def score_candidate(record: Dict[str, Any], payload: ContactPayload) -> int:
    score = 0
    if record.get("interest") == payload.interest:
        score += INTEREST_WEIGHT
    if record.get("market_obstacle") == payload.marketObstacle:
        score += MARKET_OBSTACLE_WEIGHT
    if payload.businessType and record.get("business_type") == payload.businessType:
        score += BUSINESS_TYPE_BONUS
    return score


class MatchingEngine:
    """Finds and links the submission a contact payload belongs to."""

    def __init__(
        self,
        store: RecordStore,
        tracker: ActivityTracker,
        collection: Optional[str] = None,
        max_choices: Optional[int] = None,
        tz: Optional[tzinfo] = None,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.collection = collection or Config.SUBMISSIONS_COLLECTION
        self.max_choices = max_choices or Config.MATCH_CHOICES
        self.tz = tz

    async def find_candidates(self, payload: ContactPayload) -> List[MatchCandidate]:
        """Query by the discriminators and rank by score, best first."""
        docs = await self.store.query_equals(
            self.collection,
            {"interest": payload.interest, "market_obstacle": payload.marketObstacle},
        )
        candidates = [self._candidate(doc, payload) for doc in docs]
        # sorted() is stable, so equal scores stay in retrieval order
        return sorted(candidates, key=lambda c: c.score, reverse=True)

    def _candidate(self, doc: Document, payload: ContactPayload) -> MatchCandidate:
        submitted_at = doc.get(SUBMITTED_AT)
        return MatchCandidate(
            id=doc.id,
            score=score_candidate(doc.data, payload),
            revision=doc.revision,
            submitted_at=submitted_at,
            submitted_label=format_timestamp(submitted_at, self.tz) or Strings.UNKNOWN_DATE,
            survey_id=doc.get(SURVEY_ID),
        )

    async def match(self, payload: ContactPayload) -> MatchOutcome:
        """Reconcile a contact payload with stored submissions.

        Zero candidates and several candidates are ordinary outcomes, not
        errors. StorageError from the store propagates and nothing is written.
        """
        log = get_logger("matching.match")
        candidates = await self.find_candidates(payload)
        log.info("candidates found", extra={"count": len(candidates)})

        if not candidates:
            return MatchOutcome(
                status=MatchStatus.NO_MATCH,
                message=Strings.NO_MATCH,
                answers={
                    "interest": option_label("interest", payload.interest),
                    "market_obstacle": option_label("market_obstacle", payload.marketObstacle),
                },
                options=[Strings.NO_MATCH_RETRY, Strings.NO_MATCH_RESTART],
                payload=payload,
            )

        if len(candidates) == 1:
            return await self._linked(candidates[0], payload)

        return MatchOutcome(
            status=MatchStatus.AMBIGUOUS,
            message=Strings.MULTIPLE_MATCHES.format(count=len(candidates)),
            candidates=candidates[: self.max_choices],
            total_candidates=len(candidates),
            payload=payload,
        )

    async def choose(self, outcome: MatchOutcome, index: int) -> MatchOutcome:
        """Link the ``index``-th candidate listed in an ambiguous outcome."""
        if outcome.status != MatchStatus.AMBIGUOUS:
            raise ValueError("only ambiguous outcomes offer a choice")
        if not 0 <= index < len(outcome.candidates):
            raise ValueError(f"choice {index} is not one of the listed candidates")
        return await self._linked(outcome.candidates[index], outcome.payload)

    def cancel(self, outcome: MatchOutcome) -> MatchOutcome:
        """Drop an ambiguous outcome; nothing is written."""
        get_logger("matching.cancel").info("cancelled", extra={"count": len(outcome.candidates)})
        return MatchOutcome(status=MatchStatus.CANCELLED, message=Strings.MATCH_CANCELLED)

    async def _linked(self, candidate: MatchCandidate, payload: ContactPayload) -> MatchOutcome:
        await self.link(candidate, payload)
        return MatchOutcome(
            status=MatchStatus.LINKED,
            message=Strings.CONTACT_LINKED.format(name=payload.fullName),
            linked_id=candidate.id,
            candidates=[candidate],
            total_candidates=1,
        )

    async def link(self, candidate: MatchCandidate, payload: ContactPayload) -> Document:
        """Write the identity fields onto one submission.

        The write is conditional on the revision seen when the candidate was
        retrieved, so two contact forms racing for the same record cannot
        both win. Re-linking an already linked record overwrites its
        identity fields.
        """
        fields: Dict[str, Any] = payload.identity_fields()
        fields[CONTACT_UPDATED_AT] = SERVER_TIMESTAMP
        fields[HAS_CONTACT_INFO] = True
        doc = await self.store.update(
            self.collection, candidate.id, fields, expected_revision=candidate.revision
        )
        get_logger("matching.link", {"surveyId": candidate.survey_id, "submissionId": candidate.id}).info(
            "linked", extra={"score": candidate.score}
        )
        self.tracker.emit(
            ActivityEvent(
                ActivityType.CONTACT_LINKED,
                candidate.survey_id,
                extra={
                    "submissionId": candidate.id,
                    "fullName": payload.fullName,
                    "companyName": payload.companyName,
                },
            )
        )
        return doc


class PendingMatches:
    """Ambiguous outcomes awaiting the respondent's pick, keyed by token."""

    def __init__(self, ttl: Optional[int] = None, maxsize: int = 1024) -> None:
        self.items: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl or Config.SESSION_TTL)

    def put(self, outcome: MatchOutcome) -> str:
        token = uuid.uuid4().hex
        self.items[token] = outcome
        return token

    def get(self, token: str) -> Optional[MatchOutcome]:
        return self.items.get(token)

    def pop(self, token: str) -> Optional[MatchOutcome]:
        return self.items.pop(token, None)
