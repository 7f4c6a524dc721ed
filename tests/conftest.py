import sys
from pathlib import Path
from typing import Any, Dict, List

import pytest

ROOT = Path(__file__).resolve().parent.parent
sys.path.append(str(ROOT))

from config.constants import TRAINING_RATING_FIELDS  # noqa: E402
from services.activity import ActivityTracker  # noqa: E402
from services.record_store import MemoryRecordStore, StorageError  # noqa: E402


# One valid draft per survey step, in step order
STEP_ANSWERS: List[Dict[str, Any]] = [
    {"interest": "yes"},
    {name: 4 for name in TRAINING_RATING_FIELDS},
    {"quality_standards": ["haccp", "haccp", "", "organic"]},
    {"supply_chain": "yes", "leadership_training": "no"},
    {"market_obstacle": "connections", "business_type": "crop"},
    {
        "collab_marketing": 5,
        "collab_purchasing": "3",
        "collab_supply_chain": 2,
        "collab_transport": 1,
        "collab_information": 4,
        "export_support": "not_sure",
    },
    {
        "yean_activities": ["training", "networking"],
        "market_info_source": ["radio"],
        "ideal_customer": "  Hotels in town  ",
    },
    {"technical_coaching": ["packaging"]},
    {
        "livestock_challenge": "Feed prices",
        "crop_challenge": "Pests",
        "processing_challenge": "Power cuts",
    },
    {
        "confidence_pests": 3,
        "confidence_weather": 2,
        "confidence_postharvest": 4,
        "confidence_equipment": 3,
        "confidence_contamination": 5,
    },
    {"biggest_challenge": "Water access"},
    {
        "innovation_barrier": "capital",
        "business_model": "Direct to retailers",
        "yean_innovation_support": ["grants"],
        "sustainability_concern": "Soil health",
        "innovative_idea": "Solar dryers",
    },
    {"session_feedback": "Very useful"},
]


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def tick(self, ms: float) -> None:
        self.now += ms


class FlakyStore(MemoryRecordStore):
    """Memory store whose writes to chosen collections fail on demand."""

    def __init__(self):
        super().__init__()
        self.fail_inserts = set()
        self.fail_updates = False
        self.fail_queries = False

    async def insert(self, collection, record):
        if collection in self.fail_inserts:
            raise StorageError(f"insert into {collection} refused")
        return await super().insert(collection, record)

    async def update(self, collection, record_id, fields, expected_revision=None):
        if self.fail_updates:
            raise StorageError("update refused")
        return await super().update(collection, record_id, fields, expected_revision)

    async def query_equals(self, collection, criteria):
        if self.fail_queries:
            raise StorageError("query refused")
        return await super().query_equals(collection, criteria)


@pytest.fixture
def store():
    return FlakyStore()


@pytest.fixture
def tracker(store):
    return ActivityTracker(store)


@pytest.fixture
def clock():
    return FakeClock()


async def fill_to_last_step(engine) -> None:
    """Answer and advance through every step but the last."""
    for index in range(engine.last_index):
        engine.set_answers(STEP_ANSWERS[index])
        result = await engine.advance()
        assert result.ok, result.errors
    engine.set_answers(STEP_ANSWERS[engine.last_index])
