import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import pytz

from config import Config
from config.constants import TRAINING_RATING_FIELDS
from services.aggregation import (
    AggregationEngine,
    DashboardState,
    activity_counts,
    average_completion_ms,
    categorical_distribution,
    compute_snapshot,
    completion_rate,
    count_today,
    daily_trend,
    describe_activity,
    rating_averages,
)
from services.record_store import Document, MemoryRecordStore

NOW = datetime(2026, 10, 19, 15, 30, tzinfo=timezone.utc)
UTC = pytz.utc


def test_empty_window_is_all_zero():
    snapshot = compute_snapshot([], [], NOW, UTC)
    assert snapshot.total == 0
    assert snapshot.today == 0
    assert snapshot.rating_averages == {name: 0 for name in TRAINING_RATING_FIELDS}
    assert snapshot.avg_completion == "0 min"
    assert snapshot.completion_rate == 0
    assert [d.count for d in snapshot.daily_trend] == [0] * 7
    assert snapshot.interest == {"yes": 0, "no": 0, "not_sure": 0}


def test_malformed_input_degrades_to_defaults():
    feed = [
        {"submittedAt": "not a date", "completionTime": "slow", "cash_flow": "x", "interest": 7},
        {"submittedAt": None, "completionTime": -5, "cash_flow": None},
        "garbage",
        None,
        {"submittedAt": True, "cash_flow": 2.5},
    ]
    snapshot = compute_snapshot(feed, [{"type": None}, 42], NOW, UTC)
    assert snapshot.total == 5
    assert snapshot.today == 0
    assert snapshot.rating_averages["cash_flow"] == 0
    assert snapshot.avg_completion_ms == 0.0
    assert sum(d.count for d in snapshot.daily_trend) == 0
    assert compute_snapshot(None, None, NOW, UTC).total == 0


def test_today_counts_from_local_midnight():
    feed = [
        {"submittedAt": NOW - timedelta(hours=1)},
        {"submittedAt": "2026-10-19T00:00:00Z"},
        {"submittedAt": "2026-10-18T23:59:59Z"},
        {"submittedAt": NOW + timedelta(minutes=5)},
        {"submittedAt": int((NOW - timedelta(hours=2)).timestamp() * 1000)},
    ]
    assert count_today(feed, NOW, UTC) == 3


def test_today_uses_configured_timezone():
    nairobi = pytz.timezone("Africa/Nairobi")
    # 22:00 UTC on the 18th is already the 19th in Nairobi
    feed = [{"submittedAt": "2026-10-18T22:00:00+00:00"}]
    assert count_today(feed, NOW, nairobi) == 1
    assert count_today(feed, NOW, UTC) == 0


def test_yesterday_slot_of_trend():
    feed = [{"submittedAt": NOW - timedelta(hours=24)} for _ in range(5)]
    snapshot = compute_snapshot(feed, [], NOW, UTC)
    assert snapshot.today == 0
    counts = [d.count for d in snapshot.daily_trend]
    assert counts == [0, 0, 0, 0, 0, 5, 0]
    assert snapshot.daily_trend[-1].label == "Oct 19"
    assert snapshot.daily_trend[0].day == "2026-10-13"


def test_trend_never_exceeds_total():
    feed = [{"submittedAt": NOW - timedelta(days=d)} for d in range(12)]
    trend = daily_trend(feed, NOW, UTC)
    assert sum(d.count for d in trend) == 7
    assert sum(d.count for d in trend) <= len(feed)


def test_distributions_and_averages():
    feed = [
        {"interest": "yes", "market_obstacle": "branding", "cash_flow": 4, "insurance": "2"},
        {"interest": "yes", "market_obstacle": "competition", "cash_flow": "5"},
        {"interest": "maybe", "market_obstacle": "branding", "cash_flow": ""},
    ]
    assert categorical_distribution(feed, "interest", ("yes", "no", "not_sure")) == {
        "yes": 2,
        "no": 0,
        "not_sure": 0,
    }
    averages = rating_averages(feed)
    assert averages["cash_flow"] == 4.5
    assert averages["insurance"] == 2
    assert averages["cooperative"] == 0


def test_out_of_range_ratings_are_ignored():
    feed = [
        {"cash_flow": 9},
        {"cash_flow": 0},
        {"cash_flow": "4"},
        {"insurance": -3},
    ]
    averages = rating_averages(feed)
    assert averages["cash_flow"] == 4
    assert averages["insurance"] == 0


def test_completion_average_and_rate():
    feed = [{"completionTime": 60_000}, {"completionTime": 180_000}, {"completionTime": None}]
    assert average_completion_ms(feed) == 120_000
    assert compute_snapshot(feed, [], NOW, UTC).avg_completion == "2 min"

    events = [{"type": "survey_started"}] * 4 + [{"type": "survey_completed"}] * 3
    counts = activity_counts(events)
    assert counts["survey_started"] == 4
    assert counts["contact_linked"] == 0
    assert completion_rate(counts) == 75
    assert completion_rate({"survey_started": 1, "survey_completed": 3}) == 100


def test_describe_activity():
    assert describe_activity({"type": "step_completed", "step": 4}) == "User completed step 4"
    assert describe_activity(Document("e1", {"type": "survey_started"})) == "User started survey"
    assert describe_activity({"type": "mystery"}) == "Unknown activity: mystery"


def test_recompute_is_idempotent_and_replaces_feeds():
    state = DashboardState(tz=UTC, clock=lambda: NOW)
    feed = [{"submittedAt": NOW, "interest": "no"}]
    first = state.replace_submissions(feed)
    second = state.replace_submissions(feed)
    assert first == second
    assert state.replace_submissions([]).total == 0
    assert state.version == 3


@pytest.mark.asyncio
async def test_engine_follows_live_feeds():
    store = MemoryRecordStore()
    await store.insert(Config.SUBMISSIONS_COLLECTION, {"submittedAt": NOW, "interest": "yes"})
    state = DashboardState(tz=UTC, clock=lambda: NOW)
    engine = AggregationEngine(store, state, submissions_limit=2)
    updates = []
    engine.on_update(updates.append)

    await engine.start()
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert engine.snapshot.total == 1

    for i in range(3):
        await store.insert(
            Config.SUBMISSIONS_COLLECTION,
            {"submittedAt": NOW - timedelta(minutes=i + 1), "interest": "no"},
        )
    await store.insert(Config.ACTIVITY_COLLECTION, {"type": "survey_started", "timestamp": NOW})
    for _ in range(5):
        await asyncio.sleep(0)

    # window is the latest two submissions
    assert engine.snapshot.total == 2
    assert engine.snapshot.interest["yes"] == 1
    assert engine.snapshot.activity_counts["survey_started"] == 1
    assert updates and updates[-1] is engine.snapshot

    await engine.stop()
    assert not engine.running
    await store.insert(Config.SUBMISSIONS_COLLECTION, {"submittedAt": NOW})
    assert engine.snapshot.total == 2
