"""Dashboard statistics over the live submission and activity feeds.

Every function here is total: malformed or missing values are skipped or
count as a neutral default, never raise. ``compute_snapshot`` is a pure
function of the two feed windows and the current time.
"""

from __future__ import annotations

import asyncio
import math
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from config import Config, Strings
from config.constants import (
    CATEGORY_SETS,
    COMPLETION_TIME,
    RATING_MAX,
    RATING_MIN,
    SUBMITTED_AT,
    TRAINING_RATING_FIELDS,
    ACTIVITY_TIMESTAMP,
    ActivityType,
)
from services.date_utils import coerce_timestamp, format_day_label, format_duration, utc_now
from services.logging_utils import get_logger
from services.record_store import Document, RecordStore, Subscription
from services.survey_models import DailyCount, DashboardSnapshot

TREND_DAYS = 7

SnapshotListener = Callable[[DashboardSnapshot], Any]


def _data(record: Any) -> Dict[str, Any]:
    if isinstance(record, Document):
        return record.data
    if isinstance(record, dict):
        return record
    return {}


def _records(feed: Optional[Iterable[Any]]) -> List[Dict[str, Any]]:
    if not feed:
        return []
    try:
        return [_data(r) for r in feed]
    except TypeError:
        return []


def _number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _integer(value: Any) -> Optional[int]:
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            return int(value)
        except ValueError:
            return None
    number = _number(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def _localize(naive: datetime, tz: tzinfo) -> datetime:
    # pytz zones need localize() to pick the right offset
    localize = getattr(tz, "localize", None)
    return localize(naive) if localize else naive.replace(tzinfo=tz)


def local_day_start(day: date, tz: tzinfo) -> datetime:
    return _localize(datetime.combine(day, time()), tz)


def _local_today(now: datetime, tz: tzinfo) -> date:
    return now.astimezone(tz).date()


def count_total(submissions: Optional[Iterable[Any]]) -> int:
    return len(_records(submissions))


def count_today(submissions: Optional[Iterable[Any]], now: datetime, tz: tzinfo) -> int:
    """Submissions stamped between local midnight and ``now``."""
    start = local_day_start(_local_today(now, tz), tz)
    count = 0
    for record in _records(submissions):
        ts = coerce_timestamp(record.get(SUBMITTED_AT))
        if ts is not None and start <= ts <= now:
            count += 1
    return count


def categorical_distribution(
    submissions: Optional[Iterable[Any]], field_name: str, categories: Sequence[str]
) -> Dict[str, int]:
    """Count submissions per declared category; other values are ignored."""
    counts = {c: 0 for c in categories}
    for record in _records(submissions):
        value = record.get(field_name)
        if isinstance(value, str) and value in counts:
            counts[value] += 1
    return counts


def rating_averages(
    submissions: Optional[Iterable[Any]], fields: Sequence[str] = TRAINING_RATING_FIELDS
) -> Dict[str, float]:
    """Mean of the parseable ratings (1-5) per field; 0 for a field with none."""
    averages: Dict[str, float] = {}
    records = _records(submissions)
    for name in fields:
        values = [
            v for v in (_integer(r.get(name)) for r in records)
            if v is not None and RATING_MIN <= v <= RATING_MAX
        ]
        averages[name] = sum(values) / len(values) if values else 0
    return averages


def average_completion_ms(submissions: Optional[Iterable[Any]]) -> float:
    times = [
        t for t in (_number(r.get(COMPLETION_TIME)) for r in _records(submissions))
        if t is not None and t > 0
    ]
    return sum(times) / len(times) if times else 0.0


def daily_trend(
    submissions: Optional[Iterable[Any]], now: datetime, tz: tzinfo, days: int = TREND_DAYS
) -> List[DailyCount]:
    """Per-day counts for the last ``days`` local days, oldest first.

    Each day covers ``[local midnight, local midnight + 24h)``.
    """
    stamps = [
        ts for ts in (coerce_timestamp(r.get(SUBMITTED_AT)) for r in _records(submissions))
        if ts is not None
    ]
    today = _local_today(now, tz)
    trend = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        start = local_day_start(day, tz)
        end = start + timedelta(hours=24)
        count = sum(1 for ts in stamps if start <= ts < end)
        trend.append(DailyCount(day=day.isoformat(), label=format_day_label(start), count=count))
    return trend


def activity_counts(events: Optional[Iterable[Any]]) -> Dict[str, int]:
    counts = {t.value: 0 for t in ActivityType}
    for event in _records(events):
        kind = event.get("type")
        if isinstance(kind, str) and kind:
            counts[kind] = counts.get(kind, 0) + 1
    return counts


def completion_rate(counts: Dict[str, int]) -> int:
    """Completed over started in the activity window, in percent (0-100)."""
    started = counts.get(ActivityType.SURVEY_STARTED.value, 0)
    completed = counts.get(ActivityType.SURVEY_COMPLETED.value, 0)
    if started <= 0:
        return 0
    return min(100, int(completed * 100 / started + 0.5))


def describe_activity(event: Any) -> str:
    data = _data(event)
    kind = data.get("type")
    template = Strings.ACTIVITY_MESSAGES.get(kind) if isinstance(kind, str) else None
    if template is None:
        return Strings.UNKNOWN_ACTIVITY.format(type=kind)
    step = data.get("step")
    return template.format(step=step if step is not None else "?")


def compute_snapshot(
    submissions: Optional[Iterable[Any]],
    events: Optional[Iterable[Any]] = None,
    now: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
    rating_fields: Sequence[str] = TRAINING_RATING_FIELDS,
) -> DashboardSnapshot:
    """Build the full dashboard snapshot from two feed windows."""
    now = coerce_timestamp(now) or utc_now()
    tz = tz or Config.timezone()
    records = _records(submissions)
    event_records = _records(events)
    counts = activity_counts(event_records)
    avg_ms = average_completion_ms(records)
    return DashboardSnapshot(
        total=len(records),
        today=count_today(records, now, tz),
        interest=categorical_distribution(records, "interest", CATEGORY_SETS["interest"]),
        market_obstacle=categorical_distribution(
            records, "market_obstacle", CATEGORY_SETS["market_obstacle"]
        ),
        rating_averages=rating_averages(records, rating_fields),
        avg_completion_ms=avg_ms,
        avg_completion=format_duration(avg_ms),
        daily_trend=daily_trend(records, now, tz),
        completion_rate=completion_rate(counts),
        activity_counts=counts,
        recent_activity=[describe_activity(e) for e in event_records],
    )


class DashboardState:
    """The last-seen feed windows and the snapshot derived from them.

    One instance per dashboard session. A new feed value replaces the old
    one wholesale and the snapshot is rebuilt from scratch.
    """

    def __init__(self, tz: Optional[tzinfo] = None, clock: Callable[[], datetime] = utc_now) -> None:
        self.tz = tz
        self.clock = clock
        self.submissions: List[Dict[str, Any]] = []
        self.events: List[Dict[str, Any]] = []
        self.snapshot = DashboardSnapshot()
        self.version = 0

    def replace_submissions(self, feed: Iterable[Any]) -> DashboardSnapshot:
        self.submissions = _records(feed)
        return self.recompute()

    def replace_events(self, feed: Iterable[Any]) -> DashboardSnapshot:
        self.events = _records(feed)
        return self.recompute()

    def recompute(self) -> DashboardSnapshot:
        self.snapshot = compute_snapshot(self.submissions, self.events, self.clock(), self.tz)
        self.version += 1
        return self.snapshot


class AggregationEngine:
    """Keeps a DashboardState current from two store subscriptions."""

    def __init__(
        self,
        store: RecordStore,
        state: Optional[DashboardState] = None,
        submissions_collection: Optional[str] = None,
        activity_collection: Optional[str] = None,
        submissions_limit: Optional[int] = None,
        activity_limit: Optional[int] = None,
    ) -> None:
        self.store = store
        self.state = state or DashboardState(tz=Config.timezone())
        self.submissions_collection = submissions_collection or Config.SUBMISSIONS_COLLECTION
        self.activity_collection = activity_collection or Config.ACTIVITY_COLLECTION
        self.submissions_limit = submissions_limit or Config.SUBMISSIONS_FEED_LIMIT
        self.activity_limit = activity_limit or Config.ACTIVITY_FEED_LIMIT
        self._subscriptions: List[Subscription] = []
        self._tasks: List[asyncio.Task] = []
        self._listeners: List[SnapshotListener] = []

    @property
    def snapshot(self) -> DashboardSnapshot:
        return self.state.snapshot

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def on_update(self, callback: SnapshotListener) -> None:
        self._listeners.append(callback)

    async def start(self) -> None:
        if self._tasks:
            return
        subs = await self.store.subscribe_latest(
            self.submissions_collection, SUBMITTED_AT, self.submissions_limit
        )
        events = await self.store.subscribe_latest(
            self.activity_collection, ACTIVITY_TIMESTAMP, self.activity_limit
        )
        self._subscriptions = [subs, events]
        self._tasks = [
            asyncio.ensure_future(self._consume(subs, self.state.replace_submissions)),
            asyncio.ensure_future(self._consume(events, self.state.replace_events)),
        ]
        get_logger("dashboard.engine").info("started")

    async def _consume(self, sub: Subscription, apply: Callable[[Iterable[Any]], DashboardSnapshot]) -> None:
        async for snapshot in sub:
            result = apply(snapshot)
            get_logger("dashboard.engine").debug(
                "recomputed", extra={"collection": sub.collection, "version": self.state.version}
            )
            for callback in list(self._listeners):
                try:
                    callback(result)
                except Exception:
                    get_logger("dashboard.engine").exception("listener failed")

    def refresh(self) -> DashboardSnapshot:
        """Recompute against the current clock (e.g. after local midnight)."""
        return self.state.recompute()

    async def stop(self) -> None:
        for sub in self._subscriptions:
            sub.close()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._subscriptions = []
        self._tasks = []
        get_logger("dashboard.engine").info("stopped")
