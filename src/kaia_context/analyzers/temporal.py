"""
Temporal analyzer: the one dimension with concrete enrichment.

Derives time of day, weekday, workday and relative-time flags from the base
timestamp and the wall clock, and exposes the deadline urgency step function
used by priority scoring.

Naive datetimes are treated as UTC.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Callable, Iterable, Optional

from ..kernel.schema import RelativeTime, TemporalContext, TimeOfDay, utcnow

Clock = Callable[[], datetime]

ONE_HOUR = timedelta(hours=1)
ONE_DAY = timedelta(days=1)

# (exclusive upper bound in hours, urgency)
URGENCY_STEPS = (
    (1, 100),
    (6, 90),
    (24, 75),
    (48, 60),
    (168, 40),
)
URGENCY_FLOOR = 20


def as_aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def time_of_day(moment: datetime) -> TimeOfDay:
    hour = moment.hour
    if hour < 12:
        return TimeOfDay.MORNING
    if hour < 18:
        return TimeOfDay.AFTERNOON
    if hour < 21:
        return TimeOfDay.EVENING
    return TimeOfDay.NIGHT


def day_of_week(moment: datetime) -> int:
    """Weekday index with 0 = Sunday ... 6 = Saturday."""
    return (moment.weekday() + 1) % 7


def is_workday(moment: datetime) -> bool:
    return 1 <= day_of_week(moment) <= 5


def hours_between(now: datetime, target: datetime) -> int:
    """floor((target - now) / 1h); negative when target is in the past."""
    return (as_aware(target) - as_aware(now)) // ONE_HOUR


def days_between(now: datetime, target: datetime) -> int:
    return (as_aware(target) - as_aware(now)) // ONE_DAY


def deadline_urgency(deadline: datetime, now: datetime) -> int:
    hours_until = hours_between(now, deadline)
    if hours_until < 0:
        return 0
    for bound, urgency in URGENCY_STEPS:
        if hours_until < bound:
            return urgency
    return URGENCY_FLOOR


class TemporalContextAnalyzer:
    dimension = "temporal"

    def __init__(
        self,
        clock: Clock = utcnow,
        tz: Optional[tzinfo] = None,
        holidays: Iterable[date] = (),
    ) -> None:
        """
        Args:
            clock: Source of "now" (injected for deterministic tests)
            tz: Zone used for calendar fields; defaults to the timestamp's own
            holidays: Calendar dates flagged with is_holiday
        """
        self._clock = clock
        self._tz = tz
        self._holidays = frozenset(holidays)

    def now(self) -> datetime:
        return as_aware(self._clock())

    def _localize(self, moment: datetime) -> datetime:
        moment = as_aware(moment)
        return moment.astimezone(self._tz) if self._tz else moment

    async def analyze(self, base: TemporalContext, entity: Any) -> TemporalContext:
        now = self.now()
        stamp = self._localize(base.timestamp)
        today = now.astimezone(stamp.tzinfo).date()

        return base.model_copy(
            update={
                "time_of_day": time_of_day(stamp),
                "day_of_week": day_of_week(stamp),
                "is_workday": is_workday(stamp),
                "is_holiday": stamp.date() in self._holidays,
                "relative_time": RelativeTime(
                    is_past=stamp < now,
                    # Calendar-day match; overlaps is_past for earlier today.
                    is_current=stamp.date() == today,
                    is_future=stamp > now,
                    hours_until=hours_between(now, stamp),
                    days_until=days_between(now, stamp),
                ),
            }
        )

    def urgency(self, deadline: datetime) -> int:
        """Deadline urgency 0-100 as a step function of whole hours left."""
        return deadline_urgency(deadline, self.now())

    def is_past(self, moment: datetime) -> bool:
        return as_aware(moment) < self.now()

    def is_future(self, moment: datetime) -> bool:
        return as_aware(moment) > self.now()
