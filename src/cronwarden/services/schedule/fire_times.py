"""Fire-time search over a parsed ScheduleExpression.

croniter walks candidate wall-clock times in the expression's zone; each
candidate is then resolved to UTC. Wall-clock times that fall in a DST gap
are skipped; ambiguous times resolve to their first occurrence (fold=0).
Returned datetimes are aware and in UTC.
"""

from datetime import date, datetime, timedelta, timezone

from croniter import CroniterBadCronError, CroniterBadDateError, croniter

from cronwarden.errors.exceptions import ScheduleHorizonExceededError
from cronwarden.services.schedule.expression import ScheduleExpression

DEFAULT_HORIZON_DAYS = 1461

# Covers the largest DST shift in the tz database (Antarctica/Troll)
_MAX_SHIFT = timedelta(hours=2)


def as_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _resolve_local(expr: ScheduleExpression, wall: datetime) -> datetime | None:
    zone = expr.zone
    instant = wall.replace(tzinfo=zone).astimezone(timezone.utc)
    if instant.astimezone(zone).replace(tzinfo=None) != wall:
        return None
    return instant


def _candidates(expr: ScheduleExpression, start: datetime, horizon_days: int, backwards: bool):
    """Yield (wall time, UTC instant) pairs from ``start``, one direction, within the horizon."""
    max_years = horizon_days // 365 + 1
    try:
        iterator = croniter(
            expr.iterator_body,
            start,
            day_or=expr.day_or,
            max_years_between_matches=max_years,
        )
        limit = start.date() + timedelta(days=-horizon_days if backwards else horizon_days)
        while True:
            wall = iterator.get_prev(datetime) if backwards else iterator.get_next(datetime)
            if (wall.date() < limit) if backwards else (wall.date() > limit):
                return
            instant = _resolve_local(expr, wall)
            if instant is not None:
                yield wall, instant
    except (CroniterBadCronError, CroniterBadDateError):
        return


def next_fire_time(
    expr: ScheduleExpression,
    after: datetime,
    calendar: frozenset[date] = frozenset(),
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> datetime:
    """Earliest instant strictly after ``after`` that satisfies every field.

    Dates in ``calendar`` are excluded. Raises ScheduleHorizonExceededError
    when nothing matches within ``horizon_days``.
    """
    after = as_utc(after)
    start = after.astimezone(expr.zone).replace(tzinfo=None)
    for wall, instant in _candidates(expr, start, horizon_days, backwards=False):
        if wall.date() in calendar:
            continue
        if instant > after:
            return instant
    raise ScheduleHorizonExceededError(str(expr), horizon_days)


def previous_fire_time(
    expr: ScheduleExpression,
    before: datetime,
    calendar: frozenset[date] = frozenset(),
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> datetime:
    """Latest instant strictly before ``before`` that satisfies every field."""
    before = as_utc(before)
    # A reference inside a repeated hour can follow first-occurrence times
    # whose wall clock is later than its own
    start = before.astimezone(expr.zone).replace(tzinfo=None) + _MAX_SHIFT
    for wall, instant in _candidates(expr, start, horizon_days, backwards=True):
        if wall.date() in calendar:
            continue
        if instant < before:
            return instant
    raise ScheduleHorizonExceededError(str(expr), horizon_days)


def upcoming_fire_times(
    expr: ScheduleExpression,
    after: datetime,
    count: int,
    calendar: frozenset[date] = frozenset(),
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> list[datetime]:
    times: list[datetime] = []
    cursor = as_utc(after)
    for _ in range(count):
        cursor = next_fire_time(expr, cursor, calendar, horizon_days)
        times.append(cursor)
    return times
