"""Resolve a stored ScheduleSpec plus its holiday calendar into fire times."""

from datetime import date, datetime

from cronwarden.integrations.ports import HolidayCalendarPort
from cronwarden.models.schedule import ScheduleSpec
from cronwarden.services.schedule.expression import from_spec
from cronwarden.services.schedule.fire_times import next_fire_time, upcoming_fire_times


class SchedulePlanner:
    """Fire-time queries for stored schedules.

    Parsing and the search itself are pure; the only I/O is fetching the
    holiday calendar's excluded dates.
    """

    def __init__(self, calendars: HolidayCalendarPort, horizon_days: int):
        self.calendars = calendars
        self.horizon_days = horizon_days

    async def excluded_dates(self, spec: ScheduleSpec) -> frozenset[date]:
        if not spec.holiday_calendar_id:
            return frozenset()
        return await self.calendars.dates(spec.holiday_calendar_id)

    async def next_fire(self, spec: ScheduleSpec, after: datetime) -> datetime:
        expr = from_spec(spec)
        return next_fire_time(expr, after, await self.excluded_dates(spec), self.horizon_days)

    async def upcoming(self, spec: ScheduleSpec, after: datetime, count: int) -> list[datetime]:
        expr = from_spec(spec)
        return upcoming_fire_times(
            expr, after, count, await self.excluded_dates(spec), self.horizon_days
        )
