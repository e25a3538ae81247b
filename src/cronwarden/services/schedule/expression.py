"""Five-field cron expression parsing, validation and serialization.

Grammar per field: ``*``, an integer, a comma list, an inclusive range
``a-b`` and a step ``base/step`` where base is ``*`` or an integer. Month
and day-of-week accept three-letter names (JAN-DEC, SUN-SAT) in any case;
they are rewritten to numbers before validation, so the normalized form
never contains names. The ``@daily`` family of macros and a leading
``CRON_TZ=<zone>`` are accepted as well.
"""

import re
from dataclasses import dataclass
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cronwarden.errors.exceptions import InvalidScheduleExpressionError
from cronwarden.models.schedule import FieldError, ScheduleSpec

UTC_ZONE = "UTC"
CRON_TZ_PREFIX = "CRON_TZ="

MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

MONTH_NAMES = {
    name: index
    for index, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"],
        start=1,
    )
}
DAY_NAMES = {
    name: index
    for index, name in enumerate(["sun", "mon", "tue", "wed", "thu", "fri", "sat"])
}


@dataclass(frozen=True)
class FieldSpec:
    name: str
    low: int
    high: int
    aliases: dict | None = None


FIELD_SPECS = (
    FieldSpec("minute", 0, 59),
    FieldSpec("hour", 0, 23),
    FieldSpec("day_of_month", 1, 31),
    FieldSpec("month", 1, 12, MONTH_NAMES),
    FieldSpec("day_of_week", 0, 6, DAY_NAMES),
)

_NAME_RE = re.compile(r"[A-Za-z]+")
_INT_RE = re.compile(r"^\d+$")


@dataclass(frozen=True)
class CronField:
    """One parsed field: its normalized text and the set of values it admits."""

    name: str
    text: str
    values: frozenset[int]

    @property
    def starts_with_wildcard(self) -> bool:
        return self.text.startswith("*")

    def __contains__(self, value: int) -> bool:
        return value in self.values


@dataclass(frozen=True)
class ScheduleExpression:
    minute: CronField
    hour: CronField
    day_of_month: CronField
    month: CronField
    day_of_week: CronField
    timezone: str = UTC_ZONE
    holiday_calendar_id: str | None = None

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    @property
    def fields(self) -> tuple[CronField, ...]:
        return (self.minute, self.hour, self.day_of_month, self.month, self.day_of_week)

    @property
    def day_or(self) -> bool:
        """Day-of-month and day-of-week combine per Vixie cron.

        When both day fields are restricted (neither starts with ``*``) a day
        matches if either does; otherwise both must match.
        """
        return not (
            self.day_of_month.starts_with_wildcard or self.day_of_week.starts_with_wildcard
        )

    @property
    def iterator_body(self) -> str:
        """Five fields with every restricted one spelled out as a value list."""
        return " ".join(
            "*" if f.text == "*" else ",".join(str(v) for v in sorted(f.values))
            for f in self.fields
        )

    def to_spec(self) -> ScheduleSpec:
        return ScheduleSpec(
            expression=" ".join(f.text for f in self.fields),
            timezone=self.timezone,
            holiday_calendar_id=self.holiday_calendar_id,
        )

    def __str__(self) -> str:
        body = " ".join(f.text for f in self.fields)
        if self.timezone != UTC_ZONE:
            return f"{CRON_TZ_PREFIX}{self.timezone} {body}"
        return body


def _normalize_names(spec: FieldSpec, token: str, errors: list[FieldError]) -> str:
    def replace(match: re.Match) -> str:
        word = match.group(0)
        if spec.aliases is not None and word.lower() in spec.aliases:
            return str(spec.aliases[word.lower()])
        errors.append(FieldError(field=spec.name, token=word, message="unrecognized name"))
        return word

    return _NAME_RE.sub(replace, token)


def _bounded_int(spec: FieldSpec, text: str, token: str, errors: list[FieldError]) -> int | None:
    if not _INT_RE.match(text):
        errors.append(FieldError(field=spec.name, token=token, message=f"'{text}' is not an integer"))
        return None
    value = int(text)
    if not spec.low <= value <= spec.high:
        errors.append(
            FieldError(
                field=spec.name,
                token=token,
                message=f"{value} is outside {spec.low}-{spec.high}",
            )
        )
        return None
    return value


def _parse_part(spec: FieldSpec, part: str, errors: list[FieldError]) -> set[int]:
    if part == "":
        errors.append(FieldError(field=spec.name, token=part, message="empty list element"))
        return set()

    if "/" in part:
        base, _, step_text = part.partition("/")
        if not _INT_RE.match(step_text) or int(step_text) == 0:
            errors.append(
                FieldError(field=spec.name, token=part, message="step must be a positive integer")
            )
            return set()
        step = int(step_text)
        if base == "*":
            start = spec.low
        else:
            start = _bounded_int(spec, base, part, errors)
            if start is None:
                return set()
        return set(range(start, spec.high + 1, step))

    if part == "*":
        return set(range(spec.low, spec.high + 1))

    if "-" in part:
        low_text, _, high_text = part.partition("-")
        low = _bounded_int(spec, low_text, part, errors)
        high = _bounded_int(spec, high_text, part, errors)
        if low is None or high is None:
            return set()
        if low > high:
            errors.append(
                FieldError(field=spec.name, token=part, message=f"range start {low} exceeds end {high}")
            )
            return set()
        return set(range(low, high + 1))

    value = _bounded_int(spec, part, part, errors)
    return set() if value is None else {value}


def _parse_field(spec: FieldSpec, token: str, errors: list[FieldError]) -> CronField:
    seen = len(errors)
    normalized = _normalize_names(spec, token, errors)
    values: set[int] = set()
    if len(errors) > seen:
        return CronField(name=spec.name, text=normalized, values=frozenset())
    for part in normalized.split(","):
        values |= _parse_part(spec, part, errors)
    return CronField(name=spec.name, text=normalized, values=frozenset(values))


def _check_zone(timezone: str, errors: list[FieldError]) -> None:
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        errors.append(FieldError(field="timezone", token=timezone, message="unknown time zone"))


def _parse(
    text: str,
    timezone: str,
    holiday_calendar_id: str | None,
) -> tuple[ScheduleExpression | None, list[FieldError]]:
    errors: list[FieldError] = []
    body = text.strip()

    if body.startswith(CRON_TZ_PREFIX):
        zone_part, _, body = body[len(CRON_TZ_PREFIX):].partition(" ")
        timezone = zone_part
        body = body.strip()
    _check_zone(timezone, errors)

    if body.startswith("@"):
        macro = MACROS.get(body.lower())
        if macro is None:
            errors.append(FieldError(field="expression", token=body, message="unknown macro"))
            return None, errors
        body = macro

    tokens = body.split()
    if len(tokens) != len(FIELD_SPECS):
        errors.append(
            FieldError(
                field="expression",
                token=text,
                message=f"expected {len(FIELD_SPECS)} fields, got {len(tokens)}",
            )
        )
        return None, errors

    parsed = [_parse_field(spec, token, errors) for spec, token in zip(FIELD_SPECS, tokens)]
    if errors:
        return None, errors
    return (
        ScheduleExpression(*parsed, timezone=timezone, holiday_calendar_id=holiday_calendar_id),
        errors,
    )


def parse(
    text: str,
    timezone: str = UTC_ZONE,
    holiday_calendar_id: str | None = None,
) -> ScheduleExpression:
    """Parse a schedule expression, raising with every field error found."""
    expression, errors = _parse(text, timezone, holiday_calendar_id)
    if errors:
        raise InvalidScheduleExpressionError(errors)
    return expression


def from_spec(spec: ScheduleSpec) -> ScheduleExpression:
    return parse(spec.expression, spec.timezone, spec.holiday_calendar_id)


def validate(expression: "str | ScheduleSpec | ScheduleExpression", timezone: str = UTC_ZONE) -> list[FieldError]:
    """Return every field error in ``expression``; an empty list means valid."""
    if isinstance(expression, ScheduleExpression):
        expression = str(expression)
    if isinstance(expression, ScheduleSpec):
        timezone = expression.timezone
        expression = expression.expression
    _, errors = _parse(expression, timezone, None)
    return errors
