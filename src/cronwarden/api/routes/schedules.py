"""Schedule expression validation and fire-time preview."""

from datetime import datetime, timezone

from fastapi import APIRouter

from cronwarden.dependencies import Engine
from cronwarden.errors.exceptions import ScheduleHorizonExceededError
from cronwarden.models.schedule import FieldError, ScheduleSpec, ScheduleValidationRequest, ScheduleValidationResult
from cronwarden.services.schedule.expression import parse, validate

router = APIRouter(tags=["Schedules"])


@router.post("/schedules/validate")
async def validate_schedule(body: ScheduleValidationRequest, engine: Engine) -> dict:
    """Validate an expression and preview its next fire times. Always 200."""
    errors = validate(body.expression, body.timezone)
    if errors:
        return ScheduleValidationResult(valid=False, errors=errors).model_dump(mode="json")

    expr = parse(body.expression, body.timezone, body.holiday_calendar_id)
    result = ScheduleValidationResult(valid=True, normalized=str(expr))
    if body.count:
        spec = ScheduleSpec(
            expression=body.expression,
            timezone=body.timezone,
            holiday_calendar_id=body.holiday_calendar_id,
        )
        try:
            result.next_fire_times = await engine.planner.upcoming(
                spec, body.after or datetime.now(timezone.utc), body.count
            )
        except ScheduleHorizonExceededError as exc:
            result.valid = False
            result.errors = [FieldError(field="expression", token=body.expression, message=exc.message)]
    return result.model_dump(mode="json")
