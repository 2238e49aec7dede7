from fastapi import APIRouter

from billtrack.recurrence import engine
from billtrack.recurrence.patterns import COMMON_PATTERNS
from billtrack.recurrence.ruleset import RecurrenceSet
from billtrack.recurrence.schemas import (
    PatternResponse,
    PreviewRequest,
    PreviewResponse,
    RuleRequest,
    ValidationResponse,
)
from billtrack.recurrence.spec import parse

router = APIRouter()


@router.post("/validate")
async def validate_rule(data: RuleRequest) -> dict:
    result = engine.validate(data.rrule)
    resp = ValidationResponse(valid=result.valid, error=result.error)
    if result.valid:
        resp.description = engine.describe(data.rrule, data.dtstart)
    return {"data": resp}


@router.post("/describe")
async def describe_rule(data: RuleRequest) -> dict:
    return {"data": {"description": engine.describe(data.rrule, data.dtstart)}}


@router.post("/preview")
async def preview_rule(data: PreviewRequest) -> dict:
    spec = parse(data.rrule)
    rule_set = RecurrenceSet(
        anchor=data.dtstart,
        rules=[spec.to_rrule()],
        exclusions=list(data.exclusions),
        additions=list(data.additions),
    )
    resp = PreviewResponse(
        rrule=spec.to_rrule(),
        description=engine.describe(data.rrule, data.dtstart),
        occurrences=rule_set.occurrence_dates_between(data.date_from, data.date_to),
        next_occurrence=engine.next_occurrence(data.rrule, data.dtstart),
    )
    return {"data": resp}


@router.get("/patterns")
async def list_patterns() -> dict:
    return {"data": [PatternResponse.model_validate(p) for p in COMMON_PATTERNS]}
