from datetime import date, datetime

from pydantic import BaseModel, Field, model_validator


class RuleRequest(BaseModel):
    rrule: str
    dtstart: datetime | None = None


class ValidationResponse(BaseModel):
    valid: bool
    error: str | None = None
    description: str | None = None


class PreviewRequest(BaseModel):
    rrule: str = Field(min_length=1)
    dtstart: datetime
    date_from: date
    date_to: date
    exclusions: list[date] = Field(default_factory=list)
    additions: list[date] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_window(self) -> "PreviewRequest":
        if self.date_to < self.date_from:
            raise ValueError("date_to must not be before date_from")
        return self


class PreviewResponse(BaseModel):
    rrule: str
    description: str
    occurrences: list[date]
    next_occurrence: datetime | None


class PatternResponse(BaseModel):
    name: str
    description: str
    rrule: str

    model_config = {"from_attributes": True}
