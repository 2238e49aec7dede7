import uuid
from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from billtrack.recurrence.spec import as_utc
from billtrack.templates.models import TemplateKind


class TemplateCreate(BaseModel):
    user_id: uuid.UUID
    kind: TemplateKind = TemplateKind.BILL
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    amount: float = Field(default=0.0, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    category_id: uuid.UUID | None = None
    priority: int = Field(default=3, ge=1, le=5)
    notes: str | None = None
    is_recurring: bool = False
    rrule: str | None = Field(None, max_length=500)
    dtstart: datetime | None = None
    dtend: datetime | None = None
    is_active: bool = True
    auto_generate_days_ahead: int | None = Field(None, ge=1, le=3660)

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()

    @model_validator(mode="after")
    def check_recurrence(self) -> "TemplateCreate":
        if self.is_recurring and not (self.rrule and self.dtstart):
            raise ValueError("Recurring templates need both rrule and dtstart")
        if self.dtstart and self.dtend and as_utc(self.dtend) < as_utc(self.dtstart):
            raise ValueError("dtend must not be before dtstart")
        return self


class TemplateUpdate(BaseModel):
    kind: TemplateKind | None = None
    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    amount: float | None = Field(None, ge=0)
    currency: str | None = Field(None, min_length=3, max_length=3)
    category_id: uuid.UUID | None = None
    priority: int | None = Field(None, ge=1, le=5)
    notes: str | None = None
    is_recurring: bool | None = None
    rrule: str | None = Field(None, max_length=500)
    dtstart: datetime | None = None
    dtend: datetime | None = None
    is_active: bool | None = None
    auto_generate_days_ahead: int | None = Field(None, ge=1, le=3660)

    @field_validator("kind", "title", "amount", "currency", "priority", "is_recurring", "is_active")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not set to null")
        return v


class TemplateResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    kind: TemplateKind
    title: str
    description: str | None
    amount: float
    currency: str
    category_id: uuid.UUID | None
    priority: int
    notes: str | None
    is_recurring: bool
    rrule: str | None
    dtstart: datetime | None
    dtend: datetime | None
    is_active: bool
    auto_generate_days_ahead: int | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TemplateListItem(BaseModel):
    id: uuid.UUID
    kind: TemplateKind
    title: str
    amount: float
    currency: str
    is_recurring: bool
    rrule: str | None
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class TemplateFilter(BaseModel):
    user_id: uuid.UUID | None = None
    kind: TemplateKind | None = None
    is_active: bool | None = None
    is_recurring: bool | None = None
    search: str | None = None


class UpcomingOccurrences(BaseModel):
    template_id: uuid.UUID
    description: str | None
    next_occurrence: datetime | None
    occurrences: list[date]
