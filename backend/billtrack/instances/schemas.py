import uuid
from datetime import date, datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from billtrack.instances.models import InstanceStatus
from billtrack.templates.models import TemplateKind


class InstanceCreate(BaseModel):
    """A one-time bill or income entry with no template behind it."""

    user_id: uuid.UUID
    kind: TemplateKind = TemplateKind.BILL
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    amount: float = Field(default=0.0, ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    category_id: uuid.UUID | None = None
    priority: int = Field(default=3, ge=1, le=5)
    notes: str | None = None
    due_date: date

    @field_validator("currency")
    @classmethod
    def upper_currency(cls, v: str) -> str:
        return v.upper()


class InstanceUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    amount: float | None = Field(None, ge=0)
    currency: str | None = Field(None, min_length=3, max_length=3)
    category_id: uuid.UUID | None = None
    priority: int | None = Field(None, ge=1, le=5)
    notes: str | None = None
    due_date: date | None = None

    @field_validator("title", "amount", "currency", "priority", "due_date")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not set to null")
        return v


class InstanceResponse(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    template_id: uuid.UUID | None
    kind: TemplateKind
    title: str
    description: str | None
    amount: float
    actual_amount: float | None
    currency: str
    category_id: uuid.UUID | None
    priority: int
    notes: str | None
    due_date: date
    status: InstanceStatus
    is_recurring: bool
    paid_at: datetime | None
    is_historical: bool
    can_edit: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class InstanceListItem(BaseModel):
    id: uuid.UUID
    template_id: uuid.UUID | None
    kind: TemplateKind
    title: str
    amount: float
    actual_amount: float | None
    currency: str
    due_date: date
    status: InstanceStatus
    is_recurring: bool
    is_historical: bool

    model_config = {"from_attributes": True}


class InstanceFilter(BaseModel):
    user_id: uuid.UUID | None = None
    template_id: uuid.UUID | None = None
    kind: TemplateKind | None = None
    status: InstanceStatus | None = None
    date_from: date | None = None
    date_to: date | None = None
    include_historical: bool = True
    search: str | None = None


class PaymentRequest(BaseModel):
    paid_at: datetime | None = None
    actual_amount: float | None = Field(None, ge=0)
    notes: str | None = None


class BulkPaymentRequest(BaseModel):
    """Pay many instances at once.

    ``actual_amounts`` records a per-instance amount and takes precedence
    over the shared ``actual_amount``.
    """

    instance_ids: list[uuid.UUID] = Field(min_length=1, max_length=500)
    paid_at: datetime | None = None
    actual_amount: float | None = Field(None, ge=0)
    actual_amounts: dict[uuid.UUID, float] = Field(default_factory=dict)
    notes: str | None = None

    @field_validator("actual_amounts")
    @classmethod
    def non_negative_amounts(cls, v: dict[uuid.UUID, float]) -> dict[uuid.UUID, float]:
        if any(amount < 0 for amount in v.values()):
            raise ValueError("actual amounts must not be negative")
        return v

    @model_validator(mode="after")
    def amounts_for_listed_ids(self) -> "BulkPaymentRequest":
        unknown = set(self.actual_amounts) - set(self.instance_ids)
        if unknown:
            raise ValueError("actual_amounts has entries for ids not in instance_ids")
        return self


class BulkPaymentResult(BaseModel):
    paid: list[uuid.UUID]
    skipped: list[uuid.UUID]


class InstanceBulkChanges(BaseModel):
    """Fields that may be set on many instances at once. Due dates stay per instance."""

    title: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = None
    amount: float | None = Field(None, ge=0)
    currency: str | None = Field(None, min_length=3, max_length=3)
    category_id: uuid.UUID | None = None
    priority: int | None = Field(None, ge=1, le=5)
    notes: str | None = None

    @field_validator("title", "amount", "currency", "priority")
    @classmethod
    def not_null(cls, v):
        if v is None:
            raise ValueError("may be omitted but not set to null")
        return v


class BulkUpdateRequest(BaseModel):
    instance_ids: list[uuid.UUID] = Field(min_length=1, max_length=500)
    changes: InstanceBulkChanges

    @model_validator(mode="after")
    def has_changes(self) -> "BulkUpdateRequest":
        if not self.changes.model_fields_set:
            raise ValueError("changes must set at least one field")
        return self


class BulkUpdateResult(BaseModel):
    updated: list[uuid.UUID]
    skipped: list[uuid.UUID]
