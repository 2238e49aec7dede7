import enum
import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, Enum, Float, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from billtrack.database import Base, TimestampMixin


class TemplateKind(str, enum.Enum):
    BILL = "bill"
    INCOME = "income"


# Changing any of these rebuilds the template's future instances.
RECURRENCE_FIELDS = frozenset(
    {
        "amount",
        "rrule",
        "dtstart",
        "dtend",
        "is_recurring",
        "is_active",
        "auto_generate_days_ahead",
    }
)


class Template(TimestampMixin, Base):
    __tablename__ = "templates"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    kind: Mapped[TemplateKind] = mapped_column(
        Enum(TemplateKind), default=TemplateKind.BILL, nullable=False
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD", nullable=False)
    category_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    priority: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Recurrence
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rrule: Mapped[str | None] = mapped_column(String(500), nullable=True)
    dtstart: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    dtend: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    auto_generate_days_ahead: Mapped[int | None] = mapped_column(Integer, nullable=True)

    @property
    def is_materializable(self) -> bool:
        return bool(self.is_recurring and self.is_active and self.rrule and self.dtstart)
