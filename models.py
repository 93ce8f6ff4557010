import uuid
from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class IntervalUnit(str, Enum):
    week = "week"
    month = "month"
    year = "year"


DEFAULT_CATEGORY = "Other"


def _new_id() -> str:
    return uuid.uuid4().hex


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    # Subject identifier issued by the identity provider.
    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    push_token: Mapped[Optional[str]] = mapped_column(String(255))
    monthly_budget_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    __table_args__ = (
        CheckConstraint("monthly_budget_cents >= 0", name="ck_user_budget_positive"),
    )


class Invoice(Base, TimestampMixin):
    __tablename__ = "invoices"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    vendor: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[Optional[date]] = mapped_column(Date)
    category: Mapped[str] = mapped_column(
        String(100), nullable=False, default=DEFAULT_CATEGORY
    )
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Stored as "<count>-<unit>", e.g. "3-month".
    recurrence_interval: Mapped[Optional[str]] = mapped_column(String(20))

    __table_args__ = (
        Index("ix_invoices_owner_created", "owner_id", "created_at"),
        Index("ix_invoices_recurring_due", "is_recurring", "due_date"),
        CheckConstraint("amount_cents >= 0", name="ck_invoice_amount_positive"),
        CheckConstraint(
            "(is_recurring AND recurrence_interval IS NOT NULL "
            "AND due_date IS NOT NULL) "
            "OR (NOT is_recurring AND recurrence_interval IS NULL)",
            name="ck_invoice_recurrence_consistent",
        ),
    )
