from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from models import DEFAULT_CATEGORY, Invoice


class InvoiceIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    vendor: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0, decimal_places=2)
    due_date: Optional[date] = None
    category: str = Field(default=DEFAULT_CATEGORY, max_length=100)


class InvoicePatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    vendor: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(default=None, ge=0, decimal_places=2)
    due_date: Optional[date] = None
    category: Optional[str] = Field(default=None, max_length=100)


class RecurrenceIn(BaseModel):
    interval: Optional[str] = Field(default=None, max_length=20)


class BudgetIn(BaseModel):
    monthly_budget: Decimal = Field(..., ge=0, decimal_places=2)


class PushTokenIn(BaseModel):
    push_token: str = Field(
        ...,
        min_length=1,
        max_length=255,
        validation_alias=AliasChoices("push_token", "fcm_token", "fcmToken"),
    )


class DealsIn(BaseModel):
    vendor: Optional[str] = None
    amount: Optional[Decimal] = None
    category: Optional[str] = None


class InvoiceOut(BaseModel):
    id: str
    vendor: str
    amount: float
    amount_cents: int
    due_date: Optional[date]
    category: str
    is_recurring: bool
    recurrence_interval: Optional[str]
    created_at: datetime

    @classmethod
    def from_invoice(cls, invoice: Invoice) -> "InvoiceOut":
        return cls(
            id=invoice.id,
            vendor=invoice.vendor,
            amount=invoice.amount_cents / 100,
            amount_cents=invoice.amount_cents,
            due_date=invoice.due_date,
            category=invoice.category,
            is_recurring=invoice.is_recurring,
            recurrence_interval=invoice.recurrence_interval,
            created_at=invoice.created_at,
        )
