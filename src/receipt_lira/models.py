"""Domain and extraction models for bill tracking and reminders."""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

DEFAULT_REMINDER_DAYS = (1, 3, 7)


class BillType(str, Enum):
    """Canonical bill categories."""

    ELECTRICITY = "electricity"
    WATER = "water"
    NATURAL_GAS = "naturalGas"
    INTERNET = "internet"
    OTHER = "other"

    @classmethod
    def normalize(cls, value: object) -> BillType | None:
        """Map a raw type string to a BillType, folding the legacy "gas" synonym.

        Returns None for anything unrecognized.
        """
        if isinstance(value, BillType):
            return value
        if not isinstance(value, str):
            return None
        key = value.strip()
        if key.lower() in ("gas", "naturalgas", "natural_gas", "natural gas"):
            return cls.NATURAL_GAS
        for member in cls:
            if member.value.lower() == key.lower():
                return member
        return None


def _coerce_bill_type(value: Any) -> Any:
    normalized = BillType.normalize(value)
    return normalized if normalized is not None else value


class BillRecord(BaseModel):
    """One utility bill or receipt as read from the document store."""

    id: str = Field(min_length=1)
    bill_type: BillType = BillType.OTHER
    usage: float | None = Field(default=None, ge=0)
    cost: float | None = Field(default=None, ge=0)
    due_date: datetime | None = None
    merchant: str | None = None
    description: str | None = None
    items: str | None = None
    image_source: str | None = None
    user_id: str | None = None

    normalize_type = field_validator("bill_type", mode="before")(_coerce_bill_type)

    @field_validator("due_date")
    @classmethod
    def localize_due_date(cls, value: datetime | None) -> datetime | None:
        # Naive values are local wall-clock time.
        if value is not None and value.tzinfo is None:
            return value.astimezone()
        return value


class CandidateFields(BaseModel):
    """Generic guesses that apply to any receipt."""

    merchant: str | None = None
    bill_date: date | None = None
    amount: float | None = None


class BillFields(BaseModel):
    """Bill-specific guesses."""

    bill_type: BillType | None = None
    usage: float | None = None
    usage_unit: str | None = None
    cost: float | None = None
    items: str | None = None
    description: str | None = None

    normalize_type = field_validator("bill_type", mode="before")(_coerce_bill_type)


class ExtractionResult(BaseModel):
    """Best-effort structured read of a bill or receipt image.

    Null fields mean the user has to fill them in manually.
    """

    raw_text: str = ""
    confidence: float = Field(ge=0.0, le=1.0)
    source: str
    candidate_fields: CandidateFields = Field(default_factory=CandidateFields)
    bill_fields: BillFields | None = None


class ReminderTime(BaseModel):
    """Local wall-clock time at which reminders fire."""

    hour: int = Field(default=9, ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)


class ReminderSettings(BaseModel):
    """Per-installation reminder preferences."""

    enabled: bool = True
    reminder_days: list[int] = Field(default_factory=lambda: list(DEFAULT_REMINDER_DAYS))
    reminder_time: ReminderTime = Field(default_factory=ReminderTime)

    @field_validator("reminder_days")
    @classmethod
    def dedupe_and_sort(cls, value: list[int]) -> list[int]:
        if any(day < 0 for day in value):
            msg = "reminder_days must be non-negative"
            raise ValueError(msg)
        return sorted(set(value))


class ScheduledReminder(BaseModel):
    """A pending OS notification for one bill and lead time."""

    composite_id: str
    notification_handle: str
    bill_id: str
    bill_type: BillType
    due_date: datetime
    amount: float
    merchant: str | None = None
    fires_at: datetime

    normalize_type = field_validator("bill_type", mode="before")(_coerce_bill_type)

    @staticmethod
    def make_id(bill_id: str, days_before_due: int) -> str:
        """Return the deterministic key for a bill and lead time."""
        return f"{bill_id}_{days_before_due}"


class UpcomingBill(BaseModel):
    """A bill due within a look-ahead window."""

    bill_id: str
    bill_type: BillType
    cost: float
    due_date: datetime
    merchant: str | None = None
    days_until_due: int
