from __future__ import annotations

from datetime import date
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from app.core.datetime_utils import normalize_day, parse_time_slot_start, weekday_name
from app.domain.enums import BookingStatus, ChangeType, PackageType, SessionType


class BookSessionCommand(BaseModel):
    owner_id: str = Field(min_length=1)
    registration_id: UUID
    session_type: SessionType
    session_date: date
    time_slot: str = Field(min_length=1)

    @field_validator("time_slot")
    @classmethod
    def validate_time_slot(cls, value: str) -> str:
        parse_time_slot_start(value)
        return value.strip()


class CancelBookingCommand(BaseModel):
    owner_id: str = Field(min_length=1)
    reason: str | None = None


class AttendanceCommand(BaseModel):
    status: BookingStatus

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: BookingStatus) -> BookingStatus:
        if value not in (BookingStatus.ATTENDED, BookingStatus.NO_SHOW):
            msg = "Attendance status must be attended or no_show"
            raise ValueError(msg)
        return value


class DaySwap(BaseModel):
    original_day: str
    original_date: date
    new_day: str

    @field_validator("original_day", "new_day")
    @classmethod
    def validate_day(cls, value: str) -> str:
        return normalize_day(value)

    @model_validator(mode="after")
    def validate_original_date(self) -> DaySwap:
        if weekday_name(self.original_date) != self.original_day:
            msg = f"{self.original_date.isoformat()} is not a {self.original_day}"
            raise ValueError(msg)
        return self


class ScheduleChangeCommand(BaseModel):
    owner_id: str = Field(min_length=1)
    change_type: ChangeType
    new_days: list[str] = Field(default_factory=list)
    new_time: str | None = None
    day_swaps: list[DaySwap] = Field(default_factory=list)
    specific_date: date | None = None
    effective_date: date | None = None
    reason: str | None = None

    @field_validator("new_days")
    @classmethod
    def validate_days(cls, value: list[str]) -> list[str]:
        return [normalize_day(day) for day in value]

    @field_validator("new_time")
    @classmethod
    def validate_new_time(cls, value: str | None) -> str | None:
        if value is None:
            return None
        parse_time_slot_start(value)
        return value.strip()

    @model_validator(mode="after")
    def validate_shape(self) -> ScheduleChangeCommand:
        if self.change_type is ChangeType.PERMANENT:
            if not self.new_days:
                msg = "A permanent change needs the new training day(s)"
                raise ValueError(msg)
            return self
        if not self.day_swaps and self.specific_date is None:
            msg = "A one-time change requires day_swaps or specific_date"
            raise ValueError(msg)
        if not self.day_swaps and not self.new_days:
            msg = "A one-time change with specific_date needs new_days"
            raise ValueError(msg)
        return self

    @property
    def target_days(self) -> list[str]:
        if self.day_swaps:
            return [swap.new_day for swap in self.day_swaps]
        return list(self.new_days)


class SundayBookCommand(BaseModel):
    owner_id: str = Field(min_length=1)
    registration_id: UUID


class SundayCancelCommand(BaseModel):
    owner_id: str = Field(min_length=1)


class RecurringScheduleCommand(BaseModel):
    owner_id: str = Field(min_length=1)
    registration_id: UUID
    day_of_week: str

    @field_validator("day_of_week")
    @classmethod
    def validate_day(cls, value: str) -> str:
        return normalize_day(value)


class RecurringScheduleOwnerCommand(BaseModel):
    owner_id: str = Field(min_length=1)


class AdminAdjustCreditsCommand(BaseModel):
    owner_id: str = Field(min_length=1)
    adjustment: int
    reason: str
    admin_id: str = Field(min_length=1)

    @field_validator("adjustment")
    @classmethod
    def validate_adjustment(cls, value: int) -> int:
        if value == 0:
            msg = "Adjustment must be non-zero"
            raise ValueError(msg)
        return value

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, value: str) -> str:
        if len(value.strip()) < 5:
            msg = "Reason must be at least 5 characters"
            raise ValueError(msg)
        return value.strip()


class CreditPurchaseMetadata(BaseModel):
    type: Literal["credit_purchase"]
    owner_id: str
    package_type: PackageType
    credits: int = Field(ge=1)


class SessionPurchaseMetadata(BaseModel):
    type: Literal["session_purchase"]
    owner_id: str
    registration_id: UUID
    session_type: SessionType
    session_date: date
    time_slot: str

    @field_validator("session_type")
    @classmethod
    def validate_session_type(cls, value: SessionType) -> SessionType:
        if value is SessionType.GROUP:
            msg = "Group sessions are paid with credits"
            raise ValueError(msg)
        return value


PurchaseMetadata = Annotated[
    CreditPurchaseMetadata | SessionPurchaseMetadata,
    Field(discriminator="type"),
]


class PaymentEvent(BaseModel):
    """Payment-processor event whose signature was verified upstream."""

    event_id: str = Field(min_length=1)
    event_type: str
    session_id: str | None = None
    payment_intent_id: str | None = None
    subscription_id: str | None = None
    subscription_status: str | None = None
    registration_id: UUID | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    amount_paid: int = Field(default=0, ge=0)
    currency: str = "cad"
