from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from app.core.datetime_utils import normalize_day
from app.domain.catalog import GROUP_TRAINING_DAYS, HOURLY_WINDOWS, assigned_slot


class _ProgramBase(BaseModel):
    selected_days: list[str] = Field(default_factory=list)

    @field_validator("selected_days")
    @classmethod
    def validate_days(cls, value: list[str]) -> list[str]:
        days = [normalize_day(day) for day in value]
        if len(set(days)) != len(days):
            msg = "Selected days must be unique"
            raise ValueError(msg)
        return days


class GroupProgram(_ProgramBase):
    program_type: Literal["group"] = "group"
    frequency: Literal["1x", "2x"] = "1x"

    @model_validator(mode="after")
    def validate_group_days(self) -> GroupProgram:
        invalid = [day for day in self.selected_days if day not in GROUP_TRAINING_DAYS]
        if invalid:
            msg = f"Group training is only available on {', '.join(GROUP_TRAINING_DAYS)}"
            raise ValueError(msg)
        if len(self.selected_days) > self.days_per_week:
            msg = f"A {self.frequency} player can train on at most {self.days_per_week} day(s)"
            raise ValueError(msg)
        return self

    @property
    def days_per_week(self) -> int:
        return 1 if self.frequency == "1x" else 2


class PrivateProgram(_ProgramBase):
    program_type: Literal["private"] = "private"
    time_slot: str | None = None

    @field_validator("time_slot")
    @classmethod
    def validate_time_slot(cls, value: str | None) -> str | None:
        if value is not None and value not in HOURLY_WINDOWS:
            msg = f"Invalid time. Must be one of: {', '.join(HOURLY_WINDOWS)}"
            raise ValueError(msg)
        return value


class SemiPrivateProgram(PrivateProgram):
    program_type: Literal["semi_private"] = "semi_private"  # type: ignore[assignment]


ProgramDetails = Annotated[
    GroupProgram | PrivateProgram | SemiPrivateProgram,
    Field(discriminator="program_type"),
]

_program_adapter: TypeAdapter[ProgramDetails] = TypeAdapter(ProgramDetails)


def parse_program(raw: dict[str, Any]) -> GroupProgram | PrivateProgram | SemiPrivateProgram:
    return _program_adapter.validate_python(raw)


def dump_program(program: GroupProgram | PrivateProgram | SemiPrivateProgram) -> dict[str, Any]:
    return program.model_dump(mode="json")


def recurring_pattern(
    program: GroupProgram | PrivateProgram | SemiPrivateProgram,
    category: str,
) -> tuple[list[str], str | None]:
    match program:
        case GroupProgram():
            slot = assigned_slot(category)
            return list(program.selected_days), slot.label if slot else None
        case SemiPrivateProgram() | PrivateProgram():
            return list(program.selected_days), program.time_slot


def with_pattern(
    program: GroupProgram | PrivateProgram | SemiPrivateProgram,
    days: list[str],
    time_slot: str | None,
) -> GroupProgram | PrivateProgram | SemiPrivateProgram:
    match program:
        case GroupProgram():
            return GroupProgram.model_validate({**program.model_dump(), "selected_days": days})
        case SemiPrivateProgram() | PrivateProgram():
            return type(program).model_validate(
                {**program.model_dump(), "selected_days": days, "time_slot": time_slot}
            )
