"""Class schedule models: weekly templates, holidays and single cancellations.

Day of week is 0 = Monday ... 6 = Sunday throughout.
"""

from datetime import date, datetime, time
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class ClassTemplate(BaseModel):
    """One weekly recurring class slot."""

    id: UUID
    name: str | None = None
    day_of_week: int | None = Field(None, ge=0, le=6)
    start_time: time | None = None
    start_date: date | None = None
    end_date: date | None = None
    level_id: UUID | None = None
    capacity: int | None = Field(None, ge=0)
    active: bool = True

    model_config = {"from_attributes": True}


class HolidayCreate(BaseModel):
    """Data required to create a holiday closure."""

    name: str = Field(..., min_length=1, max_length=200)
    start_date: date
    end_date: date
    level_id: UUID | None = None
    template_id: UUID | None = None
    note: str | None = Field(None, max_length=2000)

    @model_validator(mode="after")
    def check_range(self) -> "HolidayCreate":
        if self.end_date < self.start_date:
            raise ValueError("Holiday end_date must not be before start_date")
        return self


class HolidayUpdate(BaseModel):
    """Data that can be updated on a holiday. All fields optional."""

    name: str | None = Field(None, min_length=1, max_length=200)
    start_date: date | None = None
    end_date: date | None = None
    level_id: UUID | None = None
    template_id: UUID | None = None
    note: str | None = Field(None, max_length=2000)


class Holiday(BaseModel):
    """A closure over a date range, optionally scoped to a level or template."""

    id: UUID
    name: str | None = None
    start_date: date
    end_date: date
    level_id: UUID | None = None
    template_id: UUID | None = None
    note: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}

    def applies_to(self, template_id: UUID | None, level_id: UUID | None) -> bool:
        """Whether this holiday closes classes of the given template and level."""
        if self.template_id is not None and self.template_id != template_id:
            return False
        if self.level_id is not None and self.level_id != level_id:
            return False
        return True

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


class ClassCancellationCreate(BaseModel):
    """Data required to cancel one class occurrence."""

    template_id: UUID
    date: date
    reason: str | None = Field(None, max_length=500)


class ClassCancellation(BaseModel):
    """A single cancelled occurrence of a template."""

    id: UUID
    template_id: UUID
    date: date
    reason: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}
