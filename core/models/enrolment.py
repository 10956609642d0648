"""Enrolment models.

One enrolment row covers one contiguous billing period. A class or plan
change ends the old row (status CHANGEOVER) and creates a linked successor
sharing the same billing_group_id.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class EnrolmentStatus(str, Enum):
    """Enrolment lifecycle status."""

    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CHANGEOVER = "CHANGEOVER"
    CANCELLED = "CANCELLED"


class Enrolment(BaseModel):
    """Full enrolment entity as stored, with its assigned template ids."""

    id: UUID
    student_id: UUID
    family_id: UUID
    plan_id: UUID | None
    status: EnrolmentStatus
    start_date: date
    end_date: date | None = None
    paid_through_date: date | None = None
    paid_through_date_computed: date | None = None
    next_due_date_computed: date | None = None
    credits_remaining: int | None = None
    credits_balance_cached: int | None = None
    billing_group_id: UUID | None = None
    template_ids: list[UUID] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def is_active(self) -> bool:
        return self.status == EnrolmentStatus.ACTIVE


class EnrolmentChange(BaseModel):
    """Request to move an enrolment onto a new plan and/or class set."""

    new_plan_id: UUID | None = None
    new_template_ids: list[UUID] = Field(..., min_length=1)
    changeover_date: date
    confirm_shorten: bool = False
    allow_capacity_overload: bool = False

    @model_validator(mode="after")
    def dedupe_templates(self) -> "EnrolmentChange":
        self.new_template_ids = list(dict.fromkeys(self.new_template_ids))
        return self
