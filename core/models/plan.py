"""Enrolment plan models.

Plans are immutable pricing references. Prices are stored in cents.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class BillingType(str, Enum):
    """How a plan turns money into class attendance."""

    PER_WEEK = "PER_WEEK"
    PER_CLASS = "PER_CLASS"
    BLOCK = "BLOCK"

    @property
    def is_credit_based(self) -> bool:
        return self is not BillingType.PER_WEEK


class EnrolmentPlan(BaseModel):
    """Full plan entity as stored."""

    id: UUID
    name: str
    billing_type: BillingType
    price_cents: int = Field(..., ge=0)
    sessions_per_week: int | None = None
    block_class_count: int | None = None
    duration_weeks: int | None = None
    level_id: UUID | None = None
    is_saturday_only: bool = False
    created_at: datetime | None = None

    model_config = {"from_attributes": True}

    @property
    def cadence(self) -> int:
        """Sessions per week, never less than 1."""
        return max(1, self.sessions_per_week or 1)

    @property
    def sessions_or_block_size(self) -> int:
        """Divisor for the per-class cost. Missing or zero counts as 1."""
        if self.billing_type == BillingType.PER_WEEK:
            size = self.sessions_per_week
        else:
            size = self.block_class_count
        return size if size and size > 0 else 1
