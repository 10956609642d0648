"""Typed exceptions for billing engine failures.

Services raise these; the enclosing transaction rolls back and the API layer
maps each class to an error code. Nothing here is ever clamped or retried
silently.
"""

from datetime import date
from uuid import UUID

from utils.timezone import day_key_str


class BillingError(Exception):
    """Base class for billing engine errors."""


class ValidationError(BillingError, ValueError):
    """
    Bad input shape or inconsistent request.

    Covers mismatched plan/level/template combinations and duplicate or
    overlapping enrolment windows. Raised before any write.
    """


class NotFoundError(BillingError, LookupError):
    """A referenced enrolment, plan, invoice, payment or template does not exist."""

    def __init__(self, entity: str, entity_id: UUID | str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} {entity_id} not found")


class InvariantViolation(BillingError):
    """
    A ledger invariant would be broken.

    Allocation beyond an invoice balance, cross-family allocation, settlement
    on inconsistent state. Always fatal.
    """


class CapacityExceededError(BillingError):
    """Enrolling would overfill a class occurrence. Recoverable via explicit overload."""

    def __init__(
        self,
        template_id: UUID,
        day: date,
        capacity: int,
        current: int,
        projected: int,
    ):
        self.template_id = template_id
        self.date = day
        self.capacity = capacity
        self.current = current
        self.projected = projected
        super().__init__(
            f"Class {template_id} on {day.isoformat()} would have {projected} "
            f"students (capacity {capacity}, currently {current})"
        )

    def to_details(self) -> dict:
        return {
            "template_id": str(self.template_id),
            "date": self.date.isoformat(),
            "capacity": self.capacity,
            "current": self.current,
            "projected": self.projected,
        }


class CoverageWouldShortenError(BillingError):
    """
    Recalculated paid-through would move earlier.

    Recoverable: the caller re-prompts and retries with confirm_shorten.
    """

    def __init__(self, old_day: date | None, new_day: date | None):
        self.old_day = old_day
        self.new_day = new_day
        super().__init__(
            f"Coverage would shorten from {self.old_key} to {self.new_key or 'none'}"
        )

    @property
    def old_key(self) -> str | None:
        return day_key_str(self.old_day)

    @property
    def new_key(self) -> str | None:
        return day_key_str(self.new_day)

    def to_details(self) -> dict:
        return {"old_date": self.old_key, "new_date": self.new_key}
