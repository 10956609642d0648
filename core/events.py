"""
Domain events for the billing engine.

Immutable event objects describing something that has already committed.
Services publish them after the transaction closes; handlers react without
the publisher knowing who's listening.

Event Categories:
- InvoiceEvent: invoice became paid
- PaymentEvent: payment recorded or reversed
- CoverageEvent: paid-through changed, or a shorten was absorbed
- EnrolmentChangedOver: an enrolment was superseded by its successor
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from utils.timezone import now_utc


@dataclass(frozen=True, kw_only=True)
class BillingEvent:
    """Base class for all billing domain events."""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=now_utc)


# =============================================================================
# INVOICE EVENTS
# =============================================================================


@dataclass(frozen=True)
class InvoiceEvent(BillingEvent):
    """Events related to invoice lifecycle."""
    pass


@dataclass(frozen=True)
class InvoicePaid(InvoiceEvent):
    """Invoice moved into PAID and its entitlements were applied."""
    invoice: Any = None  # Invoice; Any avoids a circular import

    @classmethod
    def create(cls, invoice: Any) -> "InvoicePaid":
        return cls(invoice=invoice)


# =============================================================================
# PAYMENT EVENTS
# =============================================================================


@dataclass(frozen=True)
class PaymentEvent(BillingEvent):
    """Events related to payments."""
    pass


@dataclass(frozen=True)
class PaymentRecorded(PaymentEvent):
    """A new payment was recorded (never fired on idempotent replay)."""
    payment: Any = None
    allocated_cents: int = 0
    unallocated_cents: int = 0

    @classmethod
    def create(cls, payment: Any, allocated_cents: int, unallocated_cents: int) -> "PaymentRecorded":
        return cls(payment=payment, allocated_cents=allocated_cents, unallocated_cents=unallocated_cents)


@dataclass(frozen=True)
class PaymentReversed(PaymentEvent):
    """A payment was voided and its allocations reversed."""
    payment: Any = None
    invoice_ids: tuple = ()

    @classmethod
    def create(cls, payment: Any, invoice_ids: list) -> "PaymentReversed":
        return cls(payment=payment, invoice_ids=tuple(invoice_ids))


# =============================================================================
# COVERAGE EVENTS
# =============================================================================


@dataclass(frozen=True)
class CoverageEvent(BillingEvent):
    """Events related to enrolment coverage."""
    enrolment_id: UUID | None = None
    reason: str | None = None


@dataclass(frozen=True)
class CoverageChanged(CoverageEvent):
    """An accepted recalculation moved the paid-through date."""
    previous_paid_through: date | None = None
    next_paid_through: date | None = None

    @classmethod
    def create(
        cls, enrolment_id: UUID, reason: str, previous: date | None, new: date | None
    ) -> "CoverageChanged":
        return cls(
            enrolment_id=enrolment_id,
            reason=reason,
            previous_paid_through=previous,
            next_paid_through=new,
        )


@dataclass(frozen=True)
class CoverageShortenAbsorbed(CoverageEvent):
    """A system recalculation would have shortened coverage and kept the old date."""
    kept_paid_through: date | None = None
    proposed_paid_through: date | None = None

    @classmethod
    def create(
        cls, enrolment_id: UUID, reason: str, kept: date | None, proposed: date | None
    ) -> "CoverageShortenAbsorbed":
        return cls(
            enrolment_id=enrolment_id,
            reason=reason,
            kept_paid_through=kept,
            proposed_paid_through=proposed,
        )


# =============================================================================
# ENROLMENT EVENTS
# =============================================================================


@dataclass(frozen=True)
class EnrolmentChangedOver(BillingEvent):
    """An enrolment was superseded by a successor on a new plan or class set."""
    old_enrolment_id: UUID | None = None
    new_enrolment_id: UUID | None = None
    settlement: Any = None

    @classmethod
    def create(cls, old_enrolment_id: UUID, new_enrolment_id: UUID, settlement: Any) -> "EnrolmentChangedOver":
        return cls(
            old_enrolment_id=old_enrolment_id,
            new_enrolment_id=new_enrolment_id,
            settlement=settlement,
        )
