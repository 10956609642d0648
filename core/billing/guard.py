"""
Non-regression guard for paid-through dates.

Coverage must not move earlier unless the caller confirms it. Payment and
attendance truth events are exempt from erroring: when they would shorten
coverage, the previous value is kept instead.
"""

from dataclasses import dataclass
from datetime import date

from core.exceptions import CoverageWouldShortenError
from core.models.coverage import CoverageReason

SHORTEN_ABSORBING_REASONS = frozenset({
    CoverageReason.INVOICE_APPLIED,
    CoverageReason.CANCELLATION_CREATED,
    CoverageReason.CANCELLATION_REVERSED,
    CoverageReason.PAYMENT_REVERSED,
})


def would_shorten(previous: date | None, proposed: date | None) -> bool:
    """True when ``proposed`` is earlier than ``previous``. Losing a date entirely counts."""
    if previous is None:
        return False
    if proposed is None:
        return True
    return proposed < previous


@dataclass(frozen=True)
class GuardDecision:
    """What the guard decided to persist."""

    previous: date | None
    proposed: date | None
    accepted: date | None
    absorbed: bool = False

    @property
    def changed(self) -> bool:
        return self.accepted != self.previous


def guard_coverage(
    previous: date | None,
    proposed: date | None,
    reason: CoverageReason,
    confirm_shorten: bool = False,
) -> GuardDecision:
    """
    Decide the paid-through date to persist.

    Raises:
        CoverageWouldShortenError: Shortening without confirmation for a
            reason that does not absorb it.
    """
    if not would_shorten(previous, proposed) or confirm_shorten:
        return GuardDecision(previous=previous, proposed=proposed, accepted=proposed)

    if reason in SHORTEN_ABSORBING_REASONS:
        return GuardDecision(previous=previous, proposed=proposed, accepted=previous, absorbed=True)

    raise CoverageWouldShortenError(previous, proposed)
