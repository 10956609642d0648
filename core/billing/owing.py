"""
Family owing: overdue coverage, open invoices and unallocated credit.

Overdue coverage is priced in whole blocks of the enrolment's plan. An
enrolment that already has an open invoice is not counted as overdue, since
that invoice is what will pay for the gap.
"""

import math
from dataclasses import dataclass
from datetime import date
from fractions import Fraction
from typing import Iterable, Mapping
from uuid import UUID

from core.models.enrolment import Enrolment, EnrolmentStatus
from core.models.invoice import Invoice, InvoiceStatus
from core.models.owing import EntitlementStatus, FamilyBillingSummary, NetOwing, OwingEntry
from core.models.plan import EnrolmentPlan

DUE_SOON_DAYS = 14

PAYABLE_STATUSES = frozenset({EnrolmentStatus.ACTIVE, EnrolmentStatus.CHANGEOVER})


@dataclass(frozen=True)
class PayableEnrolment:
    enrolment: Enrolment
    plan: EnrolmentPlan | None
    paid_through: date | None


def unpaid_blocks(
    paid_through: date | None,
    sessions_per_week: int | None,
    block_class_count: int | None,
    today: date,
) -> int:
    """
    Whole plan blocks between the paid-through date and today.

    Nothing paid counts as one block. Any gap at all counts as at least one.
    """
    if paid_through is None:
        return 1
    if today <= paid_through:
        return 0

    days_behind = (today - paid_through).days
    classes_per_week = max(sessions_per_week or 1, 1)
    block_size = max(block_class_count or classes_per_week, 1)
    classes_behind = Fraction(days_behind, 7) * classes_per_week
    return max(1, math.ceil(classes_behind / block_size))


def is_payable(enrolment: Enrolment, paid_through: date | None) -> bool:
    """Active or changeover, and not already paid to its end."""
    if enrolment.status not in PAYABLE_STATUSES:
        return False
    if paid_through is None or enrolment.end_date is None:
        return True
    return paid_through < enrolment.end_date


def entitlement_status(
    plan: EnrolmentPlan | None,
    paid_through: date | None,
    today: date,
    due_soon_days: int = DUE_SOON_DAYS,
) -> EntitlementStatus:
    if plan is None:
        return EntitlementStatus.UNKNOWN
    # Nothing paid counts as a block behind, so past here paid_through is set.
    if unpaid_blocks(paid_through, plan.sessions_per_week, plan.block_class_count, today) > 0:
        return EntitlementStatus.OVERDUE
    if (paid_through - today).days <= due_soon_days:
        return EntitlementStatus.DUE_SOON
    return EntitlementStatus.AHEAD


def summarise_family(items: Iterable[PayableEnrolment], today: date) -> FamilyBillingSummary:
    """
    Overdue blocks per payable enrolment and the earliest next payment day.

    The next payment day is the earliest paid-through date still ahead, or
    today when any enrolment is already behind.
    """
    breakdown = []
    next_due = None
    for item in items:
        if item.plan is None or not is_payable(item.enrolment, item.paid_through):
            continue

        blocks = unpaid_blocks(
            item.paid_through, item.plan.sessions_per_week, item.plan.block_class_count, today
        )
        breakdown.append(OwingEntry(
            enrolment_id=item.enrolment.id,
            student_id=item.enrolment.student_id,
            plan_id=item.plan.id,
            billing_type=item.plan.billing_type,
            paid_through_date=item.paid_through,
            overdue_blocks=blocks,
            overdue_owing_cents=blocks * item.plan.price_cents,
        ))

        candidate = item.paid_through if item.paid_through and item.paid_through >= today else today
        if next_due is None or candidate < next_due:
            next_due = candidate

    return FamilyBillingSummary(
        overdue_owing_cents=sum(entry.overdue_owing_cents for entry in breakdown),
        next_payment_due=next_due,
        breakdown=breakdown,
    )


def compute_net_owing(
    summary: FamilyBillingSummary,
    open_invoices: Iterable[Invoice],
    allocation_totals: Mapping[UUID, int],
    invoices_by_id: Mapping[UUID, Invoice],
    payments_total_cents: int,
) -> NetOwing:
    """
    Net owing for a family.

    Args:
        summary: Overdue coverage per enrolment
        open_invoices: The family's open invoices
        allocation_totals: Net allocated cents per invoice, active payments only
        invoices_by_id: Every invoice named in ``allocation_totals``
        payments_total_cents: Sum of the family's active payments
    """
    open_invoices = list(open_invoices)
    invoiced_enrolments = {invoice.enrolment_id for invoice in open_invoices if invoice.enrolment_id}

    overdue = sum(
        entry.overdue_owing_cents
        for entry in summary.breakdown
        if entry.enrolment_id not in invoiced_enrolments
    )

    outstanding = 0
    for invoice in open_invoices:
        paid = max(invoice.amount_paid_cents, allocation_totals.get(invoice.id, 0))
        outstanding += max(invoice.amount_cents - paid, 0)

    applied = 0
    for invoice_id, allocated in allocation_totals.items():
        invoice = invoices_by_id.get(invoice_id)
        if invoice is None or invoice.status == InvoiceStatus.VOID:
            continue
        applied += min(max(allocated, 0), invoice.amount_cents)

    unallocated = max(payments_total_cents - applied, 0)
    return NetOwing(
        net_owing_cents=overdue + outstanding - unallocated,
        invoice_outstanding_cents=outstanding,
        unallocated_credit_cents=unallocated,
        overdue_owing_cents=overdue,
    )
