"""
Payment allocation planning.

Plans are computed from a consistent read of the invoices (locked by the
caller) and then written row by row. Every planned amount is bounded by the
invoice balance; nothing is clamped silently.
"""

from datetime import datetime, timezone
from typing import Iterable
from uuid import UUID

from core.exceptions import InvariantViolation, NotFoundError, ValidationError
from core.models.invoice import Invoice, InvoiceStatus
from core.models.payment import AllocationRequest

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)

AllocationPlan = list[tuple[UUID, int]]


def aggregate_allocations(requests: Iterable[AllocationRequest]) -> dict[UUID, int]:
    """Sum requested amounts per invoice, keeping first-seen order."""
    totals: dict[UUID, int] = {}
    for request in requests:
        totals[request.invoice_id] = totals.get(request.invoice_id, 0) + request.amount_cents
    return totals


def plan_manual_allocations(
    family_id: UUID,
    amount_cents: int,
    requests: Iterable[AllocationRequest],
    invoices_by_id: dict[UUID, Invoice],
) -> AllocationPlan:
    """
    Validate caller-specified allocations.

    Raises:
        ValidationError: Sum differs from the payment, or an invoice is void.
        NotFoundError: An invoice does not exist.
        InvariantViolation: Cross-family invoice, or amount beyond balance.
    """
    totals = aggregate_allocations(requests)
    requested = sum(totals.values())
    if requested != amount_cents:
        raise ValidationError(
            f"Allocations total {requested} cents but payment is {amount_cents} cents"
        )

    plan = []
    for invoice_id, cents in totals.items():
        invoice = invoices_by_id.get(invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        if invoice.family_id != family_id:
            raise InvariantViolation(
                f"Invoice {invoice_id} belongs to another family; cannot allocate across families"
            )
        if invoice.status == InvoiceStatus.VOID:
            raise ValidationError(f"Invoice {invoice_id} is void")
        if cents > invoice.balance_due_cents:
            raise InvariantViolation(
                f"Allocation of {cents} cents exceeds invoice {invoice_id} "
                f"balance of {invoice.balance_due_cents} cents"
            )
        plan.append((invoice_id, cents))
    return plan


def oldest_open_first(invoices: Iterable[Invoice]) -> list[Invoice]:
    """Open invoices with a balance, by due date (undated last), then issue date."""
    open_invoices = [inv for inv in invoices if inv.is_open and inv.balance_due_cents > 0]
    return sorted(
        open_invoices,
        key=lambda inv: (
            inv.due_at or _FAR_FUTURE,
            inv.issued_at or inv.created_at,
            str(inv.id),
        ),
    )


def plan_oldest_open_first(invoices: Iterable[Invoice], amount_cents: int) -> AllocationPlan:
    """Greedily fill open balances, oldest first. Leftover stays unallocated."""
    remaining = amount_cents
    plan = []
    for invoice in oldest_open_first(invoices):
        if remaining <= 0:
            break
        cents = min(remaining, invoice.balance_due_cents)
        plan.append((invoice.id, cents))
        remaining -= cents
    return plan
