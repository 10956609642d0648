"""Invoice status state machine."""

from datetime import datetime

from core.models.invoice import InvoiceStatus


def next_invoice_status(
    current: InvoiceStatus,
    amount_cents: int,
    paid_cents: int,
    due_at: datetime | None,
    now: datetime,
) -> InvoiceStatus:
    """
    Derive an invoice's status from its totals.

    VOID is absorbing. Otherwise money decides (PAID, PARTIALLY_PAID), then
    an unpaid DRAFT stays a draft, then the due date decides between
    OVERDUE and SENT.
    """
    if current == InvoiceStatus.VOID:
        return InvoiceStatus.VOID
    if paid_cents >= amount_cents:
        return InvoiceStatus.PAID
    if paid_cents > 0:
        return InvoiceStatus.PARTIALLY_PAID
    if current == InvoiceStatus.DRAFT:
        return InvoiceStatus.DRAFT
    if due_at is not None and due_at < now:
        return InvoiceStatus.OVERDUE
    return InvoiceStatus.SENT
