"""
Handlers for payment events.

Once a payment has committed, refresh the billing snapshot cache of every
enrolment it touched so list views read current coverage.
"""

import logging
from typing import Callable

from core.events import InvoicePaid, PaymentReversed

logger = logging.getLogger(__name__)


def handle_invoice_paid(snapshot_service) -> Callable:
    """
    Factory that returns an InvoicePaid handler.

    Args:
        snapshot_service: BillingSnapshotService instance

    Returns:
        Handler callable that refreshes the paid enrolment's snapshot
    """

    def handler(event: InvoicePaid):
        invoice = event.invoice
        if invoice.enrolment_id is None:
            return

        snapshot = snapshot_service.get_snapshot(invoice.enrolment_id)
        logger.info(
            "Invoice %s paid; enrolment %s now paid through %s",
            invoice.id, invoice.enrolment_id, snapshot.paid_through_date
        )

    return handler


def handle_payment_reversed(snapshot_service, invoice_service) -> Callable:
    """
    Factory that returns a PaymentReversed handler.

    Args:
        snapshot_service: BillingSnapshotService instance
        invoice_service: InvoiceService instance

    Returns:
        Handler callable that refreshes snapshots behind the reversed invoices
    """

    def handler(event: PaymentReversed):
        enrolment_ids = set()
        for invoice_id in event.invoice_ids:
            invoice = invoice_service.get_by_id(invoice_id)
            if invoice is not None and invoice.enrolment_id is not None:
                enrolment_ids.add(invoice.enrolment_id)

        for enrolment_id in sorted(enrolment_ids, key=str):
            snapshot_service.get_snapshot(enrolment_id)

    return handler
