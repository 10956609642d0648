"""
Settlement service: charge or credit the difference of a mid-period plan change.

A settlement is applied at most once per idempotency key. The key is derived
from the change itself, so repeating the same change replays the recorded
invoice or payment instead of creating another.
"""

import logging
from uuid import UUID

from clients.postgres_client import PostgresClient
from core.config import BillingConfig
from core.models import (
    AllocationStrategy,
    InvoiceCreate,
    InvoiceStatus,
    LineItemCreate,
    LineItemKind,
    PaymentCreate,
    SettlementApplication,
    SettlementQuote,
)
from core.services.invoice_service import InvoiceService
from core.services.payment_service import PaymentService
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class SettlementService:
    """Apply settlement quotes as invoices or credit payments."""

    def __init__(
        self,
        postgres: PostgresClient,
        invoices: InvoiceService,
        payments: PaymentService,
        config: BillingConfig | None = None,
    ):
        self.postgres = postgres
        self.invoices = invoices
        self.payments = payments
        self.config = config or BillingConfig()

    def get_application(self, idempotency_key: str) -> SettlementApplication | None:
        row = self.postgres.execute_single(
            "SELECT * FROM settlement_applications WHERE idempotency_key = %s",
            (idempotency_key,)
        )
        return SettlementApplication.model_validate(row) if row else None

    def apply(
        self,
        quote: SettlementQuote,
        family_id: UUID,
        invoice_enrolment_id: UUID | None = None,
    ) -> tuple[SettlementApplication | None, bool]:
        """
        Apply a quote once.

        A positive difference raises a SENT invoice due now with one
        ADJUSTMENT line. A negative difference records a credit payment and
        spreads it over the family's open invoices. Zero does nothing.

        Returns:
            (application, replayed). application is None for a zero difference.
        """
        if quote.difference_cents == 0:
            return None, False

        with self.postgres.transaction():
            existing = self.get_application(quote.idempotency_key)
            if existing is not None:
                logger.info("Settlement %s already applied", quote.idempotency_key)
                return existing, True

            invoice_id = None
            payment_id = None
            if quote.difference_cents > 0:
                invoice = self.invoices.create_invoice(InvoiceCreate(
                    family_id=family_id,
                    enrolment_id=invoice_enrolment_id,
                    status=InvoiceStatus.SENT,
                    due_at=now_utc(),
                    notes=f"Plan change settlement from {quote.changeover_date.isoformat()}",
                    line_items=[LineItemCreate(
                        kind=LineItemKind.ADJUSTMENT,
                        description=(
                            f"Plan change adjustment: {quote.chargeable_classes} classes "
                            f"from {quote.changeover_date.isoformat()}"
                        ),
                        quantity=1,
                        amount_cents=quote.difference_cents,
                    )],
                ))
                invoice_id = invoice.id
            else:
                result = self.payments.create_payment(PaymentCreate(
                    family_id=family_id,
                    amount_cents=-quote.difference_cents,
                    method=self.config.credit_payment_method,
                    note=f"Plan change credit from {quote.changeover_date.isoformat()}",
                    idempotency_key=quote.idempotency_key,
                    strategy=AllocationStrategy.OLDEST_OPEN_FIRST,
                ))
                payment_id = result.payment.id

            row = self.postgres.execute_returning(
                """
                INSERT INTO settlement_applications (
                    idempotency_key, enrolment_id, difference_cents, invoice_id, payment_id, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    quote.idempotency_key, quote.enrolment_id, quote.difference_cents,
                    invoice_id, payment_id, now_utc()
                )
            )[0]

        logger.info(
            "Applied settlement %s for enrolment %s: %d cents",
            quote.idempotency_key, quote.enrolment_id, quote.difference_cents
        )
        return SettlementApplication.model_validate(row), False
