"""
Payment service: recording, allocating and reversing payments.

Allocation rows are append-only. Undoing a payment appends the inverse rows
and voids the payment; nothing is edited in place. Invoice totals and
statuses are re-derived through InvoiceService.sync_totals after every write.
"""

import logging
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient
from core.audit import AuditLogger, AuditAction
from core.billing.allocation import AllocationPlan, plan_manual_allocations, plan_oldest_open_first
from core.event_bus import EventBus
from core.events import PaymentRecorded, PaymentReversed
from core.exceptions import NotFoundError, ValidationError
from core.models import (
    AllocationStrategy,
    Payment,
    PaymentAllocation,
    PaymentCreate,
    PaymentResult,
    PaymentStatus,
)
from core.services.invoice_service import InvoiceService
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class PaymentService:
    """Service for payment operations."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        event_bus: EventBus,
        invoices: InvoiceService,
    ):
        self.postgres = postgres
        self.audit = audit
        self.event_bus = event_bus
        self.invoices = invoices

    def create_payment(self, data: PaymentCreate) -> PaymentResult:
        """
        Record a payment and allocate it.

        A payment whose idempotency key was already used by the same family
        is not recorded again: the original is returned with replayed=True.

        Raises:
            ValidationError: Allocations do not add up, or target a void invoice
            NotFoundError: An allocation targets a missing invoice
            InvariantViolation: Cross-family allocation or amount beyond balance
        """
        with self.event_bus.deferred(), self.postgres.transaction():
            if data.idempotency_key:
                existing = self._find_by_key(data.family_id, data.idempotency_key)
                if existing is not None:
                    logger.info("Replayed payment %s for key %s", existing.id, data.idempotency_key)
                    return self._result(existing, replayed=True)

            if data.strategy == AllocationStrategy.MANUAL:
                locked = self.invoices.lock_many([a.invoice_id for a in data.allocations])
                plan = plan_manual_allocations(data.family_id, data.amount_cents, data.allocations, locked)
            else:
                plan = plan_oldest_open_first(
                    self.invoices.lock_open_for_family(data.family_id), data.amount_cents
                )

            now = now_utc()
            rows = self.postgres.execute_returning(
                """
                INSERT INTO payments (
                    id, family_id, amount_cents, paid_at, method, note,
                    status, idempotency_key, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (family_id, idempotency_key) WHERE idempotency_key IS NOT NULL
                DO NOTHING
                RETURNING *
                """,
                (
                    uuid4(), data.family_id, data.amount_cents, data.paid_at or now,
                    data.method, data.note, PaymentStatus.ACTIVE.value,
                    data.idempotency_key, now, now
                )
            )
            if not rows:
                # Lost a race with a concurrent request using the same key
                existing = self._find_by_key(data.family_id, data.idempotency_key)
                return self._result(existing, replayed=True)

            payment = Payment.model_validate(rows[0])
            self._write_allocations(payment.id, plan)

            result = self._result(payment)
            self.audit.log_change(
                entity_type="payment",
                entity_id=payment.id,
                action=AuditAction.CREATE,
                changes={
                    "created": payment.model_dump(mode="json"),
                    "allocations": [[str(i), c] for i, c in plan],
                }
            )
            self.event_bus.publish(PaymentRecorded.create(
                payment=payment,
                allocated_cents=result.allocated_cents,
                unallocated_cents=result.unallocated_cents,
            ))

        logger.info(
            "Recorded payment %s for family %s: %d cents allocated, %d unallocated",
            payment.id, payment.family_id, result.allocated_cents, result.unallocated_cents
        )
        return result

    def allocate_existing_payment(self, payment_id: UUID) -> PaymentResult:
        """
        Allocate a payment's unallocated remainder, oldest open invoice first.

        Raises:
            NotFoundError: If the payment does not exist
            ValidationError: If the payment has been reversed
        """
        with self.event_bus.deferred(), self.postgres.transaction():
            payment = self.require(payment_id, for_update=True)
            if payment.status == PaymentStatus.VOID:
                raise ValidationError(f"Payment {payment_id} has been reversed")

            unallocated = payment.amount_cents - self._allocated_total(payment_id)
            if unallocated <= 0:
                return self._result(payment)

            plan = plan_oldest_open_first(
                self.invoices.lock_open_for_family(payment.family_id), unallocated
            )
            if plan:
                self._write_allocations(payment_id, plan)
                self.audit.log_change(
                    entity_type="payment",
                    entity_id=payment_id,
                    action=AuditAction.UPDATE,
                    changes={"allocations": [[str(i), c] for i, c in plan]}
                )
            return self._result(payment)

    def undo_payment(self, payment_id: UUID, reason: str | None = None) -> Payment:
        """
        Reverse a payment.

        Appends an inverse row for every invoice the payment still funds,
        voids the payment, and re-derives each touched invoice. Invoices
        that leave PAID give back their entitlements.

        Raises:
            NotFoundError: If the payment does not exist
            ValidationError: If the payment is already reversed
        """
        with self.event_bus.deferred(), self.postgres.transaction():
            payment = self.require(payment_id, for_update=True)
            if payment.status == PaymentStatus.VOID:
                raise ValidationError(f"Payment {payment_id} is already reversed")

            funded = self.postgres.execute(
                """
                SELECT invoice_id, SUM(amount_cents) AS amount_cents
                FROM payment_allocations
                WHERE payment_id = %s
                GROUP BY invoice_id
                HAVING SUM(amount_cents) <> 0
                ORDER BY invoice_id
                """,
                (payment_id,)
            )
            invoice_ids = [row["invoice_id"] for row in funded]
            self.invoices.lock_many(invoice_ids)

            now = now_utc()
            for row in funded:
                self._insert_allocation(payment_id, row["invoice_id"], -row["amount_cents"])

            rows = self.postgres.execute_returning(
                """
                UPDATE payments
                SET status = %s, reversed_at = %s, reversal_reason = %s, updated_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (PaymentStatus.VOID.value, now, reason, now, payment_id)
            )
            reversed_payment = Payment.model_validate(rows[0])

            for invoice_id in invoice_ids:
                self.invoices.sync_totals(invoice_id)

            self.audit.log_change(
                entity_type="payment",
                entity_id=payment_id,
                action=AuditAction.REVERSE,
                changes={
                    "reversed": {str(row["invoice_id"]): row["amount_cents"] for row in funded},
                    "reason": reason,
                }
            )
            self.event_bus.publish(PaymentReversed.create(payment=reversed_payment, invoice_ids=invoice_ids))

        logger.info("Reversed payment %s across %d invoices", payment_id, len(invoice_ids))
        return reversed_payment

    def delete_payment(self, payment_id: UUID) -> Payment:
        """Same as undo_payment; payments are never removed from the ledger."""
        return self.undo_payment(payment_id, reason="deleted")

    def get_by_id(self, payment_id: UUID) -> Payment | None:
        row = self.postgres.execute_single(
            "SELECT * FROM payments WHERE id = %s",
            (payment_id,)
        )
        return Payment.model_validate(row) if row else None

    def require(self, payment_id: UUID, for_update: bool = False) -> Payment:
        query = "SELECT * FROM payments WHERE id = %s"
        if for_update:
            query += " FOR UPDATE"
        row = self.postgres.execute_single(query, (payment_id,))
        if row is None:
            raise NotFoundError("payment", payment_id)
        return Payment.model_validate(row)

    def list_for_family(self, family_id: UUID, limit: int = 50) -> list[Payment]:
        rows = self.postgres.execute(
            """
            SELECT * FROM payments
            WHERE family_id = %s
            ORDER BY paid_at DESC
            LIMIT %s
            """,
            (family_id, limit)
        )
        return [Payment.model_validate(row) for row in rows]

    def list_allocations(self, payment_id: UUID) -> list[PaymentAllocation]:
        rows = self.postgres.execute(
            "SELECT * FROM payment_allocations WHERE payment_id = %s ORDER BY created_at, id",
            (payment_id,)
        )
        return [PaymentAllocation.model_validate(row) for row in rows]

    def _find_by_key(self, family_id: UUID, idempotency_key: str) -> Payment | None:
        row = self.postgres.execute_single(
            "SELECT * FROM payments WHERE family_id = %s AND idempotency_key = %s",
            (family_id, idempotency_key)
        )
        return Payment.model_validate(row) if row else None

    def _write_allocations(self, payment_id: UUID, plan: AllocationPlan) -> None:
        for invoice_id, cents in plan:
            self._insert_allocation(payment_id, invoice_id, cents)
            self.invoices.sync_totals(invoice_id)

    def _insert_allocation(self, payment_id: UUID, invoice_id: UUID, amount_cents: int) -> None:
        self.postgres.execute(
            """
            INSERT INTO payment_allocations (id, payment_id, invoice_id, amount_cents, created_at)
            VALUES (%s, %s, %s, %s, %s)
            """,
            (uuid4(), payment_id, invoice_id, amount_cents, now_utc())
        )

    def _allocated_total(self, payment_id: UUID) -> int:
        return self.postgres.execute_scalar(
            "SELECT COALESCE(SUM(amount_cents), 0) FROM payment_allocations WHERE payment_id = %s",
            (payment_id,)
        )

    def _result(self, payment: Payment, replayed: bool = False) -> PaymentResult:
        allocations = self.list_allocations(payment.id)
        allocated = sum(a.amount_cents for a in allocations)
        return PaymentResult(
            payment=payment,
            allocations=allocations,
            allocated_cents=allocated,
            unallocated_cents=payment.amount_cents - allocated,
            replayed=replayed,
        )
