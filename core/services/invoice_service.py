"""
Invoice service for enrolment billing.

An invoice's amount is the sum of its line items and its paid total is the
sum of its allocation rows. Status is always re-derived from those two
numbers. Moving into PAID applies the invoice's entitlements to its
enrolment exactly once; moving out of PAID takes them back.
"""

import logging
from datetime import date, datetime, timedelta
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient
from core.audit import AuditLogger, AuditAction
from core.billing.invoice_status import next_invoice_status
from core.config import BillingConfig
from core.event_bus import EventBus
from core.events import InvoicePaid
from core.exceptions import InvariantViolation, NotFoundError, ValidationError
from core.models import (
    CoverageReason,
    CreditEventCreate,
    CreditEventType,
    Invoice,
    InvoiceCreate,
    InvoiceStatus,
    LineItem,
    LineItemCreate,
    LineItemKind,
    OPEN_INVOICE_STATUSES,
)
from core.services.coverage_service import CoverageService
from core.services.credit_ledger_service import CreditLedgerService
from core.services.enrolment_service import EnrolmentService
from utils.timezone import now_utc, to_day_key

logger = logging.getLogger(__name__)

CREATABLE_STATUSES = frozenset({InvoiceStatus.DRAFT, InvoiceStatus.SENT})


class InvoiceService:
    """Service for invoice operations."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        event_bus: EventBus,
        enrolments: EnrolmentService,
        ledger: CreditLedgerService,
        coverage: CoverageService,
        config: BillingConfig | None = None,
    ):
        self.postgres = postgres
        self.audit = audit
        self.event_bus = event_bus
        self.enrolments = enrolments
        self.ledger = ledger
        self.coverage = coverage
        self.config = config or BillingConfig()

    def create_invoice(self, data: InvoiceCreate) -> Invoice:
        """
        Create an invoice with its line items.

        Args:
            data: Invoice data. issued_at defaults to now, due_at to
                issued_at plus the configured due days.

        Returns:
            Created invoice in DRAFT or SENT status

        Raises:
            ValidationError: Unsupported initial status or negative total
            NotFoundError: The referenced enrolment does not exist
        """
        if data.status not in CREATABLE_STATUSES:
            raise ValidationError(f"Invoices cannot be created as {data.status.value}")

        amount_cents = sum(item.amount_cents for item in data.line_items)
        if amount_cents < 0:
            raise ValidationError("Invoice total cannot be negative")

        issued_at = data.issued_at or now_utc()
        due_at = data.due_at or issued_at + timedelta(days=self.config.default_invoice_due_days)

        with self.event_bus.deferred(), self.postgres.transaction():
            if data.enrolment_id is not None:
                enrolment = self.enrolments.require(data.enrolment_id)
                if enrolment.family_id != data.family_id:
                    raise ValidationError("Invoice family does not match the enrolment's family")

            invoice_id = uuid4()
            now = now_utc()
            self.postgres.execute(
                """
                INSERT INTO invoices (
                    id, family_id, enrolment_id, status,
                    amount_cents, amount_paid_cents,
                    issued_at, due_at,
                    coverage_start, coverage_end, credits_purchased,
                    notes, created_at, updated_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    invoice_id, data.family_id, data.enrolment_id, data.status.value,
                    amount_cents, 0,
                    issued_at, due_at,
                    data.coverage_start, data.coverage_end, data.credits_purchased,
                    data.notes, now, now
                )
            )
            for item in data.line_items:
                self._insert_line_item(invoice_id, item)

            invoice = self.require(invoice_id)

            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice.id,
                action=AuditAction.CREATE,
                changes={"created": invoice.model_dump(mode="json", exclude={"line_items"})}
            )

        logger.info("Created invoice %s for family %s (%d cents)", invoice.id, invoice.family_id, amount_cents)
        return invoice

    def get_by_id(self, invoice_id: UUID) -> Invoice | None:
        """
        Get invoice by ID, with its line items.

        Returns:
            Invoice if found, None otherwise.
        """
        row = self.postgres.execute_single(
            "SELECT * FROM invoices WHERE id = %s",
            (invoice_id,)
        )
        if row is None:
            return None

        items = self.postgres.execute(
            "SELECT * FROM invoice_line_items WHERE invoice_id = %s ORDER BY created_at, id",
            (invoice_id,)
        )
        row["line_items"] = items
        return Invoice.model_validate(row)

    def require(self, invoice_id: UUID, for_update: bool = False) -> Invoice:
        if for_update:
            locked = self.postgres.execute_single(
                "SELECT id FROM invoices WHERE id = %s FOR UPDATE",
                (invoice_id,)
            )
            if locked is None:
                raise NotFoundError("invoice", invoice_id)

        invoice = self.get_by_id(invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        return invoice

    def lock_many(self, invoice_ids: list[UUID]) -> dict[UUID, Invoice]:
        """Lock invoices in id order and return the ones that exist."""
        if not invoice_ids:
            return {}
        self.postgres.execute(
            "SELECT id FROM invoices WHERE id = ANY(%s::uuid[]) ORDER BY id FOR UPDATE",
            (sorted(set(invoice_ids), key=str),)
        )
        invoices = (self.get_by_id(invoice_id) for invoice_id in invoice_ids)
        return {invoice.id: invoice for invoice in invoices if invoice is not None}

    def lock_open_for_family(self, family_id: UUID) -> list[Invoice]:
        """Lock a family's open invoices for allocation."""
        rows = self.postgres.execute(
            """
            SELECT id FROM invoices
            WHERE family_id = %s AND status = ANY(%s)
            ORDER BY id
            FOR UPDATE
            """,
            (family_id, [s.value for s in OPEN_INVOICE_STATUSES])
        )
        return [self.require(row["id"]) for row in rows]

    def list_open_invoices(self, family_id: UUID) -> list[Invoice]:
        """Open invoices with a balance, oldest due first."""
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE family_id = %s
              AND status = ANY(%s)
              AND amount_paid_cents < amount_cents
            ORDER BY due_at ASC NULLS LAST, COALESCE(issued_at, created_at) ASC, id
            """,
            (family_id, [s.value for s in OPEN_INVOICE_STATUSES])
        )
        return [Invoice.model_validate(row) for row in rows]

    def list_for_family(self, family_id: UUID, limit: int = 50) -> list[Invoice]:
        """
        List invoices for a family.

        Returns:
            List of invoices ordered by creation time DESC
        """
        rows = self.postgres.execute(
            """
            SELECT * FROM invoices
            WHERE family_id = %s
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (family_id, limit)
        )
        return [Invoice.model_validate(row) for row in rows]

    def add_line_item(self, invoice_id: UUID, data: LineItemCreate) -> Invoice:
        """
        Add a line item and recompute totals and status.

        Raises:
            ValidationError: The invoice is PAID or VOID
            InvariantViolation: The new total would fall below what has been paid
        """
        with self.event_bus.deferred(), self.postgres.transaction():
            current = self.require(invoice_id, for_update=True)
            if current.status in (InvoiceStatus.PAID, InvoiceStatus.VOID):
                raise ValidationError(f"Invoice {invoice_id} is {current.status.value}")

            new_amount = current.amount_cents + data.amount_cents
            if new_amount < current.amount_paid_cents:
                raise InvariantViolation(
                    f"Invoice {invoice_id} total of {new_amount} cents would be below "
                    f"the {current.amount_paid_cents} cents already paid"
                )

            item = self._insert_line_item(invoice_id, data)
            self.postgres.execute(
                "UPDATE invoices SET amount_cents = %s, updated_at = %s WHERE id = %s",
                (new_amount, now_utc(), invoice_id)
            )
            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes={
                    "amount_cents": {"old": current.amount_cents, "new": new_amount},
                    "line_item_added": item.model_dump(mode="json"),
                }
            )
            return self.sync_totals(invoice_id)

    def mark_sent(self, invoice_id: UUID) -> Invoice:
        """
        Move a DRAFT invoice to SENT (or whatever its totals now imply).

        Raises:
            ValidationError: If the invoice is not a draft
        """
        with self.event_bus.deferred(), self.postgres.transaction():
            current = self.require(invoice_id, for_update=True)
            if current.status != InvoiceStatus.DRAFT:
                raise ValidationError(f"Invoice {invoice_id} is {current.status.value}, not DRAFT")

            now = now_utc()
            self.postgres.execute(
                """
                UPDATE invoices
                SET status = %s, issued_at = COALESCE(issued_at, %s), updated_at = %s
                WHERE id = %s
                """,
                (InvoiceStatus.SENT.value, now, now, invoice_id)
            )
            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes={"status": {"old": current.status.value, "new": InvoiceStatus.SENT.value}}
            )
            return self.sync_totals(invoice_id)

    def void_invoice(self, invoice_id: UUID, reason: str | None = None) -> Invoice:
        """
        Void an invoice.

        Raises:
            NotFoundError: If the invoice does not exist
            ValidationError: If money is still allocated to it
        """
        with self.postgres.transaction():
            current = self.require(invoice_id, for_update=True)
            if current.status == InvoiceStatus.VOID:
                return current

            allocated = self._allocated_total(invoice_id)
            if allocated != 0:
                raise ValidationError(
                    f"Invoice {invoice_id} has {allocated} cents allocated; undo the payments first"
                )

            self.postgres.execute(
                "UPDATE invoices SET status = %s, updated_at = %s WHERE id = %s",
                (InvoiceStatus.VOID.value, now_utc(), invoice_id)
            )
            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes={
                    "status": {"old": current.status.value, "new": InvoiceStatus.VOID.value},
                    "reason": reason,
                }
            )
            updated = self.require(invoice_id)

        logger.info("Voided invoice %s", invoice_id)
        return updated

    def refresh_overdue(self, now: datetime | None = None) -> list[Invoice]:
        """Re-derive status for sent invoices that have fallen due."""
        now = now or now_utc()
        rows = self.postgres.execute(
            """
            SELECT id FROM invoices
            WHERE status IN (%s, %s) AND due_at IS NOT NULL AND due_at < %s
            ORDER BY due_at
            """,
            (InvoiceStatus.SENT.value, InvoiceStatus.PARTIALLY_PAID.value, now)
        )

        changed = []
        for row in rows:
            with self.event_bus.deferred(), self.postgres.transaction():
                before = self.require(row["id"], for_update=True)
                after = self.sync_totals(before.id, now=now)
            if after.status != before.status:
                changed.append(after)

        if changed:
            logger.info("Marked %d invoices overdue", len(changed))
        return changed

    def sync_totals(self, invoice_id: UUID, now: datetime | None = None) -> Invoice:
        """
        Recompute the paid total from allocations and re-derive status.

        Applies entitlements on the move into PAID and reverses them on the
        move out. Callers hold the invoice lock inside their transaction.
        """
        now = now or now_utc()
        with self.event_bus.deferred(), self.postgres.transaction():
            current = self.require(invoice_id)
            paid = self._allocated_total(invoice_id)
            if paid < 0 or paid > max(current.amount_cents, 0):
                raise InvariantViolation(
                    f"Invoice {invoice_id} allocations total {paid} cents "
                    f"against an amount of {current.amount_cents} cents"
                )

            status = next_invoice_status(current.status, current.amount_cents, paid, current.due_at, now)
            if status == InvoiceStatus.PAID:
                paid_at = current.paid_at if current.status == InvoiceStatus.PAID else now
            else:
                paid_at = None

            if paid == current.amount_paid_cents and status == current.status and paid_at == current.paid_at:
                return current

            self.postgres.execute(
                """
                UPDATE invoices
                SET amount_paid_cents = %s, status = %s, paid_at = %s, updated_at = %s
                WHERE id = %s
                """,
                (paid, status.value, paid_at, now, invoice_id)
            )
            self.audit.log_change(
                entity_type="invoice",
                entity_id=invoice_id,
                action=AuditAction.UPDATE,
                changes={
                    "amount_paid_cents": {"old": current.amount_paid_cents, "new": paid},
                    "status": {"old": current.status.value, "new": status.value},
                }
            )

            updated = self.require(invoice_id)
            if current.status != InvoiceStatus.PAID and status == InvoiceStatus.PAID:
                updated = self._apply_entitlements(updated)
                self.event_bus.publish(InvoicePaid.create(invoice=updated))
            elif current.status == InvoiceStatus.PAID and status != InvoiceStatus.PAID:
                updated = self._reverse_entitlements(updated)
            return updated

    def _apply_entitlements(self, invoice: Invoice) -> Invoice:
        """Grant what a newly paid invoice bought. Runs at most once per payment."""
        if invoice.entitlements_applied_at is not None or invoice.enrolment_id is None:
            return invoice

        enrolment = self.enrolments.require(invoice.enrolment_id)
        plan = self.enrolments.get_plan(enrolment.plan_id)
        if plan is None:
            return invoice

        if plan.billing_type.is_credit_based:
            credits = invoice.credits_purchased
            if credits is None:
                quantity = sum(
                    item.quantity for item in invoice.line_items if item.kind == LineItemKind.ENROLMENT
                )
                credits = (plan.block_class_count or 0) * quantity
            if credits > 0:
                self.ledger.append_event(CreditEventCreate(
                    enrolment_id=enrolment.id,
                    type=CreditEventType.PURCHASE,
                    credits_delta=credits,
                    occurred_on=self._paid_day(invoice),
                    invoice_id=invoice.id,
                ))
            self._stamp_entitlements(invoice.id, now_utc())
            self.coverage.recalculate(enrolment.id, CoverageReason.INVOICE_APPLIED)
            logger.info("Applied %d credits from invoice %s to enrolment %s", credits, invoice.id, enrolment.id)
        else:
            self._stamp_entitlements(invoice.id, now_utc())
            if invoice.coverage_end is not None:
                self.coverage.apply_invoice_coverage(enrolment.id, invoice.coverage_end)
            logger.info(
                "Applied coverage to %s from invoice %s to enrolment %s",
                invoice.coverage_end, invoice.id, enrolment.id
            )

        return self.require(invoice.id)

    def _reverse_entitlements(self, invoice: Invoice) -> Invoice:
        """Take back what an invoice granted when it stops being paid."""
        if invoice.entitlements_applied_at is None or invoice.enrolment_id is None:
            return invoice

        enrolment = self.enrolments.require(invoice.enrolment_id)
        plan = self.enrolments.get_plan(enrolment.plan_id)
        self._stamp_entitlements(invoice.id, None)

        if plan is not None and plan.billing_type.is_credit_based:
            granted = self.postgres.execute_scalar(
                """
                SELECT COALESCE(SUM(credits_delta), 0) FROM enrolment_credit_events
                WHERE invoice_id = %s AND enrolment_id = %s
                """,
                (invoice.id, enrolment.id)
            )
            if granted:
                self.ledger.append_event(CreditEventCreate(
                    enrolment_id=enrolment.id,
                    type=CreditEventType.MANUAL_ADJUST,
                    credits_delta=-granted,
                    occurred_on=self.coverage.snapshots.today(),
                    invoice_id=invoice.id,
                    note="Payment reversed",
                ))
            self.coverage.recalculate(
                enrolment.id, CoverageReason.PAYMENT_REVERSED, confirm_shorten=True
            )
        elif plan is not None:
            remaining_end = self.postgres.execute_scalar(
                """
                SELECT MAX(coverage_end) FROM invoices
                WHERE enrolment_id = %s AND id <> %s
                  AND status = %s AND entitlements_applied_at IS NOT NULL
                """,
                (enrolment.id, invoice.id, InvoiceStatus.PAID.value)
            )
            self.coverage.apply_invoice_coverage(
                enrolment.id, remaining_end, CoverageReason.PAYMENT_REVERSED, confirm_shorten=True
            )

        logger.info("Reversed entitlements of invoice %s on enrolment %s", invoice.id, enrolment.id)
        return self.require(invoice.id)

    def _paid_day(self, invoice: Invoice) -> date:
        return to_day_key(invoice.paid_at or now_utc(), self.config.timezone)

    def _stamp_entitlements(self, invoice_id: UUID, applied_at: datetime | None) -> None:
        self.postgres.execute(
            "UPDATE invoices SET entitlements_applied_at = %s, updated_at = %s WHERE id = %s",
            (applied_at, now_utc(), invoice_id)
        )

    def _allocated_total(self, invoice_id: UUID) -> int:
        return self.postgres.execute_scalar(
            "SELECT COALESCE(SUM(amount_cents), 0) FROM payment_allocations WHERE invoice_id = %s",
            (invoice_id,)
        )

    def _insert_line_item(self, invoice_id: UUID, data: LineItemCreate) -> LineItem:
        row = self.postgres.execute_returning(
            """
            INSERT INTO invoice_line_items (
                id, invoice_id, kind, description, quantity,
                unit_price_cents, amount_cents, product_id, created_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                uuid4(), invoice_id, data.kind.value, data.description, data.quantity,
                data.unit_price_cents, data.amount_cents, data.product_id, now_utc()
            )
        )[0]
        return LineItem.model_validate(row)
