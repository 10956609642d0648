"""
Family billing position: what a family owes across enrolments and invoices.

Read-only apart from the snapshot cache, which is refreshed for every
payable enrolment along the way.
"""

import logging
from datetime import date
from uuid import UUID

from clients.postgres_client import PostgresClient
from core.billing.owing import (
    PAYABLE_STATUSES,
    PayableEnrolment,
    compute_net_owing,
    entitlement_status,
    summarise_family,
)
from core.config import BillingConfig
from core.models import (
    BillingSnapshot,
    EnrolmentPosition,
    FamilyBillingPosition,
    Invoice,
    InvoiceStatus,
    NetOwing,
    PaymentStatus,
)
from core.services.billing_snapshot_service import BillingSnapshotService
from core.services.enrolment_service import EnrolmentService
from core.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)


class FamilyBillingService:
    """Net owing and the per-enrolment billing position of a family."""

    def __init__(
        self,
        postgres: PostgresClient,
        enrolments: EnrolmentService,
        snapshots: BillingSnapshotService,
        invoices: InvoiceService,
        config: BillingConfig | None = None,
    ):
        self.postgres = postgres
        self.enrolments = enrolments
        self.snapshots = snapshots
        self.invoices = invoices
        self.config = config or BillingConfig()

    def get_net_owing(self, family_id: UUID, as_of: date | None = None) -> NetOwing:
        """
        Overdue coverage plus open invoice balances, less unallocated credit.

        Negative when the family has paid more than it owes.
        """
        return self.get_billing_position(family_id, as_of).net_owing

    def get_billing_position(self, family_id: UUID, as_of: date | None = None) -> FamilyBillingPosition:
        """
        Full billing position for a family as of a day.

        Args:
            family_id: Family UUID
            as_of: Day key to evaluate at (defaults to today in the civil timezone)
        """
        as_of = as_of or self.snapshots.today()

        with self.postgres.transaction():
            items = []
            positions = []
            latest_ends = self._latest_coverage_ends(family_id)
            for enrolment in self.enrolments.list_for_family(family_id):
                if enrolment.status not in PAYABLE_STATUSES:
                    continue
                plan = self.enrolments.get_plan(enrolment.plan_id)
                snapshot = self.snapshots.get_snapshot(enrolment.id, as_of)
                items.append(PayableEnrolment(enrolment, plan, snapshot.paid_through_date))
                positions.append(self._position(enrolment, plan, snapshot, latest_ends, as_of))

            summary = summarise_family(items, as_of)
            open_invoices = self.invoices.list_open_invoices(family_id)
            allocations = self._allocation_totals(family_id)
            net_owing = compute_net_owing(
                summary,
                open_invoices,
                allocations,
                self._invoices_by_id(list(allocations)),
                self._payments_total(family_id),
            )

        logger.debug(
            "Family %s as of %s: net owing %d cents", family_id, as_of, net_owing.net_owing_cents
        )
        return FamilyBillingPosition(
            family_id=family_id,
            as_of=as_of,
            enrolments=positions,
            open_invoices=open_invoices,
            summary=summary,
            net_owing=net_owing,
        )

    def _position(self, enrolment, plan, snapshot: BillingSnapshot, latest_ends, as_of) -> EnrolmentPosition:
        return EnrolmentPosition(
            enrolment_id=enrolment.id,
            student_id=enrolment.student_id,
            plan_id=enrolment.plan_id,
            billing_type=plan.billing_type if plan else None,
            paid_through_date=snapshot.paid_through_date,
            next_due_date=snapshot.next_due_date,
            remaining_credits=snapshot.remaining_credits,
            latest_coverage_end=latest_ends.get(enrolment.id),
            entitlement_status=entitlement_status(
                plan, snapshot.paid_through_date, as_of, self.config.due_soon_days
            ),
        )

    def _latest_coverage_ends(self, family_id: UUID) -> dict[UUID, date]:
        rows = self.postgres.execute(
            """
            SELECT enrolment_id, MAX(coverage_end) AS coverage_end
            FROM invoices
            WHERE family_id = %s AND status = %s
              AND enrolment_id IS NOT NULL AND coverage_end IS NOT NULL
            GROUP BY enrolment_id
            """,
            (family_id, InvoiceStatus.PAID.value)
        )
        return {UUID(str(row["enrolment_id"])): row["coverage_end"] for row in rows}

    def _allocation_totals(self, family_id: UUID) -> dict[UUID, int]:
        """Net allocated cents per non-void invoice, from active payments."""
        rows = self.postgres.execute(
            """
            SELECT a.invoice_id, SUM(a.amount_cents) AS allocated
            FROM payment_allocations a
            JOIN payments p ON p.id = a.payment_id
            JOIN invoices i ON i.id = a.invoice_id
            WHERE i.family_id = %s AND i.status <> %s AND p.status <> %s
            GROUP BY a.invoice_id
            """,
            (family_id, InvoiceStatus.VOID.value, PaymentStatus.VOID.value)
        )
        return {UUID(str(row["invoice_id"])): int(row["allocated"]) for row in rows}

    def _invoices_by_id(self, invoice_ids: list[UUID]) -> dict[UUID, Invoice]:
        if not invoice_ids:
            return {}
        rows = self.postgres.execute(
            "SELECT * FROM invoices WHERE id = ANY(%s::uuid[])",
            (invoice_ids,)
        )
        invoices = [Invoice.model_validate(row) for row in rows]
        return {invoice.id: invoice for invoice in invoices}

    def _payments_total(self, family_id: UUID) -> int:
        return self.postgres.execute_scalar(
            "SELECT COALESCE(SUM(amount_cents), 0) FROM payments WHERE family_id = %s AND status <> %s",
            (family_id, PaymentStatus.VOID.value)
        )
