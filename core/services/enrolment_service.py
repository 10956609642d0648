"""
Enrolment service: loading enrolments with their plan, classes and closures.

Every billing service reads enrolment state through here so the SQL for
assignments, holidays and cancellations lives in one place.
"""

import logging
from datetime import date
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient
from core.billing.closures import ClosureCalendar
from core.exceptions import NotFoundError
from core.models import (
    ClassCancellation,
    ClassTemplate,
    Enrolment,
    EnrolmentPlan,
    EnrolmentStatus,
    Holiday,
)
from utils.timezone import now_utc

logger = logging.getLogger(__name__)

_ENROLMENT_SELECT = """
    SELECT e.*,
           COALESCE(
               ARRAY_AGG(a.template_id ORDER BY a.template_id) FILTER (WHERE a.template_id IS NOT NULL),
               '{}'
           ) AS template_ids
    FROM enrolments e
    LEFT JOIN enrolment_class_assignments a ON a.enrolment_id = e.id
"""


class EnrolmentService:
    """Read and write enrolment rows and the schedule data around them."""

    def __init__(self, postgres: PostgresClient):
        self.postgres = postgres

    def get_by_id(self, enrolment_id: UUID) -> Enrolment | None:
        row = self.postgres.execute_single(
            _ENROLMENT_SELECT + " WHERE e.id = %s GROUP BY e.id",
            (enrolment_id,)
        )
        return Enrolment.model_validate(row) if row else None

    def require(self, enrolment_id: UUID, for_update: bool = False) -> Enrolment:
        """
        Get an enrolment or raise.

        Args:
            enrolment_id: Enrolment UUID
            for_update: Lock the enrolment row until the transaction ends

        Raises:
            NotFoundError: If the enrolment does not exist
        """
        if for_update:
            locked = self.postgres.execute_single(
                "SELECT id FROM enrolments WHERE id = %s FOR UPDATE",
                (enrolment_id,)
            )
            if locked is None:
                raise NotFoundError("enrolment", enrolment_id)

        enrolment = self.get_by_id(enrolment_id)
        if enrolment is None:
            raise NotFoundError("enrolment", enrolment_id)
        return enrolment

    def get_plan(self, plan_id: UUID | None) -> EnrolmentPlan | None:
        if plan_id is None:
            return None
        row = self.postgres.execute_single(
            "SELECT * FROM enrolment_plans WHERE id = %s",
            (plan_id,)
        )
        return EnrolmentPlan.model_validate(row) if row else None

    def require_plan(self, plan_id: UUID) -> EnrolmentPlan:
        plan = self.get_plan(plan_id)
        if plan is None:
            raise NotFoundError("plan", plan_id)
        return plan

    def get_templates(self, template_ids: list[UUID]) -> list[ClassTemplate]:
        """Templates by id, in the order requested. Unknown ids are skipped."""
        if not template_ids:
            return []
        rows = self.postgres.execute(
            "SELECT * FROM class_templates WHERE id = ANY(%s::uuid[])",
            (list(template_ids),)
        )
        by_id = {UUID(str(row["id"])): ClassTemplate.model_validate(row) for row in rows}
        return [by_id[t] for t in template_ids if t in by_id]

    def require_templates(self, template_ids: list[UUID]) -> list[ClassTemplate]:
        templates = self.get_templates(template_ids)
        found = {t.id for t in templates}
        for template_id in template_ids:
            if template_id not in found:
                raise NotFoundError("class template", template_id)
        return templates

    def get_holidays(self, from_date: date, to_date: date | None = None) -> list[Holiday]:
        """Holidays overlapping ``[from_date, to_date]`` (open-ended when to_date is None)."""
        rows = self.postgres.execute(
            """
            SELECT * FROM holidays
            WHERE end_date >= %s AND (%s::date IS NULL OR start_date <= %s::date)
            ORDER BY start_date
            """,
            (from_date, to_date, to_date)
        )
        return [Holiday.model_validate(row) for row in rows]

    def get_cancellations(self, template_ids: list[UUID], from_date: date) -> list[ClassCancellation]:
        if not template_ids:
            return []
        rows = self.postgres.execute(
            """
            SELECT * FROM class_cancellations
            WHERE template_id = ANY(%s::uuid[]) AND date >= %s
            ORDER BY date
            """,
            (list(template_ids), from_date)
        )
        return [ClassCancellation.model_validate(row) for row in rows]

    def get_closures(self, template_ids: list[UUID], from_date: date) -> ClosureCalendar:
        """Every holiday and cancellation that can affect these classes from ``from_date``."""
        return ClosureCalendar.build(
            holidays=self.get_holidays(from_date),
            cancellations=self.get_cancellations(template_ids, from_date),
        )

    def list_active_for_templates(self, template_ids: list[UUID]) -> list[Enrolment]:
        """ACTIVE enrolments attending any of the given classes."""
        if not template_ids:
            return []
        rows = self.postgres.execute(
            _ENROLMENT_SELECT + """
            WHERE e.status = %s
              AND e.id IN (
                  SELECT enrolment_id FROM enrolment_class_assignments
                  WHERE template_id = ANY(%s::uuid[])
              )
            GROUP BY e.id
            ORDER BY e.start_date, e.id
            """,
            (EnrolmentStatus.ACTIVE.value, list(template_ids))
        )
        return [Enrolment.model_validate(row) for row in rows]

    def list_active_overlapping(self, start: date, end: date | None) -> list[Enrolment]:
        """ACTIVE enrolments whose window overlaps ``[start, end]``."""
        rows = self.postgres.execute(
            _ENROLMENT_SELECT + """
            WHERE e.status = %s
              AND (e.end_date IS NULL OR e.end_date >= %s)
              AND (%s::date IS NULL OR e.start_date <= %s::date)
            GROUP BY e.id
            ORDER BY e.start_date, e.id
            """,
            (EnrolmentStatus.ACTIVE.value, start, end, end)
        )
        return [Enrolment.model_validate(row) for row in rows]

    def list_for_family(self, family_id: UUID) -> list[Enrolment]:
        rows = self.postgres.execute(
            _ENROLMENT_SELECT + " WHERE e.family_id = %s GROUP BY e.id ORDER BY e.start_date, e.id",
            (family_id,)
        )
        return [Enrolment.model_validate(row) for row in rows]

    def list_for_student(self, student_id: UUID) -> list[Enrolment]:
        rows = self.postgres.execute(
            _ENROLMENT_SELECT + " WHERE e.student_id = %s GROUP BY e.id ORDER BY e.start_date",
            (student_id,)
        )
        return [Enrolment.model_validate(row) for row in rows]

    def create_successor(
        self,
        previous: Enrolment,
        plan_id: UUID,
        template_ids: list[UUID],
        start_date: date,
        paid_through_date: date | None,
    ) -> Enrolment:
        """Insert the successor half of a change, linked by billing group."""
        enrolment_id = uuid4()
        now = now_utc()
        self.postgres.execute(
            """
            INSERT INTO enrolments (
                id, student_id, family_id, plan_id, status,
                start_date, end_date, paid_through_date, billing_group_id,
                created_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                enrolment_id, previous.student_id, previous.family_id, plan_id,
                EnrolmentStatus.ACTIVE.value,
                start_date, previous.end_date, paid_through_date,
                previous.billing_group_id or previous.id,
                now, now
            )
        )
        self.assign_templates(enrolment_id, template_ids)
        logger.debug("Created successor %s for enrolment %s from %s", enrolment_id, previous.id, start_date)
        return self.require(enrolment_id)

    def assign_templates(self, enrolment_id: UUID, template_ids: list[UUID]) -> None:
        for template_id in template_ids:
            self.postgres.execute(
                """
                INSERT INTO enrolment_class_assignments (enrolment_id, template_id)
                VALUES (%s, %s)
                ON CONFLICT DO NOTHING
                """,
                (enrolment_id, template_id)
            )

    def close_for_changeover(self, enrolment: Enrolment, end_date: date) -> None:
        """End an enrolment the day before its successor starts."""
        self.postgres.execute(
            """
            UPDATE enrolments
            SET status = %s, end_date = %s, billing_group_id = COALESCE(billing_group_id, id),
                updated_at = %s
            WHERE id = %s
            """,
            (EnrolmentStatus.CHANGEOVER.value, max(end_date, enrolment.start_date), now_utc(), enrolment.id)
        )

    def set_paid_through(self, enrolment_id: UUID, paid_through: date | None) -> None:
        self.postgres.execute(
            "UPDATE enrolments SET paid_through_date = %s, updated_at = %s WHERE id = %s",
            (paid_through, now_utc(), enrolment_id)
        )

    def write_cache(
        self,
        enrolment_id: UUID,
        paid_through_computed: date | None,
        next_due_computed: date | None,
        credits_balance: int | None,
    ) -> None:
        """Overwrite the derived cache columns. Never read back as truth."""
        self.postgres.execute(
            """
            UPDATE enrolments
            SET paid_through_date_computed = %s,
                next_due_date_computed = %s,
                credits_balance_cached = %s,
                credits_remaining = %s,
                updated_at = %s
            WHERE id = %s
            """,
            (
                paid_through_computed, next_due_computed,
                credits_balance, credits_balance,
                now_utc(), enrolment_id
            )
        )
