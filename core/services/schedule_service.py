"""
Schedule service: holidays and single-class cancellations.

Closures change what a paid window is worth, so every mutation here
recalculates the enrolments it touches. Each enrolment's calendar is read
before the write and handed to the recalculation, which counts the existing
entitlement against it and replays that entitlement on the new calendar.
"""

import logging
from datetime import date
from uuid import UUID, uuid4

from clients.postgres_client import PostgresClient
from core.audit import AuditLogger, AuditAction, compute_changes
from core.billing.closures import ClosureCalendar
from core.event_bus import EventBus
from core.exceptions import NotFoundError, ValidationError
from core.models import (
    ClassCancellation,
    ClassCancellationCreate,
    CoverageReason,
    Enrolment,
    Holiday,
    HolidayCreate,
    HolidayUpdate,
)
from core.services.coverage_service import CoverageService
from core.services.enrolment_service import EnrolmentService
from utils.timezone import now_utc

logger = logging.getLogger(__name__)


class ScheduleService:
    """Service for holiday and cancellation operations."""

    def __init__(
        self,
        postgres: PostgresClient,
        audit: AuditLogger,
        event_bus: EventBus,
        enrolments: EnrolmentService,
        coverage: CoverageService,
    ):
        self.postgres = postgres
        self.audit = audit
        self.event_bus = event_bus
        self.enrolments = enrolments
        self.coverage = coverage

    # Holidays

    def get_holiday(self, holiday_id: UUID) -> Holiday | None:
        row = self.postgres.execute_single(
            "SELECT * FROM holidays WHERE id = %s",
            (holiday_id,)
        )
        return Holiday.model_validate(row) if row else None

    def require_holiday(self, holiday_id: UUID) -> Holiday:
        holiday = self.get_holiday(holiday_id)
        if holiday is None:
            raise NotFoundError("holiday", holiday_id)
        return holiday

    def list_holidays(self, from_date: date, to_date: date | None = None) -> list[Holiday]:
        return self.enrolments.get_holidays(from_date, to_date)

    def add_holiday(self, data: HolidayCreate, actor_id: UUID | None = None) -> Holiday:
        """
        Add a holiday and push out coverage of the enrolments it closes.

        Raises:
            NotFoundError: The scoped template does not exist
        """
        with self.event_bus.deferred(), self.postgres.transaction():
            if data.template_id is not None:
                self.enrolments.require_templates([data.template_id])

            holiday = Holiday(id=uuid4(), created_at=now_utc(), **data.model_dump())
            affected = self._holiday_scope([holiday])
            before = self._calendars(affected)

            self.postgres.execute(
                """
                INSERT INTO holidays (id, name, start_date, end_date, level_id, template_id, note, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    holiday.id, holiday.name, holiday.start_date, holiday.end_date,
                    holiday.level_id, holiday.template_id, holiday.note, holiday.created_at
                )
            )
            self.audit.log_change(
                entity_type="holiday",
                entity_id=holiday.id,
                action=AuditAction.CREATE,
                changes={"created": holiday.model_dump(mode="json")},
                actor_id=actor_id,
            )
            self._recalculate(affected, before, CoverageReason.HOLIDAY_ADDED, actor_id=actor_id)

        logger.info(
            "Added holiday %s (%s to %s), %d enrolments recalculated",
            holiday.id, holiday.start_date, holiday.end_date, len(affected)
        )
        return holiday

    def update_holiday(
        self,
        holiday_id: UUID,
        data: HolidayUpdate,
        confirm_shorten: bool = False,
        actor_id: UUID | None = None,
    ) -> Holiday:
        """
        Update a holiday's range or scope.

        Raises:
            NotFoundError: If the holiday does not exist
            ValidationError: The new range ends before it starts
            CoverageWouldShortenError: The change shortens coverage and was
                not confirmed
        """
        with self.event_bus.deferred(), self.postgres.transaction():
            current = self.require_holiday(holiday_id)
            updates = data.model_dump(exclude_unset=True)
            if not updates:
                return current

            updated = current.model_copy(update=updates)
            if updated.end_date < updated.start_date:
                raise ValidationError("Holiday end_date must not be before start_date")
            if updated.template_id is not None:
                self.enrolments.require_templates([updated.template_id])

            affected = self._holiday_scope([current, updated])
            before = self._calendars(affected)

            self.postgres.execute(
                """
                UPDATE holidays
                SET name = %s, start_date = %s, end_date = %s,
                    level_id = %s, template_id = %s, note = %s
                WHERE id = %s
                """,
                (
                    updated.name, updated.start_date, updated.end_date,
                    updated.level_id, updated.template_id, updated.note, holiday_id
                )
            )
            changes = compute_changes(
                current.model_dump(mode="json"),
                updated.model_dump(mode="json"),
            )
            if changes:
                self.audit.log_change(
                    entity_type="holiday",
                    entity_id=holiday_id,
                    action=AuditAction.UPDATE,
                    changes=changes,
                    actor_id=actor_id,
                )
            self._recalculate(
                affected, before, CoverageReason.HOLIDAY_UPDATED,
                confirm_shorten=confirm_shorten, actor_id=actor_id,
            )

        return updated

    def remove_holiday(
        self,
        holiday_id: UUID,
        confirm_shorten: bool = False,
        actor_id: UUID | None = None,
    ) -> Holiday:
        """
        Remove a holiday. Reopened sessions pull coverage back in.

        Raises:
            NotFoundError: If the holiday does not exist
            CoverageWouldShortenError: Coverage would shorten and the caller
                has not confirmed
        """
        with self.event_bus.deferred(), self.postgres.transaction():
            holiday = self.require_holiday(holiday_id)
            affected = self._holiday_scope([holiday])
            before = self._calendars(affected)

            self.postgres.execute("DELETE FROM holidays WHERE id = %s", (holiday_id,))
            self.audit.log_change(
                entity_type="holiday",
                entity_id=holiday_id,
                action=AuditAction.REVERSE,
                changes={"reversed": holiday.model_dump(mode="json"), "reason": None},
                actor_id=actor_id,
            )
            self._recalculate(
                affected, before, CoverageReason.HOLIDAY_REMOVED,
                confirm_shorten=confirm_shorten, actor_id=actor_id,
            )

        logger.info("Removed holiday %s, %d enrolments recalculated", holiday_id, len(affected))
        return holiday

    # Cancellations

    def get_cancellation(self, cancellation_id: UUID) -> ClassCancellation | None:
        row = self.postgres.execute_single(
            "SELECT * FROM class_cancellations WHERE id = %s",
            (cancellation_id,)
        )
        return ClassCancellation.model_validate(row) if row else None

    def cancel_occurrence(self, data: ClassCancellationCreate, actor_id: UUID | None = None) -> ClassCancellation:
        """
        Cancel one occurrence of a class.

        Weekly coverage moves out by a session; credit enrolments that had
        already consumed the day are refunded on recalculation.

        Raises:
            NotFoundError: The template does not exist
            ValidationError: The occurrence is already cancelled, or the class
                does not meet that day
        """
        with self.event_bus.deferred(), self.postgres.transaction():
            template = self.enrolments.require_templates([data.template_id])[0]
            if template.day_of_week is None or data.date.weekday() != template.day_of_week:
                raise ValidationError(f"Class {template.id} does not run on {data.date.isoformat()}")

            existing = self.postgres.execute_single(
                "SELECT id FROM class_cancellations WHERE template_id = %s AND date = %s",
                (data.template_id, data.date)
            )
            if existing is not None:
                raise ValidationError(f"Class {data.template_id} is already cancelled on {data.date.isoformat()}")

            affected = self._attending(data.template_id, data.date)
            before = self._calendars(affected)

            row = self.postgres.execute_returning(
                """
                INSERT INTO class_cancellations (id, template_id, date, reason, created_at)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (uuid4(), data.template_id, data.date, data.reason, now_utc())
            )[0]
            cancellation = ClassCancellation.model_validate(row)

            self.audit.log_change(
                entity_type="class_cancellation",
                entity_id=cancellation.id,
                action=AuditAction.CREATE,
                changes={"created": cancellation.model_dump(mode="json")},
                actor_id=actor_id,
            )
            self._recalculate(affected, before, CoverageReason.CANCELLATION_CREATED, actor_id=actor_id)

        return cancellation

    def reverse_cancellation(self, cancellation_id: UUID, actor_id: UUID | None = None) -> ClassCancellation:
        """
        Reinstate a cancelled occurrence.

        Raises:
            NotFoundError: If the cancellation does not exist
        """
        with self.event_bus.deferred(), self.postgres.transaction():
            cancellation = self.get_cancellation(cancellation_id)
            if cancellation is None:
                raise NotFoundError("cancellation", cancellation_id)

            affected = self._attending(cancellation.template_id, cancellation.date)
            before = self._calendars(affected)

            self.postgres.execute("DELETE FROM class_cancellations WHERE id = %s", (cancellation_id,))
            self.audit.log_change(
                entity_type="class_cancellation",
                entity_id=cancellation_id,
                action=AuditAction.REVERSE,
                changes={"reversed": cancellation.model_dump(mode="json"), "reason": None},
                actor_id=actor_id,
            )
            self._recalculate(affected, before, CoverageReason.CANCELLATION_REVERSED, actor_id=actor_id)

        return cancellation

    # Helpers

    def _holiday_scope(self, holidays: list[Holiday]) -> list[Enrolment]:
        """Active enrolments with a class one of these holidays can close."""
        found: dict[UUID, Enrolment] = {}
        for holiday in holidays:
            for enrolment in self.enrolments.list_active_overlapping(holiday.start_date, holiday.end_date):
                if enrolment.id in found:
                    continue
                templates = self.enrolments.get_templates(enrolment.template_ids)
                if any(holiday.applies_to(t.id, t.level_id) for t in templates):
                    found[enrolment.id] = enrolment
        return list(found.values())

    def _attending(self, template_id: UUID, day: date) -> list[Enrolment]:
        return [
            enrolment
            for enrolment in self.enrolments.list_active_for_templates([template_id])
            if enrolment.start_date <= day and (enrolment.end_date is None or day <= enrolment.end_date)
        ]

    def _calendars(self, enrolments: list[Enrolment]) -> dict[UUID, ClosureCalendar]:
        return {
            enrolment.id: self.enrolments.get_closures(enrolment.template_ids, enrolment.start_date)
            for enrolment in enrolments
        }

    def _recalculate(
        self,
        enrolments: list[Enrolment],
        before: dict[UUID, ClosureCalendar],
        reason: CoverageReason,
        confirm_shorten: bool = False,
        actor_id: UUID | None = None,
    ) -> None:
        for enrolment in enrolments:
            self.coverage.recalculate(
                enrolment.id,
                reason,
                confirm_shorten=confirm_shorten,
                actor_id=actor_id,
                closures_before=before[enrolment.id],
            )
