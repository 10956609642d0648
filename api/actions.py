"""POST /api/actions: unified mutation endpoint."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from api.base import success_response
from core.models import (
    ClassCancellationCreate,
    CoverageReason,
    EnrolmentChange,
    HolidayCreate,
    HolidayUpdate,
    InvoiceCreate,
    LineItemCreate,
    PaymentCreate,
)


class ActionRequest(BaseModel):
    domain: str
    action: str
    data: dict


def create_actions_router(services: dict) -> APIRouter:
    router = APIRouter()

    handlers = {
        "invoice": InvoiceHandler(services["invoice"], services["pay_ahead"]),
        "payment": PaymentHandler(services["payment"]),
        "enrolment": EnrolmentHandler(services["enrolment_change"], services["coverage"]),
        "schedule": ScheduleHandler(services["schedule"]),
    }

    @router.post("/actions")
    async def perform_action(request: Request, body: ActionRequest):
        handler = handlers.get(body.domain)
        if handler is None:
            raise ValueError(
                f"Unknown domain '{body.domain}'. "
                f"Valid domains: {', '.join(sorted(handlers.keys()))}"
            )

        if body.action not in handler.ALLOWED_ACTIONS:
            raise ValueError(
                f"Action '{body.action}' not allowed on '{body.domain}'. "
                f"Allowed: {', '.join(sorted(handler.ALLOWED_ACTIONS))}"
            )

        method = getattr(handler, f"_handle_{body.action}", None)
        result = method(body.data)
        return success_response(result).model_dump(mode="json")

    return router


# =============================================================================
# HANDLER CLASSES
# =============================================================================


class InvoiceHandler:
    ALLOWED_ACTIONS = {
        "create", "void", "add_line_item", "send",
        "pay_ahead", "catch_up", "refresh_overdue",
    }

    def __init__(self, service, pay_ahead_service):
        self.service = service
        self.pay_ahead_service = pay_ahead_service

    def _handle_create(self, data: dict):
        invoice = self.service.create_invoice(InvoiceCreate(**data))
        return invoice.model_dump(mode="json")

    def _handle_void(self, data: dict):
        invoice = self.service.void_invoice(UUID(data["id"]), data.get("reason"))
        return invoice.model_dump(mode="json")

    def _handle_add_line_item(self, data: dict):
        invoice_id = UUID(data.pop("invoice_id"))
        invoice = self.service.add_line_item(invoice_id, LineItemCreate(**data))
        return invoice.model_dump(mode="json")

    def _handle_send(self, data: dict):
        invoice = self.service.mark_sent(UUID(data["id"]))
        return invoice.model_dump(mode="json")

    def _handle_pay_ahead(self, data: dict):
        invoice = self.pay_ahead_service.create_pay_ahead_invoice(
            UUID(data["enrolment_id"]),
            periods=int(data.get("periods", 1)),
        )
        return invoice.model_dump(mode="json")

    def _handle_catch_up(self, data: dict):
        invoice = self.pay_ahead_service.create_catch_up_invoice(UUID(data["enrolment_id"]))
        return invoice.model_dump(mode="json")

    def _handle_refresh_overdue(self, data: dict):
        changed = self.service.refresh_overdue()
        return {"updated": [i.model_dump(mode="json") for i in changed]}


class PaymentHandler:
    ALLOWED_ACTIONS = {"create", "undo", "delete", "allocate"}

    def __init__(self, service):
        self.service = service

    def _handle_create(self, data: dict):
        result = self.service.create_payment(PaymentCreate(**data))
        return result.model_dump(mode="json")

    def _handle_undo(self, data: dict):
        payment = self.service.undo_payment(UUID(data["id"]), data.get("reason"))
        return payment.model_dump(mode="json")

    def _handle_delete(self, data: dict):
        payment = self.service.delete_payment(UUID(data["id"]))
        return payment.model_dump(mode="json")

    def _handle_allocate(self, data: dict):
        result = self.service.allocate_existing_payment(UUID(data["id"]))
        return result.model_dump(mode="json")


class EnrolmentHandler:
    ALLOWED_ACTIONS = {"change", "recalculate", "update_paid_through"}

    def __init__(self, change_service, coverage_service):
        self.change_service = change_service
        self.coverage_service = coverage_service

    def _handle_change(self, data: dict):
        enrolment_id = UUID(data.pop("id"))
        result = self.change_service.change_enrolment(enrolment_id, EnrolmentChange(**data))
        return result.model_dump(mode="json")

    def _handle_recalculate(self, data: dict):
        snapshot = self.coverage_service.recalculate(
            UUID(data["id"]),
            CoverageReason(data["reason"]),
            confirm_shorten=bool(data.get("confirm_shorten", False)),
        )
        return snapshot.model_dump(mode="json")

    def _handle_update_paid_through(self, data: dict):
        raw = data.get("paid_through_date")
        snapshot = self.coverage_service.update_paid_through_date(
            UUID(data["id"]),
            date.fromisoformat(raw) if raw else None,
            confirm_shorten=bool(data.get("confirm_shorten", False)),
        )
        return snapshot.model_dump(mode="json")


class ScheduleHandler:
    ALLOWED_ACTIONS = {
        "add_holiday", "update_holiday", "remove_holiday",
        "cancel_occurrence", "reverse_cancellation",
    }

    def __init__(self, service):
        self.service = service

    def _handle_add_holiday(self, data: dict):
        holiday = self.service.add_holiday(HolidayCreate(**data))
        return holiday.model_dump(mode="json")

    def _handle_update_holiday(self, data: dict):
        holiday_id = UUID(data.pop("id"))
        confirm = bool(data.pop("confirm_shorten", False))
        holiday = self.service.update_holiday(holiday_id, HolidayUpdate(**data), confirm_shorten=confirm)
        return holiday.model_dump(mode="json")

    def _handle_remove_holiday(self, data: dict):
        holiday = self.service.remove_holiday(
            UUID(data["id"]),
            confirm_shorten=bool(data.get("confirm_shorten", False)),
        )
        return {"removed": True, "holiday": holiday.model_dump(mode="json")}

    def _handle_cancel_occurrence(self, data: dict):
        cancellation = self.service.cancel_occurrence(ClassCancellationCreate(**data))
        return cancellation.model_dump(mode="json")

    def _handle_reverse_cancellation(self, data: dict):
        cancellation = self.service.reverse_cancellation(UUID(data["id"]))
        return {"reversed": True, "cancellation": cancellation.model_dump(mode="json")}
