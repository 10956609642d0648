"""GET /api/data: unified read endpoint."""

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response


VALID_TYPES = {
    "billing_status", "invoices", "payments", "credit_events", "coverage_audits", "holidays",
    "net_owing", "billing_position", "pay_ahead_quote", "catch_up_quote", "audit_history",
}


def create_data_router(services: dict) -> APIRouter:
    router = APIRouter()

    snapshot_svc = services["snapshot"]
    invoice_svc = services["invoice"]
    payment_svc = services["payment"]
    ledger_svc = services["ledger"]
    audit = services["audit"]
    schedule_svc = services["schedule"]
    pay_ahead_svc = services["pay_ahead"]
    family_svc = services["family"]

    @router.get("/data")
    async def get_data(
        request: Request,
        type: str | None = Query(None),
        id: str | None = Query(None),
        enrolment_id: str | None = Query(None),
        family_id: str | None = Query(None),
        as_of: str | None = Query(None),
        to: str | None = Query(None),
        filter: str | None = Query(None),
        entity_type: str | None = Query(None),
        periods: int = Query(1, ge=1, le=52),
        limit: int = Query(50, ge=1, le=500),
    ):
        if type is None:
            raise ValueError("'type' query parameter is required")

        if type not in VALID_TYPES:
            raise ValueError(f"Unknown type '{type}'. Valid types: {', '.join(sorted(VALID_TYPES))}")

        as_of_day = date.fromisoformat(as_of) if as_of else None

        if type == "billing_status":
            return _handle_billing_status(snapshot_svc, enrolment_id, as_of_day)

        if type == "invoices":
            return _handle_invoices(invoice_svc, id, family_id, filter, limit)

        if type == "payments":
            return _handle_payments(payment_svc, id, family_id, limit)

        if type == "credit_events":
            return _handle_credit_events(ledger_svc, enrolment_id, as_of_day)

        if type == "coverage_audits":
            return _handle_coverage_audits(audit, enrolment_id)

        if type == "holidays":
            return _handle_holidays(schedule_svc, as_of_day, to)

        if type == "net_owing":
            return _handle_net_owing(family_svc, family_id, as_of_day)

        if type == "billing_position":
            return _handle_billing_position(family_svc, family_id, as_of_day)

        if type == "pay_ahead_quote":
            return _handle_pay_ahead_quote(pay_ahead_svc, enrolment_id, periods, as_of_day)

        if type == "catch_up_quote":
            return _handle_catch_up_quote(pay_ahead_svc, enrolment_id, as_of_day)

        if type == "audit_history":
            return _handle_audit_history(audit, entity_type, id)

    return router


def _require(value: str | None, name: str, type_name: str) -> UUID:
    if not value:
        raise ValueError(f"'{type_name}' type requires '{name}' parameter")
    return UUID(value)


def _handle_billing_status(snapshot_svc, enrolment_id, as_of):
    status = snapshot_svc.get_billing_status(_require(enrolment_id, "enrolment_id", "billing_status"), as_of)
    return success_response(status.model_dump(mode="json")).model_dump(mode="json")


def _handle_invoices(invoice_svc, id, family_id, filter, limit):
    if id:
        invoice = invoice_svc.require(UUID(id))
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    family = _require(family_id, "family_id", "invoices")
    if filter == "open":
        invoices = invoice_svc.list_open_invoices(family)
    else:
        invoices = invoice_svc.list_for_family(family, limit)

    return success_response(
        [i.model_dump(mode="json") for i in invoices]
    ).model_dump(mode="json")


def _handle_payments(payment_svc, id, family_id, limit):
    if id:
        payment = payment_svc.require(UUID(id))
        data = payment.model_dump(mode="json")
        data["allocations"] = [a.model_dump(mode="json") for a in payment_svc.list_allocations(payment.id)]
        return success_response(data).model_dump(mode="json")

    payments = payment_svc.list_for_family(_require(family_id, "family_id", "payments"), limit)
    return success_response(
        [p.model_dump(mode="json") for p in payments]
    ).model_dump(mode="json")


def _handle_credit_events(ledger_svc, enrolment_id, as_of):
    events = ledger_svc.list_events(_require(enrolment_id, "enrolment_id", "credit_events"), as_of)
    return success_response(
        [e.model_dump(mode="json") for e in events]
    ).model_dump(mode="json")


def _handle_coverage_audits(audit, enrolment_id):
    audits = audit.get_coverage_history(_require(enrolment_id, "enrolment_id", "coverage_audits"))
    return success_response(
        [a.model_dump(mode="json") for a in audits]
    ).model_dump(mode="json")


def _handle_holidays(schedule_svc, as_of, to):
    if as_of is None:
        raise ValueError("'holidays' type requires 'as_of' parameter")
    holidays = schedule_svc.list_holidays(as_of, date.fromisoformat(to) if to else None)
    return success_response(
        [h.model_dump(mode="json") for h in holidays]
    ).model_dump(mode="json")


def _handle_net_owing(family_svc, family_id, as_of):
    owing = family_svc.get_net_owing(_require(family_id, "family_id", "net_owing"), as_of)
    return success_response(owing.model_dump(mode="json")).model_dump(mode="json")


def _handle_billing_position(family_svc, family_id, as_of):
    position = family_svc.get_billing_position(_require(family_id, "family_id", "billing_position"), as_of)
    return success_response(position.model_dump(mode="json")).model_dump(mode="json")


def _handle_pay_ahead_quote(pay_ahead_svc, enrolment_id, periods, as_of):
    quote = pay_ahead_svc.quote_pay_ahead(
        _require(enrolment_id, "enrolment_id", "pay_ahead_quote"), periods, as_of
    )
    return success_response(quote.model_dump(mode="json")).model_dump(mode="json")


def _handle_catch_up_quote(pay_ahead_svc, enrolment_id, as_of):
    quote = pay_ahead_svc.quote_catch_up(_require(enrolment_id, "enrolment_id", "catch_up_quote"), as_of)
    return success_response(quote.model_dump(mode="json")).model_dump(mode="json")


def _handle_audit_history(audit, entity_type, id):
    if not entity_type:
        raise ValueError("'audit_history' type requires 'entity_type' parameter")
    history = audit.get_entity_history(entity_type, _require(id, "id", "audit_history"))
    return success_response(history).model_dump(mode="json")
