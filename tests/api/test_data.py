"""Tests for GET /api/data unified read endpoint."""

from datetime import date, datetime, timezone
from uuid import uuid4

from core.exceptions import NotFoundError
from core.models import (
    BillingType,
    CoverageAudit,
    CoverageReason,
    CoverageWindow,
    CreditEvent,
    CreditEventType,
    FamilyBillingPosition,
    FamilyBillingSummary,
    Holiday,
    InvoiceKind,
    InvoiceQuote,
    NetOwing,
    PaymentAllocation,
)


class TestDataValidation:

    def test_missing_type(self, client):
        response = client.get("/api/data")

        assert response.status_code == 400
        assert "'type'" in response.json()["error"]["message"]

    def test_unknown_type(self, client):
        response = client.get("/api/data", params={"type": "tickets"})

        assert response.status_code == 400
        assert "Valid types" in response.json()["error"]["message"]

    def test_missing_required_id(self, client):
        response = client.get("/api/data", params={"type": "billing_status"})

        assert response.status_code == 400
        assert "enrolment_id" in response.json()["error"]["message"]

    def test_bad_as_of(self, client):
        response = client.get(
            "/api/data", params={"type": "billing_status", "enrolment_id": str(uuid4()), "as_of": "soon"}
        )

        assert response.status_code == 400

    def test_limit_bounds(self, client):
        response = client.get("/api/data", params={"type": "invoices", "family_id": str(uuid4()), "limit": 0})

        assert response.status_code == 422


# =============================================================================
# BILLING STATUS
# =============================================================================


class TestBillingStatus:

    def test_returns_snapshot_and_closures(self, client, services, sample_status):
        services["snapshot"].get_billing_status.return_value = sample_status
        enrolment_id = sample_status.snapshot.enrolment_id

        response = client.get(
            "/api/data", params={"type": "billing_status", "enrolment_id": str(enrolment_id), "as_of": "2026-01-05"}
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["snapshot"]["paid_through_date"] == "2026-03-09"
        assert data["snapshot"]["next_due_date"] == "2026-03-16"
        assert data["full_week_closures"] == 1
        services["snapshot"].get_billing_status.assert_called_once_with(enrolment_id, date(2026, 1, 5))

    def test_unknown_enrolment(self, client, services):
        enrolment_id = uuid4()
        services["snapshot"].get_billing_status.side_effect = NotFoundError("enrolment", enrolment_id)

        response = client.get("/api/data", params={"type": "billing_status", "enrolment_id": str(enrolment_id)})

        assert response.status_code == 404


# =============================================================================
# INVOICES & PAYMENTS
# =============================================================================


class TestInvoices:

    def test_by_id(self, client, services, sample_invoice):
        services["invoice"].require.return_value = sample_invoice

        response = client.get("/api/data", params={"type": "invoices", "id": str(sample_invoice.id)})

        assert response.json()["data"]["amount_cents"] == 10000
        services["invoice"].require.assert_called_once_with(sample_invoice.id)

    def test_open_filter(self, client, services, sample_invoice):
        services["invoice"].list_open_invoices.return_value = [sample_invoice]

        response = client.get(
            "/api/data", params={"type": "invoices", "family_id": str(sample_invoice.family_id), "filter": "open"}
        )

        assert len(response.json()["data"]) == 1
        services["invoice"].list_for_family.assert_not_called()

    def test_family_listing_uses_limit(self, client, services, sample_invoice):
        services["invoice"].list_for_family.return_value = []

        client.get("/api/data", params={"type": "invoices", "family_id": str(sample_invoice.family_id), "limit": 5})

        services["invoice"].list_for_family.assert_called_once_with(sample_invoice.family_id, 5)


class TestPayments:

    def test_by_id_includes_allocations(self, client, services, sample_payment):
        services["payment"].require.return_value = sample_payment
        services["payment"].list_allocations.return_value = [
            PaymentAllocation(
                id=uuid4(), payment_id=sample_payment.id, invoice_id=uuid4(),
                amount_cents=10000, created_at=sample_payment.created_at,
            )
        ]

        response = client.get("/api/data", params={"type": "payments", "id": str(sample_payment.id)})

        data = response.json()["data"]
        assert data["id"] == str(sample_payment.id)
        assert [a["amount_cents"] for a in data["allocations"]] == [10000]

    def test_family_listing(self, client, services, sample_payment):
        services["payment"].list_for_family.return_value = [sample_payment]

        response = client.get("/api/data", params={"type": "payments", "family_id": str(sample_payment.family_id)})

        assert len(response.json()["data"]) == 1


# =============================================================================
# LEDGER & AUDIT
# =============================================================================


class TestLedger:

    def test_credit_events(self, client, services):
        enrolment_id = uuid4()
        services["ledger"].list_events.return_value = [
            CreditEvent(
                id=uuid4(), enrolment_id=enrolment_id, type=CreditEventType.PURCHASE,
                credits_delta=10, occurred_on=date(2026, 1, 1),
            )
        ]

        response = client.get("/api/data", params={"type": "credit_events", "enrolment_id": str(enrolment_id)})

        assert response.json()["data"][0]["type"] == "PURCHASE"
        services["ledger"].list_events.assert_called_once_with(enrolment_id, None)

    def test_coverage_audits(self, client, services):
        enrolment_id = uuid4()
        services["audit"].get_coverage_history.return_value = [
            CoverageAudit(
                id=uuid4(), enrolment_id=enrolment_id, reason=CoverageReason.HOLIDAY_ADDED,
                previous_paid_through_date=date(2026, 3, 2), next_paid_through_date=date(2026, 3, 9),
                created_at=datetime(2026, 1, 5, tzinfo=timezone.utc),
            )
        ]

        response = client.get("/api/data", params={"type": "coverage_audits", "enrolment_id": str(enrolment_id)})

        row = response.json()["data"][0]
        assert row["reason"] == "HOLIDAY_ADDED"
        assert row["next_paid_through_date"] == "2026-03-09"


class TestHolidays:

    def test_window(self, client, services):
        services["schedule"].list_holidays.return_value = [
            Holiday(id=uuid4(), name="Easter", start_date=date(2026, 4, 3), end_date=date(2026, 4, 6))
        ]

        response = client.get("/api/data", params={"type": "holidays", "as_of": "2026-01-01", "to": "2026-06-30"})

        assert response.json()["data"][0]["end_date"] == "2026-04-06"
        services["schedule"].list_holidays.assert_called_once_with(date(2026, 1, 1), date(2026, 6, 30))

    def test_needs_a_start(self, client):
        response = client.get("/api/data", params={"type": "holidays"})

        assert response.status_code == 400


# =============================================================================
# FAMILY POSITION & QUOTES
# =============================================================================


def _net_owing():
    return NetOwing(
        net_owing_cents=-2000, invoice_outstanding_cents=3000,
        unallocated_credit_cents=5000, overdue_owing_cents=0,
    )


class TestFamilyPosition:

    def test_net_owing(self, client, services):
        family_id = uuid4()
        services["family"].get_net_owing.return_value = _net_owing()

        response = client.get("/api/data", params={"type": "net_owing", "family_id": str(family_id)})

        assert response.json()["data"]["net_owing_cents"] == -2000
        services["family"].get_net_owing.assert_called_once_with(family_id, None)

    def test_net_owing_needs_family(self, client):
        response = client.get("/api/data", params={"type": "net_owing"})

        assert response.status_code == 400
        assert "family_id" in response.json()["error"]["message"]

    def test_billing_position(self, client, services):
        family_id = uuid4()
        services["family"].get_billing_position.return_value = FamilyBillingPosition(
            family_id=family_id,
            as_of=date(2026, 3, 2),
            summary=FamilyBillingSummary(next_payment_due=date(2026, 3, 2)),
            net_owing=_net_owing(),
        )

        response = client.get(
            "/api/data", params={"type": "billing_position", "family_id": str(family_id), "as_of": "2026-03-02"}
        )

        data = response.json()["data"]
        assert data["summary"]["next_payment_due"] == "2026-03-02"
        assert data["net_owing"]["unallocated_credit_cents"] == 5000
        services["family"].get_billing_position.assert_called_once_with(family_id, date(2026, 3, 2))


class TestQuotes:

    def test_pay_ahead_quote_passes_periods(self, client, services):
        enrolment_id = uuid4()
        services["pay_ahead"].quote_pay_ahead.return_value = InvoiceQuote(
            enrolment_id=enrolment_id,
            kind=InvoiceKind.PAY_AHEAD,
            billing_type=BillingType.PER_WEEK,
            window=CoverageWindow(
                periods=2, coverage_start=date(2026, 3, 9), coverage_end=date(2026, 5, 25),
            ),
            unit_price_cents=20000,
            amount_cents=40000,
        )

        response = client.get(
            "/api/data", params={"type": "pay_ahead_quote", "enrolment_id": str(enrolment_id), "periods": 2}
        )

        data = response.json()["data"]
        assert data["window"]["coverage_end"] == "2026-05-25"
        assert data["amount_cents"] == 40000
        services["pay_ahead"].quote_pay_ahead.assert_called_once_with(enrolment_id, 2, None)

    def test_catch_up_quote(self, client, services):
        enrolment_id = uuid4()
        services["pay_ahead"].quote_catch_up.return_value = InvoiceQuote(
            enrolment_id=enrolment_id,
            kind=InvoiceKind.CATCH_UP,
            billing_type=BillingType.BLOCK,
            window=CoverageWindow(periods=1, credits_purchased=8),
            unit_price_cents=16000,
            amount_cents=16000,
        )

        response = client.get("/api/data", params={"type": "catch_up_quote", "enrolment_id": str(enrolment_id)})

        assert response.json()["data"]["window"]["credits_purchased"] == 8


class TestAuditHistory:

    def test_entity_history(self, client, services):
        entity_id = uuid4()
        services["audit"].get_entity_history.return_value = [
            {"id": str(uuid4()), "entity_type": "invoice", "entity_id": str(entity_id), "action": "create"}
        ]

        response = client.get(
            "/api/data", params={"type": "audit_history", "entity_type": "invoice", "id": str(entity_id)}
        )

        assert response.json()["data"][0]["action"] == "create"
        services["audit"].get_entity_history.assert_called_once_with("invoice", entity_id)

    def test_needs_entity_type(self, client):
        response = client.get("/api/data", params={"type": "audit_history", "id": str(uuid4())})

        assert response.status_code == 400
