"""FastAPI application factory and service wiring."""

import logging

from dotenv import load_dotenv
from fastapi import FastAPI

from api.actions import create_actions_router
from api.data import create_data_router
from api.errors import register_error_handlers
from api.middleware import ActorContextMiddleware, RequestIDMiddleware
from clients.postgres_client import PostgresClient
from clients.vault_client import get_database_url
from core.audit import AuditLogger
from core.config import BillingConfig
from core.event_bus import EventBus
from core.handlers.invoice_payment_handler import handle_invoice_paid, handle_payment_reversed
from core.services.billing_snapshot_service import BillingSnapshotService
from core.services.coverage_service import CoverageService
from core.services.credit_ledger_service import CreditLedgerService
from core.services.enrolment_change_service import EnrolmentChangeService
from core.services.enrolment_service import EnrolmentService
from core.services.family_billing_service import FamilyBillingService
from core.services.invoice_service import InvoiceService
from core.services.pay_ahead_service import PayAheadService
from core.services.payment_service import PaymentService
from core.services.schedule_service import ScheduleService
from core.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)


def build_services(
    postgres: PostgresClient,
    config: BillingConfig | None = None,
    event_bus: EventBus | None = None,
) -> dict:
    """Construct every billing service on one connection pool and event bus."""
    config = config or BillingConfig()
    event_bus = event_bus or EventBus()
    audit = AuditLogger(postgres)

    enrolments = EnrolmentService(postgres)
    ledger = CreditLedgerService(postgres)
    snapshots = BillingSnapshotService(postgres, enrolments, ledger, config)
    coverage = CoverageService(postgres, enrolments, snapshots, audit, event_bus)
    invoices = InvoiceService(postgres, audit, event_bus, enrolments, ledger, coverage, config)
    payments = PaymentService(postgres, audit, event_bus, invoices)
    settlements = SettlementService(postgres, invoices, payments, config)
    changes = EnrolmentChangeService(
        postgres, audit, event_bus, enrolments, ledger, snapshots, coverage, settlements, config
    )
    schedule = ScheduleService(postgres, audit, event_bus, enrolments, coverage)
    pay_ahead = PayAheadService(postgres, enrolments, snapshots, invoices)
    family = FamilyBillingService(postgres, enrolments, snapshots, invoices, config)

    event_bus.subscribe("InvoicePaid", handle_invoice_paid(snapshots))
    event_bus.subscribe("PaymentReversed", handle_payment_reversed(snapshots, invoices))

    return {
        "config": config,
        "event_bus": event_bus,
        "audit": audit,
        "enrolment": enrolments,
        "ledger": ledger,
        "snapshot": snapshots,
        "coverage": coverage,
        "invoice": invoices,
        "payment": payments,
        "settlement": settlements,
        "enrolment_change": changes,
        "schedule": schedule,
        "pay_ahead": pay_ahead,
        "family": family,
    }


def create_app(services: dict) -> FastAPI:
    """FastAPI app with error handlers, actor context and data/actions routes."""
    app = FastAPI(title="Enrolment Billing")
    app.add_middleware(ActorContextMiddleware)
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(create_data_router(services), prefix="/api")
    app.include_router(create_actions_router(services), prefix="/api")

    return app


def create_app_from_env() -> FastAPI:
    """
    Production entry point: ``.env`` and BILLING_* settings, database URL from Vault.

    Serve with an ASGI server in factory mode, e.g.
    ``uvicorn api.app:create_app_from_env --factory``.
    """
    load_dotenv()
    config = BillingConfig.from_env()
    postgres = PostgresClient(get_database_url())
    logger.info("Starting billing API (civil timezone %s)", config.timezone)
    return create_app(build_services(postgres, config))
