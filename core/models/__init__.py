"""Core domain models."""

from core.models.plan import EnrolmentPlan, BillingType
from core.models.schedule import (
    ClassTemplate, Holiday, HolidayCreate, HolidayUpdate,
    ClassCancellation, ClassCancellationCreate,
)
from core.models.enrolment import Enrolment, EnrolmentStatus, EnrolmentChange
from core.models.credit_event import CreditEvent, CreditEventCreate, CreditEventType
from core.models.coverage import BillingSnapshot, BillingStatus, CoverageAudit, CoverageReason, CoverageWindow
from core.models.line_item import LineItem, LineItemCreate, LineItemKind
from core.models.invoice import Invoice, InvoiceCreate, InvoiceStatus, OPEN_INVOICE_STATUSES
from core.models.payment import (
    Payment, PaymentCreate, PaymentStatus, PaymentAllocation,
    PaymentResult, AllocationRequest, AllocationStrategy,
)
from core.models.settlement import SettlementQuote, SettlementApplication, EnrolmentChangeResult
from core.models.owing import (
    EntitlementStatus, InvoiceKind, OwingEntry, FamilyBillingSummary,
    NetOwing, EnrolmentPosition, FamilyBillingPosition, InvoiceQuote,
)

__all__ = [
    # Plan
    "EnrolmentPlan", "BillingType",
    # Schedule
    "ClassTemplate", "Holiday", "HolidayCreate", "HolidayUpdate",
    "ClassCancellation", "ClassCancellationCreate",
    # Enrolment
    "Enrolment", "EnrolmentStatus", "EnrolmentChange",
    # Credit ledger
    "CreditEvent", "CreditEventCreate", "CreditEventType",
    # Coverage
    "BillingSnapshot", "BillingStatus", "CoverageAudit", "CoverageReason", "CoverageWindow",
    # LineItem
    "LineItem", "LineItemCreate", "LineItemKind",
    # Invoice
    "Invoice", "InvoiceCreate", "InvoiceStatus", "OPEN_INVOICE_STATUSES",
    # Payment
    "Payment", "PaymentCreate", "PaymentStatus", "PaymentAllocation",
    "PaymentResult", "AllocationRequest", "AllocationStrategy",
    # Settlement
    "SettlementQuote", "SettlementApplication", "EnrolmentChangeResult",
    # Family position
    "EntitlementStatus", "InvoiceKind", "OwingEntry", "FamilyBillingSummary",
    "NetOwing", "EnrolmentPosition", "FamilyBillingPosition", "InvoiceQuote",
]
