"""Shared test fixtures for the billing test suite."""

import os
import pytest
from uuid import UUID, uuid4
from pathlib import Path

from dotenv import load_dotenv

# Load .env file BEFORE any other imports that might use env vars
# override=True ensures .env takes precedence over shell env vars
load_dotenv(Path(__file__).parent.parent / ".env", override=True)

# Reset vault client singleton to pick up env vars
import clients.vault_client as vault_module
vault_module._vault_client_instance = None
vault_module._secret_cache.clear()

from utils.actor_context import actor_context, clear_current_actor_id


SCHEMA_PATH = Path(__file__).parent.parent / "db" / "schema.sql"

BILLING_TABLES = """
    audit_log, settlement_applications, enrolment_coverage_audits,
    enrolment_credit_events, payment_allocations, payments,
    invoice_line_items, invoices, class_cancellations, holidays,
    enrolment_class_assignments, enrolments, class_templates, enrolment_plans
"""


# =============================================================================
# ACTOR CONSTANTS
# =============================================================================

# Staff member recorded on audit rows in tests
TEST_ACTOR_ID = UUID("00000000-0000-0000-0000-000000000001")


# =============================================================================
# ACTOR CONTEXT FIXTURES
# =============================================================================


@pytest.fixture(autouse=True)
def reset_actor_context():
    """Ensure clean actor context before and after each test."""
    clear_current_actor_id()
    yield
    clear_current_actor_id()


@pytest.fixture
def test_actor_id() -> UUID:
    return TEST_ACTOR_ID


@pytest.fixture
def as_test_actor(test_actor_id):
    """Run the test with the test staff member as actor."""
    with actor_context(test_actor_id):
        yield test_actor_id


# =============================================================================
# DATABASE FIXTURES
# =============================================================================


@pytest.fixture(scope="session")
def db():
    """
    Session-scoped PostgresClient with the billing schema applied.

    Skips when Vault is not configured, so pure tests run anywhere.
    """
    if not os.getenv("VAULT_ADDR"):
        pytest.skip("VAULT_ADDR not set; database tests need Vault and PostgreSQL")

    from clients.postgres_client import PostgresClient
    from clients.vault_client import get_database_url

    client = PostgresClient(get_database_url())
    client.execute(SCHEMA_PATH.read_text())
    yield client
    client.close()


@pytest.fixture
def clean_db(db):
    """Empty every billing table before the test."""
    db.execute(f"TRUNCATE {BILLING_TABLES} CASCADE")
    yield db


# =============================================================================
# SEED DATA
# =============================================================================


class Seeder:
    """Insert reference rows directly. Plans, classes and enrolments have no service writers."""

    def __init__(self, db):
        self.db = db

    def plan(self, billing_type="PER_WEEK", price_cents=10000, sessions_per_week=1,
             block_class_count=None, **overrides) -> UUID:
        row = {
            "id": uuid4(),
            "name": f"{billing_type} plan",
            "billing_type": billing_type,
            "price_cents": price_cents,
            "sessions_per_week": sessions_per_week if billing_type == "PER_WEEK" else None,
            "block_class_count": block_class_count,
            "level_id": None,
            **overrides,
        }
        self._insert("enrolment_plans", row)
        return row["id"]

    def template(self, day_of_week=0, capacity=None, **overrides) -> UUID:
        row = {
            "id": uuid4(),
            "name": "Class",
            "day_of_week": day_of_week,
            "capacity": capacity,
            "level_id": None,
            **overrides,
        }
        self._insert("class_templates", row)
        return row["id"]

    def enrolment(self, plan_id, template_ids, start_date, family_id=None, **overrides) -> UUID:
        row = {
            "id": uuid4(),
            "student_id": uuid4(),
            "family_id": family_id or uuid4(),
            "plan_id": plan_id,
            "status": "ACTIVE",
            "start_date": start_date,
            **overrides,
        }
        self._insert("enrolments", row)
        for template_id in template_ids:
            self.db.execute(
                "INSERT INTO enrolment_class_assignments (enrolment_id, template_id) VALUES (%s, %s)",
                (row["id"], template_id)
            )
        return row["id"]

    def _insert(self, table: str, row: dict) -> None:
        columns = ", ".join(row)
        placeholders = ", ".join(["%s"] * len(row))
        self.db.execute(f"INSERT INTO {table} ({columns}) VALUES ({placeholders})", tuple(row.values()))


@pytest.fixture
def seed(clean_db) -> Seeder:
    return Seeder(clean_db)
