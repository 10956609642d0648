"""Billing engine configuration."""

import os

from pydantic import BaseModel, Field, field_validator

from utils.timezone import DEFAULT_CIVIL_TIMEZONE, get_zone


class BillingConfig(BaseModel):
    """
    Billing engine configuration.

    Calendar horizons are in weeks or days, whichever the rule is stated in.
    The civil timezone decides which calendar day an instant belongs to.
    """

    # Calendar
    timezone: str = Field(
        default=DEFAULT_CIVIL_TIMEZONE,
        description="IANA timezone that day keys are derived in",
    )
    horizon_buffer_weeks: int = Field(
        default=4,
        description="Extra weeks walked past the projected occurrence count",
        ge=0,
        le=52,
    )
    fallback_horizon_days: int = Field(
        default=365,
        description="Walk bound when an enrolment has no end date and no count",
        ge=7,
        le=3650,
    )

    # Invoicing
    default_invoice_due_days: int = Field(
        default=7,
        description="Days after issue that an invoice falls due",
        ge=0,
        le=365,
    )
    credit_payment_method: str = Field(
        default="credit",
        description="Payment method label used for settlement credits",
        min_length=1,
    )
    due_soon_days: int = Field(
        default=14,
        description="Days ahead of paid-through at which coverage counts as due soon",
        ge=0,
        le=365,
    )

    # Enrolment changes
    capacity_horizon_weeks: int = Field(
        default=8,
        description="Weeks of occurrences checked for capacity when a plan has no duration",
        ge=1,
        le=52,
    )

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        get_zone(value)
        return value

    @classmethod
    def from_env(cls) -> "BillingConfig":
        """
        Build config from BILLING_* environment variables.

        Unset variables fall back to the field defaults. Call after
        python-dotenv has loaded the .env file.
        """
        overrides = {}
        for name in cls.model_fields:
            value = os.getenv(f"BILLING_{name.upper()}")
            if value is not None:
                overrides[name] = value
        return cls(**overrides)
