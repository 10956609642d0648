"""Invoice line item models.

All prices are stored in cents (integer) to avoid floating point issues.
$10.00 = 1000 cents.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class LineItemKind(str, Enum):
    """What a line item charges for."""

    ENROLMENT = "ENROLMENT"
    ADJUSTMENT = "ADJUSTMENT"
    PRODUCT = "PRODUCT"
    DISCOUNT = "DISCOUNT"


class LineItemCreate(BaseModel):
    """
    Data required to create a line item.

    Either unit_price_cents or amount_cents must be given. Missing values
    are derived: unit price falls back to the amount, amount falls back to
    quantity * unit price.
    """

    kind: LineItemKind = LineItemKind.ADJUSTMENT
    description: str = Field(..., min_length=1, max_length=500)
    quantity: int = Field(1, ge=1)
    unit_price_cents: int | None = None
    amount_cents: int | None = None
    product_id: UUID | None = None

    @model_validator(mode="after")
    def normalise_amounts(self) -> "LineItemCreate":
        """Fill unit price and amount from whichever was provided."""
        if self.unit_price_cents is None and self.amount_cents is None:
            raise ValueError("Line item needs unit_price_cents or amount_cents")
        if self.unit_price_cents is None:
            self.unit_price_cents = self.amount_cents
        if self.amount_cents is None:
            self.amount_cents = self.quantity * self.unit_price_cents
        return self


class LineItem(BaseModel):
    """Full line item entity as stored."""

    id: UUID
    invoice_id: UUID
    kind: LineItemKind
    description: str
    quantity: int
    unit_price_cents: int
    amount_cents: int
    product_id: UUID | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
