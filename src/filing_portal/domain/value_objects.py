"""
Domain Value Objects for the filing portal.

Value objects are immutable and defined entirely by their attributes.
"""

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .aggregates import RecordRole


class RecordRef(BaseModel):
    """
    Pointer to the record the wizard is editing.

    A closed variant over roles: adding a filing kind means adding a role,
    not another boolean flag.
    """
    role: RecordRole
    record_id: Optional[UUID] = Field(default=None, description="None until the record exists")

    class Config:
        frozen = True

    @property
    def is_person(self) -> bool:
        return self.role.is_person


class PricingItem(BaseModel):
    """One line of a pricing breakdown."""
    label: str
    amount: Decimal

    class Config:
        frozen = True


class PricingBreakdown(BaseModel):
    """Itemized price of a filing."""
    base_fee: Decimal = Field(default=Decimal("0.00"))
    items: List[PricingItem] = Field(default_factory=list)
    subtotal: Decimal = Field(default=Decimal("0.00"))
    tax_rate: Decimal = Field(default=Decimal("0"))
    tax: Decimal = Field(default=Decimal("0.00"))
    total: Decimal = Field(default=Decimal("0.00"))
    currency: str = Field(default="CAD")

    class Config:
        frozen = True


class AmountDue(BaseModel):
    """What the user still owes, taking earlier payments into account."""
    total: Decimal
    previously_paid: Decimal = Field(default=Decimal("0.00"))
    amount_due: Decimal
    is_amendment: bool = False
    currency: str = Field(default="CAD")
    message: Optional[str] = Field(default=None, description="User facing note, e.g. nothing left to pay")

    class Config:
        frozen = True

    @property
    def requires_payment(self) -> bool:
        return self.amount_due > 0
