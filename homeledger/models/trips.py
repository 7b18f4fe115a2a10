"""
Trip Models

A trip keeps its own money pot: members contribute funds (possibly in
foreign currencies), pay expenses out of it, and receive returns/refunds.
Every amount is also recorded in the household's base currency
(`base_amount = amount * conversion_rate`), which is what all trip
calculations use.

Funds, expenses and returns are stored as sub-collections of their trip
and carry the household ID so they are read through secure queries too.
"""

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from homeledger.models.base import DocumentModel, Money, SignedMoney, UtcDateTime


FUNDS = "funds"
EXPENSES = "expenses"
RETURNS = "returns"
TRIP_SUBCOLLECTIONS = (FUNDS, EXPENSES, RETURNS)

EXPENSE_CATEGORIES = (
    "food",
    "transport",
    "travel",
    "accommodation",
    "shopping",
    "tips",
    "other",
)


class TripAccommodation(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    location: str = Field(..., description="URL or address")
    from_date: UtcDateTime = Field(..., alias="fromDate")
    to_date: UtcDateTime = Field(..., alias="toDate")


class Trip(DocumentModel):
    """A trip shared by some members of a household."""

    household_id: str = Field(..., min_length=1, alias="householdId")
    trip_name: str = Field(..., min_length=1, max_length=200, alias="tripName")
    location: str = ""
    trip_type: str = Field(
        default="local",
        pattern="^(local|international)$",
        alias="tripType"
    )
    start_date: UtcDateTime = Field(..., alias="startDate")
    end_date: UtcDateTime = Field(..., alias="endDate")
    accommodations: list[TripAccommodation] = Field(default_factory=list)
    used_currencies: list[str] = Field(default_factory=list, alias="usedCurrencies")
    participant_ids: list[str] = Field(default_factory=list, alias="participantIds")
    created_by: Optional[str] = Field(default=None, alias="createdBy")
    created_at: Optional[UtcDateTime] = Field(default=None, alias="createdAt")

    @model_validator(mode='after')
    def validate_dates(self) -> 'Trip':
        if self.end_date < self.start_date:
            raise ValueError("Trip end date cannot be before start date")
        return self

    @property
    def duration_days(self) -> int:
        return (self.end_date - self.start_date).days + 1


class _ConvertedAmount(DocumentModel):
    """Shared shape of every trip money movement."""

    household_id: str = Field(..., min_length=1, alias="householdId")
    trip_id: str = Field(..., min_length=1, alias="tripId")
    date: UtcDateTime
    amount: Money
    currency: str = Field(..., min_length=3, max_length=3)
    conversion_rate: SignedMoney = Field(
        default=Decimal("1"),
        gt=0,
        alias="conversionRate",
        description="Manual rate into the base currency; 1 when already base"
    )
    base_amount: Optional[Money] = Field(default=None, alias="baseAmount")

    @model_validator(mode='after')
    def derive_base_amount(self):
        if self.base_amount is None:
            self.base_amount = self.amount * self.conversion_rate
        return self


class TripFund(_ConvertedAmount):
    contributor_id: str = Field(..., alias="contributorId")
    mode: str = "other"
    source: Optional[str] = Field(
        default=None,
        pattern="^(exchange|asset)$",
        description="'exchange' = bought with base currency, 'asset' = from savings"
    )
    exchange_location: Optional[str] = Field(default=None, alias="exchangeLocation")
    country: Optional[str] = None


class TripExpense(_ConvertedAmount):
    paid_by: str = Field(..., alias="paidBy")
    mode: str = "other"
    payment_method_id: Optional[str] = Field(default=None, alias="paymentMethodId")
    category: str = "other"
    notes: Optional[str] = Field(default=None, max_length=1000)


class TripReturn(_ConvertedAmount):
    description: str = ""
    received_by: str = Field(..., alias="receivedBy")
