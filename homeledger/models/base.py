"""
Shared building blocks for document models.

Every record lives in the document store as a flat mapping with camelCase
field names. The Python models use snake_case attributes with camelCase
aliases, so the same class validates what the backend returns and produces
what the backend expects.

DESIGN DECISION: Amounts are Decimal in Python and plain numbers in the
store. Timestamps are always timezone-aware UTC.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Optional, TypeVar

from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    PlainSerializer,
)


def _coerce_datetime(value: Any) -> Any:
    """Accept plain dates as midnight UTC."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    return value


def _ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDateTime = Annotated[
    datetime,
    BeforeValidator(_coerce_datetime),
    AfterValidator(_ensure_utc),
]

# Non-negative amount, stored as a number
Money = Annotated[
    Decimal,
    Field(ge=0),
    PlainSerializer(float, return_type=float),
]

# Signed amount (balances, net positions)
SignedMoney = Annotated[
    Decimal,
    PlainSerializer(float, return_type=float),
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


M = TypeVar("M", bound="DocumentModel")


class DocumentModel(BaseModel):
    """
    Base class for anything persisted as a document.

    The document ID is carried on the model but never written into
    the document body.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        use_enum_values=True,
    )

    id: Optional[str] = Field(
        default=None,
        description="Document ID assigned by the store"
    )

    def to_document(self) -> dict[str, Any]:
        """Serialize for the store (camelCase keys, no ID, no unset optionals)."""
        return self.model_dump(by_alias=True, exclude={"id"}, exclude_none=True)

    @classmethod
    def from_document(cls: type[M], doc_id: str, data: dict[str, Any]) -> M:
        """Build a model from a stored document."""
        return cls.model_validate({**data, "id": doc_id})
