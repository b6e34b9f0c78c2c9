import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import TransactionType
from money import from_cents

HEX_COLOR_PATTERN = r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$"


def _strip(value):
    if isinstance(value, str):
        return value.strip()
    return value


def _strip_or_none(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=30)
    type: TransactionType
    icon: Optional[str] = Field(default=None, min_length=1, max_length=5)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return _strip(value)

    @field_validator("icon", "color", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        return _strip_or_none(value)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=30)
    type: Optional[TransactionType] = None
    icon: Optional[str] = Field(default=None, min_length=1, max_length=5)
    color: Optional[str] = Field(default=None, pattern=HEX_COLOR_PATTERN)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, value):
        return _strip(value)

    @field_validator("icon", "color", mode="before")
    @classmethod
    def blank_to_none(cls, value):
        return _strip_or_none(value)


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    type: TransactionType
    icon: str
    color: str
    is_default: bool
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None


class CategoryUsage(BaseModel):
    total_amount: Decimal
    transaction_count: int
    average_amount: Decimal
    last_used: Optional[dt.datetime] = None


class CategoryUsageOut(BaseModel):
    category: CategoryOut
    usage: CategoryUsage


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: TransactionType
    category: str = Field(..., min_length=1, max_length=30)
    amount: Decimal = Field(..., ge=0, max_digits=14, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=200)
    date: Optional[dt.datetime] = None

    @field_validator("category", mode="before")
    @classmethod
    def strip_category(cls, value):
        return _strip(value)

    @field_validator("description", mode="before")
    @classmethod
    def blank_description_to_none(cls, value):
        return _strip_or_none(value)


class TransactionUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Optional[TransactionType] = None
    category: Optional[str] = Field(default=None, min_length=1, max_length=30)
    amount: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=14, decimal_places=2
    )
    description: Optional[str] = Field(default=None, max_length=200)
    date: Optional[dt.datetime] = None

    @field_validator("category", mode="before")
    @classmethod
    def strip_category(cls, value):
        return _strip(value)

    @field_validator("description", mode="before")
    @classmethod
    def blank_description_to_none(cls, value):
        return _strip_or_none(value)


class TransactionOut(BaseModel):
    id: str
    type: TransactionType
    category: str
    amount: Decimal
    description: Optional[str] = None
    date: dt.datetime
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @classmethod
    def from_model(cls, txn) -> "TransactionOut":
        return cls(
            id=txn.id,
            type=txn.type,
            category=txn.category,
            amount=from_cents(txn.amount_cents),
            description=txn.description,
            date=txn.occurred_at,
            created_at=txn.created_at,
            updated_at=txn.updated_at,
        )


class TransactionPage(BaseModel):
    transactions: list[TransactionOut]
    current_page: int
    total_pages: int
    total_transactions: int
    limit: int


class MonthlyStats(BaseModel):
    income: Decimal
    expenses: Decimal
    savings: Decimal


class CategoryStat(BaseModel):
    type: TransactionType
    category: str
    total: Decimal


class YearlyStat(BaseModel):
    month: int = Field(..., ge=1, le=12)
    type: TransactionType
    total: Decimal


class DashboardReport(BaseModel):
    as_of: dt.datetime
    balance: Decimal
    monthly_stats: MonthlyStats
    recent_transactions: list[TransactionOut]
    category_stats: list[CategoryStat]
    yearly_stats: list[YearlyStat]


def error_details(exc) -> list[dict[str, str]]:
    """Flatten pydantic/FastAPI validation errors to field/message pairs."""
    details = []
    for err in exc.errors():
        loc = [
            str(part) for part in err.get("loc", ()) if part not in ("body", "query")
        ]
        details.append(
            {
                "field": ".".join(loc) or "body",
                "message": str(err.get("msg", "Invalid value")),
            }
        )
    return details
