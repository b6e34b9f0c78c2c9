from dataclasses import dataclass
from typing import Optional

from models import TransactionType

DEFAULT_ICON = "📁"
DEFAULT_COLOR = "#6B7280"
INCOME_COLOR = "#10B981"
EXPENSE_COLOR = "#EF4444"
BUILTIN_ID_PREFIX = "default-"


@dataclass(frozen=True)
class BuiltinCategory:
    name: str
    type: TransactionType
    icon: str
    color: str
    is_default: bool = True
    user_id: Optional[str] = None

    @property
    def id(self) -> str:
        return f"{BUILTIN_ID_PREFIX}{self.name}"


def _income(name: str, icon: str) -> BuiltinCategory:
    return BuiltinCategory(name, TransactionType.income, icon, INCOME_COLOR)


def _expense(name: str, icon: str) -> BuiltinCategory:
    return BuiltinCategory(name, TransactionType.expense, icon, EXPENSE_COLOR)


BUILTIN_CATEGORIES: tuple[BuiltinCategory, ...] = (
    _income("salary", "💼"),
    _income("freelance", "💻"),
    _income("investment", "📈"),
    _income("business", "🏢"),
    _income("gift", "🎁"),
    _income("other_income", "💰"),
    _expense("food", "🍕"),
    _expense("transport", "🚗"),
    _expense("housing", "🏠"),
    _expense("entertainment", "🎬"),
    _expense("healthcare", "🏥"),
    _expense("education", "📚"),
    _expense("shopping", "🛍️"),
    _expense("other_expense", "💸"),
)

_BY_ID = {category.id: category for category in BUILTIN_CATEGORIES}
_BY_KEY = {(category.name, category.type): category for category in BUILTIN_CATEGORIES}


def builtin_by_id(category_id: str) -> Optional[BuiltinCategory]:
    return _BY_ID.get(category_id)


def builtin_by_name(
    name: str, transaction_type: TransactionType
) -> Optional[BuiltinCategory]:
    return _BY_KEY.get((name, transaction_type))
