from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from pydantic import ValidationError
from sqlalchemy import delete, extract, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from categories import (
    BUILTIN_CATEGORIES,
    DEFAULT_COLOR,
    DEFAULT_ICON,
    BuiltinCategory,
    builtin_by_id,
    builtin_by_name,
)
from money import average_cents, from_cents, to_cents
from models import Category, Transaction, TransactionType
from periods import Period, local_now, month_to_date, to_local, year_to_date
from schemas import (
    CategoryIn,
    CategoryStat,
    CategoryUpdate,
    CategoryUsage,
    DashboardReport,
    MonthlyStats,
    TransactionIn,
    TransactionOut,
    TransactionUpdate,
    YearlyStat,
    error_details,
)

logger = logging.getLogger(__name__)

AnyCategory = Union[BuiltinCategory, Category]

MAX_PAGE_SIZE = 100


class NotFoundError(ValueError):
    pass


class DuplicateCategoryError(ValueError):
    def __init__(self, message: str = "Category already exists") -> None:
        super().__init__(message)


class ImmutableDefaultError(ValueError):
    pass


class CategoryInUseError(ValueError):
    def __init__(
        self,
        transaction_count: int,
        message: str = "Cannot delete category that is used in transactions",
    ) -> None:
        super().__init__(message)
        self.transaction_count = transaction_count


class FieldValidationError(ValueError):
    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.errors = [{"field": field, "message": message}]

    @classmethod
    def from_pydantic(cls, exc: ValidationError) -> "FieldValidationError":
        details = error_details(exc)
        first = details[0] if details else {"field": "body", "message": str(exc)}
        err = cls(first["field"], first["message"])
        err.errors = details or err.errors
        return err


class CategoryService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[AnyCategory]:
        custom = self.session.scalars(
            select(Category).where(Category.user_id == self.user_id)
        ).all()
        custom = sorted(custom, key=lambda c: (c.type.value, c.name, c.id))
        return [*BUILTIN_CATEGORIES, *custom]

    def get(self, category_id: str) -> AnyCategory:
        builtin = builtin_by_id(category_id)
        if builtin:
            return builtin
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise NotFoundError("Category not found")
        return category

    def _get_custom(self, category_id: str, action: str) -> Category:
        category = self.get(category_id)
        if category.is_default:
            raise ImmutableDefaultError(f"Cannot {action} default categories")
        return category

    def _find(self, name: str, transaction_type: TransactionType) -> Optional[Category]:
        return self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                Category.type == transaction_type,
                Category.name == name,
            )
        )

    def _reference_count(self, name: str, transaction_type: TransactionType) -> int:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.user_id == self.user_id,
            Transaction.category == name,
            Transaction.type == transaction_type,
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def resolve(self, name: str, transaction_type: TransactionType) -> AnyCategory:
        """Find the category a transaction refers to, preferring custom ones."""
        custom = self._find(name, transaction_type)
        if custom:
            return custom
        builtin = builtin_by_name(name, transaction_type)
        if builtin:
            return builtin
        other_type = (
            TransactionType.expense
            if transaction_type == TransactionType.income
            else TransactionType.income
        )
        if self._find(name, other_type) or builtin_by_name(name, other_type):
            raise FieldValidationError(
                "category",
                f"Category '{name}' is not an {transaction_type.value} category",
            )
        raise FieldValidationError("category", f"Unknown category '{name}'")

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        if self._find(name, data.type):
            raise DuplicateCategoryError()
        category = Category(
            user_id=self.user_id,
            name=name,
            type=data.type,
            icon=data.icon or DEFAULT_ICON,
            color=data.color or DEFAULT_COLOR,
        )
        self.session.add(category)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateCategoryError() from exc
        self.session.refresh(category)
        logger.info(
            f"category_created: id={category.id} user={self.user_id} "
            f"type={category.type.value}"
        )
        return category

    def update(self, category_id: str, data: CategoryUpdate) -> Category:
        category = self._get_custom(category_id, "edit")
        changes = data.model_dump(exclude_unset=True)
        if "name" in changes and changes["name"] is None:
            raise FieldValidationError("name", "Category name is required")
        if "type" in changes and changes["type"] is None:
            raise FieldValidationError("type", "Type must be income or expense")

        old_name, old_type = category.name, category.type
        new_name = changes.get("name", old_name).strip()
        new_type = changes.get("type", old_type)

        if (new_name, new_type) != (old_name, old_type):
            clash = self._find(new_name, new_type)
            if clash and clash.id != category.id:
                raise DuplicateCategoryError()
            in_use = self._reference_count(old_name, old_type)
            if new_type != old_type and in_use:
                raise CategoryInUseError(
                    in_use,
                    "Cannot change the type of a category that is used in transactions",
                )
            if in_use and new_name != old_name and builtin_by_name(old_name, old_type):
                raise CategoryInUseError(
                    in_use,
                    "Cannot rename a category that shadows a default category "
                    "while it is used in transactions",
                )
            if in_use:
                self.session.execute(
                    update(Transaction)
                    .where(
                        Transaction.user_id == self.user_id,
                        Transaction.category == old_name,
                        Transaction.type == old_type,
                    )
                    .values(category=new_name)
                )

        category.name = new_name
        category.type = new_type
        if "icon" in changes:
            category.icon = changes["icon"] or DEFAULT_ICON
        if "color" in changes:
            category.color = changes["color"] or DEFAULT_COLOR
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateCategoryError() from exc
        self.session.refresh(category)
        return category

    def delete(self, category_id: str) -> None:
        category = self._get_custom(category_id, "delete")
        referencing = select(Transaction.id).where(
            Transaction.user_id == self.user_id,
            Transaction.category == category.name,
            Transaction.type == category.type,
        )
        # Single statement so a concurrent insert cannot land between the
        # reference check and the delete.
        result = self.session.execute(
            delete(Category)
            .where(
                Category.id == category.id,
                Category.user_id == self.user_id,
                ~referencing.exists(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            in_use = self._reference_count(category.name, category.type)
            self.session.rollback()
            if in_use:
                raise CategoryInUseError(in_use)
            raise NotFoundError("Category not found")
        self.session.commit()
        self.session.expunge(category)
        logger.info(f"category_deleted: id={category_id} user={self.user_id}")

    def usage(self, category_id: str) -> CategoryUsage:
        category = self.get(category_id)
        row = self.session.execute(
            select(
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
                func.count(Transaction.id).label("count"),
                func.max(Transaction.occurred_at).label("last_used"),
            ).where(
                Transaction.user_id == self.user_id,
                Transaction.category == category.name,
                Transaction.type == category.type,
            )
        ).one()
        total = int(row.total or 0)
        count = int(row.count or 0)
        return CategoryUsage(
            total_amount=from_cents(total),
            transaction_count=count,
            average_amount=average_cents(total, count),
            last_used=row.last_used,
        )


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category: Optional[str] = None


@dataclass
class TransactionPageResult:
    items: list[Transaction]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


class TransactionService:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    def _validated(self, data: TransactionIn) -> tuple[AnyCategory, int, datetime]:
        category = CategoryService(self.session, self.user_id).resolve(
            data.category, data.type
        )
        try:
            amount_cents = to_cents(data.amount)
        except ValueError as exc:
            raise FieldValidationError("amount", str(exc)) from exc
        if amount_cents < 0:
            raise FieldValidationError("amount", "Amount cannot be negative")
        occurred_at = to_local(data.date) if data.date else local_now()
        return category, amount_cents, occurred_at

    def create(self, data: TransactionIn) -> Transaction:
        category, amount_cents, occurred_at = self._validated(data)
        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            category=category.name,
            amount_cents=amount_cents,
            description=data.description,
            occurred_at=occurred_at,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: id={txn.id} user={self.user_id} "
            f"type={txn.type.value}"
        )
        return txn

    def get(self, transaction_id: str) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if not txn:
            raise NotFoundError("Transaction not found")
        return txn

    def update(self, transaction_id: str, data: TransactionUpdate) -> Transaction:
        txn = self.get(transaction_id)
        merged = {
            "type": txn.type,
            "category": txn.category,
            "amount": from_cents(txn.amount_cents),
            "description": txn.description,
            "date": txn.occurred_at,
        }
        merged.update(data.model_dump(exclude_unset=True))
        if merged["date"] is None:
            merged["date"] = txn.occurred_at
        try:
            full = TransactionIn.model_validate(merged)
        except ValidationError as exc:
            raise FieldValidationError.from_pydantic(exc) from exc

        category, amount_cents, occurred_at = self._validated(full)
        txn.type = full.type
        txn.category = category.name
        txn.amount_cents = amount_cents
        txn.description = full.description
        txn.occurred_at = occurred_at
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: str) -> None:
        result = self.session.execute(
            delete(Transaction)
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        if result.rowcount == 0:
            self.session.rollback()
            raise NotFoundError("Transaction not found")
        self.session.commit()
        logger.info(f"transaction_deleted: id={transaction_id} user={self.user_id}")

    def list(
        self,
        page: int = 1,
        limit: int = 10,
        filters: Optional[TransactionFilters] = None,
    ) -> TransactionPageResult:
        if page < 1:
            raise FieldValidationError("page", "Page must be a positive integer")
        if limit < 1:
            raise FieldValidationError("limit", "Limit must be a positive integer")
        limit = min(limit, MAX_PAGE_SIZE)
        filters = filters or TransactionFilters()

        conditions = [Transaction.user_id == self.user_id]
        if filters.type:
            conditions.append(Transaction.type == filters.type)
        if filters.category:
            conditions.append(Transaction.category == filters.category)

        total = int(
            self.session.execute(
                select(func.count(Transaction.id)).where(*conditions)
            ).scalar_one()
            or 0
        )
        stmt = (
            select(Transaction)
            .where(*conditions)
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        items = list(self.session.scalars(stmt).all())
        return TransactionPageResult(items=items, page=page, limit=limit, total=total)

    def recent(self, limit: int = 5) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())


class MetricsService:
    """Dashboard aggregates, recomputed from the ledger on every call."""

    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id

    @staticmethod
    def _as_of(as_of: Optional[datetime]) -> datetime:
        return to_local(as_of) if as_of else local_now()

    def _window(self, period: Period) -> list:
        return [
            Transaction.user_id == self.user_id,
            Transaction.occurred_at >= period.start,
            Transaction.occurred_at <= period.end,
        ]

    def _totals_by_type(self, period: Period) -> dict[TransactionType, int]:
        stmt = (
            select(
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(*self._window(period))
            .group_by(Transaction.type)
        )
        totals = {transaction_type: 0 for transaction_type in TransactionType}
        for row in self.session.execute(stmt).all():
            totals[row.type] = int(row.total or 0)
        return totals

    def monthly_totals(
        self, as_of: Optional[datetime] = None
    ) -> dict[TransactionType, Decimal]:
        period = month_to_date(self._as_of(as_of))
        return {
            transaction_type: from_cents(cents)
            for transaction_type, cents in self._totals_by_type(period).items()
        }

    def balance(self, as_of: Optional[datetime] = None) -> Decimal:
        totals = self.monthly_totals(as_of)
        return totals[TransactionType.income] - totals[TransactionType.expense]

    def yearly_breakdown(self, as_of: Optional[datetime] = None) -> list[YearlyStat]:
        period = year_to_date(self._as_of(as_of))
        month = extract("month", Transaction.occurred_at).label("month")
        stmt = (
            select(
                month,
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(*self._window(period))
            .group_by(month, Transaction.type)
        )
        sums: dict[tuple[int, TransactionType], int] = {}
        for row in self.session.execute(stmt).all():
            sums[(int(row.month), row.type)] = int(row.total or 0)
        return [
            YearlyStat(
                month=m,
                type=transaction_type,
                total=from_cents(sums.get((m, transaction_type), 0)),
            )
            for m in range(1, 13)
            for transaction_type in TransactionType
        ]

    def category_breakdown(
        self, as_of: Optional[datetime] = None
    ) -> list[CategoryStat]:
        period = month_to_date(self._as_of(as_of))
        stmt = (
            select(
                Transaction.type,
                Transaction.category,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(*self._window(period))
            .group_by(Transaction.type, Transaction.category)
        )
        rows = sorted(
            self.session.execute(stmt).all(),
            key=lambda r: (r.type.value, -int(r.total or 0), r.category),
        )
        return [
            CategoryStat(
                type=row.type, category=row.category, total=from_cents(row.total or 0)
            )
            for row in rows
        ]

    def recent_activity(self, n: int = 5) -> list[Transaction]:
        return TransactionService(self.session, self.user_id).recent(limit=n)

    def report(self, as_of: Optional[datetime] = None) -> DashboardReport:
        as_of = self._as_of(as_of)
        totals = self.monthly_totals(as_of)
        income = totals[TransactionType.income]
        expenses = totals[TransactionType.expense]
        balance = income - expenses
        return DashboardReport(
            as_of=as_of,
            balance=balance,
            monthly_stats=MonthlyStats(
                income=income, expenses=expenses, savings=balance
            ),
            recent_transactions=[
                TransactionOut.from_model(txn) for txn in self.recent_activity(5)
            ],
            category_stats=self.category_breakdown(as_of),
            yearly_stats=self.yearly_breakdown(as_of),
        )
