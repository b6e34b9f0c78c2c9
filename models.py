import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base
from periods import local_now


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


def new_id() -> str:
    return uuid.uuid4().hex


# Takes no arguments so SQLAlchemy does not pass its execution context.
def _stamp() -> datetime:
    return local_now()


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=_stamp, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=_stamp, onupdate=_stamp, nullable=False
    )


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(30), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    icon: Mapped[str] = mapped_column(String(8), nullable=False, default="📁")
    color: Mapped[str] = mapped_column(String(7), nullable=False, default="#6B7280")

    # Persisted categories are always user-defined.
    is_default = False

    __table_args__ = (
        UniqueConstraint("user_id", "name", "type", name="uq_category_user_name_type"),
        Index("ix_categories_user_type_name", "user_id", "type", "name"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    amount_cents: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        Index("ix_transactions_user_occurred", "user_id", "occurred_at"),
        Index("ix_transactions_user_type", "user_id", "type"),
        Index("ix_transactions_user_category", "user_id", "category", "type"),
        CheckConstraint("amount_cents >= 0", name="ck_transactions_amount_positive"),
    )
