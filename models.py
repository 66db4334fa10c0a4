from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


def _new_id() -> str:
    return uuid4().hex


class OwnedMixin:
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )


class Category(Base, OwnedMixin):
    __tablename__ = "category"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )


class Source(Base, OwnedMixin):
    __tablename__ = "source"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="source"
    )


class Event(Base, OwnedMixin):
    __tablename__ = "event"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    budget: Mapped[Optional[float]] = mapped_column(Float)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="event"
    )


class Transaction(Base, OwnedMixin):
    __tablename__ = "transactions"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    category_id: Mapped[str] = mapped_column(
        "category", ForeignKey("category.id"), nullable=False
    )
    source_id: Mapped[str] = mapped_column(
        "source", ForeignKey("source.id"), nullable=False
    )
    event_id: Mapped[Optional[str]] = mapped_column(
        "event", ForeignKey("event.id", ondelete="SET NULL")
    )

    category: Mapped[Category] = relationship(
        "Category", back_populates="transactions"
    )
    source: Mapped[Source] = relationship("Source", back_populates="transactions")
    event: Mapped[Optional[Event]] = relationship(
        "Event", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_user_created", "user_id", "created_at"),
    )


class Budget(Base, OwnedMixin):
    __tablename__ = "budget"
    __table_args__ = (
        CheckConstraint('"start" <= "end"', name="ck_budget_start_before_end"),
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end: Mapped[datetime] = mapped_column(DateTime, nullable=False)


MODELS_BY_TABLE: dict[str, type[Base]] = {
    "budget": Budget,
    "category": Category,
    "event": Event,
    "source": Source,
    "transactions": Transaction,
}
