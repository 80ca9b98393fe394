from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)

    bills: Mapped[list["Bill"]] = relationship("Bill", back_populates="user")


class Bill(Base, TimestampMixin):
    """Declared income for one user and one calendar month."""

    __tablename__ = "work_bills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    bill_month: Mapped[date] = mapped_column(Date, nullable=False)
    total_balance_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )

    user: Mapped["User"] = relationship("User", back_populates="bills")
    entries: Mapped[list["DailyEntry"]] = relationship(
        "DailyEntry", back_populates="bill", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "bill_month", name="uq_bill_user_month"),
        CheckConstraint(
            "total_balance_cents >= 0", name="ck_bill_total_balance_positive"
        ),
    )


class DailyEntry(Base, TimestampMixin):
    __tablename__ = "daily_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bill_id: Mapped[int] = mapped_column(ForeignKey("work_bills.id"), nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_debit_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    bill: Mapped["Bill"] = relationship("Bill", back_populates="entries")
    items: Mapped[list["EntryItem"]] = relationship(
        "EntryItem", back_populates="daily_entry", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("bill_id", "entry_date", name="uq_daily_entry_bill_date"),
        Index("ix_daily_entries_date", "entry_date"),
    )


class EntryItem(Base, TimestampMixin):
    __tablename__ = "entry_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    daily_entry_id: Mapped[int] = mapped_column(
        ForeignKey("daily_entries.id"), nullable=False
    )
    category: Mapped[Optional[str]] = mapped_column(String(100))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    proof_url: Mapped[Optional[str]] = mapped_column(String(500))

    daily_entry: Mapped["DailyEntry"] = relationship(
        "DailyEntry", back_populates="items"
    )

    __table_args__ = (
        Index("ix_entry_items_daily_entry", "daily_entry_id"),
        CheckConstraint("amount_cents >= 0", name="ck_entry_items_amount_positive"),
    )


class Notification(Base, TimestampMixin):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    data: Mapped[Optional[dict]] = mapped_column(JSON)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read", "created_at"),
    )
