"""Read-only aggregation queries over bills, daily entries and entry items.

Every operation is scoped to one user and one inclusive date boundary and is
joined item -> daily entry -> bill. Amounts are stored as integer cents and
leave this module as ``Decimal`` values with two places.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Optional, Protocol, TypeVar

from sqlalchemy import Select, extract, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from models import Bill, DailyEntry, EntryItem
from periods import PeriodBoundary

logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"
CENT = Decimal("0.01")
ZERO = Decimal("0.00")

T = TypeVar("T")


class AggregationFailure(RuntimeError):
    def __init__(self, operation: str, detail: str = "") -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Aggregation '{operation}' failed")


def to_money(value: object) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def cents_to_money(cents: Optional[int]) -> Decimal:
    return to_money(Decimal(int(cents or 0)) / 100)


class EntryStore(Protocol):
    def category_totals(
        self, user_id: int, boundary: PeriodBoundary
    ) -> list[dict[str, object]]: ...

    def daily_totals(
        self, user_id: int, boundary: PeriodBoundary
    ) -> list[dict[str, object]]: ...

    def detailed_daily(
        self, user_id: int, boundary: PeriodBoundary
    ) -> list[dict[str, object]]: ...

    def monthly_totals(
        self, user_id: int, boundary: PeriodBoundary
    ) -> list[dict[str, object]]: ...

    def detailed_monthly(
        self, user_id: int, boundary: PeriodBoundary
    ) -> list[dict[str, object]]: ...

    def quarterly_totals(
        self, user_id: int, boundary: PeriodBoundary
    ) -> list[dict[str, object]]: ...

    def income_for_month(self, user_id: int, bill_month: date) -> Decimal: ...

    def income_for_range(self, user_id: int, boundary: PeriodBoundary) -> Decimal: ...

    def period_data_exists(self, user_id: int, boundary: PeriodBoundary) -> bool: ...

    def entry_months(self, user_id: int) -> list[dict[str, object]]: ...


def _category_column():
    trimmed = func.trim(EntryItem.category)
    return func.coalesce(func.nullif(trimmed, ""), UNCATEGORIZED).label(
        "category_label"
    )


def _month_key(year: int, month: int) -> str:
    return f"{int(year):04d}-{int(month):02d}"


class SqlEntryStore:
    """Aggregation reads against the SQLAlchemy entry store.

    Each read opens its own short-lived session from ``session_factory`` so
    that reads for one report can run concurrently.
    """

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def _run(self, operation: str, query: Callable[[Session], T]) -> T:
        try:
            with self._session_factory() as session:
                return query(session)
        except SQLAlchemyError as exc:
            logger.exception(f"aggregation_failed: operation={operation}")
            raise AggregationFailure(operation, str(exc)) from exc

    @staticmethod
    def _scoped(stmt: Select, user_id: int, boundary: PeriodBoundary) -> Select:
        return (
            stmt.select_from(EntryItem)
            .join(DailyEntry, EntryItem.daily_entry_id == DailyEntry.id)
            .join(Bill, Bill.id == DailyEntry.bill_id)
            .where(
                Bill.user_id == user_id,
                DailyEntry.entry_date.between(boundary.start, boundary.end),
            )
        )

    def category_totals(
        self, user_id: int, boundary: PeriodBoundary
    ) -> list[dict[str, object]]:
        total = func.sum(EntryItem.amount_cents)
        stmt = self._scoped(
            select(_category_column(), total.label("total")), user_id, boundary
        )
        stmt = stmt.group_by("category_label").order_by(
            total.desc(), "category_label"
        )

        def query(session: Session) -> list[dict[str, object]]:
            rows = session.execute(stmt).all()
            return [
                {"category": row.category_label, "amount": cents_to_money(row.total)}
                for row in rows
            ]

        return self._run("category_totals", query)

    def daily_totals(
        self, user_id: int, boundary: PeriodBoundary
    ) -> list[dict[str, object]]:
        stmt = self._scoped(
            select(
                DailyEntry.entry_date.label("day"),
                func.sum(EntryItem.amount_cents).label("total"),
            ),
            user_id,
            boundary,
        )
        stmt = stmt.group_by(DailyEntry.entry_date).order_by(DailyEntry.entry_date)

        def query(session: Session) -> list[dict[str, object]]:
            return [
                {"date": row.day, "total": cents_to_money(row.total)}
                for row in session.execute(stmt).all()
            ]

        return self._run("daily_totals", query)

    def detailed_daily(
        self, user_id: int, boundary: PeriodBoundary
    ) -> list[dict[str, object]]:
        stmt = self._scoped(
            select(
                DailyEntry.entry_date.label("day"),
                _category_column(),
                func.sum(EntryItem.amount_cents).label("total"),
            ),
            user_id,
            boundary,
        )
        stmt = stmt.group_by(DailyEntry.entry_date, "category_label").order_by(
            DailyEntry.entry_date, "category_label"
        )

        def query(session: Session) -> list[dict[str, object]]:
            return [
                {
                    "date": row.day,
                    "category": row.category_label,
                    "amount": cents_to_money(row.total),
                }
                for row in session.execute(stmt).all()
            ]

        return self._run("detailed_daily", query)

    def _month_rows(
        self,
        operation: str,
        user_id: int,
        boundary: PeriodBoundary,
        *,
        by_category: bool = False,
    ) -> list:
        columns = [
            extract("year", DailyEntry.entry_date).label("yr"),
            extract("month", DailyEntry.entry_date).label("mon"),
        ]
        group = ["yr", "mon"]
        if by_category:
            columns.append(_category_column())
            group.append("category_label")
        columns.append(func.sum(EntryItem.amount_cents).label("total"))
        stmt = self._scoped(select(*columns), user_id, boundary)
        stmt = stmt.group_by(*group).order_by(*group)
        return self._run(operation, lambda session: session.execute(stmt).all())

    def monthly_totals(
        self, user_id: int, boundary: PeriodBoundary
    ) -> list[dict[str, object]]:
        rows = self._month_rows("monthly_totals", user_id, boundary)
        return [
            {"month": _month_key(row.yr, row.mon), "total": cents_to_money(row.total)}
            for row in rows
        ]

    def detailed_monthly(
        self, user_id: int, boundary: PeriodBoundary
    ) -> list[dict[str, object]]:
        rows = self._month_rows(
            "detailed_monthly", user_id, boundary, by_category=True
        )
        return [
            {
                "month": _month_key(row.yr, row.mon),
                "category": row.category_label,
                "amount": cents_to_money(row.total),
            }
            for row in rows
        ]

    def quarterly_totals(
        self, user_id: int, boundary: PeriodBoundary
    ) -> list[dict[str, object]]:
        # Quarter extraction is not portable, so months are folded here.
        rows = self._month_rows("quarterly_totals", user_id, boundary)
        quarters: dict[tuple[int, int], int] = {}
        for row in rows:
            key = (int(row.yr), (int(row.mon) - 1) // 3 + 1)
            quarters[key] = quarters.get(key, 0) + int(row.total or 0)
        return [
            {"quarter": f"Q{quarter} {year}", "total": cents_to_money(cents)}
            for (year, quarter), cents in sorted(quarters.items())
        ]

    def income_for_month(self, user_id: int, bill_month: date) -> Decimal:
        stmt = select(Bill.total_balance_cents).where(
            Bill.user_id == user_id, Bill.bill_month == bill_month.replace(day=1)
        )

        def query(session: Session) -> Decimal:
            return cents_to_money(session.execute(stmt.limit(1)).scalar())

        return self._run("income_for_month", query)

    def income_for_range(self, user_id: int, boundary: PeriodBoundary) -> Decimal:
        stmt = select(func.coalesce(func.sum(Bill.total_balance_cents), 0)).where(
            Bill.user_id == user_id,
            Bill.bill_month.between(boundary.start.replace(day=1), boundary.end),
        )
        return self._run(
            "income_for_range",
            lambda session: cents_to_money(session.execute(stmt).scalar()),
        )

    def period_data_exists(self, user_id: int, boundary: PeriodBoundary) -> bool:
        stmt = self._scoped(select(EntryItem.id), user_id, boundary).limit(1)
        return self._run(
            "period_data_exists",
            lambda session: session.execute(stmt).first() is not None,
        )

    def entry_months(self, user_id: int) -> list[dict[str, object]]:
        stmt = (
            select(
                extract("year", DailyEntry.entry_date).label("yr"),
                extract("month", DailyEntry.entry_date).label("mon"),
                func.count(EntryItem.id).label("item_count"),
                func.sum(EntryItem.amount_cents).label("total"),
            )
            .select_from(EntryItem)
            .join(DailyEntry, EntryItem.daily_entry_id == DailyEntry.id)
            .join(Bill, Bill.id == DailyEntry.bill_id)
            .where(Bill.user_id == user_id)
            .group_by("yr", "mon")
            .order_by("yr", "mon")
        )

        def query(session: Session) -> list[dict[str, object]]:
            return [
                {
                    "year": int(row.yr),
                    "month": int(row.mon),
                    "entry_count": int(row.item_count),
                    "total": cents_to_money(row.total),
                }
                for row in session.execute(stmt).all()
            ]

        return self._run("entry_months", query)
