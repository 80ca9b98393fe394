from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import ROUND_FLOOR, Decimal
from functools import partial
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings, local_today
from models import Bill, DailyEntry, EntryItem, Notification, User
from periods import (
    MONTH_ABBREVIATIONS,
    MONTH_NAMES,
    Granularity,
    PeriodBoundary,
    ResolvedPeriod,
    WeekStart,
    month_labels,
    period_boundary,
    period_label,
    quarter_of,
    resolve_period,
    shift_anchor,
)
from schemas import BillIn, DailyEntryIn, UserIn
from store import ZERO, EntryStore, to_money

logger = logging.getLogger(__name__)


def total_of(rows: list[dict[str, object]], key: str = "amount") -> Decimal:
    return to_money(sum((Decimal(row[key]) for row in rows), ZERO))


def round_percent(value: Decimal) -> int:
    # halves round towards positive infinity: 2.5 -> 3, -2.5 -> -2
    return int((value + Decimal("0.5")).to_integral_value(rounding=ROUND_FLOOR))


def calculate_savings(income: Decimal, expense: Decimal) -> tuple[Decimal, int]:
    """Savings and savings rate; the rate is 0 when there is no income."""
    savings = to_money(income - expense)
    if income <= 0:
        return savings, 0
    return savings, round_percent(savings * 100 / income)


def percent_change(current: Decimal, previous: Decimal) -> Optional[int]:
    if previous == 0:
        return None
    return round_percent((current - previous) * 100 / previous)


def _period_block(resolved_boundary: PeriodBoundary, granularity: Granularity) -> dict:
    return {
        "label": period_label(resolved_boundary, granularity),
        "start": resolved_boundary.start,
        "end": resolved_boundary.end,
    }


class ReportService:
    """Weekly, monthly, quarterly and yearly spending reports.

    Reads for one report are fanned out on a thread pool and joined before the
    report is composed. The previous-period block is only present when the
    store holds entries for that period.
    """

    def __init__(
        self,
        store: EntryStore,
        *,
        week_start: Optional[WeekStart] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.week_start = week_start or WeekStart(settings.week_start)
        self.max_workers = max_workers or settings.report_workers

    def _gather(self, reads: dict[str, Callable[[], object]]) -> dict[str, object]:
        workers = max(1, min(self.max_workers, len(reads)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {name: pool.submit(read) for name, read in reads.items()}
            try:
                return {name: future.result() for name, future in futures.items()}
            except Exception:
                for future in futures.values():
                    future.cancel()
                raise

    def _collect(
        self,
        user_id: int,
        resolved: ResolvedPeriod,
        reads_for: Callable[[PeriodBoundary, bool], dict[str, Callable[[], object]]],
    ) -> tuple[dict[str, object], Optional[dict[str, object]]]:
        reads = reads_for(resolved.current, False)
        reads["previous_exists"] = partial(
            self.store.period_data_exists, user_id, resolved.previous
        )
        current = self._gather(reads)
        if not current.pop("previous_exists"):
            return current, None
        return current, self._gather(reads_for(resolved.previous, True))

    def _resolve(self, granularity: Granularity, user_id: int, token: str) -> ResolvedPeriod:
        resolved = resolve_period(token, granularity, week_start=self.week_start)
        logger.info(
            f"report_requested: type={granularity.report_type} user_id={user_id} "
            f"start={resolved.current.start} end={resolved.current.end}"
        )
        return resolved

    def _previous_block(
        self,
        granularity: Granularity,
        boundary: PeriodBoundary,
        data: dict[str, object],
        current_expense: Decimal,
    ) -> dict[str, object]:
        expense = total_of(data["category"])
        block: dict[str, object] = {"period": _period_block(boundary, granularity)}
        if "income" in data:
            income = to_money(data["income"])
            savings, rate = calculate_savings(income, expense)
            block.update(totalIncome=income, savings=savings, savingsRate=rate)
        block["totalExpense"] = expense
        block["category"] = data["category"]
        for key in ("daily", "monthly"):
            if key in data:
                block[key] = data[key]
        block["expenseChange"] = percent_change(current_expense, expense)
        return block

    def generate_weekly_report(self, user_id: int, token: str) -> dict[str, object]:
        resolved = self._resolve(Granularity.week, user_id, token)

        def reads(boundary: PeriodBoundary, previous: bool) -> dict:
            batch = {
                "category": partial(self.store.category_totals, user_id, boundary),
                "daily": partial(self.store.daily_totals, user_id, boundary),
            }
            if not previous:
                batch["detailed_daily"] = partial(
                    self.store.detailed_daily, user_id, boundary
                )
            return batch

        current, previous = self._collect(user_id, resolved, reads)
        expense = total_of(current["category"])
        period = _period_block(resolved.current, Granularity.week)
        period["weekStart"] = self.week_start.value

        report: dict[str, object] = {
            "type": "weekly",
            "period": period,
            "totalExpense": expense,
            "category": current["category"],
            "daily": current["daily"],
            "detailed_daily": current["detailed_daily"],
            "hasPreviousData": previous is not None,
        }
        if previous is not None:
            report[Granularity.week.previous_key] = self._previous_block(
                Granularity.week, resolved.previous, previous, expense
            )
        return report

    def generate_monthly_report(self, user_id: int, token: str) -> dict[str, object]:
        resolved = self._resolve(Granularity.month, user_id, token)

        def reads(boundary: PeriodBoundary, previous: bool) -> dict:
            batch = {
                "category": partial(self.store.category_totals, user_id, boundary),
                "daily": partial(self.store.daily_totals, user_id, boundary),
                "income": partial(self.store.income_for_month, user_id, boundary.start),
            }
            if not previous:
                batch["detailed_daily"] = partial(
                    self.store.detailed_daily, user_id, boundary
                )
            return batch

        current, previous = self._collect(user_id, resolved, reads)
        start = resolved.current.start
        period = _period_block(resolved.current, Granularity.month)
        period.update(year=start.year, month=start.month)

        report = self._income_report("monthly", period, current, previous is not None)
        report["daily"] = current["daily"]
        report["detailed_daily"] = current["detailed_daily"]
        if previous is not None:
            report[Granularity.month.previous_key] = self._previous_block(
                Granularity.month, resolved.previous, previous, report["totalExpense"]
            )
        return report

    def generate_quarterly_report(self, user_id: int, token: str) -> dict[str, object]:
        resolved = self._resolve(Granularity.quarter, user_id, token)

        def reads(boundary: PeriodBoundary, previous: bool) -> dict:
            batch = {
                "category": partial(self.store.category_totals, user_id, boundary),
                "daily": partial(self.store.daily_totals, user_id, boundary),
                "income": partial(self.store.income_for_range, user_id, boundary),
            }
            if not previous:
                batch["detailed_daily"] = partial(
                    self.store.detailed_daily, user_id, boundary
                )
            return batch

        current, previous = self._collect(user_id, resolved, reads)
        start = resolved.current.start
        period = _period_block(resolved.current, Granularity.quarter)
        period.update(
            year=start.year,
            quarter=quarter_of(start),
            months=month_labels(resolved.current),
        )

        report = self._income_report("quarterly", period, current, previous is not None)
        report["daily"] = current["daily"]
        report["detailed_daily"] = current["detailed_daily"]
        if previous is not None:
            report[Granularity.quarter.previous_key] = self._previous_block(
                Granularity.quarter, resolved.previous, previous, report["totalExpense"]
            )
        return report

    def generate_yearly_report(self, user_id: int, token: str) -> dict[str, object]:
        resolved = self._resolve(Granularity.year, user_id, token)

        def reads(boundary: PeriodBoundary, previous: bool) -> dict:
            batch = {
                "category": partial(self.store.category_totals, user_id, boundary),
                "monthly": partial(self.store.monthly_totals, user_id, boundary),
                "income": partial(self.store.income_for_range, user_id, boundary),
            }
            if not previous:
                batch.update(
                    quarterly=partial(self.store.quarterly_totals, user_id, boundary),
                    detailed_monthly=partial(
                        self.store.detailed_monthly, user_id, boundary
                    ),
                    detailed_daily=partial(self.store.detailed_daily, user_id, boundary),
                )
            return batch

        current, previous = self._collect(user_id, resolved, reads)
        period = _period_block(resolved.current, Granularity.year)
        period.update(
            year=resolved.current.start.year,
            months=list(MONTH_ABBREVIATIONS),
            quarters=["Q1", "Q2", "Q3", "Q4"],
        )

        report = self._income_report("yearly", period, current, previous is not None)
        report["detailed_daily"] = current["detailed_daily"]
        report["monthly"] = current["monthly"]
        report["quarterly"] = current["quarterly"]
        report["detailed_monthly"] = current["detailed_monthly"]
        if previous is not None:
            report[Granularity.year.previous_key] = self._previous_block(
                Granularity.year, resolved.previous, previous, report["totalExpense"]
            )
        return report

    @staticmethod
    def _income_report(
        report_type: str,
        period: dict[str, object],
        current: dict[str, object],
        has_previous: bool,
    ) -> dict[str, object]:
        income = to_money(current["income"])
        expense = total_of(current["category"])
        savings, rate = calculate_savings(income, expense)
        return {
            "type": report_type,
            "period": period,
            "totalIncome": income,
            "totalExpense": expense,
            "savings": savings,
            "savingsRate": rate,
            "category": current["category"],
            "hasPreviousData": has_previous,
        }

    def generate_report(
        self, granularity: Granularity, user_id: int, token: str
    ) -> dict[str, object]:
        generators = {
            Granularity.week: self.generate_weekly_report,
            Granularity.month: self.generate_monthly_report,
            Granularity.quarter: self.generate_quarterly_report,
            Granularity.year: self.generate_yearly_report,
        }
        return generators[Granularity(granularity)](user_id, token)

    def available_weeks(
        self, today: Optional[date] = None, count: int = 12
    ) -> list[dict[str, object]]:
        today = today or local_today()
        weeks = []
        for offset in range(count):
            boundary = period_boundary(
                shift_anchor(today, Granularity.week, -offset),
                Granularity.week,
                self.week_start,
            )
            weeks.append(
                {
                    "label": period_label(boundary, Granularity.week),
                    "value": boundary.start.isoformat(),
                    "startDate": boundary.start.isoformat(),
                    "endDate": boundary.end.isoformat(),
                }
            )
        return weeks

    def available_months(self, user_id: int) -> list[dict[str, object]]:
        months = []
        for row in reversed(self.store.entry_months(user_id)):
            year, month = int(row["year"]), int(row["month"])
            months.append(
                {
                    "year": year,
                    "month": month,
                    "label": f"{MONTH_NAMES[month - 1]} {year}",
                    "value": f"{year:04d}-{month:02d}-01",
                    "entryCount": row["entry_count"],
                    "totalAmount": row["total"],
                }
            )
        return months

    def available_quarters(self, user_id: int) -> list[dict[str, object]]:
        grouped: dict[tuple[int, int], dict[str, object]] = {}
        for row in self.store.entry_months(user_id):
            year = int(row["year"])
            quarter = (int(row["month"]) - 1) // 3 + 1
            bucket = grouped.setdefault(
                (year, quarter), {"entryCount": 0, "totalAmount": ZERO}
            )
            bucket["entryCount"] += int(row["entry_count"])
            bucket["totalAmount"] = to_money(bucket["totalAmount"] + row["total"])
        return [
            {
                "year": year,
                "quarter": quarter,
                "label": f"Q{quarter} {year}",
                "value": f"{year:04d}-Q{quarter}",
                **bucket,
            }
            for (year, quarter), bucket in sorted(grouped.items(), reverse=True)
        ]

    def available_years(self, user_id: int) -> list[dict[str, object]]:
        grouped: dict[int, dict[str, object]] = {}
        for row in self.store.entry_months(user_id):
            bucket = grouped.setdefault(
                int(row["year"]), {"entryCount": 0, "totalAmount": ZERO}
            )
            bucket["entryCount"] += int(row["entry_count"])
            bucket["totalAmount"] = to_money(bucket["totalAmount"] + row["total"])
        return [
            {"year": year, "label": str(year), "value": f"{year:04d}", **bucket}
            for year, bucket in sorted(grouped.items(), reverse=True)
        ]


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(
            select(User).where(User.email == email.strip().lower())
        )

    def register(self, data: UserIn) -> User:
        if self.get_by_email(data.email) is not None:
            raise ValueError("Email already registered")
        user = User(email=data.email.strip().lower(), name=data.name.strip())
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user


class BillService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def get_for_month(self, bill_month: date) -> Optional[Bill]:
        return self.session.scalar(
            select(Bill).where(
                Bill.user_id == self.user_id,
                Bill.bill_month == bill_month.replace(day=1),
            )
        )

    def list_all(self) -> list[Bill]:
        stmt = (
            select(Bill)
            .where(Bill.user_id == self.user_id)
            .order_by(Bill.bill_month.desc())
        )
        return list(self.session.scalars(stmt))

    def upsert(self, data: BillIn) -> Bill:
        bill = self.get_for_month(data.bill_month)
        if bill is None:
            bill = Bill(
                user_id=self.user_id,
                bill_month=data.bill_month.replace(day=1),
                total_balance_cents=data.total_balance_cents,
            )
            self.session.add(bill)
        else:
            bill.total_balance_cents = data.total_balance_cents
        self.session.commit()
        self.session.refresh(bill)
        return bill


class EntryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def add_entry(self, data: DailyEntryIn) -> DailyEntry:
        bills = BillService(self.session, self.user_id)
        bill = bills.get_for_month(data.entry_date)
        if bill is None:
            bill = Bill(
                user_id=self.user_id,
                bill_month=data.entry_date.replace(day=1),
                total_balance_cents=0,
            )
            self.session.add(bill)
            self.session.flush()

        entry = self.session.scalar(
            select(DailyEntry).where(
                DailyEntry.bill_id == bill.id,
                DailyEntry.entry_date == data.entry_date,
            )
        )
        if entry is None:
            entry = DailyEntry(
                bill_id=bill.id, entry_date=data.entry_date, total_debit_cents=0
            )
            self.session.add(entry)
            self.session.flush()

        for item in data.items:
            category = item.category.strip() if item.category else None
            self.session.add(
                EntryItem(
                    daily_entry_id=entry.id,
                    category=category or None,
                    amount_cents=item.amount_cents,
                    description=item.description,
                    proof_url=item.proof_url,
                )
            )
            entry.total_debit_cents += item.amount_cents

        self.session.commit()
        self.session.refresh(entry)
        return entry


REPORT_ROUTES = {
    "weekly": "/reports/custom-report",
    "monthly": "/reports/monthly-report",
    "quarterly": "/reports/quarterly-report",
    "yearly": "/reports/yearly-report",
}


def _money_out(value: object) -> Optional[float]:
    if value is None:
        return None
    return float(to_money(value))


class NotificationService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def create_report_notification(
        self,
        user_id: int,
        report: dict[str, object],
        insights: Optional[list[dict[str, str]]] = None,
    ) -> Notification:
        report_type = str(report["type"])
        period = report["period"]
        label = period["label"]
        data = {
            "reportType": report_type,
            "period": label,
            "periodStart": period["start"].isoformat(),
            "periodEnd": period["end"].isoformat(),
            "totalExpense": _money_out(report["totalExpense"]),
            "savings": _money_out(report.get("savings")),
            "savingsRate": report.get("savingsRate"),
            "category": [
                {"category": row["category"], "amount": _money_out(row["amount"])}
                for row in report["category"][:5]
            ],
            "insights": list(insights or []),
            "routeUrl": REPORT_ROUTES.get(report_type, "/reports"),
        }
        notification = Notification(
            user_id=user_id,
            type=f"{report_type}_report_ready",
            title=f"{report_type.capitalize()} report ready",
            message=f"Your {report_type} financial summary for {label} is available.",
            data=data,
            is_read=False,
        )
        self.session.add(notification)
        self.session.commit()
        self.session.refresh(notification)
        logger.info(
            f"notification_created: user_id={user_id} type={notification.type}"
        )
        return notification

    def list_for_user(
        self, user_id: int, *, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc())
        return list(self.session.scalars(stmt.limit(limit)))

    def mark_read(self, user_id: int, notification_id: int) -> Notification:
        notification = self.session.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            raise ValueError("Notification not found")
        notification.is_read = True
        self.session.commit()
        return notification
