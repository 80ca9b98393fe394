"""Plain-language spending insights derived from a finished report."""

from datetime import date
from decimal import Decimal
from typing import Optional

NEED_CATEGORIES = {"Rent", "Groceries", "Bills", "Transport"}
HIGH_SPEND_DAY = Decimal("3000")
SAVINGS_PRAISE = Decimal("3000")

TIPS = [
    "Avoid impulse buys: wait 24 hours before making a purchase.",
    "Try a no-spend weekend to reset your budget.",
    "Track subscriptions, they quietly drain your wallet.",
    "Small daily expenses add up fast, stay mindful.",
    "Set a weekly category limit to control overspending.",
]

_PERIOD_NOUNS = {
    "weekly": "week",
    "monthly": "month",
    "quarterly": "quarter",
    "yearly": "year",
}
_PREVIOUS_KEYS = ("previousWeek", "previousMonth", "previousQuarter", "previousYear")


def _fmt(amount: Decimal) -> str:
    return f"{amount:,.2f}"


def _days_in(start: date, end: date) -> int:
    return (end - start).days + 1


def generate_spending_insights(
    report: dict[str, object],
    *,
    high_spend_day: Decimal = HIGH_SPEND_DAY,
    savings_praise: Decimal = SAVINGS_PRAISE,
) -> list[dict[str, str]]:
    insights: list[dict[str, str]] = []
    noun = _PERIOD_NOUNS.get(str(report.get("type")), "period")
    period = report["period"]
    daily = list(report.get("daily") or [])
    categories = list(report.get("category") or [])
    total = Decimal(report.get("totalExpense") or 0)

    if "daily" in report:
        spending_days = sum(1 for row in daily if row["total"] > 0)
        no_spend_days = _days_in(period["start"], period["end"]) - spending_days
        if no_spend_days >= 3:
            insights.append(
                {
                    "kind": "no_spend_days",
                    "message": f"You had {no_spend_days} no-spend days this {noun}.",
                }
            )

        high_days = [row for row in daily if row["total"] >= high_spend_day]
        if high_days:
            plural = "s" if len(high_days) > 1 else ""
            insights.append(
                {
                    "kind": "high_spend_days",
                    "message": (
                        f"{len(high_days)} day{plural} exceeded "
                        f"{_fmt(high_spend_day)} in spending."
                    ),
                }
            )

        top_day: Optional[dict] = None
        for row in daily:
            if row["total"] > 0 and (top_day is None or row["total"] > top_day["total"]):
                top_day = row
        if top_day is not None:
            insights.append(
                {
                    "kind": "top_day",
                    "message": (
                        f"Your most expensive day was {top_day['date'].isoformat()}, "
                        f"spending {_fmt(top_day['total'])}."
                    ),
                }
            )

    if categories:
        top = max(categories, key=lambda row: row["amount"])
        insights.append(
            {
                "kind": "top_category",
                "message": f"Top spending category: {top['category']} ({_fmt(top['amount'])}).",
            }
        )

        wants = sum(
            (row["amount"] for row in categories if row["category"] not in NEED_CATEGORIES),
            Decimal("0"),
        )
        if wants > 0 and total > 0:
            share = (wants * 100 / total).quantize(Decimal("0.1"))
            insights.append(
                {
                    "kind": "wants_share",
                    "message": (
                        f"Spending on wants was {share}% of your total. "
                        "Aim for below 30% to grow savings."
                    ),
                }
            )

    previous = next((report[key] for key in _PREVIOUS_KEYS if key in report), None)
    if previous is not None and previous.get("expenseChange") is not None:
        change = previous["expenseChange"]
        if abs(change) > 10:
            direction = "increased" if change > 0 else "decreased"
            diff = abs(total - Decimal(previous["totalExpense"]))
            insights.append(
                {
                    "kind": "period_change",
                    "message": (
                        f"Spending {direction} by {_fmt(diff)} ({abs(change)}%) "
                        f"compared to last {noun}."
                    ),
                }
            )

    savings = report.get("savings")
    if savings is not None and Decimal(savings) >= savings_praise:
        insights.append(
            {
                "kind": "savings",
                "message": f"You saved {_fmt(Decimal(savings))} this {noun}, keep it up!",
            }
        )

    # Tip rotates with the period so repeated runs stay identical.
    tip = TIPS[period["start"].toordinal() % len(TIPS)]
    insights.append({"kind": "tip", "message": tip})
    return insights
