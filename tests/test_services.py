from datetime import date

from models import Bill
from schemas import BillIn, DailyEntryIn, EntryItemIn
from services import BillService, EntryService


def test_bill_upsert_updates_the_existing_month(session, make_user) -> None:
    user_id = make_user()
    service = BillService(session, user_id)

    first = service.upsert(BillIn(bill_month=date(2024, 3, 9), total_balance_cents=100))
    second = service.upsert(BillIn(bill_month=date(2024, 3, 1), total_balance_cents=250))

    assert first.id == second.id
    assert second.bill_month == date(2024, 3, 1)
    assert second.total_balance_cents == 250
    assert [bill.bill_month for bill in service.list_all()] == [date(2024, 3, 1)]


def test_entries_accumulate_on_one_daily_entry(session, make_user) -> None:
    user_id = make_user()
    service = EntryService(session, user_id)
    day = date(2024, 5, 6)

    service.add_entry(DailyEntryIn(entry_date=day, items=[EntryItemIn(amount_cents=300)]))
    entry = service.add_entry(
        DailyEntryIn(
            entry_date=day,
            items=[EntryItemIn(category="  Fuel ", amount_cents=200, description="top up")],
        )
    )

    assert entry.total_debit_cents == 500
    assert sorted((item.category or "", item.amount_cents) for item in entry.items) == [
        ("", 300),
        ("Fuel", 200),
    ]
    bill = session.get(Bill, entry.bill_id)
    assert bill.bill_month == date(2024, 5, 1)
    assert bill.total_balance_cents == 0


def test_entries_for_other_users_use_their_own_bills(session, make_user) -> None:
    asha = make_user()
    ravi = make_user(email="ravi@example.com", name="Ravi")
    day = date(2024, 5, 6)

    a = EntryService(session, asha).add_entry(
        DailyEntryIn(entry_date=day, items=[EntryItemIn(category="Food", amount_cents=1)])
    )
    r = EntryService(session, ravi).add_entry(
        DailyEntryIn(entry_date=day, items=[EntryItemIn(category="Food", amount_cents=1)])
    )

    assert a.bill_id != r.bill_id
    assert BillService(session, ravi).get_for_month(day).id == r.bill_id
