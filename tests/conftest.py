from __future__ import annotations

from datetime import date
from typing import Callable, Optional

import pytest
from sqlalchemy.orm import Session, sessionmaker

from database import Base, create_db_engine
from models import User
from periods import WeekStart
from schemas import BillIn, DailyEntryIn, EntryItemIn
from services import BillService, EntryService, ReportService
from store import SqlEntryStore


@pytest.fixture
def session_factory(tmp_path) -> sessionmaker:
    # File-backed so that concurrent report reads get their own connections.
    engine = create_db_engine(f"sqlite:///{tmp_path / 'reports.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def session(session_factory: sessionmaker) -> Session:
    with session_factory() as session:
        yield session


@pytest.fixture
def make_user(session: Session) -> Callable[..., int]:
    def _make(email: str = "asha@example.com", name: str = "Asha") -> int:
        user = User(email=email, name=name)
        session.add(user)
        session.commit()
        return user.id

    return _make


@pytest.fixture
def spend(session: Session) -> Callable[..., None]:
    """Log ``{category: cents}`` for a user on a day."""

    def _spend(user_id: int, day: date, amounts: dict[Optional[str], int]) -> None:
        EntryService(session, user_id).add_entry(
            DailyEntryIn(
                entry_date=day,
                items=[
                    EntryItemIn(category=category, amount_cents=cents)
                    for category, cents in amounts.items()
                ],
            )
        )

    return _spend


@pytest.fixture
def income(session: Session) -> Callable[[int, date, int], None]:
    def _income(user_id: int, month: date, cents: int) -> None:
        BillService(session, user_id).upsert(
            BillIn(bill_month=month, total_balance_cents=cents)
        )

    return _income


@pytest.fixture
def store(session_factory: sessionmaker) -> SqlEntryStore:
    return SqlEntryStore(session_factory)


@pytest.fixture
def reports(store: SqlEntryStore) -> ReportService:
    return ReportService(store, week_start=WeekStart.sunday, max_workers=4)
