from datetime import date

from periods import Granularity
from scheduler import SchedulerManager
from services import NotificationService, ReportService
from store import AggregationFailure


def test_report_batch_continues_past_a_failing_user(
    monkeypatch, session, session_factory, make_user, spend, income
) -> None:
    asha = make_user()
    ravi = make_user(email="ravi@example.com", name="Ravi")
    income(asha, date(2024, 3, 1), 5_000_000)
    spend(asha, date(2024, 3, 4), {"Food": 700_000, "Transport": 500_000})
    spend(ravi, date(2024, 3, 4), {"Food": 100})

    original = ReportService.generate_report

    def flaky(self, granularity, user_id, token):
        if user_id == ravi:
            raise AggregationFailure("category_totals", "database is locked")
        return original(self, granularity, user_id, token)

    monkeypatch.setattr(ReportService, "generate_report", flaky)
    delivered = []
    manager = SchedulerManager(
        session_factory=session_factory,
        dispatchers=[lambda *args: delivered.append(args)],
    )

    result = manager.run_report_batch(Granularity.month, today=date(2024, 4, 2))

    assert result == {"users": 2, "sent": 1, "failed": 1}
    assert len(delivered) == 1
    user_id, email, report, insights = delivered[0]
    assert (user_id, email) == (asha, "asha@example.com")
    assert report["period"]["label"] == "March 2024"
    assert report["savingsRate"] == 76
    assert insights[-1]["kind"] == "tip"

    notifications = NotificationService(session).list_for_user(asha)
    assert len(notifications) == 1
    assert notifications[0].type == "monthly_report_ready"
    assert notifications[0].data["period"] == "March 2024"
    assert notifications[0].data["totalExpense"] == 12000.0
    assert NotificationService(session).list_for_user(ravi) == []


def test_weekly_batch_reports_the_last_full_week(session_factory, make_user, spend) -> None:
    user_id = make_user()
    spend(user_id, date(2024, 3, 12), {"Food": 2_500})
    delivered = []
    manager = SchedulerManager(
        session_factory=session_factory,
        dispatchers=[lambda *args: delivered.append(args)],
    )

    result = manager.run_report_batch("week", today=date(2024, 3, 18), source="test")

    assert result["sent"] == 1
    report = delivered[0][2]
    assert report["period"]["start"] == date(2024, 3, 10)
    assert report["totalExpense"] == 25


def test_start_registers_one_job_per_report_type(session_factory) -> None:
    manager = SchedulerManager(session_factory=session_factory)
    manager.start()
    try:
        jobs = {job.id: job for job in manager.scheduler.get_jobs()}
        assert set(jobs) == {
            "report_weekly",
            "report_monthly",
            "report_quarterly",
            "report_yearly",
        }
        weekly = jobs["report_weekly"].next_run_time
        assert (weekly.weekday(), weekly.hour, weekly.minute) == (0, 9, 0)
        monthly = jobs["report_monthly"].next_run_time
        assert (monthly.day, monthly.hour) == (2, 10)
        yearly = jobs["report_yearly"].next_run_time
        assert (yearly.month, yearly.day, yearly.hour) == (1, 10, 12)
    finally:
        manager.stop()
    assert not manager.scheduler.running
