import logging
from datetime import date
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from config import get_settings, local_today
from database import SessionLocal, session_scope
from insights import generate_spending_insights
from models import User
from periods import Granularity, WeekStart, previous_full_period
from services import NotificationService, ReportService
from store import SqlEntryStore


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# (user_id, email, report, insights)
ReportDispatcher = Callable[[int, str, dict, list], None]

REPORT_SCHEDULES = {
    Granularity.week: {"day_of_week": "mon", "hour": 9, "minute": 0},
    Granularity.month: {"day": 2, "hour": 10, "minute": 0},
    Granularity.quarter: {"month": "1,4,7,10", "day": 2, "hour": 11, "minute": 0},
    Granularity.year: {"month": 1, "day": 10, "hour": 12, "minute": 0},
}


class SchedulerManager:
    def __init__(
        self,
        session_factory: sessionmaker = SessionLocal,
        dispatchers: Optional[list[ReportDispatcher]] = None,
    ) -> None:
        settings = get_settings()
        self.timezone = settings.timezone
        self.scheduler = BackgroundScheduler(timezone=self.timezone)
        self.week_start = WeekStart(settings.week_start)
        self.session_factory = session_factory
        self.dispatchers = list(dispatchers or [])

    def run_report_batch(
        self,
        granularity: Granularity,
        today: Optional[date] = None,
        source: str = "manual",
    ) -> dict[str, int]:
        """Generate and deliver the last full period's report for every user.

        A failure for one user is logged and the batch moves on.
        """
        granularity = Granularity(granularity)
        resolved = previous_full_period(
            granularity, today or local_today(), week_start=self.week_start
        )
        token = resolved.anchor.isoformat()
        logger.info(
            f"report_batch: source={source} type={granularity.report_type} "
            f"start={resolved.current.start} end={resolved.current.end}"
        )

        with session_scope(self.session_factory) as session:
            users = session.execute(select(User.id, User.email).order_by(User.id)).all()

        reports = ReportService(
            SqlEntryStore(self.session_factory), week_start=self.week_start
        )
        sent = 0
        failed = 0
        for user_id, email in users:
            try:
                report = reports.generate_report(granularity, user_id, token)
                insights = generate_spending_insights(report)
                with session_scope(self.session_factory) as session:
                    NotificationService(session).create_report_notification(
                        user_id, report, insights
                    )
                for dispatch in self.dispatchers:
                    dispatch(user_id, email, report, insights)
                sent += 1
            except Exception:
                failed += 1
                logger.exception(
                    f"report_batch_user_failed: type={granularity.report_type} "
                    f"user_id={user_id}"
                )

        logger.info(
            f"report_batch: source={source} type={granularity.report_type} "
            f"users={len(users)} sent={sent} failed={failed}"
        )
        return {"users": len(users), "sent": sent, "failed": failed}

    def _run_job(self, granularity: Granularity, source: str) -> None:
        self.run_report_batch(granularity, source=source)

    def start(self) -> None:
        for granularity, fields in REPORT_SCHEDULES.items():
            trigger = CronTrigger(timezone=self.timezone, **fields)
            self.scheduler.add_job(
                self._run_job,
                trigger,
                args=[granularity, f"{granularity.report_type}_cron"],
                id=f"report_{granularity.report_type}",
                replace_existing=True,
                misfire_grace_time=3600,
            )

        self.scheduler.start()
        logger.info(
            "Scheduler started with weekly, monthly, quarterly and yearly report jobs"
        )

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
