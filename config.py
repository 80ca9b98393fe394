import os
from datetime import date, datetime
from functools import lru_cache
from pathlib import Path
from zoneinfo import ZoneInfo


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        token_secret: str,
        token_max_age_hours: int,
        week_start: str,
        report_workers: int,
        debug: bool,
        scheduler_enabled: bool,
        smtp_host: str = "",
        smtp_port: int = 587,
        smtp_username: str = "",
        smtp_password: str = "",
        smtp_starttls: bool = True,
        mail_from: str = "",
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.token_secret = token_secret
        self.token_max_age_hours = token_max_age_hours
        self.week_start = week_start
        self.report_workers = report_workers
        self.debug = debug
        self.scheduler_enabled = scheduler_enabled
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_username = smtp_username
        self.smtp_password = smtp_password
        self.smtp_starttls = smtp_starttls
        self.mail_from = mail_from


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("EXPENSES_TIMEZONE", "Europe/Berlin")
    token_secret = os.getenv(
        "EXPENSES_TOKEN_SECRET",
        "5d0c3b1f8e2a4c7d9b6e0f1a2c3d4e5f60718293a4b5c6d7e8f9012345678abc",
    )
    token_max_age_hours = int(os.getenv("EXPENSES_TOKEN_MAX_AGE_HOURS", "24"))
    week_start = os.getenv("EXPENSES_WEEK_START", "sunday").strip().lower()
    report_workers = int(os.getenv("EXPENSES_REPORT_WORKERS", "8"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        token_secret=token_secret,
        token_max_age_hours=token_max_age_hours,
        week_start=week_start,
        report_workers=max(report_workers, 1),
        debug=_env_flag("EXPENSES_DEBUG", "0"),
        scheduler_enabled=_env_flag("EXPENSES_SCHEDULER_ENABLED", "1"),
        smtp_host=os.getenv("EXPENSES_SMTP_HOST", "").strip(),
        smtp_port=int(os.getenv("EXPENSES_SMTP_PORT", "587")),
        smtp_username=os.getenv("EXPENSES_SMTP_USERNAME", ""),
        smtp_password=os.getenv("EXPENSES_SMTP_PASSWORD", ""),
        smtp_starttls=_env_flag("EXPENSES_SMTP_STARTTLS", "1"),
        mail_from=os.getenv("EXPENSES_MAIL_FROM", "Expense Reports <reports@localhost>"),
    )


def local_today() -> date:
    """Today's date in the configured timezone rather than the host's."""
    return datetime.now(ZoneInfo(get_settings().timezone)).date()
