"""Summary emails for finished reports.

The scheduler hands each finished report to the dispatchers it was built
with; ``EmailDispatcher`` renders the report with the Jinja2 templates under
``templates/email`` and delivers it over SMTP, retrying with exponential
backoff.
"""

import logging
import smtplib
import time
from decimal import Decimal
from email.message import EmailMessage
from pathlib import Path
from typing import Callable, Optional

from fastapi.templating import Jinja2Templates

from config import Settings
from periods import Granularity
from store import to_money

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
templates = Jinja2Templates(directory=str(TEMPLATE_DIR))

SENDER_NAMES = {
    "weekly": "Weekly Spending Reports",
    "monthly": "Monthly Financial Reports",
    "quarterly": "Quarterly Financial Reports",
    "yearly": "Yearly Financial Reports",
}


def format_money(value: object) -> str:
    return f"{to_money(value):,.2f}"


def category_share(amount: object, total: object) -> str:
    total = to_money(total)
    if total <= 0:
        return "0.0"
    return f"{(to_money(amount) * 100 / total).quantize(Decimal('0.1'))}"


templates.env.filters["money"] = format_money
templates.env.globals["category_share"] = category_share


def _previous_block(report: dict) -> Optional[dict]:
    for granularity in Granularity:
        if granularity.previous_key in report:
            return report[granularity.previous_key]
    return None


def render_report_email(
    report: dict, insights: list[dict[str, str]], user_name: Optional[str] = None
) -> tuple[str, str, str]:
    """Subject, HTML body and plain-text body for one report."""
    report_type = str(report["type"])
    label = report["period"]["label"]
    subject = f"Your {report_type} financial summary: {label}"
    html = templates.get_template("email/report_summary.html").render(
        report=report,
        insights=insights,
        previous=_previous_block(report),
        user_name=user_name,
        title=f"{report_type.capitalize()} Financial Report",
    )

    lines = [subject, "", f"Total spent: {format_money(report['totalExpense'])}"]
    if "totalIncome" in report:
        lines.append(f"Income: {format_money(report['totalIncome'])}")
        lines.append(
            f"Savings: {format_money(report['savings'])} ({report['savingsRate']}%)"
        )
    for row in report["category"]:
        lines.append(f"  {row['category']}: {format_money(row['amount'])}")
    lines.extend(["", *(item["message"] for item in insights)])
    return subject, html, "\n".join(lines)


Transport = Callable[[EmailMessage], None]


class SmtpTransport:
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        starttls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.starttls = starttls
        self.timeout = timeout

    def __call__(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.starttls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(message)


class EmailDispatcher:
    def __init__(
        self,
        transport: Transport,
        sender: str,
        *,
        retries: int = 3,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.transport = transport
        self.sender = sender
        self.retries = max(retries, 1)
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    def build_message(
        self, email: str, report: dict, insights: list[dict[str, str]]
    ) -> EmailMessage:
        subject, html, text = render_report_email(report, insights)
        message = EmailMessage()
        sender_name = SENDER_NAMES.get(str(report["type"]))
        if sender_name and "<" not in self.sender:
            message["From"] = f"{sender_name} <{self.sender}>"
        else:
            message["From"] = self.sender
        message["To"] = email
        message["Subject"] = subject
        message.set_content(text)
        message.add_alternative(html, subtype="html")
        return message

    def __call__(
        self, user_id: int, email: str, report: dict, insights: list[dict[str, str]]
    ) -> None:
        message = self.build_message(email, report, insights)
        for attempt in range(1, self.retries + 1):
            try:
                self.transport(message)
            except (smtplib.SMTPException, OSError) as exc:
                logger.warning(
                    f"report_email_failed: user_id={user_id} attempt={attempt} error={exc}"
                )
                if attempt == self.retries:
                    raise
                self.sleep(self.backoff_seconds * 2 ** (attempt - 1))
            else:
                logger.info(
                    f"report_email_sent: user_id={user_id} type={report['type']} "
                    f"attempt={attempt}"
                )
                return


def build_dispatchers(settings: Settings) -> list[EmailDispatcher]:
    if not settings.smtp_host:
        logger.info("report_email_disabled: EXPENSES_SMTP_HOST is not set")
        return []
    transport = SmtpTransport(
        settings.smtp_host,
        settings.smtp_port,
        username=settings.smtp_username,
        password=settings.smtp_password,
        starttls=settings.smtp_starttls,
    )
    return [EmailDispatcher(transport, settings.mail_from)]
