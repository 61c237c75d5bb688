"""SMTP mailer for occurrence notices and daily summaries.

Bodies are plain text; richer templates belong to whoever renders mail for
the web application.
"""

from __future__ import annotations

import asyncio
import smtplib
from email.mime.text import MIMEText

import structlog

from stacknotify.config import MailConfig
from stacknotify.models import NoticeModel, SummaryModel

logger = structlog.get_logger(__name__)


def render_notice(notice: NoticeModel, base_url: str) -> tuple[str, str]:
    """Return (subject, body) for an occurrence notice."""
    if notice.is_regression:
        kind = "Regression"
    elif notice.is_new:
        kind = "New error"
    elif notice.is_critical:
        kind = "Critical error"
    else:
        kind = "Error"
    title = notice.title or notice.message or notice.type or "Unknown error"
    subject = f"[{notice.project_name}] {kind}: {title}"[:200]

    lines = [
        f"{kind} in project {notice.project_name}",
        "",
        f"Title: {title}",
    ]
    if notice.type:
        lines.append(f"Type: {notice.type}")
    if notice.url:
        lines.append(f"URL: {notice.url}")
    if notice.code:
        lines.append(f"Code: {notice.code}")
    if notice.occurrence_date:
        lines.append(f"Occurred: {notice.occurrence_date.isoformat()}")
    lines.append(f"Total occurrences: {notice.total_occurrences}")
    lines.append("")
    lines.append(f"{base_url.rstrip('/')}/error/{notice.error_id}")
    return subject, "\n".join(lines)


def render_summary(summary: SummaryModel, base_url: str) -> tuple[str, str]:
    """Return (subject, body) for a daily summary."""
    subject = f"[{summary.project_name}] Summary for {summary.start_date:%Y-%m-%d}"
    lines = [
        f"Summary for {summary.project_name}",
        f"{summary.start_date:%Y-%m-%d %H:%M} to {summary.end_date:%Y-%m-%d %H:%M}",
        "",
    ]
    if not summary.has_submitted_errors:
        lines.append("This project has not submitted any errors yet.")
    else:
        lines.append(f"Total: {summary.total} ({summary.per_hour_average:.1f}/hour)")
        lines.append(f"Unique: {summary.unique_total}")
        lines.append(f"New: {summary.new_total}")
        if summary.new:
            lines.append("")
            lines.append("Newest:")
            lines.extend(f"  - {stack.title}" for stack in summary.new)
        if summary.most_frequent:
            lines.append("")
            lines.append("Most frequent:")
            for entry in summary.most_frequent:
                label = entry.path if entry.is_404 else entry.title
                lines.append(f"  - {label} ({entry.total})")
    if summary.is_free_plan:
        lines.append("")
        lines.append("Upgrade your plan to get more out of your error reports.")
    lines.append("")
    lines.append(f"{base_url.rstrip('/')}/project/{summary.project_id}")
    return subject, "\n".join(lines)


class SmtpMailer:
    """Sends mail over SMTP from a worker thread (smtplib is blocking)."""

    def __init__(self, config: MailConfig) -> None:
        self._config = config

    async def send_notice(self, email_address: str, notice: NoticeModel) -> None:
        subject, body = render_notice(notice, self._config.base_url)
        await self._send(email_address, subject, body)

    async def send_summary_notification(self, email_address: str, summary: SummaryModel) -> None:
        subject, body = render_summary(summary, self._config.base_url)
        await self._send(email_address, subject, body)

    async def _send(self, to: str, subject: str, body: str) -> None:
        config = self._config
        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = f"{config.sender_name} <{config.sender_email}>"
        msg["To"] = to

        def _send_smtp() -> None:
            with smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=10) as server:
                if config.use_tls:
                    server.starttls()
                if config.smtp_user and config.smtp_password:
                    server.login(config.smtp_user, config.smtp_password)
                server.sendmail(config.sender_email, to, msg.as_string())

        await asyncio.to_thread(_send_smtp)
        logger.info("Email sent", to=to, subject=subject)
