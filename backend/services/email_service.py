from __future__ import annotations

import asyncio
import html
import logging
import smtplib
from email.message import EmailMessage

from config import settings
from services.reminder_scheduler import ExerciseReminder, MealReminder

logger = logging.getLogger(__name__)

DEFAULT_SENDER = "no-reply@gymnet.app"
SIGNATURE = "GymNet"


def _smtp_sender() -> str:
    return settings.SMTP_FROM or settings.SMTP_USER or DEFAULT_SENDER


def build_message(to: str, subject: str, html_body: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = _smtp_sender()
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content("Vui lòng xem email này ở định dạng HTML.")
    msg.add_alternative(html_body, subtype="html")
    return msg


def _deliver(msg: EmailMessage) -> None:
    if not settings.smtp_configured:
        raise RuntimeError("SMTP configuration is missing. Set SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS.")
    host = str(settings.SMTP_HOST)
    port = int(settings.SMTP_PORT or 0)
    timeout = settings.SMTP_TIMEOUT_SECONDS
    if settings.SMTP_SECURE:
        with smtplib.SMTP_SSL(host, port, timeout=timeout) as server:
            server.login(str(settings.SMTP_USER), str(settings.SMTP_PASS))
            server.send_message(msg)
        return
    with smtplib.SMTP(host, port, timeout=timeout) as server:
        server.ehlo()
        if server.has_extn("starttls"):
            server.starttls()
            server.ehlo()
        server.login(str(settings.SMTP_USER), str(settings.SMTP_PASS))
        server.send_message(msg)


async def send_email(to: str, subject: str, html_body: str) -> None:
    msg = build_message(to, subject, html_body)
    await asyncio.to_thread(_deliver, msg)
    logger.info('Sent mail to %s | subject="%s"', to, subject)


def meal_reminder_content(reminder: MealReminder) -> tuple[str, str]:
    subject = f"Nhắc nhở bữa ăn {reminder.meal_name} lúc {reminder.time}"
    body = f"""
    <h2>Xin chào {html.escape(reminder.user_name)},</h2>
    <p>Bạn có kế hoạch ăn <strong>{html.escape(reminder.meal_name)}</strong> vào lúc <strong>{html.escape(reminder.time)}</strong> ngày <strong>{html.escape(reminder.date_label)}</strong>.</p>
    <p>Nhớ chuẩn bị trước để đảm bảo dinh dưỡng nhé!</p>
    <p>Chúc bạn một ngày tốt lành!</p>
    <p>{SIGNATURE}</p>
    """
    return subject, body


def exercise_reminder_content(reminder: ExerciseReminder) -> tuple[str, str]:
    subject = f"Nhắc nhở tập luyện {reminder.exercise_name} lúc {reminder.time}"
    body = f"""
    <h2>Xin chào {html.escape(reminder.user_name)},</h2>
    <p>Bạn có lịch tập <strong>{html.escape(reminder.exercise_name)}</strong> vào lúc <strong>{html.escape(reminder.time)}</strong> ngày <strong>{html.escape(reminder.date_label)}</strong>.</p>
    <p>Chuẩn bị đồ tập và khởi động nhẹ để đạt hiệu quả tốt nhất!</p>
    <p>Chúc bạn một ngày tốt lành!</p>
    <p>{SIGNATURE}</p>
    """
    return subject, body


class EmailReminderNotifier:
    """Delivers scheduler reminders over SMTP."""

    async def send_meal_reminder(self, reminder: MealReminder) -> None:
        subject, body = meal_reminder_content(reminder)
        await send_email(reminder.to, subject, body)

    async def send_exercise_reminder(self, reminder: ExerciseReminder) -> None:
        subject, body = exercise_reminder_content(reminder)
        await send_email(reminder.to, subject, body)
