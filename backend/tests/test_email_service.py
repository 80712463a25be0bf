from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import pytest


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import settings  # noqa: E402
from services import email_service  # noqa: E402
from services.reminder_scheduler import ExerciseReminder, MealReminder  # noqa: E402


class FakeSMTP:
    instances: list["FakeSMTP"] = []

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.timeout = timeout
        self.started_tls = False
        self.logged_in_as = None
        self.sent = []
        FakeSMTP.instances.append(self)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def ehlo(self):
        return (250, b"ok")

    def has_extn(self, name):
        return name == "starttls"

    def starttls(self):
        self.started_tls = True

    def login(self, user, password):
        self.logged_in_as = user

    def send_message(self, msg):
        self.sent.append(msg)


@pytest.fixture
def smtp_settings(monkeypatch):
    FakeSMTP.instances = []
    monkeypatch.setattr(settings, "SMTP_HOST", "smtp.example.com")
    monkeypatch.setattr(settings, "SMTP_PORT", 587)
    monkeypatch.setattr(settings, "SMTP_USER", "mailer@example.com")
    monkeypatch.setattr(settings, "SMTP_PASS", "secret")
    monkeypatch.setattr(settings, "SMTP_SECURE", False)
    monkeypatch.setattr(settings, "SMTP_FROM", None)
    monkeypatch.setattr(email_service.smtplib, "SMTP", FakeSMTP)


def test_meal_reminder_content_is_vietnamese_and_escaped():
    subject, body = email_service.meal_reminder_content(
        MealReminder(
            to="an@example.com",
            user_name="An <3",
            date_label="10/03/2026",
            time="07:30",
            meal_name="Phở bò",
        )
    )
    assert subject == "Nhắc nhở bữa ăn Phở bò lúc 07:30"
    assert "Xin chào An &lt;3" in body
    assert "10/03/2026" in body
    assert "GymNet" in body


def test_exercise_reminder_content_names_the_exercise():
    subject, body = email_service.exercise_reminder_content(
        ExerciseReminder(
            to="an@example.com",
            user_name="An",
            date_label="10/03/2026",
            time="18:00",
            exercise_name="Squat",
        )
    )
    assert subject == "Nhắc nhở tập luyện Squat lúc 18:00"
    assert "<strong>Squat</strong>" in body


def test_deliver_requires_smtp_configuration(monkeypatch):
    monkeypatch.setattr(settings, "SMTP_HOST", None)
    msg = email_service.build_message("an@example.com", "hi", "<p>hi</p>")
    with pytest.raises(RuntimeError):
        email_service._deliver(msg)


def test_notifier_sends_over_starttls(smtp_settings):
    notifier = email_service.EmailReminderNotifier()
    reminder = MealReminder(
        to="an@example.com",
        user_name="An",
        date_label="10/03/2026",
        time="07:30",
        meal_name="Phở bò",
    )

    asyncio.run(notifier.send_meal_reminder(reminder))

    assert len(FakeSMTP.instances) == 1
    server = FakeSMTP.instances[0]
    assert (server.host, server.port) == ("smtp.example.com", 587)
    assert server.started_tls
    assert server.logged_in_as == "mailer@example.com"
    msg = server.sent[0]
    assert msg["To"] == "an@example.com"
    assert msg["From"] == "mailer@example.com"
    assert msg["Subject"] == "Nhắc nhở bữa ăn Phở bò lúc 07:30"


def test_send_email_reraises_delivery_errors(smtp_settings, monkeypatch):
    class BrokenSMTP(FakeSMTP):
        def login(self, user, password):
            raise OSError("connection reset")

    monkeypatch.setattr(email_service.smtplib, "SMTP", BrokenSMTP)
    with pytest.raises(OSError):
        asyncio.run(email_service.send_email("an@example.com", "hi", "<p>hi</p>"))


def test_send_email_leaves_failure_logging_to_the_caller(smtp_settings, monkeypatch, caplog):
    class BrokenSMTP(FakeSMTP):
        def send_message(self, msg):
            raise OSError("mailbox unavailable")

    monkeypatch.setattr(email_service.smtplib, "SMTP", BrokenSMTP)
    with caplog.at_level("INFO", logger="services.email_service"):
        with pytest.raises(OSError):
            asyncio.run(email_service.send_email("an@example.com", "hi", "<p>hi</p>"))

    records = [record for record in caplog.records if record.name == "services.email_service"]
    assert [record.levelname for record in records if record.levelname == "ERROR"] == []


def test_send_email_logs_successful_delivery(smtp_settings, caplog):
    with caplog.at_level("INFO", logger="services.email_service"):
        asyncio.run(email_service.send_email("an@example.com", "Xin chao", "<p>hi</p>"))

    messages = [record.getMessage() for record in caplog.records if record.name == "services.email_service"]
    assert messages == ['Sent mail to an@example.com | subject="Xin chao"']
