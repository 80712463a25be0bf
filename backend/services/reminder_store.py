from __future__ import annotations

import asyncio
from datetime import date
from typing import Callable

from sqlalchemy.orm import Session

from db.models import ProgressEntry, User
from services.reminder_scheduler import ReminderEntry, ReminderOccurrence, ReminderRecipient


def _occurrence_name(target) -> str | None:
    name = getattr(target, "name", None)
    if isinstance(name, str) and name.strip():
        return name.strip()
    return None


def to_reminder_entry(entry: ProgressEntry) -> ReminderEntry:
    """Detach the fields the reminder scheduler needs from an ORM entry."""
    return ReminderEntry(
        user_id=int(entry.user_id),
        day=entry.date,
        meals=tuple(
            ReminderOccurrence(time=(row.time or "").strip(), name=_occurrence_name(row.meal))
            for row in entry.meals
        ),
        exercises=tuple(
            ReminderOccurrence(time=(row.time or "").strip(), name=_occurrence_name(row.exercise))
            for row in entry.exercises
        ),
    )


class SqlReminderStore:
    """Entry store and user directory for the reminder scheduler, backed by SQLAlchemy.

    Each lookup opens a short-lived session in a worker thread, so scheduler
    callbacks never share a request session and never block the event loop.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def _load_entry(self, user_id: int, day: date) -> ReminderEntry | None:
        db = self._session_factory()
        try:
            entry = (
                db.query(ProgressEntry)
                .filter(ProgressEntry.user_id == user_id, ProgressEntry.date == day)
                .first()
            )
            return to_reminder_entry(entry) if entry else None
        finally:
            db.close()

    def _load_entries(self, day: date) -> list[ReminderEntry]:
        db = self._session_factory()
        try:
            rows = (
                db.query(ProgressEntry)
                .filter(ProgressEntry.date == day)
                .order_by(ProgressEntry.user_id)
                .all()
            )
            return [to_reminder_entry(row) for row in rows]
        finally:
            db.close()

    def _load_recipient(self, user_id: int) -> ReminderRecipient | None:
        db = self._session_factory()
        try:
            user = db.get(User, user_id)
            if not user or not user.is_active:
                return None
            return ReminderRecipient(email=user.email, display_name=user.name)
        finally:
            db.close()

    async def find_entry_by_user_and_date(self, user_id: int, day: date) -> ReminderEntry | None:
        return await asyncio.to_thread(self._load_entry, user_id, day)

    async def find_entries_by_date(self, day: date) -> list[ReminderEntry]:
        return await asyncio.to_thread(self._load_entries, day)

    async def find_user_by_id(self, user_id: int) -> ReminderRecipient | None:
        return await asyncio.to_thread(self._load_recipient, user_id)
