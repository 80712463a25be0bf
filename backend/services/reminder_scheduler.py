from __future__ import annotations

import asyncio
import functools
import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from config import settings as app_settings
from services.reminder_registry import ArmedTimer, ReminderKey, ReminderRegistry, reminder_key
from utils.datetime_utils import (
    compute_event_instant,
    date_key,
    is_within_lookahead_window,
    start_of_day,
    utcnow,
)

logger = logging.getLogger(__name__)

DEFAULT_MEAL_LEAD_MINUTES = 30
DEFAULT_EXERCISE_LEAD_MINUTES = 45
DEFAULT_LOOKAHEAD_DAYS = 1
DEFAULT_LOCAL_OFFSET_MINUTES = 420
DEFAULT_NIGHTLY_CRON = "0 21 * * *"
DEFAULT_REMINDER_TIMEZONE = "Asia/Ho_Chi_Minh"
NIGHTLY_JOB_ID = "nightly-reminder-sweep"

DEFAULT_USER_NAME = "bạn"
DEFAULT_MEAL_NAME = "bữa ăn"
DEFAULT_EXERCISE_NAME = "bài tập"


@dataclass(frozen=True)
class ReminderOccurrence:
    time: str
    name: str | None = None  # None when the referenced meal/exercise no longer resolves


@dataclass(frozen=True)
class ReminderEntry:
    user_id: int
    day: date
    meals: tuple[ReminderOccurrence, ...] = ()
    exercises: tuple[ReminderOccurrence, ...] = ()


@dataclass(frozen=True)
class ReminderRecipient:
    email: str | None
    display_name: str | None = None


@dataclass(frozen=True)
class MealReminder:
    to: str
    user_name: str
    date_label: str
    time: str
    meal_name: str


@dataclass(frozen=True)
class ExerciseReminder:
    to: str
    user_name: str
    date_label: str
    time: str
    exercise_name: str


class EntryStore(Protocol):
    async def find_entry_by_user_and_date(self, user_id: int, day: date) -> ReminderEntry | None: ...

    async def find_entries_by_date(self, day: date) -> list[ReminderEntry]: ...


class UserDirectory(Protocol):
    async def find_user_by_id(self, user_id: int) -> ReminderRecipient | None: ...


class ReminderNotifier(Protocol):
    async def send_meal_reminder(self, reminder: MealReminder) -> None: ...

    async def send_exercise_reminder(self, reminder: ExerciseReminder) -> None: ...


def _non_negative(value: Any, fallback: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(parsed) or parsed < 0:
        return fallback
    return parsed


def _lookahead_days(value: Any) -> int:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return DEFAULT_LOOKAHEAD_DAYS
    if not math.isfinite(parsed) or parsed <= 0:
        return DEFAULT_LOOKAHEAD_DAYS
    return max(1, int(math.floor(parsed)))


@dataclass(frozen=True)
class ReminderConfig:
    meal_lead_minutes: float = DEFAULT_MEAL_LEAD_MINUTES
    exercise_lead_minutes: float = DEFAULT_EXERCISE_LEAD_MINUTES
    lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS
    local_offset_minutes: float = DEFAULT_LOCAL_OFFSET_MINUTES
    nightly_cron: str = DEFAULT_NIGHTLY_CRON
    timezone: str = DEFAULT_REMINDER_TIMEZONE

    @classmethod
    def current(cls, source: Any = None) -> "ReminderConfig":
        """Snapshot the reminder settings as they are right now."""
        s = source if source is not None else app_settings
        return cls(
            meal_lead_minutes=_non_negative(s.MEAL_REMINDER_OFFSET_MINUTES, DEFAULT_MEAL_LEAD_MINUTES),
            exercise_lead_minutes=_non_negative(s.EXERCISE_REMINDER_OFFSET_MINUTES, DEFAULT_EXERCISE_LEAD_MINUTES),
            lookahead_days=_lookahead_days(s.REMINDER_LOOKAHEAD_DAYS),
            local_offset_minutes=_non_negative(s.LOCAL_TIMEZONE_OFFSET_MINUTES, DEFAULT_LOCAL_OFFSET_MINUTES),
            nightly_cron=(s.NIGHTLY_REMINDER_CRON or "").strip() or DEFAULT_NIGHTLY_CRON,
            timezone=(s.REMINDER_TIMEZONE or "").strip() or DEFAULT_REMINDER_TIMEZONE,
        )


def format_date_label(day: date) -> str:
    return day.strftime("%d/%m/%Y")


def _as_utc_day(value: date | datetime) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.date()
        return value.astimezone(timezone.utc).date()
    return value


def _local_display(instant: datetime, tz_name: str) -> str:
    try:
        zone = ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        zone = timezone.utc
    return instant.astimezone(zone).strftime("%H:%M %d/%m/%Y")


class ReminderScheduler:
    """Arms in-process email reminders for planned meals and exercises.

    One instance is created at application startup and shared by the progress
    write path (`refresh_reminders_for_date`) and the nightly sweep. Armed timers
    live only in `self.registry`; the sweep that runs from `start()` is what
    re-arms them after a restart.
    """

    def __init__(
        self,
        store: EntryStore,
        users: UserDirectory,
        notifier: ReminderNotifier,
        *,
        registry: ReminderRegistry | None = None,
        config_provider: Callable[[], ReminderConfig] = ReminderConfig.current,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.users = users
        self.notifier = notifier
        self.registry = registry or ReminderRegistry()
        self._config_provider = config_provider
        self._clock = clock
        self._cron: AsyncIOScheduler | None = None
        self._in_flight: set[asyncio.Task] = set()

    def config(self) -> ReminderConfig:
        return self._config_provider()

    def now(self) -> datetime:
        return self._clock().astimezone(timezone.utc)

    def should_refresh(self, day: date | datetime) -> bool:
        """Whether a write touching `day` can affect armed reminders."""
        return is_within_lookahead_window(
            start_of_day(_as_utc_day(day)),
            self.config().lookahead_days,
            now=self.now(),
        )

    # Planner

    async def schedule_entry(self, entry: ReminderEntry) -> list[ArmedTimer]:
        recipient = await self.users.find_user_by_id(entry.user_id)
        if not recipient or not recipient.email:
            logger.info("Skip reminders for user=%s date=%s (no email address)", entry.user_id, date_key(entry.day))
            return []

        config = self.config()
        now = self.now()
        max_schedule_instant = now + timedelta(days=config.lookahead_days)
        if start_of_day(entry.day) > max_schedule_instant:
            logger.info(
                "Skip scheduling for user=%s date=%s (outside lookahead)",
                entry.user_id,
                date_key(entry.day),
            )
            return []

        key = reminder_key(entry.user_id, entry.day)
        self.registry.cancel(key)

        loop = asyncio.get_running_loop()
        user_name = recipient.display_name or DEFAULT_USER_NAME
        date_label = format_date_label(entry.day)
        timers: list[ArmedTimer] = []

        for meal in entry.meals:
            payload = MealReminder(
                to=recipient.email,
                user_name=user_name,
                date_label=date_label,
                time=meal.time,
                meal_name=meal.name or DEFAULT_MEAL_NAME,
            )
            timer = self._arm(
                loop,
                key,
                recipient=recipient.email,
                kind="meal",
                label=payload.meal_name,
                time_of_day=meal.time,
                lead_minutes=config.meal_lead_minutes,
                config=config,
                now=now,
                send=functools.partial(self.notifier.send_meal_reminder, payload),
            )
            if timer:
                timers.append(timer)

        for exercise in entry.exercises:
            payload = ExerciseReminder(
                to=recipient.email,
                user_name=user_name,
                date_label=date_label,
                time=exercise.time,
                exercise_name=exercise.name or DEFAULT_EXERCISE_NAME,
            )
            timer = self._arm(
                loop,
                key,
                recipient=recipient.email,
                kind="exercise",
                label=payload.exercise_name,
                time_of_day=exercise.time,
                lead_minutes=config.exercise_lead_minutes,
                config=config,
                now=now,
                send=functools.partial(self.notifier.send_exercise_reminder, payload),
            )
            if timer:
                timers.append(timer)

        self.registry.register(key, timers)
        return timers

    def _arm(
        self,
        loop: asyncio.AbstractEventLoop,
        key: ReminderKey,
        *,
        recipient: str,
        kind: str,
        label: str,
        time_of_day: str,
        lead_minutes: float,
        config: ReminderConfig,
        now: datetime,
        send: Callable[[], Awaitable[None]],
    ) -> ArmedTimer | None:
        if not time_of_day:
            return None
        event_at = compute_event_instant(key.day, time_of_day, config.local_offset_minutes)
        fire_at = event_at - timedelta(minutes=lead_minutes)
        delay = (fire_at - now).total_seconds()
        if delay <= 0:
            return None

        timer = ArmedTimer(
            key=key,
            kind=kind,
            label=label,
            time_of_day=time_of_day,
            fire_at=fire_at,
            recipient=recipient,
        )
        timer.handle = loop.call_later(delay, self._fire, timer, send)
        logger.info(
            "Scheduled %s reminder for user=%s date=%s %s=%s at %s (local %s)",
            kind,
            key.user_id,
            date_key(key.day),
            kind,
            label,
            fire_at.isoformat(),
            _local_display(fire_at, config.timezone),
        )
        return timer

    def _fire(self, timer: ArmedTimer, send: Callable[[], Awaitable[None]]) -> None:
        self.registry.discard(timer.key, timer)
        task = asyncio.ensure_future(self._dispatch(timer, send))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _dispatch(self, timer: ArmedTimer, send: Callable[[], Awaitable[None]]) -> None:
        try:
            await send()
        except Exception:
            logger.exception(
                "Failed to send %s reminder to %s for user=%s date=%s (%s at %s)",
                timer.kind,
                timer.recipient,
                timer.key.user_id,
                date_key(timer.key.day),
                timer.label,
                timer.time_of_day,
            )

    # Write path

    async def refresh_reminders_for_date(self, user_id: int, day: date | datetime) -> None:
        """Re-derive the armed reminders for one (user, day) from storage. Never raises."""
        target = _as_utc_day(day)
        try:
            entry = await self.store.find_entry_by_user_and_date(int(user_id), target)
            if entry is None:
                cancelled = self.registry.cancel(reminder_key(user_id, target))
                logger.info(
                    "Cleared reminders for user=%s date=%s (no entry, cancelled=%s)",
                    user_id,
                    date_key(target),
                    cancelled,
                )
                return
            await self.schedule_entry(entry)
            logger.info(
                "Refreshed reminders for user=%s date=%s (meals=%s, exercises=%s)",
                entry.user_id,
                date_key(entry.day),
                len(entry.meals),
                len(entry.exercises),
            )
        except Exception:
            logger.exception("Failed to refresh reminders for user=%s date=%s", user_id, date_key(target))

    # Nightly sweep

    async def run_lookahead_sweep(self) -> int:
        """Arm reminders for every entry on today + lookahead. Returns the entry count."""
        config = self.config()
        target = self.now().date() + timedelta(days=config.lookahead_days)
        try:
            entries = await self.store.find_entries_by_date(target)
        except Exception:
            logger.exception("Lookahead sweep could not load entries for %s", date_key(target))
            return 0

        results = await asyncio.gather(
            *(self.schedule_entry(entry) for entry in entries),
            return_exceptions=True,
        )
        for entry, result in zip(entries, results):
            if isinstance(result, Exception):
                logger.error(
                    "Lookahead sweep failed for user=%s date=%s: %s",
                    entry.user_id,
                    date_key(entry.day),
                    result,
                )
        logger.info("Lookahead scheduled for %s entries (target_date=%s)", len(entries), date_key(target))
        return len(entries)

    async def _nightly_sweep(self) -> None:
        logger.info("Nightly reminder sweep triggered")
        await self.run_lookahead_sweep()

    def _nightly_trigger(self, config: ReminderConfig) -> CronTrigger:
        try:
            return CronTrigger.from_crontab(config.nightly_cron, timezone=config.timezone)
        except (ValueError, KeyError) as exc:
            logger.warning(
                "Invalid nightly reminder schedule %r (%s); using %r in %s",
                config.nightly_cron,
                exc,
                DEFAULT_NIGHTLY_CRON,
                DEFAULT_REMINDER_TIMEZONE,
            )
            return CronTrigger.from_crontab(DEFAULT_NIGHTLY_CRON, timezone=DEFAULT_REMINDER_TIMEZONE)

    async def start(self) -> None:
        """Run one sweep now, then (re)register the recurring nightly sweep. Never raises."""
        try:
            await self.run_lookahead_sweep()
            config = self.config()
            if self._cron is None:
                self._cron = AsyncIOScheduler()
            self._cron.add_job(
                self._nightly_sweep,
                self._nightly_trigger(config),
                id=NIGHTLY_JOB_ID,
                replace_existing=True,
                coalesce=True,
                max_instances=1,
                misfire_grace_time=None,
            )
            if not self._cron.running:
                self._cron.start()
            logger.info("Reminder scheduler initialized (cron=%r tz=%s)", config.nightly_cron, config.timezone)
        except Exception:
            logger.exception("Reminder scheduler failed to initialize")

    def shutdown(self) -> list[asyncio.Task]:
        """Stop the nightly job, disarm every timer and cancel sends still in flight.

        Returns the cancelled send tasks so an async caller can wait for them.
        """
        if self._cron is not None and self._cron.running:
            self._cron.shutdown(wait=False)
        self._cron = None
        cancelled = self.registry.clear()
        pending = [task for task in self._in_flight if not task.done()]
        for task in pending:
            task.cancel()
        if cancelled or pending:
            logger.info("Reminder scheduler stopped (cancelled=%s, in_flight=%s)", cancelled, len(pending))
        return pending

    async def stop(self) -> None:
        pending = self.shutdown()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def next_sweep_at(self) -> datetime | None:
        if self._cron is None:
            return None
        job = self._cron.get_job(NIGHTLY_JOB_ID)
        return getattr(job, "next_run_time", None) if job else None

    def status(self) -> dict[str, Any]:
        next_run = self.next_sweep_at()
        config = self.config()
        return {
            "armed_timers": self.registry.armed_count(),
            "keys": [
                {
                    "key": str(key),
                    "user_id": key.user_id,
                    "date": date_key(key.day),
                    "timers": [
                        {
                            "kind": timer.kind,
                            "label": timer.label,
                            "time": timer.time_of_day,
                            "fire_at": timer.fire_at.isoformat(),
                        }
                        for timer in self.registry.get(key)
                    ],
                }
                for key in self.registry.keys()
            ],
            "lookahead_days": config.lookahead_days,
            "nightly_cron": config.nightly_cron,
            "timezone": config.timezone,
            "next_sweep_at": next_run.isoformat() if next_run else None,
        }
