from __future__ import annotations

import asyncio
import sys
import time
import uuid
from datetime import date
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base, SessionLocal, engine  # noqa: E402
from db.models import Exercise, Meal, ProgressEntry, ProgressExercise, ProgressMeal, User  # noqa: E402
from services.reminder_store import SqlReminderStore  # noqa: E402


Base.metadata.create_all(bind=engine)


def _seed_entry(day: date, *, active: bool = True) -> int:
    with SessionLocal() as db:
        user = User(
            email=f"store_{uuid.uuid4().hex[:8]}@example.com",
            name="Store User",
            role="user",
            is_active=active,
        )
        db.add(user)
        db.flush()
        meal = Meal(name="  Com tam  ", created_by=user.id)
        exercise = Exercise(name="", created_by=user.id)
        db.add_all([meal, exercise])
        db.flush()
        db.add(
            ProgressEntry(
                user_id=user.id,
                date=day,
                meals=[ProgressMeal(position=0, time=" 12:15 ", meal_id=meal.id)],
                exercises=[ProgressExercise(position=0, time="18:00", exercise_id=exercise.id)],
            )
        )
        db.commit()
        return user.id


def test_store_detaches_entry_and_recipient():
    day = date(2031, 5, 4)
    user_id = _seed_entry(day)
    store = SqlReminderStore(SessionLocal)

    async def scenario():
        entry = await store.find_entry_by_user_and_date(user_id, day)
        missing = await store.find_entry_by_user_and_date(user_id, date(2031, 5, 5))
        recipient = await store.find_user_by_id(user_id)
        return entry, missing, recipient

    entry, missing, recipient = asyncio.run(scenario())
    assert missing is None
    assert entry.user_id == user_id
    assert entry.day == day
    assert [(m.time, m.name) for m in entry.meals] == [("12:15", "Com tam")]
    # A blank exercise name falls back to the generic label later on.
    assert [(e.time, e.name) for e in entry.exercises] == [("18:00", None)]
    assert recipient.display_name == "Store User"
    assert recipient.email.startswith("store_")


def test_inactive_user_has_no_recipient_but_entries_are_listed():
    day = date(2031, 6, 1)
    user_id = _seed_entry(day, active=False)
    store = SqlReminderStore(SessionLocal)

    async def scenario():
        return await store.find_user_by_id(user_id), await store.find_entries_by_date(day)

    recipient, entries = asyncio.run(scenario())
    assert recipient is None
    assert user_id in [entry.user_id for entry in entries]


def test_store_lookups_do_not_block_the_event_loop():
    def slow_session():
        time.sleep(0.2)
        return SessionLocal()

    store = SqlReminderStore(slow_session)

    async def scenario():
        loop = asyncio.get_running_loop()
        gaps: list[float] = []
        done = asyncio.Event()

        async def ticker():
            last = loop.time()
            while not done.is_set():
                await asyncio.sleep(0.01)
                now = loop.time()
                gaps.append(now - last)
                last = now

        ticking = asyncio.ensure_future(ticker())
        await asyncio.sleep(0.02)
        await asyncio.gather(*(store.find_entries_by_date(date(2031, 7, day)) for day in (1, 2, 3)))
        done.set()
        await ticking
        return gaps

    gaps = asyncio.run(scenario())
    assert gaps
    assert max(gaps) < 0.15
