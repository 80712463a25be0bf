from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from sqlalchemy.orm import Session

from db.models import (
    WEEKDAYS,
    Exercise,
    Meal,
    Plan,
    ProgressEntry,
    ProgressExercise,
    ProgressMeal,
    User,
    WeeklyPlan,
)
from services.library_service import get_visible

MAX_APPLY_DAYS = 366
COMPLETION_KINDS = {"meal", "exercise"}


def get_entry(db: Session, user_id: int, day: date) -> ProgressEntry | None:
    return db.query(ProgressEntry).filter(ProgressEntry.user_id == user_id, ProgressEntry.date == day).first()


def list_entries(
    db: Session,
    user_id: int,
    start: date | None = None,
    end: date | None = None,
) -> list[ProgressEntry]:
    query = db.query(ProgressEntry).filter(ProgressEntry.user_id == user_id)
    if start and end:
        query = query.filter(ProgressEntry.date >= start, ProgressEntry.date <= end)
    return query.order_by(ProgressEntry.date.asc()).all()


def _meal_rows(db: Session, user: User, items: list[dict[str, Any]]) -> list[ProgressMeal]:
    rows: list[ProgressMeal] = []
    for position, item in enumerate(items):
        meal_id = int(item["meal_id"])
        if not get_visible(db, Meal, user, meal_id):
            raise ValueError(f"Meal {meal_id} not found")
        rows.append(
            ProgressMeal(
                position=position,
                time=str(item.get("time") or "").strip(),
                meal_id=meal_id,
                completed=bool(item.get("completed", False)),
            )
        )
    return rows


def _exercise_rows(db: Session, user: User, items: list[dict[str, Any]]) -> list[ProgressExercise]:
    rows: list[ProgressExercise] = []
    for position, item in enumerate(items):
        exercise_id = int(item["exercise_id"])
        if not get_visible(db, Exercise, user, exercise_id):
            raise ValueError(f"Exercise {exercise_id} not found")
        rows.append(
            ProgressExercise(
                position=position,
                time=str(item.get("time") or "").strip(),
                exercise_id=exercise_id,
                completed=bool(item.get("completed", False)),
            )
        )
    return rows


def _get_or_create(db: Session, user: User, day: date) -> ProgressEntry:
    entry = get_entry(db, user.id, day)
    if entry is None:
        entry = ProgressEntry(user_id=user.id, date=day, notes="")
        db.add(entry)
    return entry


def upsert_entry(
    db: Session,
    user: User,
    day: date,
    *,
    meals: list[dict[str, Any]] | None = None,
    exercises: list[dict[str, Any]] | None = None,
    plan_id: int | None = None,
    plan_type: str | None = None,
    notes: str | None = None,
) -> ProgressEntry:
    """Create or update the user's entry for `day`.

    Meal and exercise lists are replaced only when provided; `None` keeps what is
    already stored.
    """
    if plan_type is not None and plan_type not in {"daily", "weekly"}:
        raise ValueError("`plan_type` must be 'daily' or 'weekly'")

    new_meals = _meal_rows(db, user, meals) if meals is not None else None
    new_exercises = _exercise_rows(db, user, exercises) if exercises is not None else None

    entry = _get_or_create(db, user, day)
    if new_meals is not None:
        entry.meals = new_meals
    if new_exercises is not None:
        entry.exercises = new_exercises
    if plan_id:
        entry.plan_id = plan_id
    if plan_type:
        entry.plan_type = plan_type
    if notes is not None:
        entry.notes = notes
    db.flush()
    return entry


def _overwrite_from_plan(db: Session, user: User, day: date, plan: Plan, source_id: int, plan_type: str) -> ProgressEntry:
    entry = _get_or_create(db, user, day)
    entry.meals = [
        ProgressMeal(position=position, time=row.time, meal_id=row.meal_id, completed=False)
        for position, row in enumerate(plan.meals)
    ]
    entry.exercises = [
        ProgressExercise(position=position, time=row.time, exercise_id=row.exercise_id, completed=False)
        for position, row in enumerate(plan.exercises)
    ]
    entry.plan_id = source_id
    entry.plan_type = plan_type
    db.flush()
    return entry


def apply_daily_plan(db: Session, user: User, plan_id: int, start: date, end: date) -> list[ProgressEntry]:
    """Copy one daily plan onto every day in [start, end], replacing those days' items."""
    if end < start:
        raise ValueError("End date must not be before start date")
    if (end - start).days + 1 > MAX_APPLY_DAYS:
        raise ValueError(f"Cannot apply a plan to more than {MAX_APPLY_DAYS} days at once")
    plan = get_visible(db, Plan, user, plan_id)
    if not plan:
        raise LookupError("Plan not found")

    entries: list[ProgressEntry] = []
    current = start
    while current <= end:
        entries.append(_overwrite_from_plan(db, user, current, plan, plan.id, "daily"))
        current += timedelta(days=1)
    return entries


def apply_weekly_plan(db: Session, user: User, weekly_plan_id: int, week_start: date) -> list[ProgressEntry]:
    """Apply a weekly plan to the 7 days starting at `week_start`.

    Day 0 takes the Monday slot regardless of `week_start`'s actual weekday; days
    whose slot is empty (or whose plan is gone) are left untouched.
    """
    weekly = get_visible(db, WeeklyPlan, user, weekly_plan_id)
    if not weekly:
        raise LookupError("Weekly plan not found")

    entries: list[ProgressEntry] = []
    for offset, weekday in enumerate(WEEKDAYS):
        day_plan_id = weekly.plan_id_for(weekday)
        if not day_plan_id:
            continue
        day_plan = db.get(Plan, day_plan_id)
        if not day_plan:
            continue
        entries.append(
            _overwrite_from_plan(db, user, week_start + timedelta(days=offset), day_plan, weekly.id, "weekly")
        )
    return entries


def toggle_completion(db: Session, user: User, day: date, kind: str, index: int) -> ProgressEntry:
    if kind not in COMPLETION_KINDS:
        raise ValueError("`type` must be 'meal' or 'exercise'")
    entry = get_entry(db, user.id, day)
    if not entry:
        raise LookupError("Progress entry not found. Please add meals/exercises for this day first.")
    items = entry.meals if kind == "meal" else entry.exercises
    if index < 0 or index >= len(items):
        label = "Meal" if kind == "meal" else "Exercise"
        raise ValueError(f"{label} at index {index} not found")
    items[index].completed = not bool(items[index].completed)
    db.flush()
    return entry


def delete_entry(db: Session, user: User, day: date) -> date:
    entry = get_entry(db, user.id, day)
    if not entry:
        raise LookupError("Progress entry not found")
    deleted_day = entry.date
    db.delete(entry)
    db.flush()
    return deleted_day


def serialize_entry(entry: ProgressEntry) -> dict[str, Any]:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "date": entry.date.isoformat(),
        "plan_id": entry.plan_id,
        "plan_type": entry.plan_type,
        "notes": entry.notes or "",
        "meals": [
            {
                "time": row.time,
                "meal_id": row.meal_id,
                "meal_name": row.meal.name if row.meal else None,
                "completed": bool(row.completed),
            }
            for row in entry.meals
        ],
        "exercises": [
            {
                "time": row.time,
                "exercise_id": row.exercise_id,
                "exercise_name": row.exercise.name if row.exercise else None,
                "completed": bool(row.completed),
            }
            for row in entry.exercises
        ],
    }
