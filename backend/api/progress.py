from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from api.deps import get_reminder_scheduler
from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.progress_service import (
    apply_daily_plan,
    apply_weekly_plan,
    delete_entry,
    get_entry,
    list_entries,
    serialize_entry,
    toggle_completion,
    upsert_entry,
)
from services.reminder_scheduler import ReminderScheduler
from utils.datetime_utils import parse_calendar_date


router = APIRouter(prefix="/progress", tags=["progress"])


class MealSlot(BaseModel):
    time: str
    meal_id: int
    completed: bool = False


class ExerciseSlot(BaseModel):
    time: str
    exercise_id: int
    completed: bool = False


class ProgressUpsert(BaseModel):
    date: str
    meals: Optional[list[MealSlot]] = None
    exercises: Optional[list[ExerciseSlot]] = None
    plan_id: Optional[int] = None
    plan_type: Optional[str] = None  # daily | weekly
    notes: Optional[str] = None


class ApplyDailyPlanRequest(BaseModel):
    plan_id: int
    start_date: str
    end_date: str


class ApplyWeeklyPlanRequest(BaseModel):
    weekly_plan_id: int
    week_start_date: str


class ToggleCompletionRequest(BaseModel):
    date: str
    type: str  # meal | exercise
    index: int


def _parse_day(value: str):
    try:
        return parse_calendar_date(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


async def _refresh_reminders(scheduler: ReminderScheduler | None, user_id: int, days) -> None:
    if scheduler is None:
        return
    for day in days:
        if scheduler.should_refresh(day):
            await scheduler.refresh_reminders_for_date(user_id, day)


@router.get("")
def get_progress_entries(
    start_date: Optional[str] = Query(default=None),
    end_date: Optional[str] = Query(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    start = _parse_day(start_date) if start_date else None
    end = _parse_day(end_date) if end_date else None
    return [serialize_entry(entry) for entry in list_entries(db, user.id, start, end)]


@router.get("/{entry_date}")
def get_progress_entry(
    entry_date: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    entry = get_entry(db, user.id, _parse_day(entry_date))
    if not entry:
        raise HTTPException(status_code=404, detail="Progress entry not found")
    return serialize_entry(entry)


@router.post("")
async def upsert_progress_entry(
    payload: ProgressUpsert,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    scheduler: ReminderScheduler | None = Depends(get_reminder_scheduler),
):
    day = _parse_day(payload.date)
    try:
        entry = upsert_entry(
            db,
            user,
            day,
            meals=[m.model_dump() for m in payload.meals] if payload.meals is not None else None,
            exercises=[e.model_dump() for e in payload.exercises] if payload.exercises is not None else None,
            plan_id=payload.plan_id,
            plan_type=payload.plan_type,
            notes=payload.notes,
        )
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc))
    db.commit()
    await _refresh_reminders(scheduler, user.id, [entry.date])
    return serialize_entry(entry)


@router.post("/apply-daily")
async def apply_daily(
    payload: ApplyDailyPlanRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    scheduler: ReminderScheduler | None = Depends(get_reminder_scheduler),
):
    start = _parse_day(payload.start_date)
    end = _parse_day(payload.end_date)
    try:
        entries = apply_daily_plan(db, user, payload.plan_id, start, end)
    except LookupError as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc))
    db.commit()
    await _refresh_reminders(scheduler, user.id, [entry.date for entry in entries])
    return [serialize_entry(entry) for entry in entries]


@router.post("/apply-weekly")
async def apply_weekly(
    payload: ApplyWeeklyPlanRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    scheduler: ReminderScheduler | None = Depends(get_reminder_scheduler),
):
    week_start = _parse_day(payload.week_start_date)
    try:
        entries = apply_weekly_plan(db, user, payload.weekly_plan_id, week_start)
    except LookupError as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(exc))
    db.commit()
    await _refresh_reminders(scheduler, user.id, [entry.date for entry in entries])
    return [serialize_entry(entry) for entry in entries]


@router.post("/toggle-completion")
def toggle_entry_completion(
    payload: ToggleCompletionRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        entry = toggle_completion(db, user, _parse_day(payload.date), payload.type, payload.index)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    db.commit()
    return serialize_entry(entry)


@router.delete("/{entry_date}")
async def delete_progress_entry(
    entry_date: str,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    scheduler: ReminderScheduler | None = Depends(get_reminder_scheduler),
):
    try:
        deleted_day = delete_entry(db, user, _parse_day(entry_date))
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    db.commit()
    await _refresh_reminders(scheduler, user.id, [deleted_day])
    return {"status": "ok", "date": deleted_day.isoformat()}
