from fastapi import Depends, HTTPException, Request

from services.reminder_scheduler import ReminderScheduler


def get_reminder_scheduler(request: Request) -> ReminderScheduler | None:
    return getattr(request.app.state, "reminder_scheduler", None)


def require_reminder_scheduler(
    scheduler: ReminderScheduler | None = Depends(get_reminder_scheduler),
) -> ReminderScheduler:
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Reminder scheduler is not running")
    return scheduler
