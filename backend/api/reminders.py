from fastapi import APIRouter, Depends

from api.deps import require_reminder_scheduler
from auth.utils import require_admin
from services.reminder_scheduler import ReminderScheduler


router = APIRouter(prefix="/reminders", tags=["reminders"], dependencies=[Depends(require_admin)])


@router.get("/status")
async def reminder_status(scheduler: ReminderScheduler = Depends(require_reminder_scheduler)):
    return scheduler.status()


@router.post("/sweep")
async def run_reminder_sweep(scheduler: ReminderScheduler = Depends(require_reminder_scheduler)):
    entries = await scheduler.run_lookahead_sweep()
    return {"status": "ok", "entries": entries, "armed_timers": scheduler.registry.armed_count()}
