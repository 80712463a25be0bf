from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from config import settings
from db.database import engine, Base, SessionLocal
from auth.routes import router as auth_router
from api.library import router as library_router
from api.progress import router as progress_router
from api.reminders import router as reminders_router
from services.email_service import EmailReminderNotifier
from services.reminder_scheduler import ReminderScheduler
from services.reminder_store import SqlReminderStore

logger = logging.getLogger(__name__)

settings.validate_security_configuration()

# Create all tables
Base.metadata.create_all(bind=engine)


def build_reminder_scheduler() -> ReminderScheduler:
    store = SqlReminderStore(SessionLocal)
    return ReminderScheduler(store=store, users=store, notifier=EmailReminderNotifier())


@asynccontextmanager
async def lifespan(app: FastAPI):
    scheduler = build_reminder_scheduler()
    app.state.reminder_scheduler = scheduler
    if settings.REMINDER_SCHEDULER_ENABLED:
        await scheduler.start()
    else:
        logger.info("Reminder scheduler disabled by configuration")
    try:
        yield
    finally:
        await scheduler.stop()


app = FastAPI(title=settings.APP_NAME, version="1.0.0", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers_middleware(request: Request, call_next):
    response = await call_next(request)
    if not settings.SECURITY_HEADERS_ENABLED:
        return response
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response

# Routers
app.include_router(auth_router, prefix="/api")
app.include_router(library_router, prefix="/api")
app.include_router(progress_router, prefix="/api")
app.include_router(reminders_router, prefix="/api")


@app.get("/api/health")
def health_check():
    return {"status": "ok", "app": settings.APP_NAME}
