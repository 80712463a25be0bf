from __future__ import annotations

import sys
import uuid
from datetime import date, datetime, timezone
from pathlib import Path

import pytest
from fastapi.testclient import TestClient


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from api.deps import get_reminder_scheduler  # noqa: E402
from auth.utils import create_token  # noqa: E402
from db.database import SessionLocal  # noqa: E402
from db.models import User  # noqa: E402
from main import app  # noqa: E402
from services.reminder_registry import reminder_key  # noqa: E402
from services.reminder_scheduler import ReminderConfig, ReminderScheduler  # noqa: E402
from services.reminder_store import SqlReminderStore  # noqa: E402


# 23:00 local (UTC+7) on 2026-03-09.
FIXED_NOW = datetime(2026, 3, 9, 16, 0, tzinfo=timezone.utc)


class RecordingNotifier:
    def __init__(self):
        self.sent = []

    async def send_meal_reminder(self, reminder):
        self.sent.append(reminder)

    async def send_exercise_reminder(self, reminder):
        self.sent.append(reminder)


@pytest.fixture
def scheduler():
    store = SqlReminderStore(SessionLocal)
    instance = ReminderScheduler(
        store=store,
        users=store,
        notifier=RecordingNotifier(),
        config_provider=lambda: ReminderConfig(),
        clock=lambda: FIXED_NOW,
    )
    app.dependency_overrides[get_reminder_scheduler] = lambda: instance
    yield instance
    app.dependency_overrides.pop(get_reminder_scheduler, None)
    instance.shutdown()


def _register(client: TestClient, name: str = "Gym User") -> tuple[dict, int]:
    email = f"gym_{uuid.uuid4().hex[:8]}@example.com"
    resp = client.post("/api/auth/register", json={"email": email, "password": "Gym!Pass123", "name": name})
    assert resp.status_code == 201
    headers = {"Authorization": f"Bearer {resp.json()['access_token']}"}
    me = client.get("/api/auth/me", headers=headers)
    assert me.status_code == 200
    return headers, me.json()["id"]


def _admin_headers() -> dict:
    with SessionLocal() as db:
        admin = User(email=f"admin_{uuid.uuid4().hex[:8]}@example.com", name="Admin", role="admin")
        db.add(admin)
        db.commit()
        token = create_token(admin.id, role="admin", token_version=0)
    return {"Authorization": f"Bearer {token}"}


def _create_meal(client: TestClient, headers: dict, name: str = "Pho bo") -> int:
    resp = client.post("/api/library/meals", headers=headers, json={"name": name, "calories": 450})
    assert resp.status_code == 201
    return resp.json()["id"]


def _create_exercise(client: TestClient, headers: dict, name: str = "Squat") -> int:
    resp = client.post("/api/library/exercises", headers=headers, json={"name": name, "duration_minutes": 20})
    assert resp.status_code == 201
    return resp.json()["id"]


def test_upsert_arms_reminders_and_delete_cancels_them(scheduler):
    client = TestClient(app)
    headers, user_id = _register(client)
    meal_id = _create_meal(client, headers)
    exercise_id = _create_exercise(client, headers)

    resp = client.post(
        "/api/progress",
        headers=headers,
        json={
            "date": "2026-03-10",
            "meals": [{"time": "07:30", "meal_id": meal_id}],
            "exercises": [{"time": "18:00", "exercise_id": exercise_id}],
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["date"] == "2026-03-10"
    assert body["meals"][0]["meal_name"] == "Pho bo"

    key = reminder_key(user_id, date(2026, 3, 10))
    armed = scheduler.registry.get(key)
    assert sorted((timer.kind, timer.label) for timer in armed) == [("exercise", "Squat"), ("meal", "Pho bo")]
    meal_timer = next(timer for timer in armed if timer.kind == "meal")
    assert meal_timer.fire_at == datetime(2026, 3, 10, 0, 0, tzinfo=timezone.utc)

    deleted = client.delete("/api/progress/2026-03-10", headers=headers)
    assert deleted.status_code == 200
    assert deleted.json() == {"status": "ok", "date": "2026-03-10"}
    assert key not in scheduler.registry
    assert all(timer.handle.cancelled() for timer in armed)


def test_update_replaces_previous_reminders(scheduler):
    client = TestClient(app)
    headers, user_id = _register(client)
    meal_id = _create_meal(client, headers)
    key = reminder_key(user_id, date(2026, 3, 10))

    client.post(
        "/api/progress",
        headers=headers,
        json={"date": "2026-03-10", "meals": [{"time": "08:00", "meal_id": meal_id}]},
    )
    first = scheduler.registry.get(key)
    resp = client.post(
        "/api/progress",
        headers=headers,
        json={"date": "2026-03-10T00:00:00.000Z", "meals": [{"time": "12:00", "meal_id": meal_id}]},
    )
    assert resp.status_code == 200

    second = scheduler.registry.get(key)
    assert len(first) == 1 and first[0].handle.cancelled()
    assert [timer.time_of_day for timer in second] == ["12:00"]


def test_write_outside_lookahead_window_arms_nothing(scheduler):
    client = TestClient(app)
    headers, user_id = _register(client)
    meal_id = _create_meal(client, headers)

    resp = client.post(
        "/api/progress",
        headers=headers,
        json={"date": "2026-03-20", "meals": [{"time": "07:30", "meal_id": meal_id}]},
    )
    assert resp.status_code == 200
    assert reminder_key(user_id, date(2026, 3, 20)) not in scheduler.registry


def test_apply_daily_plan_only_arms_days_inside_window(scheduler):
    client = TestClient(app)
    headers, user_id = _register(client)
    meal_id = _create_meal(client, headers)
    plan = client.post(
        "/api/library/plans",
        headers=headers,
        json={"name": "Cutting day", "goal": "weight_loss", "meals": [{"time": "09:00", "meal_id": meal_id}]},
    )
    assert plan.status_code == 201

    resp = client.post(
        "/api/progress/apply-daily",
        headers=headers,
        json={"plan_id": plan.json()["id"], "start_date": "2026-03-09", "end_date": "2026-03-12"},
    )
    assert resp.status_code == 200
    assert [row["date"] for row in resp.json()] == ["2026-03-09", "2026-03-10", "2026-03-11", "2026-03-12"]
    assert all(row["plan_type"] == "daily" for row in resp.json())

    user_keys = [key for key in scheduler.registry.keys() if key.user_id == user_id]
    # 09:00 on 2026-03-09 is already past; 11th and 12th are beyond the window.
    assert user_keys == [reminder_key(user_id, date(2026, 3, 10))]


def test_apply_weekly_plan_maps_first_day_to_monday_slot(scheduler):
    client = TestClient(app)
    headers, user_id = _register(client)
    exercise_id = _create_exercise(client, headers, name="Deadlift")
    plan = client.post(
        "/api/library/plans",
        headers=headers,
        json={"name": "Pull day", "exercises": [{"time": "17:30", "exercise_id": exercise_id}]},
    ).json()
    weekly = client.post(
        "/api/library/weekly-plans",
        headers=headers,
        json={"name": "Split", "days": {"monday": plan["id"], "tuesday": plan["id"]}},
    )
    assert weekly.status_code == 201

    # 2026-03-09 is a Monday; the 10th therefore takes the Tuesday slot.
    resp = client.post(
        "/api/progress/apply-weekly",
        headers=headers,
        json={"weekly_plan_id": weekly.json()["id"], "week_start_date": "2026-03-09"},
    )
    assert resp.status_code == 200
    assert [row["date"] for row in resp.json()] == ["2026-03-09", "2026-03-10"]
    armed = scheduler.registry.get(reminder_key(user_id, date(2026, 3, 10)))
    assert [timer.label for timer in armed] == ["Deadlift"]


def test_toggle_completion_keeps_reminders(scheduler):
    client = TestClient(app)
    headers, user_id = _register(client)
    meal_id = _create_meal(client, headers)
    client.post(
        "/api/progress",
        headers=headers,
        json={"date": "2026-03-10", "meals": [{"time": "07:30", "meal_id": meal_id}]},
    )
    key = reminder_key(user_id, date(2026, 3, 10))
    before = scheduler.registry.get(key)

    resp = client.post(
        "/api/progress/toggle-completion",
        headers=headers,
        json={"date": "2026-03-10", "type": "meal", "index": 0},
    )
    assert resp.status_code == 200
    assert resp.json()["meals"][0]["completed"] is True
    assert scheduler.registry.get(key) == before

    missing = client.post(
        "/api/progress/toggle-completion",
        headers=headers,
        json={"date": "2026-03-10", "type": "meal", "index": 3},
    )
    assert missing.status_code == 400


def test_progress_rejects_meals_owned_by_other_users(scheduler):
    client = TestClient(app)
    owner_headers, _ = _register(client, name="Owner")
    other_headers, other_id = _register(client, name="Other")
    private_meal = _create_meal(client, owner_headers, name="Secret salad")

    resp = client.post(
        "/api/progress",
        headers=other_headers,
        json={"date": "2026-03-10", "meals": [{"time": "07:30", "meal_id": private_meal}]},
    )
    assert resp.status_code == 400
    assert reminder_key(other_id, date(2026, 3, 10)) not in scheduler.registry

    listed = client.get("/api/library/meals", headers=other_headers)
    assert private_meal not in [row["id"] for row in listed.json()]

    forbidden = client.delete(f"/api/library/meals/{private_meal}", headers=other_headers)
    assert forbidden.status_code == 403


def test_invalid_date_is_rejected(scheduler):
    client = TestClient(app)
    headers, _ = _register(client)
    resp = client.post("/api/progress", headers=headers, json={"date": "not-a-date"})
    assert resp.status_code == 400


def test_reminder_status_requires_admin(scheduler):
    client = TestClient(app)
    headers, user_id = _register(client)
    meal_id = _create_meal(client, headers)
    client.post(
        "/api/progress",
        headers=headers,
        json={"date": "2026-03-10", "meals": [{"time": "07:30", "meal_id": meal_id}]},
    )

    assert client.get("/api/reminders/status", headers=headers).status_code == 403

    resp = client.get("/api/reminders/status", headers=_admin_headers())
    assert resp.status_code == 200
    status = resp.json()
    assert status["lookahead_days"] == 1
    assert status["nightly_cron"] == "0 21 * * *"
    assert f"{user_id}-2026-03-10" in [row["key"] for row in status["keys"]]
