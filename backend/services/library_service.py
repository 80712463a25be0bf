from __future__ import annotations

import json
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from db.models import WEEKDAYS, Exercise, Meal, Plan, PlanExercise, PlanMeal, User, WeeklyPlan

DIFFICULTIES = {"basic", "intermediate", "advanced"}
PLAN_GOALS = {"weight_loss", "muscle_gain", "healthy_lifestyle"}


def is_admin(user: User) -> bool:
    return (user.role or "").lower() == "admin"


def visible_query(db: Session, model, user: User):
    """Common items plus the caller's own; admins see everything."""
    query = db.query(model)
    if is_admin(user):
        return query
    return query.filter(or_(model.is_common.is_(True), model.created_by == user.id))


def get_visible(db: Session, model, user: User, item_id: int):
    return visible_query(db, model, user).filter(model.id == item_id).first()


def _require_visible(db: Session, model, user: User, item_id: int, label: str):
    row = get_visible(db, model, user, item_id)
    if not row:
        raise ValueError(f"{label} {item_id} not found")
    return row


def _non_negative(value: Any, field: str) -> float:
    try:
        parsed = float(value or 0)
    except (TypeError, ValueError):
        raise ValueError(f"`{field}` must be a number")
    if parsed < 0:
        raise ValueError(f"`{field}` must be >= 0")
    return parsed


def create_meal(db: Session, user: User, payload: dict[str, Any]) -> Meal:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise ValueError("Meal name is required")
    meal = Meal(
        name=name,
        description=(payload.get("description") or "").strip() or None,
        ingredients=json.dumps(payload.get("ingredients") or [], ensure_ascii=False),
        image=payload.get("image") or "",
        calories=_non_negative(payload.get("calories"), "calories"),
        carbs=_non_negative(payload.get("carbs"), "carbs"),
        protein=_non_negative(payload.get("protein"), "protein"),
        fat=_non_negative(payload.get("fat"), "fat"),
        weight_grams=_non_negative(payload.get("weight_grams"), "weight_grams"),
        is_common=is_admin(user),
        created_by=user.id,
    )
    db.add(meal)
    db.flush()
    return meal


def create_exercise(db: Session, user: User, payload: dict[str, Any]) -> Exercise:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise ValueError("Exercise name is required")
    difficulty = str(payload.get("difficulty") or "basic").strip().lower()
    if difficulty not in DIFFICULTIES:
        raise ValueError(f"`difficulty` must be one of: {', '.join(sorted(DIFFICULTIES))}")
    exercise = Exercise(
        name=name,
        description=(payload.get("description") or "").strip() or None,
        duration_minutes=_non_negative(payload.get("duration_minutes"), "duration_minutes"),
        calories_burned=_non_negative(payload.get("calories_burned"), "calories_burned"),
        video_url=payload.get("video_url") or "",
        difficulty=difficulty,
        is_common=is_admin(user),
        created_by=user.id,
    )
    db.add(exercise)
    db.flush()
    return exercise


def create_plan(db: Session, user: User, payload: dict[str, Any]) -> Plan:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise ValueError("Plan name is required")
    goal = str(payload.get("goal") or "healthy_lifestyle").strip().lower()
    if goal not in PLAN_GOALS:
        raise ValueError(f"`goal` must be one of: {', '.join(sorted(PLAN_GOALS))}")
    plan = Plan(
        name=name,
        description=payload.get("description") or "",
        goal=goal,
        is_common=is_admin(user),
        created_by=user.id,
    )
    for position, item in enumerate(payload.get("meals") or []):
        meal = _require_visible(db, Meal, user, int(item["meal_id"]), "Meal")
        plan.meals.append(PlanMeal(position=position, time=str(item.get("time") or "").strip(), meal_id=meal.id))
    for position, item in enumerate(payload.get("exercises") or []):
        exercise = _require_visible(db, Exercise, user, int(item["exercise_id"]), "Exercise")
        plan.exercises.append(
            PlanExercise(position=position, time=str(item.get("time") or "").strip(), exercise_id=exercise.id)
        )
    db.add(plan)
    db.flush()
    return plan


def create_weekly_plan(db: Session, user: User, payload: dict[str, Any]) -> WeeklyPlan:
    name = str(payload.get("name") or "").strip()
    if not name:
        raise ValueError("Weekly plan name is required")
    weekly = WeeklyPlan(
        name=name,
        description=payload.get("description") or "",
        is_common=is_admin(user),
        created_by=user.id,
    )
    days = payload.get("days") or {}
    for weekday in WEEKDAYS:
        plan_id = days.get(weekday)
        if plan_id is None:
            continue
        plan = _require_visible(db, Plan, user, int(plan_id), "Plan")
        setattr(weekly, f"{weekday}_plan_id", plan.id)
    db.add(weekly)
    db.flush()
    return weekly


def delete_item(db: Session, model, user: User, item_id: int) -> None:
    row = db.get(model, item_id)
    if not row:
        raise LookupError(f"{model.__name__} {item_id} not found")
    if not is_admin(user) and row.created_by != user.id:
        raise PermissionError(f"Not allowed to delete {model.__name__} {item_id}")
    db.delete(row)
    db.flush()


def serialize_meal(meal: Meal) -> dict[str, Any]:
    try:
        ingredients = json.loads(meal.ingredients or "[]")
    except (TypeError, ValueError):
        ingredients = []
    return {
        "id": meal.id,
        "name": meal.name,
        "description": meal.description,
        "ingredients": ingredients,
        "image": meal.image or "",
        "calories": meal.calories,
        "carbs": meal.carbs,
        "protein": meal.protein,
        "fat": meal.fat,
        "weight_grams": meal.weight_grams,
        "is_common": bool(meal.is_common),
        "created_by": meal.created_by,
    }


def serialize_exercise(exercise: Exercise) -> dict[str, Any]:
    return {
        "id": exercise.id,
        "name": exercise.name,
        "description": exercise.description,
        "duration_minutes": exercise.duration_minutes,
        "calories_burned": exercise.calories_burned,
        "video_url": exercise.video_url or "",
        "difficulty": exercise.difficulty,
        "is_common": bool(exercise.is_common),
        "created_by": exercise.created_by,
    }


def serialize_plan(plan: Plan) -> dict[str, Any]:
    return {
        "id": plan.id,
        "name": plan.name,
        "description": plan.description or "",
        "goal": plan.goal,
        "is_common": bool(plan.is_common),
        "created_by": plan.created_by,
        "meals": [
            {"time": row.time, "meal_id": row.meal_id, "meal_name": row.meal.name if row.meal else None}
            for row in plan.meals
        ],
        "exercises": [
            {
                "time": row.time,
                "exercise_id": row.exercise_id,
                "exercise_name": row.exercise.name if row.exercise else None,
            }
            for row in plan.exercises
        ],
    }


def serialize_weekly_plan(weekly: WeeklyPlan) -> dict[str, Any]:
    return {
        "id": weekly.id,
        "name": weekly.name,
        "description": weekly.description or "",
        "is_common": bool(weekly.is_common),
        "created_by": weekly.created_by,
        "days": {weekday: weekly.plan_id_for(weekday) for weekday in WEEKDAYS},
    }
