from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import Exercise, Meal, Plan, User, WeeklyPlan
from services.library_service import (
    create_exercise,
    create_meal,
    create_plan,
    create_weekly_plan,
    delete_item,
    serialize_exercise,
    serialize_meal,
    serialize_plan,
    serialize_weekly_plan,
    visible_query,
)


router = APIRouter(prefix="/library", tags=["library"])


class Ingredient(BaseModel):
    name: str
    weight_gram: float = Field(ge=0)


class MealCreate(BaseModel):
    name: str
    description: Optional[str] = None
    ingredients: list[Ingredient] = []
    image: Optional[str] = None
    calories: float = 0
    carbs: float = 0
    protein: float = 0
    fat: float = 0
    weight_grams: float = 0


class ExerciseCreate(BaseModel):
    name: str
    description: Optional[str] = None
    duration_minutes: float = 0
    calories_burned: float = 0
    video_url: Optional[str] = None
    difficulty: str = "basic"


class PlanMealItem(BaseModel):
    time: str
    meal_id: int


class PlanExerciseItem(BaseModel):
    time: str
    exercise_id: int


class PlanCreate(BaseModel):
    name: str
    description: Optional[str] = None
    goal: str = "healthy_lifestyle"
    meals: list[PlanMealItem] = []
    exercises: list[PlanExerciseItem] = []


class WeeklyPlanCreate(BaseModel):
    name: str
    description: Optional[str] = None
    days: dict[str, Optional[int]] = {}  # monday..sunday -> plan id


def _create(db: Session, creator, user: User, payload: BaseModel, serializer):
    try:
        row = creator(db, user, payload.model_dump())
    except ValueError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc))
    db.commit()
    return serializer(row)


def _delete(db: Session, model, user: User, item_id: int):
    try:
        delete_item(db, model, user, item_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except PermissionError as exc:
        raise HTTPException(status_code=403, detail=str(exc))
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=409, detail="Item is still used by a plan or progress entry")
    db.commit()
    return {"status": "ok", "id": item_id}


@router.get("/meals")
def list_meals(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = visible_query(db, Meal, user).order_by(Meal.name).all()
    return [serialize_meal(row) for row in rows]


@router.post("/meals", status_code=status.HTTP_201_CREATED)
def add_meal(payload: MealCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _create(db, create_meal, user, payload, serialize_meal)


@router.delete("/meals/{meal_id}")
def remove_meal(meal_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _delete(db, Meal, user, meal_id)


@router.get("/exercises")
def list_exercises(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = visible_query(db, Exercise, user).order_by(Exercise.name).all()
    return [serialize_exercise(row) for row in rows]


@router.post("/exercises", status_code=status.HTTP_201_CREATED)
def add_exercise(payload: ExerciseCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _create(db, create_exercise, user, payload, serialize_exercise)


@router.delete("/exercises/{exercise_id}")
def remove_exercise(exercise_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _delete(db, Exercise, user, exercise_id)


@router.get("/plans")
def list_plans(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = visible_query(db, Plan, user).order_by(Plan.created_at.desc(), Plan.id.desc()).all()
    return [serialize_plan(row) for row in rows]


@router.post("/plans", status_code=status.HTTP_201_CREATED)
def add_plan(payload: PlanCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _create(db, create_plan, user, payload, serialize_plan)


@router.get("/weekly-plans")
def list_weekly_plans(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    rows = visible_query(db, WeeklyPlan, user).order_by(WeeklyPlan.created_at.desc(), WeeklyPlan.id.desc()).all()
    return [serialize_weekly_plan(row) for row in rows]


@router.post("/weekly-plans", status_code=status.HTTP_201_CREATED)
def add_weekly_plan(payload: WeeklyPlanCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _create(db, create_weekly_plan, user, payload, serialize_weekly_plan)
