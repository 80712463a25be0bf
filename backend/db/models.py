from datetime import datetime
from sqlalchemy import (
    Column, Integer, Text, Float, Boolean, ForeignKey, Index,
    Date, DateTime,
)
from sqlalchemy.orm import relationship
from db.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(Text, unique=True, nullable=False)  # stored lowercased
    name = Column(Text, nullable=False)
    password_hash = Column(Text, nullable=True)
    role = Column(Text, nullable=False, default="user")  # user | admin
    is_active = Column(Boolean, nullable=False, default=True)
    token_version = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    progress_entries = relationship("ProgressEntry", back_populates="user", cascade="all, delete-orphan")


class Meal(Base):
    __tablename__ = "meals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    ingredients = Column(Text)  # JSON array of {name, weight_gram}
    image = Column(Text, default="")
    calories = Column(Float, nullable=False, default=0)
    carbs = Column(Float, nullable=False, default=0)
    protein = Column(Float, nullable=False, default=0)
    fat = Column(Float, nullable=False, default=0)
    weight_grams = Column(Float, nullable=False, default=0)
    is_common = Column(Boolean, nullable=False, default=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Exercise(Base):
    __tablename__ = "exercises"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    duration_minutes = Column(Float, nullable=False, default=0)
    calories_burned = Column(Float, nullable=False, default=0)
    video_url = Column(Text, default="")
    difficulty = Column(Text, nullable=False, default="basic")  # basic | intermediate | advanced
    is_common = Column(Boolean, nullable=False, default=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Plan(Base):
    """A reusable single-day template of timed meals and exercises."""

    __tablename__ = "plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    description = Column(Text, default="")
    goal = Column(Text, default="healthy_lifestyle")  # weight_loss | muscle_gain | healthy_lifestyle
    is_common = Column(Boolean, nullable=False, default=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    meals = relationship(
        "PlanMeal", back_populates="plan", cascade="all, delete-orphan", order_by="PlanMeal.position"
    )
    exercises = relationship(
        "PlanExercise", back_populates="plan", cascade="all, delete-orphan", order_by="PlanExercise.position"
    )


class PlanMeal(Base):
    __tablename__ = "plan_meals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    time = Column(Text, nullable=False)  # HH:MM local
    meal_id = Column(Integer, ForeignKey("meals.id"), nullable=False)

    plan = relationship("Plan", back_populates="meals")
    meal = relationship("Meal")


class PlanExercise(Base):
    __tablename__ = "plan_exercises"

    id = Column(Integer, primary_key=True, autoincrement=True)
    plan_id = Column(Integer, ForeignKey("plans.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    time = Column(Text, nullable=False)
    exercise_id = Column(Integer, ForeignKey("exercises.id"), nullable=False)

    plan = relationship("Plan", back_populates="exercises")
    exercise = relationship("Exercise")


WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class WeeklyPlan(Base):
    __tablename__ = "weekly_plans"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    description = Column(Text, default="")
    is_common = Column(Boolean, nullable=False, default=False)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    monday_plan_id = Column(Integer, ForeignKey("plans.id"), nullable=True)
    tuesday_plan_id = Column(Integer, ForeignKey("plans.id"), nullable=True)
    wednesday_plan_id = Column(Integer, ForeignKey("plans.id"), nullable=True)
    thursday_plan_id = Column(Integer, ForeignKey("plans.id"), nullable=True)
    friday_plan_id = Column(Integer, ForeignKey("plans.id"), nullable=True)
    saturday_plan_id = Column(Integer, ForeignKey("plans.id"), nullable=True)
    sunday_plan_id = Column(Integer, ForeignKey("plans.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def plan_id_for(self, weekday: str) -> int | None:
        return getattr(self, f"{weekday}_plan_id")


class ProgressEntry(Base):
    """One user's planned meals and exercises for one UTC calendar day."""

    __tablename__ = "progress_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    date = Column(Date, nullable=False)
    plan_id = Column(Integer, nullable=True)  # daily or weekly plan it was applied from
    plan_type = Column(Text)  # daily | weekly
    notes = Column(Text, default="")
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User", back_populates="progress_entries")
    meals = relationship(
        "ProgressMeal", back_populates="entry", cascade="all, delete-orphan", order_by="ProgressMeal.position"
    )
    exercises = relationship(
        "ProgressExercise",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="ProgressExercise.position",
    )


class ProgressMeal(Base):
    __tablename__ = "progress_meals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entry_id = Column(Integer, ForeignKey("progress_entries.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    time = Column(Text, nullable=False)  # HH:MM local
    meal_id = Column(Integer, ForeignKey("meals.id"), nullable=False)
    completed = Column(Boolean, nullable=False, default=False)

    entry = relationship("ProgressEntry", back_populates="meals")
    meal = relationship("Meal")


class ProgressExercise(Base):
    __tablename__ = "progress_exercises"

    id = Column(Integer, primary_key=True, autoincrement=True)
    entry_id = Column(Integer, ForeignKey("progress_entries.id"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    time = Column(Text, nullable=False)
    exercise_id = Column(Integer, ForeignKey("exercises.id"), nullable=False)
    completed = Column(Boolean, nullable=False, default=False)

    entry = relationship("ProgressEntry", back_populates="exercises")
    exercise = relationship("Exercise")


Index("idx_progress_entries_user_date", ProgressEntry.user_id, ProgressEntry.date, unique=True)
Index("idx_progress_entries_date", ProgressEntry.date)
Index("idx_meals_common", Meal.is_common)
Index("idx_meals_created_by", Meal.created_by)
Index("idx_exercises_common", Exercise.is_common)
Index("idx_exercises_created_by", Exercise.created_by)
Index("idx_plans_created_by", Plan.created_by)
Index("idx_weekly_plans_created_by", WeeklyPlan.created_by)
Index("idx_users_active", User.is_active)
