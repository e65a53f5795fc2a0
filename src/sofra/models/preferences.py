"""
Sofra - Preference models.

A PreferenceSnapshot is what the user told us during onboarding: diet,
allergies, cuisines, cooking constraints and a weekly routine. Routine
days describe the *context* of a day (commute, high-activity,
low-constraint) rather than a job type.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class MealType(str, Enum):
    BREAKFAST = "breakfast"
    LUNCH = "lunch"
    DINNER = "dinner"


class DayContext(str, Enum):
    """What kind of day a routine day is."""

    COMMUTE = "commute"  # away from home, meals need to travel
    HIGH_ACTIVITY = "high-activity"  # training day, protein matters
    LOW_CONSTRAINT = "low-constraint"  # at home, time for more elaborate cooking
    STANDARD = "standard"


# Routine values written by older clients
LEGACY_DAY_TYPES: dict[str, DayContext] = {
    "office": DayContext.COMMUTE,
    "school": DayContext.COMMUTE,
    "gym": DayContext.HIGH_ACTIVITY,
    "remote": DayContext.LOW_CONSTRAINT,
    "off": DayContext.LOW_CONSTRAINT,
}

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

WorkoutTime = Literal["morning", "afternoon", "evening", "none"]
TimePreference = Literal["quick", "balanced", "elaborate"]
SkillLevel = Literal["beginner", "intermediate", "expert"]


def _yes_no(value: Any) -> Any:
    if isinstance(value, str) and value.strip().lower() in ("yes", "no"):
        return value.strip().lower() == "yes"
    return value


def _fold(value: Any) -> Any:
    """Trim and lowercase enum-like input so casing never fails validation."""
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, list):
        return [_fold(v) for v in value]
    return value


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RoutineDay(_CamelModel):
    """One day of the weekly routine."""

    type: DayContext = DayContext.STANDARD
    workout_time: WorkoutTime = "none"
    portable_meal_needed: bool = False
    breakfast_at_home: bool = False
    meals: list[MealType] = Field(default_factory=list)
    exclude_from_plan: bool = False

    @model_validator(mode="before")
    @classmethod
    def _map_legacy_fields(cls, data: Any) -> Any:
        """Accept the office/school/gym/remote/off routine shape."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        legacy_type = str(data.get("type", "")).strip().lower()
        if "gymTime" in data:
            data.setdefault("workoutTime", data.pop("gymTime"))
        if "officeMealToGo" in data:
            data.setdefault("portableMealNeeded", _yes_no(data.pop("officeMealToGo")))
        if "officeBreakfastAtHome" in data:
            data.setdefault("breakfastAtHome", _yes_no(data.pop("officeBreakfastAtHome")))
        if "schoolBreakfast" in data:
            school_breakfast = _yes_no(data.pop("schoolBreakfast"))
            if legacy_type == "school":
                data.setdefault("breakfastAtHome", school_breakfast)
        if "remoteMeals" in data:
            data.setdefault("meals", data.pop("remoteMeals"))
        if legacy_type == "school":
            # school days never had a packed lunch in the plan
            data.setdefault("portableMealNeeded", False)
        return data

    @field_validator("type", mode="before")
    @classmethod
    def _map_legacy_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            key = value.strip().lower()
            return LEGACY_DAY_TYPES.get(key, key)
        return value

    @field_validator("workout_time", "meals", mode="before")
    @classmethod
    def _fold_enums(cls, value: Any) -> Any:
        return _fold(value)

    @field_validator("portable_meal_needed", "breakfast_at_home", mode="before")
    @classmethod
    def _coerce_yes_no(cls, value: Any) -> Any:
        return _yes_no(value)


def default_routine_day(day: str) -> RoutineDay:
    """The fixed default pattern: weekdays commute, weekends low-constraint."""
    if day in ("saturday", "sunday"):
        return RoutineDay(type=DayContext.LOW_CONSTRAINT)
    return RoutineDay(type=DayContext.COMMUTE)


class PreferenceSnapshot(_CamelModel):
    """
    The user's planning preferences.

    Routines may be partial; missing days are filled from the default
    weekly pattern during normalisation.
    """

    dietary_restrictions: list[str] = Field(default_factory=list)
    allergies: list[str] = Field(default_factory=list)
    cuisine_preferences: list[str] = Field(default_factory=list)
    time_preference: TimePreference = "balanced"
    skill_level: SkillLevel = "intermediate"
    equipment: list[str] = Field(default_factory=list)
    household_size: int = Field(default=1, ge=1)
    routines: dict[str, RoutineDay] = Field(default_factory=dict)

    @field_validator("time_preference", "skill_level", mode="before")
    @classmethod
    def _fold_enums(cls, value: Any) -> Any:
        return _fold(value)

    @field_validator("routines", mode="before")
    @classmethod
    def _lowercase_days(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k).strip().lower(): v for k, v in value.items()}
        return value

    @field_validator("routines")
    @classmethod
    def _known_days(cls, value: dict[str, RoutineDay]) -> dict[str, RoutineDay]:
        unknown = set(value) - set(WEEKDAYS)
        if unknown:
            raise ValueError(f"Unknown routine days: {sorted(unknown)}")
        return value

    def routine_for(self, day_of_week: str) -> RoutineDay:
        """The routine for a day, falling back to the default pattern."""
        day = day_of_week.lower()
        return self.routines.get(day) or default_routine_day(day)
