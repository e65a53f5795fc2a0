"""
Sofra - Generation request building.

Turns a preference snapshot plus a (date, meal) into the immutable
GenerationRequest the pipeline consumes.
"""

from collections.abc import Iterable
from datetime import date

from sofra.models.menu import GenerationRequest, WeeklyContext
from sofra.models.preferences import (
    DayContext,
    MealType,
    PreferenceSnapshot,
    RoutineDay,
    WEEKDAYS,
)
from sofra.preferences.hashing import normalize_snapshot, preference_hash

DEFAULT_TIME_CEILING_MINUTES = 45

ALL_MEALS = [MealType.BREAKFAST, MealType.LUNCH, MealType.DINNER]


def day_of_week(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def resolve_meal_plan(routine: RoutineDay) -> list[MealType]:
    """
    Which meals a routine day needs, in breakfast/lunch/dinner order.

    - excluded day: nothing
    - commute: breakfast only when eaten at home, lunch only when a
      portable meal is needed, dinner always
    - low-constraint: the listed meals, or all three when none listed
    - high-activity / standard: all three
    """
    if routine.exclude_from_plan:
        return []

    if routine.type == DayContext.COMMUTE:
        meals = []
        if routine.breakfast_at_home:
            meals.append(MealType.BREAKFAST)
        if routine.portable_meal_needed:
            meals.append(MealType.LUNCH)
        meals.append(MealType.DINNER)
        return meals

    if routine.type == DayContext.LOW_CONSTRAINT and routine.meals:
        wanted = set(routine.meals)
        return [m for m in ALL_MEALS if m in wanted]

    return list(ALL_MEALS)


def _clean(values: Iterable[str]) -> tuple[str, ...]:
    cleaned: list[str] = []
    seen: set[str] = set()
    for value in values:
        value = value.strip()
        if value and value.lower() not in seen:
            seen.add(value.lower())
            cleaned.append(value)
    return tuple(cleaned)


def build_generation_request(
    snapshot: PreferenceSnapshot,
    meal_date: date,
    meal_type: MealType | str,
    *,
    pantry: Iterable[str] = (),
    avoid_ingredients: Iterable[str] = (),
    avoid_dish_names: Iterable[str] = (),
    max_total_minutes: int | None = None,
    weekly_context: WeeklyContext | None = None,
) -> GenerationRequest:
    """Build the request for one meal on one date."""
    normalized = normalize_snapshot(snapshot)
    day = day_of_week(meal_date)

    return GenerationRequest(
        date=meal_date,
        day_of_week=day,
        meal_type=MealType(meal_type),
        routine=snapshot.routine_for(day),
        dietary_restrictions=tuple(normalized["dietaryRestrictions"]),
        allergies=tuple(normalized["allergies"]),
        cuisine_preferences=tuple(normalized["cuisinePreferences"]),
        time_preference=normalized["timePreference"],
        skill_level=normalized["skillLevel"],
        equipment=tuple(normalized["equipment"]),
        household_size=snapshot.household_size,
        pantry=_clean(pantry),
        avoid_ingredients=_clean(avoid_ingredients),
        avoid_dish_names=_clean(avoid_dish_names),
        max_total_minutes=max_total_minutes or DEFAULT_TIME_CEILING_MINUTES,
        preference_hash=preference_hash(snapshot),
        weekly_context=weekly_context,
    )
