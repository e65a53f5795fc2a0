"""
Sofra - Data models.

Preferences, menus/recipes/bundles and batch status.
"""

from sofra.models.menu import (
    CacheEntry,
    Course,
    GenerationRequest,
    MenuBundle,
    MenuDecision,
    MenuRecipe,
    RecipeExpansion,
    WeeklyContext,
)
from sofra.models.preferences import DayContext, MealType, PreferenceSnapshot, RoutineDay
from sofra.models.status import GenerationState, GenerationStatus

__all__ = [
    "CacheEntry",
    "Course",
    "DayContext",
    "GenerationRequest",
    "GenerationState",
    "GenerationStatus",
    "MealType",
    "MenuBundle",
    "MenuDecision",
    "MenuRecipe",
    "PreferenceSnapshot",
    "RecipeExpansion",
    "RoutineDay",
    "WeeklyContext",
]
