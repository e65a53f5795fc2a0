"""
Sofra - Menu, recipe and bundle models.

These models double as the closed JSON schemas sent to the LLM, so the
LLM-facing ones forbid extra properties and have no optional fields.
The wire format is camelCase; Python attributes are snake_case.
"""

import hashlib
from datetime import UTC, date, datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from sofra.models.preferences import MealType, RoutineDay


class Course(str, Enum):
    MAIN = "main"
    SIDE = "side"
    SOUP = "soup"
    SALAD = "salad"
    MEZE = "meze"
    DESSERT = "dessert"
    PASTRY = "pastry"


ExtraType = Literal["soup", "salad", "meze", "dessert", "pastry"]


class _ClosedModel(BaseModel):
    """camelCase on the wire, no unknown properties."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


# =============================================================================
# Stage 1 - Menu Decision
# =============================================================================


class Dish(_ClosedModel):
    name: str = Field(min_length=1)


class ExtraDish(_ClosedModel):
    type: ExtraType
    name: str = Field(min_length=1)


class MenuDecision(_ClosedModel):
    """
    The composed menu for one meal: a main, a side and one extra.

    Exactly three slots by construction; a fourth item cannot be
    expressed in this schema.
    """

    meal_type: MealType
    cuisine: str = Field(min_length=1)
    total_time_minutes: int = Field(ge=0)
    reasoning: str = Field(min_length=10)
    main: Dish
    side: Dish
    extra: ExtraDish

    def slots(self) -> list[tuple[Course, str]]:
        """(course, dish name) for each of the three slots."""
        return [
            (Course.MAIN, self.main.name),
            (Course.SIDE, self.side.name),
            (Course(self.extra.type), self.extra.name),
        ]

    def dish_names(self) -> list[str]:
        return [name for _, name in self.slots()]


# =============================================================================
# Stage 2 - Recipe Expansion
# =============================================================================


class Ingredient(_ClosedModel):
    name: str = Field(min_length=1)
    amount: float = Field(ge=0)
    unit: str
    notes: str


class InstructionStep(_ClosedModel):
    step: int = Field(ge=1)
    text: str = Field(min_length=1)
    duration_minutes: float = Field(ge=0)


class Macros(_ClosedModel):
    calories: float = Field(ge=0)
    protein: float = Field(ge=0)
    carbs: float = Field(ge=0)
    fat: float = Field(ge=0)


class NutritionBreakdown(_ClosedModel):
    per_100g: Macros = Field(alias="per100g")
    per_serving: Macros
    total: Macros


class MenuRecipe(_ClosedModel):
    """A full recipe for one menu slot."""

    course: Course
    name: str = Field(min_length=1)
    brief: str = Field(max_length=240)
    servings: int = Field(ge=1)
    prep_time_minutes: float = Field(ge=0)
    cook_time_minutes: float = Field(ge=0)
    total_time_minutes: float = Field(ge=0)
    equipment: list[str]
    ingredients: list[Ingredient] = Field(min_length=2)
    instructions: list[InstructionStep] = Field(min_length=3)
    nutrition: NutritionBreakdown

    def content_hash(self, cuisine: str) -> str:
        """
        Stable identity for deduplicating stored recipes.

        sha256 over name | cuisine | sorted ingredient names, all trimmed
        and lowercased.
        """
        ingredient_names = sorted(i.name.strip().lower() for i in self.ingredients)
        raw = "|".join([self.name.strip().lower(), cuisine.strip().lower(), ",".join(ingredient_names)])
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class RecipeExpansion(_ClosedModel):
    """Stage 2 response: one recipe per slot of the decision."""

    meal_type: MealType
    cuisine: str = Field(min_length=1)
    total_time_minutes: int = Field(ge=0)
    recipes: list[MenuRecipe] = Field(min_length=3, max_length=3)


# =============================================================================
# Bundles and cache entries
# =============================================================================


class MenuBundle(BaseModel):
    """A menu decision plus its recipes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    decision: MenuDecision
    recipes: list[MenuRecipe] = Field(default_factory=list)

    def recipe_for(self, course: Course) -> MenuRecipe | None:
        for recipe in self.recipes:
            if recipe.course == course:
                return recipe
        return None

    def is_complete(self) -> bool:
        """True only when every slot of the decision has its recipe."""
        if len(self.recipes) != len(self.decision.slots()):
            return False
        return all(self.recipe_for(course) is not None for course, _ in self.decision.slots())


class CacheEntry(BaseModel):
    """A bundle as stored in the local tier."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    bundle: MenuBundle
    preference_hash: str | None = None
    cached_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    model: str | None = None
    cost_usd: float = 0.0


# =============================================================================
# Generation request (never persisted)
# =============================================================================


class WeeklyContext(BaseModel):
    """Extra context when a request is part of a weekly batch job."""

    model_config = ConfigDict(frozen=True)

    week_start: date
    day_index: int = Field(ge=0, le=6)
    seasonality_hint: str = ""
    repeat_group: str | None = None


class GenerationRequest(BaseModel):
    """Everything the pipeline needs to plan one meal."""

    model_config = ConfigDict(frozen=True)

    date: date
    day_of_week: str
    meal_type: MealType
    routine: RoutineDay
    dietary_restrictions: tuple[str, ...] = ()
    allergies: tuple[str, ...] = ()
    cuisine_preferences: tuple[str, ...] = ()
    time_preference: str = "balanced"
    skill_level: str = "intermediate"
    equipment: tuple[str, ...] = ()
    household_size: int = 1
    pantry: tuple[str, ...] = ()
    avoid_ingredients: tuple[str, ...] = ()
    avoid_dish_names: tuple[str, ...] = ()
    max_total_minutes: int = 45
    preference_hash: str | None = None
    weekly_context: WeeklyContext | None = None
