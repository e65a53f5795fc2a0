"""
Sofra - Weekly shopping list.

Aggregates the ingredients of a completed week into one list. Refuses
to run against a week whose job has not completed, since a partial week
would produce a partial list.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Literal

from pydantic import BaseModel

from sofra.batch.status import StatusTracker, week_start_for
from sofra.db.adapter import MenuStore, StoredMenu
from sofra.llm.client import call_llm
from sofra.models.preferences import MealType
from sofra.models.status import GenerationState

logger = logging.getLogger(__name__)

GroceryCategory = Literal[
    "produce",
    "proteins",
    "dairy",
    "grains",
    "spices",
    "sauces",
    "bakery",
    "frozen",
    "beverages",
    "other",
]

GROCERY_CATEGORIES: dict[str, str] = {
    "produce": "Fresh fruit and vegetables (tomatoes, onions, lemons, herbs)",
    "proteins": "Meat, fish, eggs and other protein sources",
    "dairy": "Milk, cheese, yoghurt, butter, cream",
    "grains": "Rice, bulgur, pasta, pulses, flour, oats",
    "spices": "Salt, pepper, chilli flakes, cumin, dried herbs",
    "sauces": "Oils, vinegars, pastes, sauces and condiments",
    "bakery": "Bread and baked goods",
    "frozen": "Frozen foods",
    "beverages": "Water, juice, tea, coffee",
    "other": "Anything else",
}


class StatusNotCompleted(Exception):
    """Shopping list requested for a week whose generation is not complete."""


@dataclass
class ShoppingItem:
    name: str
    unit: str
    amount: float = 0.0
    meals: list[str] = field(default_factory=list)
    category: str = "other"


class CategorizedItem(BaseModel):
    name: str
    category: GroceryCategory


class GroceryCategorization(BaseModel):
    items: list[CategorizedItem]


def aggregate_ingredients(
    menus: list[StoredMenu],
    meal_types: set[MealType] | None = None,
) -> list[ShoppingItem]:
    """
    Sum ingredients across menus by (normalised name, unit).

    A recipe repeated on several days (cook once, eat twice) is counted
    once.
    """
    items: dict[tuple[str, str], ShoppingItem] = {}
    seen_recipes: set[str] = set()

    for menu in sorted(menus, key=lambda m: (m.date, m.meal_type.value)):
        if meal_types and menu.meal_type not in meal_types:
            continue
        cuisine = menu.bundle.decision.cuisine
        for recipe in menu.bundle.recipes:
            recipe_hash = recipe.content_hash(cuisine)
            if recipe_hash in seen_recipes:
                continue
            seen_recipes.add(recipe_hash)

            for ingredient in recipe.ingredients:
                name = " ".join(ingredient.name.strip().lower().split())
                unit = ingredient.unit.strip().lower()
                item = items.setdefault((name, unit), ShoppingItem(name=name, unit=unit))
                item.amount += ingredient.amount
                if recipe.name not in item.meals:
                    item.meals.append(recipe.name)

    return sorted(items.values(), key=lambda i: (i.name, i.unit))


GROCERY_SYSTEM_PROMPT = "You sort grocery items into store categories. Use exactly one category id per item."


async def categorize_items(items: list[ShoppingItem]) -> list[ShoppingItem]:
    """Assign grocery categories with a structured LLM call. Unmatched items stay 'other'."""
    if not items:
        return items

    categories = "\n".join(f"- {key}: {description}" for key, description in GROCERY_CATEGORIES.items())
    names = "\n".join(f"- {item.name}" for item in items)
    result = await call_llm(
        response_model=GroceryCategorization,
        system_prompt=GROCERY_SYSTEM_PROMPT,
        user_prompt=f"## Categories\n{categories}\n\n## Items\n{names}",
        node="grocery",
    )

    by_name = {c.name.strip().lower(): c.category for c in result.items}
    for item in items:
        item.category = by_name.get(item.name, "other")
    return items


class ShoppingListBuilder:
    """Builds the shopping list for a completed week."""

    def __init__(self, tracker: StatusTracker, menu_store: MenuStore, *, categorize: bool = False):
        self.tracker = tracker
        self.menu_store = menu_store
        self.categorize = categorize

    async def build(
        self,
        user_id: str,
        week_start: date,
        meal_types: set[MealType] | None = None,
    ) -> list[ShoppingItem]:
        week = week_start_for(week_start)
        status = await self.tracker.get_status(user_id, week)
        if status is None or status.status != GenerationState.COMPLETED:
            state = status.status.value if status else "missing"
            raise StatusNotCompleted(f"Week of {week} is {state}; shopping list needs a completed week")

        menus = await self.menu_store.list_menus(user_id, week, week + timedelta(days=6))
        items = aggregate_ingredients(menus, meal_types)
        logger.info(f"Shopping list for {user_id} week {week}: {len(items)} items from {len(menus)} menus")

        if self.categorize:
            try:
                items = await categorize_items(items)
            except Exception as e:
                logger.warning(f"Grocery categorisation failed, leaving items uncategorised: {e}")

        return items
