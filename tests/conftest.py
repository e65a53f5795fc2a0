"""
Pytest configuration and fixtures for Sofra tests.

Nothing here talks to OpenAI or Supabase: the durable stores run over an
in-memory Supabase stand-in and the pipeline runs over a scripted
TextBackend.
"""

import asyncio
import copy
import json
import os
import re
from datetime import date
from types import SimpleNamespace
from typing import Any

import pytest

# Set test environment before importing sofra modules
os.environ.setdefault("OPENAI_API_KEY", "test-key-not-real")
os.environ["SOFRA_ENV"] = "development"
os.environ["SOFRA_LOG_PROMPTS"] = "0"
os.environ.pop("SUPABASE_URL", None)
os.environ.pop("SUPABASE_ANON_KEY", None)

from sofra.cache.local import LocalMenuCache  # noqa: E402
from sofra.cache.resolver import TieredResolver  # noqa: E402
from sofra.db.client import SupabaseMenuStore, SupabaseStatusStore  # noqa: E402
from sofra.llm.client import BackendUnavailable, Completion  # noqa: E402
from sofra.models.menu import MenuBundle, MenuDecision, RecipeExpansion  # noqa: E402
from sofra.models.preferences import PreferenceSnapshot  # noqa: E402
from sofra.pipeline.extraction import extract_json  # noqa: E402
from sofra.pipeline.generation import GenerationPipeline  # noqa: E402


def run(coro):
    """Run a coroutine to completion on a fresh event loop."""
    return asyncio.run(coro)


# =============================================================================
# In-memory Supabase
# =============================================================================


class FakeQuery:
    """Just enough of the postgrest query builder for the Sofra stores."""

    def __init__(self, db: "FakeSupabase", table: str):
        self.db = db
        self.table_name = table
        self.op = "select"
        self.payload: Any = None
        self.filters: list[tuple[str, str, Any]] = []
        self.limit_n: int | None = None
        self.order_by: tuple[str, bool] | None = None
        self.single_mode: str | None = None
        self.ignore_duplicates = False

    def select(self, *columns):
        self.op = "select"
        return self

    def insert(self, payload):
        self.op, self.payload = "insert", payload
        return self

    def upsert(self, payload, *, ignore_duplicates=False, on_conflict=""):
        self.op, self.payload = "upsert", payload
        self.ignore_duplicates = ignore_duplicates
        return self

    def update(self, payload):
        self.op, self.payload = "update", payload
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(("eq", column, value))
        return self

    def lt(self, column, value):
        self.filters.append(("lt", column, value))
        return self

    def gte(self, column, value):
        self.filters.append(("gte", column, value))
        return self

    def lte(self, column, value):
        self.filters.append(("lte", column, value))
        return self

    def in_(self, column, values):
        self.filters.append(("in", column, list(values)))
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def order(self, column, desc=False):
        self.order_by = (column, desc)
        return self

    def maybe_single(self):
        self.single_mode = "maybe"
        return self

    def single(self):
        self.single_mode = "single"
        return self

    def _matches(self, row: dict) -> bool:
        for op, column, value in self.filters:
            current = row.get(column)
            if op == "eq" and current != value:
                return False
            if op == "lt" and not (current is not None and current < value):
                return False
            if op == "gte" and not (current is not None and current >= value):
                return False
            if op == "lte" and not (current is not None and current <= value):
                return False
            if op == "in" and current not in value:
                return False
        return True

    def execute(self):
        error = self.db.errors.get((self.table_name, self.op))
        if error is not None:
            raise error

        rows = self.db.tables.setdefault(self.table_name, {})
        self.db.calls.append((self.table_name, self.op))

        if self.op in ("insert", "upsert"):
            payload = self.payload if isinstance(self.payload, list) else [self.payload]
            if self.ignore_duplicates:
                payload = [row for row in payload if row["id"] not in rows]
            for row in payload:
                rows[row["id"]] = copy.deepcopy(row)
            return SimpleNamespace(data=copy.deepcopy(payload))

        matched = [row for row in rows.values() if self._matches(row)]

        if self.op == "update":
            for row in matched:
                row.update(copy.deepcopy(self.payload))
            return SimpleNamespace(data=copy.deepcopy(matched))

        if self.op == "delete":
            for row in matched:
                rows.pop(row["id"], None)
            return SimpleNamespace(data=copy.deepcopy(matched))

        if self.order_by:
            column, desc = self.order_by
            matched.sort(key=lambda r: r.get(column), reverse=desc)
        if self.limit_n is not None:
            matched = matched[: self.limit_n]
        matched = copy.deepcopy(matched)

        if self.single_mode == "maybe":
            # supabase-py returns None rather than an empty response
            return SimpleNamespace(data=matched[0]) if matched else None
        if self.single_mode == "single":
            return SimpleNamespace(data=matched[0])
        return SimpleNamespace(data=matched)


class FakeSupabase:
    """In-memory stand-in for a supabase Client."""

    def __init__(self):
        self.tables: dict[str, dict[str, dict]] = {}
        self.errors: dict[tuple[str, str], Exception] = {}
        self.calls: list[tuple[str, str]] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def rows(self, name: str) -> list[dict]:
        return list(self.tables.get(name, {}).values())


# =============================================================================
# Canned LLM payloads
# =============================================================================


MACROS = {"calories": 520, "protein": 32, "carbs": 48, "fat": 18}

DISHES = {
    "breakfast": ("Menemen", "Simit", "meze", "Beyaz Peynir Tabağı"),
    "lunch": ("Tavuklu Bulgur Salatası", "Cacık", "salad", "Çoban Salatası"),
    "dinner": ("Tavuk Sote", "Bulgur Pilavı", "soup", "Mercimek Çorbası"),
}


def decision_payload(
    meal_type: str = "dinner",
    *,
    cuisine: str = "Turkish",
    total_time_minutes: int = 40,
    main: str | None = None,
    side: str | None = None,
    extra_type: str | None = None,
    extra: str | None = None,
) -> dict:
    default_main, default_side, default_extra_type, default_extra = DISHES[meal_type]
    return {
        "mealType": meal_type,
        "cuisine": cuisine,
        "totalTimeMinutes": total_time_minutes,
        "reasoning": f"A balanced {meal_type} that fits the day and stays within the time budget.",
        "main": {"name": main or default_main},
        "side": {"name": side or default_side},
        "extra": {"type": extra_type or default_extra_type, "name": extra or default_extra},
    }


def recipe_payload(
    course: str,
    name: str,
    *,
    servings: int = 1,
    ingredients: list[str] | None = None,
    equipment: list[str] | None = None,
) -> dict:
    ingredients = ingredients or [f"{name.lower()} base", "olive oil", "salt"]
    return {
        "course": course,
        "name": name,
        "brief": f"Home-style {name}.",
        "servings": servings,
        "prepTimeMinutes": 10,
        "cookTimeMinutes": 20,
        "totalTimeMinutes": 30,
        "equipment": equipment if equipment is not None else ["pan", "knife"],
        "ingredients": [
            {"name": ingredient, "amount": 100, "unit": "g", "notes": ""} for ingredient in ingredients
        ],
        "instructions": [
            {"step": 1, "text": "Prepare the ingredients.", "durationMinutes": 5},
            {"step": 2, "text": "Cook over medium heat.", "durationMinutes": 15},
            {"step": 3, "text": "Season and serve.", "durationMinutes": 2},
        ],
        "nutrition": {"per100g": MACROS, "perServing": MACROS, "total": MACROS},
    }


def expansion_payload(decision: dict, *, servings: int = 1, **recipe_overrides) -> dict:
    return {
        "mealType": decision["mealType"],
        "cuisine": decision["cuisine"],
        "totalTimeMinutes": decision["totalTimeMinutes"],
        "recipes": [
            recipe_payload("main", decision["main"]["name"], servings=servings, **recipe_overrides),
            recipe_payload("side", decision["side"]["name"], servings=servings, **recipe_overrides),
            recipe_payload(decision["extra"]["type"], decision["extra"]["name"], servings=servings, **recipe_overrides),
        ],
    }


def make_bundle(meal_type: str = "dinner", *, servings: int = 1, **decision_overrides) -> MenuBundle:
    decision = decision_payload(meal_type, **decision_overrides)
    expansion = RecipeExpansion.model_validate(expansion_payload(decision, servings=servings))
    return MenuBundle(decision=MenuDecision.model_validate(decision), recipes=expansion.recipes)


# =============================================================================
# Scripted text backend
# =============================================================================


_MEAL_IN_PROMPT = re.compile(r"^(?:Plan|Expand this) (breakfast|lunch|dinner)\b", re.MULTILINE)
_SERVINGS_IN_PROMPT = re.compile(r"servings must be exactly (\d+)")
_DATE_IN_PROMPT = re.compile(r"(\d{4}-\d{2}-\d{2})")


class FakeBackend:
    """
    TextBackend that answers from the prompt itself.

    Menu decisions get dish names unique to the call's date and meal;
    expansions echo the decision carried in the prompt. Per-meal delays
    and failures can be scripted, and `replies` overrides the text for a
    node (one reply per call, in order).
    """

    def __init__(
        self,
        *,
        delays: dict[str, float] | None = None,
        failures: dict[str, Exception | str] | None = None,
        replies: dict[str, list[str]] | None = None,
        model: str = "gpt-4.1-mini",
    ):
        self.delays = delays or {}
        self.failures = failures or {}
        self.replies = {node: list(texts) for node, texts in (replies or {}).items()}
        self.model = model
        self.calls: list[tuple[str, str, str]] = []
        self.prompts: list[str] = []

    async def complete(
        self,
        *,
        node: str,
        system_prompt: str,
        user_prompt: str,
        json_schema: dict[str, Any],
        schema_name: str,
    ) -> Completion:
        meal = _MEAL_IN_PROMPT.search(user_prompt).group(1)
        day = _DATE_IN_PROMPT.search(user_prompt).group(1)
        self.calls.append((node, meal, day))
        self.prompts.append(user_prompt)

        delay = self.delays.get(meal, 0)
        if delay:
            await asyncio.sleep(delay)

        failure = self.failures.get(meal)
        if isinstance(failure, Exception):
            raise failure
        if failure is not None:
            return Completion(text=failure, model=self.model, input_tokens=100, output_tokens=10)

        if self.replies.get(node):
            text = self.replies[node].pop(0)
        elif node == "menu_decision":
            main, side, extra_type, extra = DISHES[meal]
            text = _as_json(
                decision_payload(meal, main=f"{main} {day}", side=f"{side} {day}", extra=f"{extra} {day}")
            )
        else:
            decision = extract_json(user_prompt).value
            servings = int(_SERVINGS_IN_PROMPT.search(user_prompt).group(1))
            text = _as_json(expansion_payload(decision, servings=servings))

        return Completion(text=text, model=self.model, input_tokens=1000, output_tokens=500)

    def calls_for(self, node: str) -> list[tuple[str, str]]:
        return [(meal, day) for called, meal, day in self.calls if called == node]


def _as_json(payload: dict) -> str:
    return "```json\n" + json.dumps(payload, ensure_ascii=False) + "\n```"


def unavailable(message: str = "connection refused") -> BackendUnavailable:
    return BackendUnavailable(message)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def menu_store(fake_supabase):
    return SupabaseMenuStore(client=fake_supabase)


@pytest.fixture
def status_store(fake_supabase):
    return SupabaseStatusStore(client=fake_supabase)


@pytest.fixture
def local_cache(tmp_path):
    return LocalMenuCache(tmp_path / "cache", ttl_hours=72)


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def make_resolver(menu_store, local_cache):
    """Build a TieredResolver over the in-memory stores and a given backend."""

    def _make(backend=None, *, generation_timeout=None):
        return TieredResolver(
            menu_store,
            GenerationPipeline(backend or FakeBackend()),
            local_cache,
            generation_timeout=generation_timeout,
        )

    return _make


@pytest.fixture
def snapshot():
    """A Tuesday-training, weekday-commuting, two-person household."""
    return PreferenceSnapshot.model_validate({
        "dietaryRestrictions": ["halal"],
        "allergies": ["Peanuts"],
        "cuisinePreferences": ["Turkish", "Mediterranean"],
        "timePreference": "quick",
        "skillLevel": "intermediate",
        "equipment": ["Air Fryer"],
        "householdSize": 2,
        "routines": {
            "monday": {"type": "commute", "portableMealNeeded": True, "breakfastAtHome": True},
            "tuesday": {"type": "high-activity", "workoutTime": "evening"},
            "wednesday": {"type": "commute", "portableMealNeeded": False},
            "thursday": {"type": "commute", "portableMealNeeded": True},
            "friday": {"type": "commute", "breakfastAtHome": True},
            "saturday": {"type": "low-constraint", "meals": ["lunch", "dinner"]},
            "sunday": {"type": "low-constraint", "excludeFromPlan": True},
        },
    })


@pytest.fixture
def tuesday():
    return date(2025, 3, 11)


@pytest.fixture
def week_start():
    return date(2025, 3, 10)
