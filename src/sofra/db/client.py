"""
Sofra - Supabase Client.

Supabase implementations of the durable stores. Tables:

- menus: one row per (user, date, meal type), id "{user}_{date}_{meal}"
- recipes: deduplicated by content hash
- generation_status: one row per (user, week), id "{user}_{week_start}"

The supabase-py client is synchronous; calls run in a worker thread so
concurrent meal tasks do not block each other.
"""

import asyncio
import logging
from datetime import UTC, date, datetime
from typing import Any
from uuid import uuid4

from pydantic import ValidationError
from supabase import Client, create_client

from sofra.config import settings
from sofra.db.adapter import StoredMenu, menu_id
from sofra.models.menu import MenuBundle, MenuDecision, MenuRecipe
from sofra.models.preferences import MealType
from sofra.models.status import TERMINAL_STATES, GenerationState, GenerationStatus, status_id

logger = logging.getLogger(__name__)

# Singleton client instance
_client: Client | None = None


def get_client() -> Client:
    """
    Get the Supabase client.

    Uses singleton pattern to reuse connection.
    """
    global _client

    if _client is None:
        if not settings.has_supabase:
            raise RuntimeError("SUPABASE_URL and SUPABASE_ANON_KEY must be set for the durable store")
        _client = create_client(
            settings.supabase_url,
            settings.supabase_anon_key,
        )

    return _client


def _utc_now() -> str:
    """Get current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


async def _execute(query: Any) -> Any:
    """Run a built query off the event loop."""
    return await asyncio.to_thread(query.execute)


def _rows(response: Any) -> list[dict]:
    if response is None or response.data is None:
        return []
    if isinstance(response.data, dict):
        return [response.data]
    return response.data


# =============================================================================
# Menus and recipes
# =============================================================================


class SupabaseMenuStore:
    """MenuStore over the menus and recipes tables."""

    def __init__(self, client: Client | None = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_client()
        return self._client

    async def _find_recipe_by_hash(self, content_hash: str) -> str | None:
        response = await _execute(
            self.client.table("recipes").select("id").eq("content_hash", content_hash).limit(1)
        )
        rows = _rows(response)
        return rows[0]["id"] if rows else None

    async def _save_recipe(self, user_id: str, menu_row_id: str, recipe: MenuRecipe, cuisine: str) -> str:
        content_hash = recipe.content_hash(cuisine)
        existing = await self._find_recipe_by_hash(content_hash)
        if existing:
            logger.debug(f"Reusing recipe {existing} for {recipe.name}")
            return existing

        recipe_row_id = str(uuid4())
        await _execute(
            self.client.table("recipes").insert({
                "id": recipe_row_id,
                "content_hash": content_hash,
                "user_id": user_id,
                "menu_id": menu_row_id,
                "course": recipe.course.value,
                "name": recipe.name,
                "cuisine": cuisine,
                "data": recipe.model_dump(mode="json", by_alias=True),
                "created_at": _utc_now(),
            })
        )
        return recipe_row_id

    async def save_menu(
        self,
        user_id: str,
        day: date,
        meal_type: MealType,
        bundle: MenuBundle,
        *,
        preference_hash: str | None,
        model: str | None = None,
        cost_usd: float = 0.0,
    ) -> str:
        """Write recipes first, then the menu row that links them."""
        row_id = menu_id(user_id, day, meal_type)
        decision = bundle.decision

        items = []
        recipe_ids = []
        for recipe in bundle.recipes:
            recipe_row_id = await self._save_recipe(user_id, row_id, recipe, decision.cuisine)
            recipe_ids.append(recipe_row_id)
            items.append({"course": recipe.course.value, "name": recipe.name, "recipe_id": recipe_row_id})

        now = _utc_now()
        await _execute(
            self.client.table("menus").upsert({
                "id": row_id,
                "user_id": user_id,
                "date": day.isoformat(),
                "meal_type": MealType(meal_type).value,
                "cuisine": decision.cuisine,
                "total_time_minutes": decision.total_time_minutes,
                "reasoning": decision.reasoning,
                "decision": decision.model_dump(mode="json", by_alias=True),
                "items": items,
                "recipe_ids": recipe_ids,
                "preference_hash": preference_hash,
                "model": model,
                "generation_cost_usd": round(cost_usd, 6),
                "created_at": now,
                "updated_at": now,
            })
        )
        logger.info(f"Saved menu {row_id} ({len(recipe_ids)} recipes)")
        return row_id

    async def _assemble(self, row: dict) -> StoredMenu | None:
        """Join a menu row with its recipes. Missing recipes leave the bundle partial."""
        recipe_ids = row.get("recipe_ids") or []
        recipes: list[MenuRecipe] = []
        try:
            decision = MenuDecision.model_validate(row["decision"])
            if recipe_ids:
                response = await _execute(
                    self.client.table("recipes").select("id, data").in_("id", recipe_ids)
                )
                by_id = {r["id"]: r for r in _rows(response)}
                for recipe_row_id in recipe_ids:
                    if recipe_row_id in by_id:
                        recipes.append(MenuRecipe.model_validate(by_id[recipe_row_id]["data"]))
        except (KeyError, ValidationError) as e:
            logger.warning(f"Stored menu {row.get('id')} is unreadable, treating as absent: {e}")
            return None

        return StoredMenu(
            id=row["id"],
            user_id=row["user_id"],
            date=date.fromisoformat(row["date"]),
            meal_type=MealType(row["meal_type"]),
            bundle=MenuBundle(decision=decision, recipes=recipes),
            preference_hash=row.get("preference_hash"),
            model=row.get("model"),
            cost_usd=row.get("generation_cost_usd") or 0.0,
        )

    async def get_menu(self, user_id: str, day: date, meal_type: MealType) -> StoredMenu | None:
        response = await _execute(
            self.client.table("menus").select("*").eq("id", menu_id(user_id, day, meal_type)).maybe_single()
        )
        rows = _rows(response)
        if not rows:
            return None
        return await self._assemble(rows[0])

    async def list_menus(self, user_id: str, start: date, end: date) -> list[StoredMenu]:
        response = await _execute(
            self.client.table("menus")
            .select("*")
            .eq("user_id", user_id)
            .gte("date", start.isoformat())
            .lte("date", end.isoformat())
            .order("date")
        )
        menus = []
        for row in _rows(response):
            stored = await self._assemble(row)
            if stored is not None:
                menus.append(stored)
        return menus


# =============================================================================
# Generation status
# =============================================================================


_ACTIVE_STATES = [GenerationState.PENDING.value, GenerationState.IN_PROGRESS.value]


class SupabaseStatusStore:
    """
    StatusStore over the generation_status table.

    Updates are conditional (counter lower than the new value, state not
    terminal) so concurrent writers can never move a row backwards.
    """

    def __init__(self, client: Client | None = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_client()
        return self._client

    async def get_status(self, user_id: str, week_start: date) -> GenerationStatus | None:
        response = await _execute(
            self.client.table("generation_status")
            .select("*")
            .eq("id", status_id(user_id, week_start))
            .maybe_single()
        )
        rows = _rows(response)
        if not rows:
            return None
        return GenerationStatus.model_validate(rows[0])

    async def create_status(self, status: GenerationStatus) -> GenerationStatus | None:
        row = {"id": status.id, **status.model_dump(mode="json")}
        row["updated_at"] = _utc_now()
        response = await _execute(
            self.client.table("generation_status").upsert(row, ignore_duplicates=True)
        )
        # ignored duplicates come back with no rows
        if not _rows(response):
            return None
        return GenerationStatus.model_validate(row)

    async def advance(self, user_id: str, week_start: date, completed_days: int) -> GenerationStatus | None:
        await _execute(
            self.client.table("generation_status")
            .update({"completed_days": completed_days, "updated_at": _utc_now()})
            .eq("id", status_id(user_id, week_start))
            .lt("completed_days", completed_days)
            .in_("status", _ACTIVE_STATES)
        )
        return await self.get_status(user_id, week_start)

    async def transition(
        self,
        user_id: str,
        week_start: date,
        to_state: GenerationState,
        *,
        from_states: tuple[GenerationState, ...],
        error: str | None = None,
    ) -> GenerationStatus | None:
        allowed = [s.value for s in from_states if s not in TERMINAL_STATES]
        if not allowed:
            return await self.get_status(user_id, week_start)

        now = _utc_now()
        updates: dict[str, Any] = {"status": to_state.value, "updated_at": now}
        if to_state == GenerationState.IN_PROGRESS:
            updates["started_at"] = now
        if to_state in TERMINAL_STATES:
            updates["completed_at"] = now
        if error is not None:
            updates["error"] = error

        await _execute(
            self.client.table("generation_status")
            .update(updates)
            .eq("id", status_id(user_id, week_start))
            .in_("status", allowed)
        )
        return await self.get_status(user_id, week_start)
