"""
Sofra - Tiered resolver.

Resolves one (user, date, meal) to a bundle through three tiers:

1. Durable store: a complete stored bundle is returned as-is.
2. Live generation: run the pipeline, write both tiers on success.
3. Local cache: on generation failure, the last good bundle for the
   same (date, meal), however old its preferences.

Generation runs as its own task with a client-side timeout. A timeout
stops the wait, not the task: a late result is still persisted.
"""

import asyncio
import logging
from datetime import date

from sofra.cache.local import LocalMenuCache
from sofra.core.result import Err, ErrorKind, Ok, Result
from sofra.db.adapter import MenuStore, StoredMenu
from sofra.models.menu import GenerationRequest, MenuBundle
from sofra.models.preferences import MealType
from sofra.pipeline.generation import GeneratedBundle, GenerationPipeline

logger = logging.getLogger(__name__)


class TieredResolver:
    """Durable store → live generation → stale local fallback."""

    def __init__(
        self,
        menu_store: MenuStore,
        pipeline: GenerationPipeline,
        local_cache: LocalMenuCache,
        *,
        generation_timeout: float | None = None,
    ):
        self.menu_store = menu_store
        self.pipeline = pipeline
        self.local_cache = local_cache
        self.generation_timeout = generation_timeout
        # Detached generation tasks; strong refs keep them alive after a timeout
        self._pending: set[asyncio.Task] = set()

    async def _durable_lookup(
        self,
        user_id: str,
        day: date,
        meal_type: MealType,
        preference_hash: str | None,
    ) -> StoredMenu | None:
        try:
            stored = await self.menu_store.get_menu(user_id, day, meal_type)
        except Exception as e:
            logger.error(f"Durable lookup failed for {user_id} {day} {meal_type.value}: {e}")
            return None

        if stored is None:
            return None

        if not stored.bundle.is_complete():
            logger.info(
                f"Stored menu {stored.id} is partial "
                f"({len(stored.bundle.recipes)}/{len(stored.bundle.decision.slots())} recipes), regenerating"
            )
            return None

        # Stored menus stay authoritative even when built from older preferences
        if preference_hash and stored.preference_hash != preference_hash:
            logger.debug(f"Stored menu {stored.id} was built from different preferences; returning it anyway")

        return stored

    async def _generate_and_persist(
        self,
        user_id: str,
        day: date,
        meal_type: MealType,
        preference_hash: str | None,
        request: GenerationRequest,
    ) -> Result[GeneratedBundle]:
        result = await self.pipeline.generate_bundle(request)
        if isinstance(result, Err):
            return result

        generated = result.value
        try:
            await self.menu_store.save_menu(
                user_id,
                day,
                meal_type,
                generated.bundle,
                preference_hash=preference_hash,
                model=generated.model,
                cost_usd=generated.cost_usd,
            )
        except Exception as e:
            logger.error(f"Failed to persist menu for {user_id} {day} {meal_type.value}: {e}")

        try:
            self.local_cache.put(
                user_id,
                day,
                meal_type,
                generated.bundle,
                preference_hash=preference_hash,
                model=generated.model,
                cost_usd=generated.cost_usd,
            )
        except OSError as e:
            logger.error(f"Failed to write local cache for {user_id} {day} {meal_type.value}: {e}")

        return result

    async def _generate(
        self,
        user_id: str,
        day: date,
        meal_type: MealType,
        preference_hash: str | None,
        request: GenerationRequest,
    ) -> Result[GeneratedBundle]:
        task = asyncio.create_task(
            self._generate_and_persist(user_id, day, meal_type, preference_hash, request),
            name=f"generate:{user_id}:{day.isoformat()}:{meal_type.value}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

        done, _ = await asyncio.wait({task}, timeout=self.generation_timeout)
        if not done:
            logger.warning(
                f"Generation for {user_id} {day} {meal_type.value} still running after "
                f"{self.generation_timeout}s; continuing in background"
            )
            return Err(ErrorKind.TIMEOUT, f"generation exceeded {self.generation_timeout}s")

        try:
            return task.result()
        except Exception as e:
            logger.exception(f"Generation crashed for {user_id} {day} {meal_type.value}")
            return Err(ErrorKind.UPSTREAM_UNAVAILABLE, str(e))

    def _check_request(self, day: date, meal_type: MealType, request: GenerationRequest) -> None:
        if request.date != day or request.meal_type != meal_type:
            raise ValueError(
                f"request is for {request.date} {request.meal_type.value}, not {day} {meal_type.value}"
            )

    async def _generate_or_fallback(
        self,
        user_id: str,
        day: date,
        meal_type: MealType,
        preference_hash: str | None,
        request: GenerationRequest,
    ) -> Result[MenuBundle]:
        generated = await self._generate(user_id, day, meal_type, preference_hash, request)
        if isinstance(generated, Ok):
            return Ok(generated.value.bundle)

        entry = self.local_cache.get(user_id, day, meal_type)
        if entry is not None and not entry.bundle.is_complete():
            logger.info(f"Local entry for {user_id} {day} {meal_type.value} is partial, ignoring it")
            entry = None
        if entry is not None:
            logger.warning(
                f"Serving local cache for {user_id} {day} {meal_type.value} "
                f"(cached {entry.cached_at.isoformat()}) after {generated}"
            )
            return Ok(entry.bundle)

        return Err(ErrorKind.CACHE_MISS, f"no menu for {day} {meal_type.value}; generation failed: {generated}")

    async def resolve(
        self,
        user_id: str,
        day: date,
        meal_type: MealType | str,
        preference_hash: str | None,
        *,
        request: GenerationRequest,
    ) -> Result[MenuBundle]:
        """Resolve one meal through durable → generation → local."""
        meal_type = MealType(meal_type)
        self._check_request(day, meal_type, request)

        stored = await self._durable_lookup(user_id, day, meal_type, preference_hash)
        if stored is not None:
            logger.debug(f"Durable hit for {stored.id}")
            return Ok(stored.bundle)

        return await self._generate_or_fallback(user_id, day, meal_type, preference_hash, request)

    async def regenerate(
        self,
        user_id: str,
        day: date,
        meal_type: MealType | str,
        preference_hash: str | None,
        *,
        request: GenerationRequest,
    ) -> Result[MenuBundle]:
        """
        Generate a fresh bundle even when one is stored, overwriting both
        tiers on success. Failures still fall back to the local cache.
        """
        meal_type = MealType(meal_type)
        self._check_request(day, meal_type, request)
        return await self._generate_or_fallback(user_id, day, meal_type, preference_hash, request)

    async def wait_pending(self) -> None:
        """Wait for detached generation tasks (shutdown, tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
