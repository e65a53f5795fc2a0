"""
Sofra - Service wiring.

Builds the resolver, planners, tracker and shopping list builder from
settings. Callers that need fakes (tests) construct the pieces directly.
"""

from dataclasses import dataclass

from sofra.batch.shopping import ShoppingListBuilder
from sofra.batch.status import StatusTracker
from sofra.batch.weekly import WeeklyPlanner
from sofra.cache.local import LocalMenuCache
from sofra.cache.resolver import TieredResolver
from sofra.config import settings
from sofra.db.adapter import MenuStore, StatusStore
from sofra.db.client import SupabaseMenuStore, SupabaseStatusStore
from sofra.llm.client import OpenAIBackend, TextBackend
from sofra.orchestrator.session import DayPlanner
from sofra.pipeline.generation import GenerationPipeline


@dataclass
class Services:
    resolver: TieredResolver
    day_planner: DayPlanner
    tracker: StatusTracker
    weekly: WeeklyPlanner
    shopping: ShoppingListBuilder


def build_services(
    *,
    backend: TextBackend | None = None,
    menu_store: MenuStore | None = None,
    status_store: StatusStore | None = None,
    local_cache: LocalMenuCache | None = None,
    categorize_groceries: bool = False,
) -> Services:
    """Wire every component, defaulting to OpenAI + Supabase + the on-disk cache."""
    menu_store = menu_store or SupabaseMenuStore()
    status_store = status_store or SupabaseStatusStore()

    resolver = TieredResolver(
        menu_store,
        GenerationPipeline(backend or OpenAIBackend()),
        local_cache or LocalMenuCache.from_settings(),
        generation_timeout=settings.generation_timeout_seconds,
    )
    tracker = StatusTracker(status_store, poll_interval=settings.status_poll_interval_seconds)

    return Services(
        resolver=resolver,
        day_planner=DayPlanner(resolver, first_ready_timeout=settings.first_ready_timeout_seconds),
        tracker=tracker,
        weekly=WeeklyPlanner(resolver, tracker, menu_store),
        shopping=ShoppingListBuilder(tracker, menu_store, categorize=categorize_groceries),
    )
