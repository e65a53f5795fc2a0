"""
Sofra - Multi-meal orchestrator.

Starts one resolver task per meal of a day and lets the caller wait for
the *first* meal to become available. State lives on an explicit
DayPlanSession object owned by the caller; there is no module-level
state.

- start_day_plan is single-flight per session (has_started is set
  before anything else happens)
- wait_for_first_ready is a wait-any with a bounded timer; it never
  cancels the meal tasks
"""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta
from uuid import uuid4

from sofra.cache.resolver import TieredResolver
from sofra.core.result import Err, ErrorKind, Ok, Result
from sofra.models.menu import MenuBundle
from sofra.models.preferences import WEEKDAYS, MealType, PreferenceSnapshot
from sofra.preferences.hashing import preference_hash
from sofra.preferences.requests import build_generation_request, resolve_meal_plan

logger = logging.getLogger(__name__)

MEAL_ORDER = (MealType.BREAKFAST, MealType.LUNCH, MealType.DINNER)


@dataclass
class DayPlanSession:
    """Per-caller state for one day's plan."""

    session_id: str = field(default_factory=lambda: uuid4().hex)
    has_started: bool = False
    day: date | None = None
    loading: dict[MealType, bool] = field(default_factory=dict)
    results: dict[MealType, Result[MenuBundle]] = field(default_factory=dict)
    first_error: Err | None = None
    first_ready: asyncio.Event = field(default_factory=asyncio.Event)
    tasks: dict[MealType, asyncio.Task] = field(default_factory=dict)

    def is_loading(self, meal_type: MealType | str) -> bool:
        return self.loading.get(MealType(meal_type), False)

    @property
    def bundles(self) -> dict[MealType, MenuBundle]:
        return {meal: r.value for meal, r in self.results.items() if isinstance(r, Ok)}

    @property
    def is_done(self) -> bool:
        return self.has_started and not any(self.loading.values())

    @property
    def error(self) -> Err | None:
        """The first observed error, once every meal has finished without a bundle."""
        if self.is_done and self.results and not self.bundles:
            return self.first_error
        return None


def _next_date_for(day_name: str, today: date) -> date:
    diff = (WEEKDAYS.index(day_name) - today.weekday()) % 7
    return today + timedelta(days=diff)


def pick_sample_day(snapshot: PreferenceSnapshot, today: date) -> tuple[date, list[MealType]]:
    """
    Choose a day to demo the planner on: the weekday with the most meals
    to plan (earliest wins ties), else the best weekend day, else Monday.
    The date is the next occurrence of that day, today included.
    """
    for group in (WEEKDAYS[:5], WEEKDAYS[5:]):
        best_day, best_meals = None, []
        for day_name in group:
            meals = resolve_meal_plan(snapshot.routine_for(day_name))
            if len(meals) > len(best_meals):
                best_day, best_meals = day_name, meals
        if best_day:
            return _next_date_for(best_day, today), best_meals

    return _next_date_for("monday", today), [MealType.DINNER]


class DayPlanner:
    """Runs a day's meals concurrently through the tiered resolver."""

    def __init__(self, resolver: TieredResolver, *, first_ready_timeout: float = 20.0):
        self.resolver = resolver
        self.first_ready_timeout = first_ready_timeout

    async def _run_meal(
        self,
        session: DayPlanSession,
        user_id: str,
        day: date,
        meal_type: MealType,
        snapshot: PreferenceSnapshot,
        pantry: tuple[str, ...],
        max_total_minutes: int | None,
    ) -> None:
        try:
            request = build_generation_request(
                snapshot, day, meal_type, pantry=pantry, max_total_minutes=max_total_minutes
            )
            result = await self.resolver.resolve(
                user_id, day, meal_type, request.preference_hash, request=request
            )
        except Exception as e:
            logger.exception(f"Meal task {meal_type.value} crashed for session {session.session_id}")
            result = Err(ErrorKind.UPSTREAM_UNAVAILABLE, str(e))

        session.results[meal_type] = result
        session.loading[meal_type] = False
        if isinstance(result, Err):
            logger.warning(f"{meal_type.value} for {day} failed: {result}")
            if session.first_error is None:
                session.first_error = result
        session.first_ready.set()

    async def start_day_plan(
        self,
        session: DayPlanSession,
        user_id: str,
        day: date,
        meal_types: Iterable[MealType | str],
        snapshot: PreferenceSnapshot,
        *,
        pantry: Iterable[str] = (),
        max_total_minutes: int | None = None,
    ) -> bool:
        """
        Launch one resolver task per meal. Returns False (and does
        nothing) if the session was already started.
        """
        if session.has_started:
            logger.debug(f"Session {session.session_id} already started")
            return False
        session.has_started = True
        session.day = day

        wanted = {MealType(m) for m in meal_types}
        meals = [m for m in MEAL_ORDER if m in wanted]

        if not meals:
            session.first_ready.set()
            return True

        logger.info(
            f"Planning {', '.join(m.value for m in meals)} for {day} "
            f"(session {session.session_id}, prefs {(preference_hash(snapshot) or '')[:8]})"
        )
        pantry = tuple(pantry)
        for meal in meals:
            session.loading[meal] = True
            session.tasks[meal] = asyncio.create_task(
                self._run_meal(session, user_id, day, meal, snapshot, pantry, max_total_minutes),
                name=f"meal:{session.session_id}:{meal.value}",
            )
        return True

    async def wait_for_first_ready(self, session: DayPlanSession, timeout: float | None = None) -> bool:
        """
        True as soon as any meal finishes (bundle or error), False if the
        timer wins. Meal tasks keep running either way.
        """
        if session.first_ready.is_set():
            return True

        timeout = self.first_ready_timeout if timeout is None else timeout
        waiter = asyncio.create_task(session.first_ready.wait())
        done, _ = await asyncio.wait({waiter}, timeout=timeout)
        if not done:
            waiter.cancel()
            logger.info(f"No meal ready within {timeout}s for session {session.session_id}")
            return False
        return True

    async def wait_for_all(self, session: DayPlanSession, timeout: float | None = None) -> dict[MealType, Result[MenuBundle]]:
        """Wait for every meal task (bounded by timeout) and return the results so far."""
        tasks = list(session.tasks.values())
        if tasks:
            await asyncio.wait(tasks, timeout=timeout)
        return dict(session.results)
