"""
Sofra - Weekly batch generation job.

Plans a whole week for one user:

- each day's meals come from its routine (excluded days are skipped)
- days run one after another so later days can avoid dishes already
  planned; meals within a day run concurrently
- every first occurrence of a slot is generated fresh and overwrites
  what is stored for that day; later meals sharing the slot reuse its
  bundle (cook once, eat twice)
- a week that already finished keeps its terminal status; a re-run or
  a single_day regeneration still replaces the menus
- progress is written through the StatusTracker after every day, and
  the first unrecoverable meal fails the job
"""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, timedelta
from enum import Enum

from sofra.batch.status import StatusTracker, week_start_for
from sofra.cache.resolver import TieredResolver
from sofra.core.result import Err, Ok, Result
from sofra.db.adapter import MenuStore
from sofra.models.menu import MenuBundle, WeeklyContext
from sofra.models.preferences import MealType, PreferenceSnapshot, RoutineDay
from sofra.models.status import GenerationStatus
from sofra.pipeline.prompts import seasonality_hint
from sofra.preferences.hashing import preference_hash
from sofra.preferences.requests import build_generation_request, day_of_week, resolve_meal_plan

logger = logging.getLogger(__name__)


class RepeatMode(str, Enum):
    """How dinners repeat across the week."""

    NONE = "none"  # every meal is generated fresh
    CONSECUTIVE = "consecutive"  # D1 D1 D2 D2 D3 D4 D4
    SPACED = "spaced"  # D1 D2 D1 D3 D2 D4 D4


DINNER_PATTERNS: dict[RepeatMode, list[str]] = {
    RepeatMode.CONSECUTIVE: ["D1", "D1", "D2", "D2", "D3", "D4", "D4"],
    RepeatMode.SPACED: ["D1", "D2", "D1", "D3", "D2", "D4", "D4"],
}

WEEKEND = ("saturday", "sunday")


@dataclass
class WeekDay:
    date: date
    day_of_week: str
    day_index: int
    routine: RoutineDay
    meals: list[MealType]

    @property
    def is_weekend(self) -> bool:
        return self.day_of_week in WEEKEND


@dataclass
class WeekResult:
    """Outcome of a weekly job."""

    week_start: date
    status: GenerationStatus | None
    menus: dict[tuple[date, MealType], MenuBundle] = field(default_factory=dict)
    failures: dict[tuple[date, MealType], Err] = field(default_factory=dict)
    reused: set[tuple[date, MealType]] = field(default_factory=set)

    @property
    def ok(self) -> bool:
        return not self.failures


def build_week_days(snapshot: PreferenceSnapshot, week_start: date) -> list[WeekDay]:
    """The seven days from week_start with the meals each one needs."""
    days = []
    for index in range(7):
        day = week_start + timedelta(days=index)
        name = day_of_week(day)
        routine = snapshot.routine_for(name)
        days.append(WeekDay(day, name, index, routine, resolve_meal_plan(routine)))
    return days


def assign_breakfast_slots(days: list[WeekDay]) -> dict[date, str]:
    """Weekday breakfasts alternate A/B; the weekend shares C."""
    slots: dict[date, str] = {}
    toggle = 0
    for day in days:
        if MealType.BREAKFAST not in day.meals:
            continue
        if day.is_weekend:
            slots[day.date] = "C"
        else:
            slots[day.date] = "A" if toggle % 2 == 0 else "B"
            toggle += 1
    return slots


def _lunch_context(routine: RoutineDay) -> str:
    return "portable" if routine.portable_meal_needed else "fresh"


def assign_lunch_slots(days: list[WeekDay]) -> dict[date, str]:
    """
    Rotate up to four lunches. A slot only serves days with the same
    lunch context (portable vs fresh) and is never used two days running.
    """
    lunch_days = [d for d in days if MealType.LUNCH in d.meals]
    if not lunch_days:
        return {}

    unique = 4 if len(lunch_days) >= 4 else max(1, min(3, len(lunch_days)))
    names = [f"L{i + 1}" for i in range(unique)]
    contexts: dict[str, str] = {}
    slots: dict[date, str] = {}
    index = 0
    previous: str | None = None

    for day in lunch_days:
        context = _lunch_context(day.routine)
        candidates = [names[(index + k) % unique] for k in range(unique)]
        if unique > 1:
            candidates = [s for s in candidates if s != previous]
        # no compatible slot left: take the next one that is not yesterday's
        slot = next((s for s in candidates if contexts.get(s) in (None, context)), candidates[0])
        contexts.setdefault(slot, context)
        slots[day.date] = slot
        previous = slot
        index = names.index(slot) + 1

    return slots


def assign_dinner_slots(days: list[WeekDay], repeat_mode: RepeatMode) -> dict[date, str]:
    dinner_days = [d for d in days if MealType.DINNER in d.meals]
    if repeat_mode == RepeatMode.NONE:
        return {d.date: f"D{i + 1}" for i, d in enumerate(dinner_days)}

    pattern = DINNER_PATTERNS[repeat_mode]
    if repeat_mode == RepeatMode.SPACED and len(dinner_days) <= 2:
        pattern = ["D1", "D2"]
    return {d.date: pattern[min(i, len(pattern) - 1)] for i, d in enumerate(dinner_days)}


def assign_slots(days: list[WeekDay], repeat_mode: RepeatMode) -> dict[tuple[date, MealType], str]:
    """Slot key for every planned meal. Meals sharing a key share a bundle."""
    if repeat_mode == RepeatMode.NONE:
        return {
            (d.date, meal): f"{meal.value}:{d.date.isoformat()}"
            for d in days
            for meal in d.meals
        }

    slots: dict[tuple[date, MealType], str] = {}
    for meal, assigned in (
        (MealType.BREAKFAST, assign_breakfast_slots(days)),
        (MealType.LUNCH, assign_lunch_slots(days)),
        (MealType.DINNER, assign_dinner_slots(days, repeat_mode)),
    ):
        for day, slot in assigned.items():
            slots[(day, meal)] = f"{meal.value}:{slot}"
    return slots


class WeeklyPlanner:
    """Runs the weekly job against the resolver and the status tracker."""

    def __init__(self, resolver: TieredResolver, tracker: StatusTracker, menu_store: MenuStore):
        self.resolver = resolver
        self.tracker = tracker
        self.menu_store = menu_store

    async def _reuse(
        self,
        user_id: str,
        day: WeekDay,
        meal: MealType,
        bundle: MenuBundle,
        pref_hash: str | None,
    ) -> Result[MenuBundle]:
        """Store a repeat of an earlier bundle under this day's key."""
        try:
            await self.menu_store.save_menu(user_id, day.date, meal, bundle, preference_hash=pref_hash)
        except Exception as e:
            logger.error(f"Failed to persist repeat {meal.value} for {day.date}: {e}")
        try:
            self.resolver.local_cache.put(user_id, day.date, meal, bundle, preference_hash=pref_hash)
        except OSError as e:
            logger.error(f"Failed to cache repeat {meal.value} for {day.date}: {e}")
        return Ok(bundle)

    async def _plan_meal(
        self,
        user_id: str,
        snapshot: PreferenceSnapshot,
        week_start: date,
        day: WeekDay,
        meal: MealType,
        slot: str,
        avoid_dishes: tuple[str, ...],
        pantry: tuple[str, ...],
        avoid_ingredients: tuple[str, ...],
    ) -> Result[MenuBundle]:
        request = build_generation_request(
            snapshot,
            day.date,
            meal,
            pantry=pantry,
            avoid_ingredients=avoid_ingredients,
            avoid_dish_names=avoid_dishes,
            weekly_context=WeeklyContext(
                week_start=week_start,
                day_index=day.day_index,
                seasonality_hint=seasonality_hint(day.date),
                repeat_group=slot,
            ),
        )
        return await self.resolver.regenerate(user_id, day.date, meal, request.preference_hash, request=request)

    async def generate_week(
        self,
        user_id: str,
        snapshot: PreferenceSnapshot,
        week_start: date,
        *,
        repeat_mode: RepeatMode | str = RepeatMode.CONSECUTIVE,
        pantry: Iterable[str] = (),
        avoid_ingredients: Iterable[str] = (),
        single_day: date | None = None,
    ) -> WeekResult:
        """Plan the week containing week_start (normalised to its Monday)."""
        week_start = week_start_for(week_start)
        repeat_mode = RepeatMode(repeat_mode)
        pantry = tuple(pantry)
        avoid_ingredients = tuple(avoid_ingredients)
        pref_hash = preference_hash(snapshot)

        days = build_week_days(snapshot, week_start)
        slots = assign_slots(days, repeat_mode)
        planned = [d for d in days if d.meals and (single_day is None or d.date == single_day)]

        result = WeekResult(week_start=week_start, status=None)
        await self.tracker.begin(user_id, week_start, total_days=len(planned))

        used_dishes: list[str] = []
        slot_bundles: dict[str, MenuBundle] = {}

        try:
            for completed, day in enumerate(planned, start=1):
                avoid = tuple(used_dishes)
                calls = []
                for meal in day.meals:
                    slot = slots[(day.date, meal)]
                    if slot in slot_bundles:
                        result.reused.add((day.date, meal))
                        calls.append(self._reuse(user_id, day, meal, slot_bundles[slot], pref_hash))
                    else:
                        calls.append(
                            self._plan_meal(
                                user_id, snapshot, week_start, day, meal, slot, avoid, pantry, avoid_ingredients
                            )
                        )

                outcomes = await asyncio.gather(*calls)

                for meal, outcome in zip(day.meals, outcomes):
                    if isinstance(outcome, Err):
                        result.failures[(day.date, meal)] = outcome
                        continue
                    result.menus[(day.date, meal)] = outcome.value
                    slot_bundles.setdefault(slots[(day.date, meal)], outcome.value)
                    for name in outcome.value.decision.dish_names():
                        if name not in used_dishes:
                            used_dishes.append(name)

                if result.failures:
                    (failed_day, failed_meal), error = next(iter(result.failures.items()))
                    result.status = await self.tracker.fail(
                        user_id, week_start, f"{failed_day} {failed_meal.value}: {error}"
                    )
                    return result

                result.status = await self.tracker.record_day_completed(user_id, week_start, completed)
                logger.info(f"Week {week_start}: day {completed}/{len(planned)} ({day.date}) done")

        except Exception as e:
            logger.exception(f"Weekly job for {user_id} {week_start} crashed")
            await self.tracker.fail(user_id, week_start, str(e))
            raise

        if result.status is None:
            result.status = await self.tracker.get_status(user_id, week_start)
        return result
