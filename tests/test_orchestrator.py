"""
Tests for the multi-meal "first ready" orchestrator.
"""

import asyncio
import time
from datetime import date

from conftest import FakeBackend, run, unavailable

from sofra.core.result import Err, ErrorKind
from sofra.models.preferences import MealType, PreferenceSnapshot
from sofra.orchestrator.session import DayPlanner, DayPlanSession, pick_sample_day

ALL = ["breakfast", "lunch", "dinner"]


class TestStartDayPlan:

    def test_single_flight(self, make_resolver, snapshot, tuesday):
        backend = FakeBackend()
        planner = DayPlanner(make_resolver(backend))
        session = DayPlanSession()

        async def _go():
            first = await planner.start_day_plan(session, "u1", tuesday, ALL, snapshot)
            second = await planner.start_day_plan(session, "u1", tuesday, ALL, snapshot)
            await planner.wait_for_all(session)
            return first, second

        first, second = run(_go())
        assert (first, second) == (True, False)
        assert len(backend.calls_for("menu_decision")) == 3

    def test_concurrent_starts_launch_once(self, make_resolver, snapshot, tuesday):
        backend = FakeBackend()
        planner = DayPlanner(make_resolver(backend))
        session = DayPlanSession()

        async def _go():
            started = await asyncio.gather(
                *(planner.start_day_plan(session, "u1", tuesday, ALL, snapshot) for _ in range(5))
            )
            await planner.wait_for_all(session)
            return started

        started = run(_go())
        assert started.count(True) == 1
        assert len(backend.calls_for("menu_decision")) == 3

    def test_all_meals_resolve(self, make_resolver, snapshot, tuesday):
        planner = DayPlanner(make_resolver(FakeBackend()))
        session = DayPlanSession()

        async def _go():
            await planner.start_day_plan(session, "u1", tuesday, ["dinner", "breakfast"], snapshot)
            assert session.is_loading("breakfast") and session.is_loading("dinner")
            await planner.wait_for_all(session)

        run(_go())
        assert session.is_done
        assert set(session.bundles) == {MealType.BREAKFAST, MealType.DINNER}
        assert not session.is_loading(MealType.DINNER)
        assert session.error is None

    def test_empty_meal_list_is_ready_immediately(self, make_resolver, snapshot, tuesday):
        planner = DayPlanner(make_resolver(FakeBackend()))
        session = DayPlanSession()

        async def _go():
            await planner.start_day_plan(session, "u1", tuesday, [], snapshot)
            return await planner.wait_for_first_ready(session, timeout=0.01)

        assert run(_go()) is True
        assert session.is_done
        assert session.error is None


class TestWaitForFirstReady:

    def test_returns_on_first_meal(self, make_resolver, snapshot, tuesday):
        backend = FakeBackend(delays={"breakfast": 0.5, "lunch": 0.5, "dinner": 0.0})
        planner = DayPlanner(make_resolver(backend))
        session = DayPlanSession()

        async def _go():
            await planner.start_day_plan(session, "u1", tuesday, ALL, snapshot)
            started = time.monotonic()
            ready = await planner.wait_for_first_ready(session, timeout=5)
            elapsed = time.monotonic() - started
            snapshot_of_state = (dict(session.loading), set(session.bundles))
            await planner.wait_for_all(session)
            return ready, elapsed, snapshot_of_state

        ready, elapsed, (loading, bundles) = run(_go())
        assert ready is True
        assert elapsed < 0.5
        assert bundles == {MealType.DINNER}
        assert loading[MealType.BREAKFAST] and loading[MealType.LUNCH]
        assert set(session.bundles) == {MealType.BREAKFAST, MealType.LUNCH, MealType.DINNER}

    def test_timer_wins_without_cancelling_meals(self, make_resolver, snapshot, tuesday):
        backend = FakeBackend(delays={"breakfast": 0.1, "lunch": 0.1, "dinner": 0.1})
        planner = DayPlanner(make_resolver(backend), first_ready_timeout=0.02)
        session = DayPlanSession()

        async def _go():
            await planner.start_day_plan(session, "u1", tuesday, ALL, snapshot)
            ready = await planner.wait_for_first_ready(session)
            cancelled = any(task.cancelled() for task in session.tasks.values())
            await planner.wait_for_all(session)
            return ready, cancelled

        ready, cancelled = run(_go())
        assert ready is False
        assert cancelled is False
        assert len(session.bundles) == 3

    def test_error_counts_as_ready(self, make_resolver, snapshot, tuesday):
        backend = FakeBackend(delays={"dinner": 0.5}, failures={"breakfast": unavailable()})
        planner = DayPlanner(make_resolver(backend))
        session = DayPlanSession()

        async def _go():
            await planner.start_day_plan(session, "u1", tuesday, ["breakfast", "dinner"], snapshot)
            ready = await planner.wait_for_first_ready(session, timeout=5)
            first_error = session.first_error
            error_while_loading = session.error
            await planner.wait_for_all(session)
            return ready, first_error, error_while_loading

        ready, first_error, error_while_loading = run(_go())
        assert ready is True
        assert first_error.kind == ErrorKind.CACHE_MISS
        assert error_while_loading is None
        # dinner still succeeded, so the session as a whole is not an error
        assert session.error is None
        assert MealType.DINNER in session.bundles


class TestSessionError:

    def test_all_meals_failing_surfaces_first_error(self, make_resolver, snapshot, tuesday):
        backend = FakeBackend(failures={"lunch": unavailable(), "dinner": unavailable()})
        planner = DayPlanner(make_resolver(backend))
        session = DayPlanSession()

        async def _go():
            await planner.start_day_plan(session, "u1", tuesday, ["lunch", "dinner"], snapshot)
            await planner.wait_for_all(session)

        run(_go())
        assert isinstance(session.error, Err)
        assert session.error.kind == ErrorKind.CACHE_MISS
        assert session.bundles == {}

    def test_crashing_resolver_becomes_error(self, snapshot, tuesday):
        class ExplodingResolver:
            async def resolve(self, *args, **kwargs):
                raise RuntimeError("boom")

        planner = DayPlanner(ExplodingResolver())
        session = DayPlanSession()

        async def _go():
            await planner.start_day_plan(session, "u1", tuesday, ["dinner"], snapshot)
            ready = await planner.wait_for_first_ready(session, timeout=1)
            await planner.wait_for_all(session)
            return ready

        assert run(_go()) is True
        assert session.error.kind == ErrorKind.UPSTREAM_UNAVAILABLE


class TestPickSampleDay:

    def test_busiest_weekday(self, snapshot):
        day, meals = pick_sample_day(snapshot, date(2025, 3, 10))
        # Monday and Tuesday both plan three meals; Monday wins the tie
        assert day == date(2025, 3, 10)
        assert meals == [MealType.BREAKFAST, MealType.LUNCH, MealType.DINNER]

    def test_next_occurrence(self, snapshot):
        day, _ = pick_sample_day(snapshot, date(2025, 3, 12))
        assert day == date(2025, 3, 17)

    def test_weekend_when_weekdays_excluded(self):
        snapshot = PreferenceSnapshot.model_validate({
            "routines": {
                day: {"type": "commute", "excludeFromPlan": True}
                for day in ("monday", "tuesday", "wednesday", "thursday", "friday")
            }
        })
        day, meals = pick_sample_day(snapshot, date(2025, 3, 10))
        assert day == date(2025, 3, 15)
        assert len(meals) == 3
