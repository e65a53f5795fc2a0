"""
Durable store protocols.

The resolver and the batch tracker depend on these, not on Supabase
directly, so a different backend (or an in-process fake in tests) can
stand in. Writes are last-writer-wins per row; there are no
cross-row transactions, so readers must check completeness.
"""

from dataclasses import dataclass
from datetime import date
from typing import Protocol, runtime_checkable

from sofra.models.menu import MenuBundle
from sofra.models.preferences import MealType
from sofra.models.status import GenerationState, GenerationStatus


@dataclass
class StoredMenu:
    """A menu row joined with its recipes."""

    id: str
    user_id: str
    date: date
    meal_type: MealType
    bundle: MenuBundle
    preference_hash: str | None = None
    model: str | None = None
    cost_usd: float = 0.0


def menu_id(user_id: str, day: date, meal_type: MealType | str) -> str:
    """Row key for a user's menu on a date."""
    return f"{user_id}_{day.isoformat()}_{MealType(meal_type).value}"


@runtime_checkable
class MenuStore(Protocol):
    """Durable tier for generated menus."""

    async def get_menu(self, user_id: str, day: date, meal_type: MealType) -> StoredMenu | None:
        """The stored menu, possibly partial (fewer recipes than slots), or None."""
        ...

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
        """Persist recipes then the menu row. Returns the menu id."""
        ...

    async def list_menus(self, user_id: str, start: date, end: date) -> list[StoredMenu]:
        """All menus for a user with start <= date <= end."""
        ...


@runtime_checkable
class StatusStore(Protocol):
    """Durable tier for weekly generation status."""

    async def get_status(self, user_id: str, week_start: date) -> GenerationStatus | None:
        ...

    async def create_status(self, status: GenerationStatus) -> GenerationStatus | None:
        """Insert the row unless one exists. Returns the new row, or None if the week already had one."""
        ...

    async def advance(self, user_id: str, week_start: date, completed_days: int) -> GenerationStatus | None:
        """Raise completed_days to the given value if it is higher and the job is not terminal."""
        ...

    async def transition(
        self,
        user_id: str,
        week_start: date,
        to_state: GenerationState,
        *,
        from_states: tuple[GenerationState, ...],
        error: str | None = None,
    ) -> GenerationStatus | None:
        """Move to to_state only if the current state is one of from_states."""
        ...
