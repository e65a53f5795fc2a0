"""
Sofra - Weekly batch jobs: status tracking, generation, shopping list.
"""

from sofra.batch.shopping import ShoppingItem, ShoppingListBuilder, StatusNotCompleted
from sofra.batch.status import JobAlreadyRunning, StatusSubscription, StatusTracker, week_start_for
from sofra.batch.weekly import RepeatMode, WeeklyPlanner, WeekResult

__all__ = [
    "JobAlreadyRunning",
    "RepeatMode",
    "ShoppingItem",
    "ShoppingListBuilder",
    "StatusNotCompleted",
    "StatusSubscription",
    "StatusTracker",
    "WeekResult",
    "WeeklyPlanner",
    "week_start_for",
]
