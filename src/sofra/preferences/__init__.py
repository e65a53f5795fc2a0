"""
Sofra - Preference normalisation, hashing and request building.
"""

from sofra.preferences.hashing import normalize_snapshot, preference_hash
from sofra.preferences.requests import build_generation_request, resolve_meal_plan

__all__ = [
    "build_generation_request",
    "normalize_snapshot",
    "preference_hash",
    "resolve_meal_plan",
]
