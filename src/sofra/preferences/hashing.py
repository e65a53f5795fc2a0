"""
Sofra - Preference normaliser and hasher.

Two snapshots that differ only in list order, casing or whitespace
produce the same hash. The hash is stored alongside generated menus and
local cache entries so callers can tell which preferences a plan was
built from.
"""

import hashlib
import json
from typing import Any

from sofra.models.preferences import WEEKDAYS, PreferenceSnapshot

_LIST_FIELDS = ("dietaryRestrictions", "allergies", "cuisinePreferences", "equipment")


def _normalize_list(values: list[Any]) -> list[str]:
    """Trim, lowercase, drop empties, de-duplicate, sort."""
    cleaned = {str(v).strip().lower() for v in values}
    cleaned.discard("")
    return sorted(cleaned)


def normalize_snapshot(snapshot: PreferenceSnapshot | dict[str, Any]) -> dict[str, Any]:
    """
    Produce the canonical dict form of a preference snapshot.

    Raw dicts go through PreferenceSnapshot validation first, which maps
    legacy routine values and applies defaults (household size 1,
    balanced time preference, intermediate skill). Missing routine days
    are filled from the default weekly pattern.
    """
    if not isinstance(snapshot, PreferenceSnapshot):
        snapshot = PreferenceSnapshot.model_validate(snapshot)

    data = snapshot.model_dump(mode="json", by_alias=True)

    for key in _LIST_FIELDS:
        data[key] = _normalize_list(data.get(key) or [])

    data["timePreference"] = str(data["timePreference"]).strip().lower()
    data["skillLevel"] = str(data["skillLevel"]).strip().lower()

    routines: dict[str, Any] = {}
    for day in WEEKDAYS:
        routine = snapshot.routine_for(day).model_dump(mode="json", by_alias=True)
        routine["meals"] = _normalize_list(routine.get("meals") or [])
        routines[day] = routine
    data["routines"] = routines

    return data


def canonical_json(normalized: dict[str, Any]) -> str:
    return json.dumps(normalized, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def preference_hash(snapshot: PreferenceSnapshot | dict[str, Any] | None) -> str | None:
    """SHA-256 hex digest of the canonical snapshot, or None when absent."""
    if snapshot is None:
        return None
    normalized = normalize_snapshot(snapshot)
    return hashlib.sha256(canonical_json(normalized).encode("utf-8")).hexdigest()
