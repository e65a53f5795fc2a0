"""
Sofra - Local menu cache (stale fallback tier).

One JSON file per (user, date, meal type) under a cache directory, so
entries survive restarts. Entries past the TTL are ignored. A corrupt
file is logged and treated as absent.
"""

import hashlib
import logging
from datetime import UTC, date, datetime, timedelta
from pathlib import Path

from pydantic import ValidationError

from sofra.models.menu import CacheEntry, MenuBundle
from sofra.models.preferences import MealType

logger = logging.getLogger(__name__)


class LocalMenuCache:
    """File-backed cache of the last good bundle per meal."""

    def __init__(self, directory: Path | str, ttl_hours: float = 72):
        self.directory = Path(directory)
        self.ttl = timedelta(hours=ttl_hours)

    @classmethod
    def from_settings(cls) -> "LocalMenuCache":
        from sofra.config import settings

        return cls(settings.local_cache_dir, settings.local_cache_ttl_hours)

    def _path(self, user_id: str, day: date, meal_type: MealType | str) -> Path:
        # distinct ids never share a file
        user_key = hashlib.sha256(user_id.encode("utf-8")).hexdigest()[:32]
        return self.directory / f"{user_key}_{day.isoformat()}_{MealType(meal_type).value}.json"

    def get(self, user_id: str, day: date, meal_type: MealType | str) -> CacheEntry | None:
        """The cached entry, or None if missing, expired or unreadable."""
        path = self._path(user_id, day, meal_type)
        if not path.exists():
            return None

        try:
            entry = CacheEntry.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, ValidationError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache entry {path.name}: {e}")
            return None

        cached_at = entry.cached_at
        if cached_at.tzinfo is None:
            cached_at = cached_at.replace(tzinfo=UTC)
        if datetime.now(UTC) - cached_at > self.ttl:
            logger.debug(f"Cache entry {path.name} expired ({cached_at.isoformat()})")
            return None

        return entry

    def put(
        self,
        user_id: str,
        day: date,
        meal_type: MealType | str,
        bundle: MenuBundle,
        *,
        preference_hash: str | None,
        model: str | None = None,
        cost_usd: float = 0.0,
    ) -> CacheEntry:
        """Write (or overwrite) the entry atomically."""
        entry = CacheEntry(
            bundle=bundle,
            preference_hash=preference_hash,
            model=model,
            cost_usd=cost_usd,
        )
        path = self._path(user_id, day, meal_type)
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(entry.model_dump_json(by_alias=True), encoding="utf-8")
        tmp.replace(path)
        return entry

    def remove(self, user_id: str, day: date, meal_type: MealType | str) -> None:
        self._path(user_id, day, meal_type).unlink(missing_ok=True)

    def clear(self) -> int:
        """Delete every entry. Returns how many were removed."""
        if not self.directory.exists():
            return 0
        removed = 0
        for path in self.directory.glob("*.json"):
            path.unlink(missing_ok=True)
            removed += 1
        return removed
