"""
Sofra - Durable store.

Protocols plus their Supabase implementations.
"""

from sofra.db.adapter import MenuStore, StatusStore, StoredMenu, menu_id
from sofra.db.client import SupabaseMenuStore, SupabaseStatusStore, get_client

__all__ = [
    "MenuStore",
    "StatusStore",
    "StoredMenu",
    "SupabaseMenuStore",
    "SupabaseStatusStore",
    "get_client",
    "menu_id",
]
