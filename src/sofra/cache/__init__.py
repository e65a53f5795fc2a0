"""
Sofra - Local cache tier and the tiered resolver.
"""

from sofra.cache.local import LocalMenuCache
from sofra.cache.resolver import TieredResolver

__all__ = [
    "LocalMenuCache",
    "TieredResolver",
]
