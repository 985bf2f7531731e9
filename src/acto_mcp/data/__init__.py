"""Data access layer: filters, read cache and batched operations."""

from acto_mcp.data.access import BatchItemResult, DataAccess
from acto_mcp.data.cache import CacheEntry, ResponseCache, make_key
from acto_mcp.data.filters import all_of, any_of, eq, escape_value

__all__ = [
    "BatchItemResult",
    "DataAccess",
    "CacheEntry",
    "ResponseCache",
    "make_key",
    "all_of",
    "any_of",
    "eq",
    "escape_value",
]
