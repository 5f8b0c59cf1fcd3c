"""Durable pricing tier: SQLite handle, tiered cache, async write queue."""

from .db import Database, open_database
from .pricing_cache import (
    MAX_VALID_PRICE,
    MIN_VALID_PRICE,
    CacheHit,
    PricingCache,
    is_valid_price,
    sanitize_prices,
)
from .writer import AsyncWriter

__all__ = [
    "MAX_VALID_PRICE",
    "MIN_VALID_PRICE",
    "AsyncWriter",
    "CacheHit",
    "Database",
    "PricingCache",
    "is_valid_price",
    "open_database",
    "sanitize_prices",
]
