"""Two-tier pricing cache: in-memory (short TTL) over SQLite (long TTL).

Keyed by (provider, region, instance_type). Reads go memory -> durable and
refill memory from durable hits. Writes update memory immediately and
persist through the async write queue when one is attached.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Callable, Mapping, MutableMapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Final, Literal

from loguru import logger

from fleetward.infra.locks import RWLock
from fleetward.store.db import Database
from fleetward.store.writer import AsyncWriter

log = logger.bind(component="pricing-cache")

MIN_VALID_PRICE: Final = 0.001
MAX_VALID_PRICE: Final = 200.0

DEFAULT_MEMORY_TTL: Final = timedelta(hours=1)
DEFAULT_DURABLE_TTL: Final = timedelta(hours=24)

SCHEMA: Final = """
CREATE TABLE IF NOT EXISTS pricing_cache (
    provider       TEXT NOT NULL,
    region         TEXT NOT NULL,
    instance_type  TEXT NOT NULL,
    price_per_hour REAL NOT NULL,
    updated_at     INTEGER NOT NULL,
    PRIMARY KEY (provider, region, instance_type)
);
CREATE INDEX IF NOT EXISTS idx_pricing_cache_lookup
    ON pricing_cache (provider, region, updated_at);
"""

type Tier = Literal["memory", "durable"]


def is_valid_price(price: float) -> bool:
    return math.isfinite(price) and MIN_VALID_PRICE <= price <= MAX_VALID_PRICE


def sanitize_prices(prices: MutableMapping[str, float]) -> int:
    """Drop implausible prices in place and return how many were removed.

    A price is kept only when it is finite, at least ``MIN_VALID_PRICE`` and at
    most ``MAX_VALID_PRICE`` USD/hour.
    """
    invalid = [name for name, price in prices.items() if not is_valid_price(price)]
    for name in invalid:
        del prices[name]
    return len(invalid)


@dataclass(frozen=True, slots=True)
class CacheHit:
    prices: dict[str, float]
    updated_at: datetime
    tier: Tier
    fallback: bool = False


@dataclass(slots=True)
class _MemoryEntry:
    prices: dict[str, float]
    stored_at: float
    expires_at: float
    fallback: bool


class PricingCache:
    """Tiered price store shared by every provider's resolver.

    ``db=None`` keeps the cache memory-only.

    Example:
        cache = PricingCache(open_database("/data/fleetward.db"))
        await cache.put("aws", "us-east-1", {"m5.large": 0.096})
        hit = await cache.lookup("aws", "us-east-1")
    """

    def __init__(
        self,
        db: Database | None = None,
        *,
        memory_ttl: timedelta = DEFAULT_MEMORY_TTL,
        durable_ttl: timedelta = DEFAULT_DURABLE_TTL,
        writer: AsyncWriter | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self._memory_ttl = memory_ttl.total_seconds()
        self._durable_ttl = durable_ttl.total_seconds()
        self._writer = writer
        self._clock = clock
        self._memory: dict[str, _MemoryEntry] = {}
        self._lock = RWLock()
        if db is not None:
            db.executescript(SCHEMA)

    @staticmethod
    def _key(provider: str, region: str) -> str:
        return f"{provider}:{region}"

    @property
    def durable(self) -> bool:
        return self._db is not None

    # ─── Reads ───────────────────────────────────────────────────────

    async def lookup(self, provider: str, region: str) -> CacheHit | None:
        """Freshest usable tier for (provider, region), or None."""
        if hit := await self.lookup_memory(provider, region):
            return hit
        return await self.lookup_durable(provider, region)

    async def get(self, provider: str, region: str) -> dict[str, float] | None:
        hit = await self.lookup(provider, region)
        return hit.prices if hit else None

    async def lookup_memory(self, provider: str, region: str) -> CacheHit | None:
        key = self._key(provider, region)
        async with self._lock.read():
            entry = self._memory.get(key)
            if entry is None or self._clock() >= entry.expires_at:
                return None
            return CacheHit(
                prices=dict(entry.prices),
                updated_at=datetime.fromtimestamp(entry.stored_at, UTC),
                tier="memory",
                fallback=entry.fallback,
            )

    async def lookup_durable(self, provider: str, region: str) -> CacheHit | None:
        if self._db is None:
            return None
        cutoff = int(self._clock() - self._durable_ttl)
        try:
            rows = await asyncio.to_thread(
                self._db.query,
                "SELECT instance_type, price_per_hour, updated_at FROM pricing_cache "
                "WHERE provider = ? AND region = ? AND updated_at > ?",
                (provider, region, cutoff),
            )
        except Exception as e:
            log.warning(
                "durable pricing read failed provider={provider} region={region} "
                "operation=lookup: {err}",
                provider=provider, region=region, err=e,
            )
            return None
        if not rows:
            return None

        prices = {name: float(price) for name, price, _ in rows}
        newest = max(int(updated) for _, _, updated in rows)
        # Promoted snapshots never outlive the durable deadline.
        expires_at = min(self._clock() + self._memory_ttl, newest + self._durable_ttl)
        async with self._lock.write():
            self._memory[self._key(provider, region)] = _MemoryEntry(
                prices=dict(prices), stored_at=newest, expires_at=expires_at, fallback=False,
            )
        return CacheHit(
            prices=prices,
            updated_at=datetime.fromtimestamp(newest, UTC),
            tier="durable",
        )

    # ─── Writes ──────────────────────────────────────────────────────

    async def put(self, provider: str, region: str, prices: Mapping[str, float]) -> None:
        """Write live prices to memory now and to the durable tier."""
        snapshot = dict(prices)
        now = self._clock()
        async with self._lock.write():
            self._memory[self._key(provider, region)] = _MemoryEntry(
                prices=dict(snapshot), stored_at=now,
                expires_at=now + self._memory_ttl, fallback=False,
            )
        if self._db is None or not snapshot:
            return

        def write() -> None:
            self._write_rows(provider, region, snapshot, int(now))

        if self._writer is not None:
            if not self._writer.enqueue(write):
                log.debug(
                    "durable pricing write not queued provider={provider} region={region}",
                    provider=provider, region=region,
                )
            return
        try:
            await asyncio.to_thread(write)
        except Exception as e:
            log.warning(
                "durable pricing write failed provider={provider} region={region} "
                "operation=put: {err}",
                provider=provider, region=region, err=e,
            )

    async def remember(
        self,
        provider: str,
        region: str,
        prices: Mapping[str, float],
        *,
        fallback: bool = True,
    ) -> None:
        """Memory-only write, for data that must not outlive the process."""
        now = self._clock()
        async with self._lock.write():
            self._memory[self._key(provider, region)] = _MemoryEntry(
                prices=dict(prices), stored_at=now,
                expires_at=now + self._memory_ttl, fallback=fallback,
            )

    async def invalidate(self, provider: str, region: str) -> None:
        async with self._lock.write():
            self._memory.pop(self._key(provider, region), None)

    def _write_rows(
        self, provider: str, region: str, prices: Mapping[str, float], updated_at: int,
    ) -> None:
        assert self._db is not None
        with self._db.transaction() as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO pricing_cache "
                "(provider, region, instance_type, price_per_hour, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                [
                    (provider, region, name, float(price), updated_at)
                    for name, price in prices.items()
                ],
            )

    async def evict_older_than(self, age: timedelta) -> int:
        """Delete durable rows older than ``age``; returns the row count."""
        if self._db is None:
            return 0
        cutoff = int(self._clock() - age.total_seconds())

        def delete() -> int:
            assert self._db is not None
            with self._db.transaction() as conn:
                return conn.execute(
                    "DELETE FROM pricing_cache WHERE updated_at < ?", (cutoff,),
                ).rowcount

        deleted = await asyncio.to_thread(delete)
        if deleted:
            log.info("Evicted {n} stale durable pricing rows", n=deleted)
        return deleted

    def regions(self, provider: str) -> list[str]:
        """Regions with a memory entry for ``provider`` (any age)."""
        prefix = f"{provider}:"
        return [key.removeprefix(prefix) for key in self._memory if key.startswith(prefix)]

    async def close(self) -> None:
        """Flush queued durable writes, then close the database."""
        if self._writer is not None:
            await self._writer.drain()
        if self._db is not None:
            self._db.close()


__all__ = [
    "DEFAULT_DURABLE_TTL",
    "DEFAULT_MEMORY_TTL",
    "MAX_VALID_PRICE",
    "MIN_VALID_PRICE",
    "CacheHit",
    "PricingCache",
    "is_valid_price",
    "sanitize_prices",
]
