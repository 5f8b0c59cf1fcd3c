"""Pricing resolution shared by every provider.

Each cloud supplies two coroutines: one that fetches live list prices for a
region, and one that builds a static price map from its rate tables. The
:class:`PricingResolver` walks the tiers in order:

1. memory (1h)
2. durable (24h)
3. live API, sanitized and written to both tiers
4. static component model, kept in memory only and flagged as fallback
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Final

from loguru import logger

from fleetward.store.pricing_cache import PricingCache, sanitize_prices
from fleetward.types import PricingInfo

DEFAULT_REFRESH_INTERVAL: Final = timedelta(minutes=45)

type LiveFetcher = Callable[[str], Awaitable[dict[str, float]]]
type FallbackBuilder = Callable[[str], Awaitable[dict[str, float]]]


# =============================================================================
# Rate tables
# =============================================================================


@dataclass(frozen=True, slots=True)
class ComponentRates:
    """USD per vCPU-hour and per GiB-hour of memory."""

    cpu_per_hour: float
    mem_per_gib_hour: float


@dataclass(frozen=True, slots=True)
class RateTable:
    """One versioned set of static rates for a cloud.

    Bumping ``version`` is how a rate update is made visible in logs.
    """

    version: str
    components: Mapping[str, ComponentRates]
    default_family: str
    gpu_rates: Mapping[str, float] = field(default_factory=dict)
    default_gpu_rate: float = 0.0
    spot_discounts: Mapping[str, float] = field(default_factory=dict)
    default_spot_discount: float = 0.0
    interruption_rates: Mapping[str, float] = field(default_factory=dict)
    default_interruption_rate: float = 0.0
    region_multipliers: Mapping[str, float] = field(default_factory=dict)

    def rates_for(self, family: str) -> ComponentRates:
        return self.components.get(family) or self.components[self.default_family]

    def has_family(self, family: str) -> bool:
        return family in self.components

    def gpu_rate(self, model: str) -> float:
        return self.gpu_rates.get(model, self.default_gpu_rate)

    def region_multiplier(self, region: str) -> float:
        return self.region_multipliers.get(region, 1.0)

    def spot_discount(self, key: str) -> float:
        return self.spot_discounts.get(key, self.default_spot_discount)

    def interruption_rate(self, key: str) -> float:
        return self.interruption_rates.get(key, self.default_interruption_rate)


def component_price(
    cpu: int,
    memory_mib: int,
    rates: ComponentRates,
    *,
    gpus: int = 0,
    gpu_rate: float = 0.0,
    multiplier: float = 1.0,
) -> float:
    """Hourly price from vCPU, memory and GPU components, rounded to 4 places."""
    price = cpu * rates.cpu_per_hour + memory_mib / 1024 * rates.mem_per_gib_hour
    if gpus > 0:
        price += gpus * gpu_rate
    return round(price * multiplier, 4)


def lowest_prices(records: Iterable[tuple[str, float]]) -> dict[str, float]:
    """Keep the lowest positive price per key."""
    prices: dict[str, float] = {}
    for key, price in records:
        if not key or price <= 0:
            continue
        current = prices.get(key)
        if current is None or price < current:
            prices[key] = price
    return prices


# =============================================================================
# Resolver
# =============================================================================


class PricingResolver:
    """Tiered price lookup for one provider.

    Concurrent callers for the same region share a single live fetch: the
    per-region lock is taken only after a cache miss, and the cache is
    checked again once it is held.

    Example:
        resolver = PricingResolver(
            "aws", cache=cache, fetch_live=fetch, build_fallback=static,
        )
        info = await resolver.resolve("us-east-1")
        if info.fallback:
            ...
    """

    def __init__(
        self,
        provider: str,
        *,
        cache: PricingCache,
        fetch_live: LiveFetcher,
        build_fallback: FallbackBuilder,
        refresh_interval: timedelta = DEFAULT_REFRESH_INTERVAL,
    ) -> None:
        self.provider = provider
        self._cache = cache
        self._fetch_live = fetch_live
        self._build_fallback = build_fallback
        self._refresh_interval = refresh_interval.total_seconds()
        self._locks: dict[str, asyncio.Lock] = {}
        self._fallback: dict[str, bool] = {}
        self._last_live: dict[str, datetime] = {}
        self._regions: set[str] = set()
        self._task: asyncio.Task[None] | None = None
        self._log = logger.bind(provider=provider)

    def _lock(self, region: str) -> asyncio.Lock:
        if region not in self._locks:
            self._locks[region] = asyncio.Lock()
        return self._locks[region]

    # ─── Observability ───────────────────────────────────────────────

    def fallback_active(self, region: str) -> bool:
        return self._fallback.get(region, False)

    def last_live_update(self, region: str) -> datetime | None:
        return self._last_live.get(region)

    @property
    def regions(self) -> frozenset[str]:
        return frozenset(self._regions)

    @property
    def refresh_interval(self) -> timedelta:
        return timedelta(seconds=self._refresh_interval)

    @refresh_interval.setter
    def refresh_interval(self, value: timedelta) -> None:
        self._refresh_interval = value.total_seconds()

    # ─── Resolution ──────────────────────────────────────────────────

    async def resolve(self, region: str) -> PricingInfo:
        self._regions.add(region)
        if info := await self._cached(region):
            return info
        async with self._lock(region):
            if info := await self._cached(region):
                return info
            return await self._load(region)

    async def refresh(self, region: str) -> PricingInfo:
        """Force the live path for ``region``, falling back like :meth:`resolve`."""
        self._regions.add(region)
        async with self._lock(region):
            return await self._load(region)

    async def _cached(self, region: str) -> PricingInfo | None:
        hit = await self._cache.lookup(self.provider, region)
        if hit is None or not hit.prices:
            return None
        return PricingInfo(
            region=region,
            prices=hit.prices,
            updated_at=hit.updated_at,
            fallback=hit.fallback,
        )

    async def _load(self, region: str) -> PricingInfo:
        try:
            prices = dict(await self._fetch_live(region))
        except Exception as e:
            return await self._fall_back(region, e)

        if removed := sanitize_prices(prices):
            self._log.warning(
                "{provider}: removed {n} invalid prices region={region} operation=fetch_live",
                provider=self.provider, n=removed, region=region,
            )
        if not prices:
            return await self._fall_back(region, ValueError("live API returned no usable prices"))

        await self._cache.put(self.provider, region, prices)
        now = datetime.now(UTC)
        self._fallback[region] = False
        self._last_live[region] = now
        self._log.info(
            "{provider}: loaded {n} live prices for {region}",
            provider=self.provider, n=len(prices), region=region,
        )
        return PricingInfo(region=region, prices=prices, updated_at=now)

    async def _fall_back(self, region: str, error: Exception) -> PricingInfo:
        self._log.warning(
            "{provider}: live pricing unavailable region={region} operation=fetch_live, "
            "using static rates: {err}",
            provider=self.provider, region=region, err=error,
        )
        prices = await self._build_fallback(region)
        await self._cache.remember(self.provider, region, prices, fallback=True)
        self._fallback[region] = True
        return PricingInfo(
            region=region, prices=prices, updated_at=datetime.now(UTC), fallback=True,
        )

    # ─── Background refresh ──────────────────────────────────────────

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(
                self._refresh_loop(), name=f"{self.provider}-pricing-refresh",
            )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self._refresh_interval)
            await self.refresh_all()

    async def refresh_all(self) -> None:
        """Re-resolve every region seen so far; failures are logged."""
        for region in sorted(self._regions):
            started = time.monotonic()
            try:
                await self.refresh(region)
            except Exception as e:
                self._log.opt(exception=e).error(
                    "{provider}: pricing refresh failed region={region} operation=refresh: {err}",
                    provider=self.provider, region=region, err=e,
                )
                continue
            self._log.debug(
                "{provider}: refreshed {region} in {elapsed:.2f}s",
                provider=self.provider, region=region, elapsed=time.monotonic() - started,
            )


__all__ = [
    "DEFAULT_REFRESH_INTERVAL",
    "ComponentRates",
    "FallbackBuilder",
    "LiveFetcher",
    "PricingResolver",
    "RateTable",
    "component_price",
    "lowest_prices",
]
