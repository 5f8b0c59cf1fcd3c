"""Base class for provider implementations.

Holds the behaviour every cloud shares: the instance catalogue cache, node
cost, family sizes, scale-bound validation and resolver lifecycle. Cloud
subclasses supply discovery, mutation and the raw catalogue.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from dataclasses import replace
from datetime import timedelta

from loguru import logger

from fleetward.errors import PricingError, ScaleBoundsError
from fleetward.family import extract_family, same_family
from fleetward.pricing import PricingResolver, RateTable
from fleetward.store.pricing_cache import PricingCache
from fleetward.types import (
    HOURS_PER_MONTH,
    Commitment,
    GPUInstanceType,
    InstanceType,
    Node,
    NodeCost,
    NodeGroup,
    PricingInfo,
    is_spot_node,
    node_instance_type,
)

DEFAULT_CATALOG_TTL = timedelta(hours=1)


def validate_scale(group: NodeGroup, desired: int) -> None:
    """Raise ``ScaleBoundsError`` unless ``min <= desired <= max``."""
    if desired < group.min_count:
        raise ScaleBoundsError(
            f"desired count {desired} is below min {group.min_count} for node group {group.id}"
        )
    if desired > group.max_count:
        raise ScaleBoundsError(
            f"desired count {desired} exceeds max {group.max_count} for node group {group.id}"
        )


def filter_family(types: Sequence[InstanceType], instance_type: str) -> list[InstanceType]:
    family = extract_family(instance_type)
    return [t for t in types if same_family(t.family, family)]


class BaseProvider:
    """Shared provider behaviour on top of a :class:`PricingResolver`.

    Subclasses set ``name``, ``region`` and ``rates`` and implement the
    ``_describe_instance_types`` / ``_static_price`` hooks plus the node-group
    operations.
    """

    name: str = ""
    rates: RateTable

    def __init__(
        self,
        region: str,
        resolver: PricingResolver,
        *,
        catalog_ttl: timedelta = DEFAULT_CATALOG_TTL,
    ) -> None:
        self.region = region
        self.resolver = resolver
        self._catalog_ttl = catalog_ttl.total_seconds()
        self._catalog: dict[str, tuple[float, list[InstanceType]]] = {}
        self._catalog_lock = asyncio.Lock()
        self._log = logger.bind(provider=self.name)
        self._owned_cache: PricingCache | None = None

    # ─── Hooks ───────────────────────────────────────────────────────

    async def _describe_instance_types(self, region: str) -> list[InstanceType]:
        """Unpriced instance catalogue for ``region``."""
        raise NotImplementedError

    def _static_price(self, it: InstanceType, region: str) -> float:
        raise NotImplementedError

    def _gpu_memory_mib(self, it: InstanceType) -> int:
        return 0

    def estimate_spot_discount(self, instance_type: str) -> float:
        raise NotImplementedError

    async def get_node_group(self, group_id: str) -> NodeGroup:
        raise NotImplementedError

    async def _set_desired(self, group: NodeGroup, desired: int) -> None:
        raise NotImplementedError

    # ─── Catalogue ───────────────────────────────────────────────────

    async def catalog(self, region: str) -> list[InstanceType]:
        """Raw instance types, cached for ``catalog_ttl`` per region."""
        cached = self._catalog.get(region)
        if cached and time.monotonic() - cached[0] < self._catalog_ttl:
            return cached[1]
        async with self._catalog_lock:
            cached = self._catalog.get(region)
            if cached and time.monotonic() - cached[0] < self._catalog_ttl:
                return cached[1]
            types = await self._describe_instance_types(region)
            self._catalog[region] = (time.monotonic(), types)
            self._log.debug(
                "{provider}: cached {n} instance types for {region}",
                provider=self.name, n=len(types), region=region,
            )
            return types

    async def static_prices(self, region: str) -> dict[str, float]:
        """Price map built from the static rate tables alone."""
        try:
            types = await self.catalog(region)
        except Exception as e:
            raise PricingError(f"{self.name}: no instance catalogue for {region}: {e}") from e
        return {t.name: self._static_price(t, region) for t in types}

    async def get_instance_types(self, region: str) -> list[InstanceType]:
        types = await self.catalog(region)
        prices = (await self.get_current_pricing(region)).prices
        return [
            replace(t, price_per_hour=prices.get(t.name) or self._static_price(t, region))
            for t in types
        ]

    async def get_gpu_instance_types(self, region: str) -> list[GPUInstanceType]:
        return [
            GPUInstanceType(
                instance_type=t, gpu_memory_mib=self._gpu_memory_mib(t), gpu_model=t.gpu_type,
            )
            for t in await self.get_instance_types(region)
            if t.gpus > 0
        ]

    async def get_family_sizes(self, instance_type: str) -> list[InstanceType]:
        return filter_family(await self.get_instance_types(self.region), instance_type)

    # ─── Pricing ─────────────────────────────────────────────────────

    async def get_current_pricing(self, region: str) -> PricingInfo:
        return await self.resolver.resolve(region)

    async def price(self, region: str, instance_type: str) -> float:
        pricing = await self.get_current_pricing(region)
        if (price := pricing.price(instance_type)) is None:
            raise PricingError(f"no pricing found for {instance_type} in {region}")
        return price

    async def get_node_cost(self, node: Node) -> NodeCost:
        instance_type = node_instance_type(node)
        price = await self.price(self.region, instance_type)
        spot = is_spot_node(node)
        discount = self.estimate_spot_discount(instance_type) * 100 if spot else 0.0
        hourly = price * (1 - discount / 100) if discount > 0 else price
        return NodeCost(
            node_name=node.name,
            instance_type=instance_type,
            hourly_cost_usd=hourly,
            monthly_cost_usd=hourly * HOURS_PER_MONTH,
            is_spot=spot,
            spot_discount=discount,
        )

    # ─── Node groups ─────────────────────────────────────────────────

    async def scale_node_group(self, group_id: str, desired: int) -> None:
        if desired < 0:
            raise ScaleBoundsError(
                f"invalid desired count {desired} for node group {group_id}: must be >= 0"
            )
        group = await self.get_node_group(group_id)
        validate_scale(group, desired)
        await self._set_desired(group, desired)
        self._log.info(
            "{provider}: scaled {group} to {desired}",
            provider=self.name, group=group_id, desired=desired,
        )

    # ─── Commitments (unsupported kinds are empty) ───────────────────

    async def get_reserved_instances(self) -> list[Commitment]:
        return []

    async def get_savings_plans(self) -> list[Commitment]:
        return []

    async def get_committed_use_discounts(self) -> list[Commitment]:
        return []

    async def get_reservations(self) -> list[Commitment]:
        return []

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def start(self) -> None:
        self.resolver.start()

    def own_cache(self, cache: PricingCache) -> None:
        """Close ``cache`` together with this provider."""
        self._owned_cache = cache

    async def close(self) -> None:
        await self.resolver.stop()
        if self._owned_cache is not None:
            await self._owned_cache.close()
            self._owned_cache = None


__all__ = ["DEFAULT_CATALOG_TTL", "BaseProvider", "filter_family", "validate_scale"]
