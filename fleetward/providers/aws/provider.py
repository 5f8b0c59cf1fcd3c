"""AWS provider: EKS node groups as Auto Scaling Groups."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from injector import Injector
from loguru import logger

from fleetward.pricing import PricingResolver
from fleetward.providers.base import BaseProvider
from fleetward.store.pricing_cache import PricingCache
from fleetward.types import Commitment, InstanceType, NodeGroup, SpotInstanceInfo

from . import commitments, pricing, spot
from .clients import (
    AutoScalingClientFactory,
    AWSModule,
    Client,
    EC2ClientFactory,
    PricingClientFactory,
    SavingsPlansClientFactory,
)
from .config import AWS
from .nodegroups import AutoScalingGroups
from .rates import RATES

log = logger.bind(provider="aws")


class AWSProvider(BaseProvider):
    """CloudProvider for EKS on AWS.

    Example:
        >>> provider = await AWSProvider.create(AWS(region="us-east-1"), cache=cache)
        >>> groups = await provider.discover_node_groups()
    """

    name = "aws"
    rates = RATES

    def __init__(
        self,
        config: AWS,
        *,
        cache: PricingCache,
        ec2: Client[Any],
        autoscaling: Client[Any],
        pricing_client: Client[Any],
        savingsplans: Client[Any],
    ) -> None:
        self._config = config
        self._ec2 = ec2
        self._pricing = pricing_client
        self._savingsplans = savingsplans
        self._groups = AutoScalingGroups(autoscaling, config.region, config.cluster_name)
        self._gpu_memory: dict[str, int] = {}
        super().__init__(
            config.region,
            PricingResolver(
                "aws",
                cache=cache,
                fetch_live=self._fetch_live,
                build_fallback=self.static_prices,
            ),
        )

    @classmethod
    async def create(cls, config: AWS, *, cache: PricingCache) -> AWSProvider:
        injector = Injector([AWSModule()])
        injector.binder.bind(AWS, to=config)
        log.info(
            "Creating AWS provider region={region} cluster={cluster}",
            region=config.region, cluster=config.cluster_name or "*",
        )
        return cls(
            config,
            cache=cache,
            ec2=injector.get(EC2ClientFactory),
            autoscaling=injector.get(AutoScalingClientFactory),
            pricing_client=injector.get(PricingClientFactory),
            savingsplans=injector.get(SavingsPlansClientFactory),
        )

    # ─── Pricing hooks ───────────────────────────────────────────────

    async def _fetch_live(self, region: str) -> dict[str, float]:
        return await pricing.fetch_live_prices(self._pricing, region)

    async def _describe_instance_types(self, region: str) -> list[InstanceType]:
        types, gpu_memory = await pricing.describe_instance_types(self._ec2, region)
        self._gpu_memory.update(gpu_memory)
        return types

    def _static_price(self, it: InstanceType, region: str) -> float:
        return pricing.static_price(it)

    def _gpu_memory_mib(self, it: InstanceType) -> int:
        return self._gpu_memory.get(it.name, 0)

    # ─── Node groups ─────────────────────────────────────────────────

    async def discover_node_groups(self) -> list[NodeGroup]:
        return await self._groups.discover()

    async def get_node_group(self, group_id: str) -> NodeGroup:
        return await self._groups.get(group_id)

    async def _set_desired(self, group: NodeGroup, desired: int) -> None:
        await self._groups.set_desired(group.id, desired)

    async def set_node_group_min_count(self, group_id: str, count: int) -> None:
        await self._groups.update_bounds(group_id, min_size=count)

    async def set_node_group_max_count(self, group_id: str, count: int) -> None:
        await self._groups.update_bounds(group_id, max_size=count)

    # ─── Commitments ─────────────────────────────────────────────────

    async def get_reserved_instances(self) -> list[Commitment]:
        return await commitments.get_reserved_instances(self._ec2, self.region)

    async def get_savings_plans(self) -> list[Commitment]:
        return await commitments.get_savings_plans(self._savingsplans, self.region)

    # ─── Spot ────────────────────────────────────────────────────────

    async def get_spot_pricing(
        self, region: str, instance_types: Sequence[str],
    ) -> list[SpotInstanceInfo]:
        on_demand = dict((await self.get_current_pricing(region)).prices)
        return await spot.get_spot_pricing(self._ec2, region, instance_types, on_demand)

    async def get_spot_interruption_rate(
        self, region: str, instance_types: Sequence[str],
    ) -> dict[str, float]:
        return {it: spot.estimate_interruption_rate(it) for it in instance_types}

    def estimate_spot_discount(self, instance_type: str) -> float:
        return spot.estimate_spot_discount(instance_type)


__all__ = ["AWSProvider"]
