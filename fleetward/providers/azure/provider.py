"""Azure provider: AKS node pools as Virtual Machine Scale Sets."""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from fleetward.errors import TransientError
from fleetward.infra.http import HttpClient, HttpError
from fleetward.pricing import PricingResolver
from fleetward.providers.base import BaseProvider
from fleetward.store.pricing_cache import PricingCache
from fleetward.types import Commitment, InstanceType, NodeGroup, SpotInstanceInfo

from . import commitments, pricing, spot
from .arm import ArmClient
from .auth import azure_auth
from .config import Azure
from .rates import RATES
from .spot import estimate_eviction_rate
from .vmss import ScaleSets

log = logger.bind(provider="azure")


class AzureProvider(BaseProvider):
    """CloudProvider for AKS on Azure.

    ARM calls go through ``arm`` (authenticated); list prices come from
    ``retail``, an unauthenticated client for the public Retail Prices API.
    """

    name = "azure"
    rates = RATES

    def __init__(
        self,
        config: Azure,
        *,
        cache: PricingCache,
        arm: ArmClient,
        retail: HttpClient,
    ) -> None:
        self._config = config
        self._arm = arm
        self._retail = retail
        self._scale_sets = ScaleSets(
            arm,
            subscription_id=config.subscription_id,
            resource_group=config.resource_group,
            region=config.region,
            cluster_name=config.cluster_name,
        )
        super().__init__(
            config.region,
            PricingResolver(
                "azure",
                cache=cache,
                fetch_live=self._fetch_live,
                build_fallback=self.static_prices,
            ),
        )

    @classmethod
    async def create(cls, config: Azure, *, cache: PricingCache) -> AzureProvider:
        log.info(
            "Creating Azure provider subscription={sub} resource_group={rg} region={region}",
            sub=config.subscription_id, rg=config.resource_group, region=config.region,
        )
        return cls(
            config,
            cache=cache,
            arm=ArmClient(azure_auth(config), timeout=config.request_timeout),
            retail=HttpClient(timeout=config.request_timeout),
        )

    # ─── Pricing hooks ───────────────────────────────────────────────

    async def _fetch_live(self, region: str) -> dict[str, float]:
        return await pricing.fetch_retail_prices(self._retail, region)

    async def _describe_instance_types(self, region: str) -> list[InstanceType]:
        return await pricing.describe_vm_sizes(self._arm, self._config.subscription_id, region)

    def _static_price(self, it: InstanceType, region: str) -> float:
        return pricing.static_price(it)

    # ─── Node groups ─────────────────────────────────────────────────

    async def discover_node_groups(self) -> list[NodeGroup]:
        return await self._scale_sets.discover()

    async def get_node_group(self, group_id: str) -> NodeGroup:
        return await self._scale_sets.get(group_id)

    async def _set_desired(self, group: NodeGroup, desired: int) -> None:
        await self._scale_sets.set_capacity(group.id, desired)

    async def set_node_group_min_count(self, group_id: str, count: int) -> None:
        await self._scale_sets.update_bounds(group_id, min_count=count)

    async def set_node_group_max_count(self, group_id: str, count: int) -> None:
        await self._scale_sets.update_bounds(group_id, max_count=count)

    # ─── Commitments ─────────────────────────────────────────────────

    async def get_reservations(self) -> list[Commitment]:
        return await commitments.get_reservations(self._arm, self.region)

    # ─── Spot ────────────────────────────────────────────────────────

    async def get_spot_pricing(
        self, region: str, instance_types: Sequence[str],
    ) -> list[SpotInstanceInfo]:
        """Regional spot prices, estimated for sizes without a Spot meter.

        When the Retail API is unreachable every requested size is estimated.
        """
        on_demand = (await self.get_current_pricing(region)).prices
        try:
            spot_prices = await spot.fetch_spot_prices(self._retail, region, instance_types)
        except (HttpError, TransientError) as e:
            log.warning(
                "azure: spot prices unavailable, using discount table region={region} "
                "operation=spot_prices: {err}",
                region=region, err=e,
            )
            spot_prices = {}
        return spot.spot_rows(spot_prices, instance_types, on_demand, region)

    async def get_spot_interruption_rate(
        self, region: str, instance_types: Sequence[str],
    ) -> dict[str, float]:
        return {it: estimate_eviction_rate(it) for it in instance_types}

    def estimate_spot_discount(self, instance_type: str) -> float:
        return spot.estimate_spot_discount(instance_type)

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def close(self) -> None:
        await super().close()
        await self._arm.close()
        await self._retail.close()


__all__ = ["AzureProvider"]
