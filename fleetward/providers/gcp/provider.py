"""GCP provider: GKE node pools.

Compute Engine calls (machine types, zones, commitments) use the sync GCP
clients dispatched to a dedicated thread pool; GKE and the Cloud Billing
Catalog are called over REST with an ADC bearer token.
"""

from __future__ import annotations

from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

from google.api_core import exceptions as google_exceptions
from loguru import logger

from fleetward.errors import ConfigError, TransientError
from fleetward.infra.http import HttpClient, HttpError
from fleetward.pricing import ComponentRates, PricingResolver
from fleetward.providers.base import BaseProvider
from fleetward.store.pricing_cache import PricingCache
from fleetward.types import Commitment, InstanceType, NodeGroup, SpotInstanceInfo

from . import commitments, pricing, spot
from .auth import GoogleAuth, resolve_project
from .compute import ComputeEngine
from .config import GCP
from .nodepools import NodePools
from .rates import GPU_MEMORY_MIB, RATES

log = logger.bind(provider="gcp")


class GCPProvider(BaseProvider):
    """CloudProvider for GKE on GCP.

    Example:
        >>> provider = await GCPProvider.create(GCP(cluster_name="prod"), cache=cache)
        >>> pools = await provider.discover_node_groups()
    """

    name = "gcp"
    rates = RATES

    def __init__(
        self,
        config: GCP,
        *,
        cache: PricingCache,
        project: str,
        compute: ComputeEngine,
        http: HttpClient,
    ) -> None:
        self._config = config
        self._project = project
        self._compute = compute
        self._http = http
        self._pools = NodePools(
            http,
            project=project,
            location=config.cluster_location,
            cluster_name=config.cluster_name,
            region=config.region,
        )
        super().__init__(
            config.region,
            PricingResolver(
                "gcp",
                cache=cache,
                fetch_live=self._fetch_live,
                build_fallback=self.static_prices,
            ),
        )

    @classmethod
    async def create(cls, config: GCP, *, cache: PricingCache) -> GCPProvider:
        if not config.cluster_name:
            raise ConfigError("cluster name is required for GCP")

        project = resolve_project(config.project)
        log.info(
            "Creating GCP provider project={project} region={region} cluster={cluster}",
            project=project, region=config.region, cluster=config.cluster_name,
        )

        thread_pool = ThreadPoolExecutor(
            max_workers=config.thread_pool_size,
            thread_name_prefix="gcp-io",
        )
        return cls(
            config,
            cache=cache,
            project=project,
            compute=ComputeEngine.create(project, thread_pool=thread_pool),
            http=HttpClient(
                auth=GoogleAuth.default(executor=thread_pool),
                timeout=config.request_timeout,
            ),
        )

    # ─── Pricing hooks ───────────────────────────────────────────────

    async def _fetch_live(self, region: str) -> dict[str, float]:
        rates = await pricing.fetch_component_rates(self._http, region)
        return pricing.live_prices(await self.catalog(region), region, rates)

    async def _describe_instance_types(self, region: str) -> list[InstanceType]:
        return await pricing.describe_machine_types(self._compute, region)

    def _static_price(self, it: InstanceType, region: str) -> float:
        return pricing.static_price(it, region)

    def _gpu_memory_mib(self, it: InstanceType) -> int:
        return GPU_MEMORY_MIB.get(it.gpu_type, 0) * it.gpus

    # ─── Node groups ─────────────────────────────────────────────────

    async def discover_node_groups(self) -> list[NodeGroup]:
        return await self._pools.discover()

    async def get_node_group(self, group_id: str) -> NodeGroup:
        return await self._pools.get(group_id)

    async def _set_desired(self, group: NodeGroup, desired: int) -> None:
        await self._pools.set_size(group.id, desired)

    async def set_node_group_min_count(self, group_id: str, count: int) -> None:
        await self._pools.update_bounds(group_id, min_count=count)

    async def set_node_group_max_count(self, group_id: str, count: int) -> None:
        await self._pools.update_bounds(group_id, max_count=count)

    # ─── Commitments ─────────────────────────────────────────────────

    async def get_committed_use_discounts(self) -> list[Commitment]:
        return await commitments.get_cuds(self._compute, self.region)

    # ─── Spot ────────────────────────────────────────────────────────

    async def _preemptible_rates(self, region: str) -> dict[str, ComponentRates]:
        try:
            return await pricing.fetch_component_rates(self._http, region, "Preemptible")
        except (HttpError, TransientError) as e:
            log.warning(
                "gcp: preemptible rates unavailable, using discount table region={region} "
                "operation=list_billing_skus: {err}",
                region=region, err=e,
            )
            return {}

    async def _spot_zones(self, region: str) -> list[str]:
        try:
            zones = await self._compute.region_zones(region)
        except google_exceptions.GoogleAPICallError as e:
            log.warning(
                "gcp: zones unavailable, guessing region={region} operation=get_region: {err}",
                region=region, err=e,
            )
            return spot.spot_fallback_zones(region)
        return zones or spot.spot_fallback_zones(region)

    async def get_spot_pricing(
        self, region: str, instance_types: Sequence[str],
    ) -> list[SpotInstanceInfo]:
        """Spot rows for every zone of the region."""
        on_demand = (await self.get_current_pricing(region)).prices
        catalog = {it.name: it for it in await self.catalog(region)}
        return spot.spot_rows(
            instance_types,
            on_demand,
            await self._preemptible_rates(region),
            catalog,
            await self._spot_zones(region),
        )

    async def get_spot_interruption_rate(
        self, region: str, instance_types: Sequence[str],
    ) -> dict[str, float]:
        return {it: spot.estimate_preemption_rate(it) for it in instance_types}

    def estimate_spot_discount(self, instance_type: str) -> float:
        return spot.estimate_spot_discount(instance_type)

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def close(self) -> None:
        await super().close()
        await self._http.close()
        self._compute.close()


__all__ = ["GCPProvider"]
