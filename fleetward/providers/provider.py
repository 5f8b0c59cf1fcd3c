from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol, Self, runtime_checkable

from fleetward.store.pricing_cache import PricingCache
from fleetward.types import (
    Commitment,
    GPUInstanceType,
    InstanceType,
    Node,
    NodeCost,
    NodeGroup,
    PricingInfo,
    SpotInstanceInfo,
)


@runtime_checkable
class CloudProvider[C](Protocol):
    """Uniform interface over ASGs, VMSS and GKE node pools.

    Implementations hold immutable config plus their clients and a pricing
    resolver. Every cloud answers every method; commitment kinds a cloud
    does not have come back empty rather than raising.
    """

    @property
    def name(self) -> str: ...

    @classmethod
    async def create(cls, config: C, *, cache: PricingCache) -> Self:
        """Create a provider from its config.

        Parameters
        ----------
        config
            Cloud-specific configuration (region, credentials, cluster).
        cache
            Shared tiered pricing cache.
        """
        ...

    # ─── Node groups ─────────────────────────────────────────────────

    async def discover_node_groups(self) -> Sequence[NodeGroup]:
        """All node groups belonging to the configured cluster."""
        ...

    async def get_node_group(self, group_id: str) -> NodeGroup:
        """Fetch one node group.

        Raises
        ------
        UnknownNodeGroupError
            The group does not exist.
        """
        ...

    async def scale_node_group(self, group_id: str, desired: int) -> None:
        """Set the desired node count after checking ``min <= desired <= max``.

        Raises
        ------
        ScaleBoundsError
            ``desired`` is negative or outside the group's bounds.
        """
        ...

    async def set_node_group_min_count(self, group_id: str, count: int) -> None: ...

    async def set_node_group_max_count(self, group_id: str, count: int) -> None: ...

    # ─── Instance types and pricing ──────────────────────────────────

    async def get_instance_types(self, region: str) -> Sequence[InstanceType]: ...

    async def get_current_pricing(self, region: str) -> PricingInfo:
        """Hourly prices for ``region``. ``fallback`` is set for static estimates."""
        ...

    async def get_node_cost(self, node: Node) -> NodeCost:
        """Effective hourly and monthly cost of a node, spot discount applied.

        Raises
        ------
        NodeError
            The node has no instance-type label.
        PricingError
            No price is known for the node's instance type.
        """
        ...

    async def get_gpu_instance_types(self, region: str) -> Sequence[GPUInstanceType]: ...

    async def get_family_sizes(self, instance_type: str) -> Sequence[InstanceType]:
        """Every size in the provider region sharing ``instance_type``'s family."""
        ...

    # ─── Commitments ─────────────────────────────────────────────────

    async def get_reserved_instances(self) -> Sequence[Commitment]: ...

    async def get_savings_plans(self) -> Sequence[Commitment]: ...

    async def get_committed_use_discounts(self) -> Sequence[Commitment]: ...

    async def get_reservations(self) -> Sequence[Commitment]: ...

    # ─── Spot ────────────────────────────────────────────────────────

    async def get_spot_pricing(
        self, region: str, instance_types: Sequence[str],
    ) -> Sequence[SpotInstanceInfo]: ...

    async def get_spot_interruption_rate(
        self, region: str, instance_types: Sequence[str],
    ) -> dict[str, float]:
        """Estimated monthly interruption percentage per instance type."""
        ...

    def estimate_spot_discount(self, instance_type: str) -> float:
        """Static spot discount fraction (0-1). Never raises."""
        ...

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def start(self) -> None:
        """Start background pricing refresh."""
        ...

    async def close(self) -> None:
        """Stop background work and release clients."""
        ...


__all__ = ["CloudProvider"]
