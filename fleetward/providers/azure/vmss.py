"""AKS node pools backed by Virtual Machine Scale Sets.

Capacity lives on the scale set (``sku.capacity``); autoscaler bounds live on
the AKS agent pool, which is only reachable when the cluster name is known.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import Any, cast

from loguru import logger

from fleetward.errors import ConfigError, TransientError, UnknownNodeGroupError
from fleetward.family import try_extract_family
from fleetward.infra.http import HttpError
from fleetward.types import NodeGroup, Taint, TaintEffect

from .arm import COMPUTE_API_VERSION, ArmClient

log = logger.bind(provider="azure")

AKS_API_VERSION = "2024-01-01"
VMSS_MAX_PAGES = 100
AGENT_POOLS_MAX_PAGES = 10

POOL_NAME_TAG = "aks-managed-poolName"
MIN_COUNT_TAG = "aks-managed-autoScalerMinCount"
MAX_COUNT_TAG = "aks-managed-autoScalerMaxCount"

_TAINT_EFFECTS = frozenset({"NoSchedule", "NoExecute", "PreferNoSchedule"})


def _int_tag(tags: Mapping[str, str], key: str) -> int:
    try:
        return int(tags.get(key, 0))
    except (TypeError, ValueError):
        return 0


def parse_taint(raw: str) -> Taint:
    """``key=value:Effect`` (value optional), the AKS ``nodeTaints`` format."""
    pair, _, effect = raw.partition(":")
    key, _, value = pair.partition("=")
    return Taint(
        key=key,
        value=value,
        effect=cast(TaintEffect, effect if effect in _TAINT_EFFECTS else ""),
    )


def vmss_to_node_group(vmss: Mapping[str, Any], pool_name: str, region: str) -> NodeGroup:
    tags = dict(vmss.get("tags") or {})
    sku = vmss.get("sku") or {}
    instance_type = sku.get("name") or ""
    capacity = int(sku.get("capacity") or 0)
    profile = (vmss.get("properties") or {}).get("virtualMachineProfile") or {}
    spot = (profile.get("priority") or "").lower() == "spot"
    zones = vmss.get("zones") or []
    return NodeGroup(
        id=vmss["name"],
        name=pool_name or vmss["name"],
        instance_type=instance_type,
        instance_family=try_extract_family(instance_type),
        current_count=capacity,
        desired_count=capacity,
        min_count=_int_tag(tags, MIN_COUNT_TAG),
        max_count=_int_tag(tags, MAX_COUNT_TAG),
        zone=f"{region}-{zones[0]}" if zones else "",
        region=region,
        lifecycle="spot" if spot else "on-demand",
        labels=tags,
        spot_percentage=100 if spot else 0,
        instance_types=(instance_type,) if instance_type else (),
    )


def with_agent_pool(group: NodeGroup, pool: Mapping[str, Any]) -> NodeGroup:
    """Overlay autoscaler bounds, disk and taints from the AKS agent pool."""
    props = pool.get("properties") or {}
    return replace(
        group,
        min_count=int(props.get("minCount") or 0),
        max_count=int(props.get("maxCount") or 0),
        disk_size_gb=int(props.get("osDiskSizeGB") or 0),
        disk_type=props.get("osDiskType") or "",
        taints=tuple(parse_taint(t) for t in props.get("nodeTaints") or []),
    )


class ScaleSets:
    """Discovery and sizing of the AKS-managed scale sets of one resource group."""

    def __init__(
        self,
        arm: ArmClient,
        *,
        subscription_id: str,
        resource_group: str,
        region: str,
        cluster_name: str = "",
    ) -> None:
        self._arm = arm
        self._region = region
        self._cluster_name = cluster_name
        self._group_path = f"/subscriptions/{subscription_id}/resourceGroups/{resource_group}"

    def _vmss_path(self, name: str = "") -> str:
        path = f"{self._group_path}/providers/Microsoft.Compute/virtualMachineScaleSets"
        return f"{path}/{name}" if name else path

    def _pool_path(self, name: str = "") -> str:
        path = (
            f"{self._group_path}/providers/Microsoft.ContainerService/"
            f"managedClusters/{self._cluster_name}/agentPools"
        )
        return f"{path}/{name}" if name else path

    # ─── Agent pools ─────────────────────────────────────────────────

    async def agent_pools(self) -> dict[str, Mapping[str, Any]]:
        """Agent pools by name; empty when unavailable (logged)."""
        if not self._cluster_name:
            return {}
        try:
            return {
                pool["name"]: pool
                async for pool in self._arm.list(
                    self._pool_path(),
                    AKS_API_VERSION,
                    operation="list_agent_pools",
                    max_pages=AGENT_POOLS_MAX_PAGES,
                    region=self._region,
                )
                if pool.get("name")
            }
        except (HttpError, TransientError) as e:
            log.warning(
                "azure: agent pools unavailable, bounds from scale set tags region={region} "
                "operation=list_agent_pools: {err}",
                region=self._region, err=e,
            )
            return {}

    async def agent_pool(self, pool_name: str) -> Mapping[str, Any]:
        return await self._arm.get(
            self._pool_path(pool_name), AKS_API_VERSION, operation="get_agent_pool",
        )

    # ─── Scale sets ──────────────────────────────────────────────────

    async def discover(self) -> list[NodeGroup]:
        pools = await self.agent_pools()
        groups: list[NodeGroup] = []
        async for vmss in self._arm.list(
            self._vmss_path(),
            COMPUTE_API_VERSION,
            operation="list_vmss",
            max_pages=VMSS_MAX_PAGES,
            region=self._region,
        ):
            pool_name = (vmss.get("tags") or {}).get(POOL_NAME_TAG)
            if not pool_name:
                continue
            try:
                group = vmss_to_node_group(vmss, pool_name, self._region)
            except (KeyError, TypeError, ValueError) as e:
                log.warning(
                    "azure: skipping malformed scale set region={region} "
                    "operation=list_vmss: {err}",
                    region=self._region, err=e,
                )
                continue
            if pool := pools.get(pool_name):
                group = with_agent_pool(group, pool)
            groups.append(group)
        log.debug("azure: discovered {n} AKS node pools", n=len(groups))
        return groups

    async def _get_vmss(self, name: str) -> Mapping[str, Any]:
        try:
            return await self._arm.get(
                self._vmss_path(name), COMPUTE_API_VERSION, operation="get_vmss",
            )
        except HttpError as e:
            if e.status == 404:
                raise UnknownNodeGroupError(name) from e
            raise

    async def get(self, name: str) -> NodeGroup:
        vmss = await self._get_vmss(name)
        pool_name = (vmss.get("tags") or {}).get(POOL_NAME_TAG) or vmss.get("name") or name
        group = vmss_to_node_group(vmss, pool_name, self._region)
        if self._cluster_name:
            try:
                group = with_agent_pool(group, await self.agent_pool(pool_name))
            except (HttpError, TransientError) as e:
                log.warning(
                    "azure: agent pool {pool} unavailable region={region} "
                    "operation=get_agent_pool: {err}",
                    pool=pool_name, region=self._region, err=e,
                )
        return group

    async def set_capacity(self, name: str, capacity: int) -> None:
        await self._arm.patch(
            self._vmss_path(name),
            COMPUTE_API_VERSION,
            {"sku": {"capacity": capacity}},
            operation="scale_vmss",
        )

    async def _pool_name(self, name: str) -> str:
        try:
            vmss = await self._get_vmss(name)
        except (HttpError, TransientError, UnknownNodeGroupError) as e:
            log.warning(
                "azure: cannot resolve pool of {vmss}, using the scale set name region={region} "
                "operation=get_vmss: {err}",
                vmss=name, region=self._region, err=e,
            )
            return name
        return (vmss.get("tags") or {}).get(POOL_NAME_TAG) or name

    async def update_bounds(
        self, name: str, *, min_count: int | None = None, max_count: int | None = None,
    ) -> None:
        """Change the agent pool autoscaler bounds, keeping the other bound."""
        if not self._cluster_name:
            raise ConfigError(
                f"cluster name is required to change autoscaler bounds of node group {name}"
            )
        pool_name = await self._pool_name(name)
        current = (await self.agent_pool(pool_name)).get("properties") or {}
        props = {
            "enableAutoScaling": True,
            "minCount": int(current.get("minCount") or 0) if min_count is None else min_count,
            "maxCount": int(current.get("maxCount") or 0) if max_count is None else max_count,
            "count": int(current.get("count") or 0),
        }
        await self._arm.put(
            self._pool_path(pool_name),
            AKS_API_VERSION,
            {"properties": props},
            operation="update_agent_pool",
        )
        log.info("azure: updated bounds of {pool}: {props}", pool=pool_name, props=props)


__all__ = [
    "AKS_API_VERSION",
    "COMPUTE_API_VERSION",
    "POOL_NAME_TAG",
    "ScaleSets",
    "parse_taint",
    "vmss_to_node_group",
    "with_agent_pool",
]
