"""GKE node pools over the Kubernetes Engine v1 REST API.

A pool's current size is the sum of ``targetSize`` over its instance group
managers (one per zone), fetched concurrently.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Final

from loguru import logger

from fleetward.errors import TransientError, UnknownNodeGroupError
from fleetward.family import try_extract_family
from fleetward.infra.fanout import DEFAULT_FANOUT_LIMIT, bounded_gather
from fleetward.infra.http import HttpClient, HttpError
from fleetward.infra.retry import call_with_retry, transient
from fleetward.types import NodeGroup, Taint, TaintEffect

log = logger.bind(provider="gcp")

GKE_BASE_URL: Final = "https://container.googleapis.com/v1"
GKE_MAX_ATTEMPTS: Final = 4

TAINT_EFFECTS: Final[dict[str, TaintEffect]] = {
    "NO_SCHEDULE": "NoSchedule",
    "NO_EXECUTE": "NoExecute",
    "PREFER_NO_SCHEDULE": "PreferNoSchedule",
}


def parse_taints(raw: Sequence[Mapping[str, Any]]) -> tuple[Taint, ...]:
    return tuple(
        Taint(
            key=t.get("key") or "",
            value=t.get("value") or "",
            effect=TAINT_EFFECTS.get((t.get("effect") or "").upper(), ""),
        )
        for t in raw
    )


def node_pool_to_node_group(
    pool: Mapping[str, Any], region: str, current_count: int | None = None,
) -> NodeGroup:
    """Map a GKE node pool; ``initialNodeCount`` stands in for an unknown size."""
    config = pool.get("config") or {}
    autoscaling = pool.get("autoscaling") or {}
    machine_type = config.get("machineType") or ""
    spot = bool(config.get("spot") or config.get("preemptible"))
    count = current_count if current_count else int(pool.get("initialNodeCount") or 0)
    locations = pool.get("locations") or []
    return NodeGroup(
        id=pool["name"],
        name=pool["name"],
        instance_type=machine_type,
        instance_family=try_extract_family(machine_type),
        current_count=count,
        desired_count=count,
        min_count=int(autoscaling.get("minNodeCount") or 0),
        max_count=int(autoscaling.get("maxNodeCount") or 0),
        zone=locations[0] if locations else "",
        region=region,
        lifecycle="spot" if spot else "on-demand",
        labels=dict(config.get("labels") or {}),
        taints=parse_taints(config.get("taints") or []),
        disk_type=config.get("diskType") or "",
        disk_size_gb=int(config.get("diskSizeGb") or 0),
        spot_percentage=100 if spot else 0,
        instance_types=(machine_type,) if machine_type else (),
    )


class NodePools:
    """Node pools of one GKE cluster."""

    def __init__(
        self,
        http: HttpClient,
        *,
        project: str,
        location: str,
        cluster_name: str,
        region: str,
        fanout_limit: int = DEFAULT_FANOUT_LIMIT,
    ) -> None:
        self._http = http
        self._region = region
        self._fanout_limit = fanout_limit
        self._base = (
            f"{GKE_BASE_URL}/projects/{project}/locations/{location}"
            f"/clusters/{cluster_name}/nodePools"
        )

    async def _request(
        self, method: str, url: str, *, json: dict[str, Any] | None = None, operation: str,
    ) -> Any:
        return await call_with_retry(
            lambda: self._http.request(method, url, json=json),
            on=transient,
            max_attempts=GKE_MAX_ATTEMPTS,
            context=f"gcp:{operation}",
        )

    # ─── Sizes ───────────────────────────────────────────────────────

    async def _target_size(self, url: str) -> int:
        data = await self._request("GET", url, operation="get_instance_group_manager") or {}
        return int(data.get("targetSize") or 0)

    async def current_size(self, pool: Mapping[str, Any]) -> int | None:
        """Sum of the pool's instance group sizes; ``None`` when unavailable (logged)."""
        urls = pool.get("instanceGroupUrls") or []
        if not urls:
            return None
        try:
            sizes = await bounded_gather(self._target_size, urls, limit=self._fanout_limit)
        except (HttpError, TransientError) as e:
            log.warning(
                "gcp: instance group sizes unavailable for {pool} region={region} "
                "operation=get_instance_group_manager: {err}",
                pool=pool.get("name"), region=self._region, err=e,
            )
            return None
        return sum(sizes)

    async def _to_node_group(self, pool: Mapping[str, Any]) -> NodeGroup:
        return node_pool_to_node_group(pool, self._region, await self.current_size(pool))

    # ─── Discovery ───────────────────────────────────────────────────

    async def discover(self) -> list[NodeGroup]:
        data = await self._request("GET", self._base, operation="list_node_pools") or {}
        pools = [p for p in data.get("nodePools") or [] if p.get("name")]
        groups = await bounded_gather(self._to_node_group, pools, limit=self._fanout_limit)
        log.debug("gcp: discovered {n} GKE node pools", n=len(groups))
        return groups

    async def _pool(self, name: str) -> Mapping[str, Any]:
        try:
            return await self._request("GET", f"{self._base}/{name}", operation="get_node_pool")
        except HttpError as e:
            if e.status == 404:
                raise UnknownNodeGroupError(name) from e
            raise

    async def get(self, name: str) -> NodeGroup:
        return await self._to_node_group(await self._pool(name))

    # ─── Mutations ───────────────────────────────────────────────────

    async def set_size(self, name: str, count: int) -> None:
        await self._request(
            "POST", f"{self._base}/{name}:setSize",
            json={"nodeCount": count}, operation="set_node_pool_size",
        )

    async def update_bounds(
        self, name: str, *, min_count: int | None = None, max_count: int | None = None,
    ) -> None:
        """Enable autoscaling with new bounds, keeping the other bound."""
        current = (await self._pool(name)).get("autoscaling") or {}
        if min_count is None:
            min_count = int(current.get("minNodeCount") or 0)
        if max_count is None:
            max_count = int(current.get("maxNodeCount") or 0)
        autoscaling = {"enabled": True, "minNodeCount": min_count, "maxNodeCount": max_count}
        await self._request(
            "POST", f"{self._base}/{name}:setAutoscaling",
            json={"autoscaling": autoscaling}, operation="set_node_pool_autoscaling",
        )
        log.info("gcp: updated autoscaling of {pool}: {bounds}", pool=name, bounds=autoscaling)


__all__ = [
    "GKE_BASE_URL",
    "NodePools",
    "node_pool_to_node_group",
    "parse_taints",
]
