"""EKS node groups backed by Auto Scaling Groups."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from loguru import logger

from fleetward.errors import UnknownNodeGroupError
from fleetward.family import try_extract_family
from fleetward.infra.pagination import Page, collect_pages
from fleetward.infra.retry import call_with_retry, transient
from fleetward.types import NodeGroup

from .clients import Client

log = logger.bind(provider="aws")

CLUSTER_TAG_PREFIX = "kubernetes.io/cluster/"
EKS_CLUSTER_TAG = "eks:cluster-name"
CAPACITY_TYPE_TAG = "eks.amazonaws.com/capacityType"
ASG_MAX_PAGES = 100


def asg_tags(asg: Mapping[str, Any]) -> dict[str, str]:
    return {
        tag["Key"]: tag.get("Value", "")
        for tag in asg.get("Tags", [])
        if tag.get("Key")
    }


def is_eks_node_group(asg: Mapping[str, Any], cluster_name: str = "") -> bool:
    """EKS groups carry ``kubernetes.io/cluster/<name>`` or ``eks:cluster-name``."""
    for key, value in asg_tags(asg).items():
        if key.startswith(CLUSTER_TAG_PREFIX):
            if not cluster_name or key == f"{CLUSTER_TAG_PREFIX}{cluster_name}":
                return True
        elif key == EKS_CLUSTER_TAG:
            if not cluster_name or value == cluster_name:
                return True
    return False


def asg_instance_types(asg: Mapping[str, Any]) -> list[str]:
    """Mixed-instances overrides, else distinct types of running instances."""
    policy = asg.get("MixedInstancesPolicy") or {}
    overrides = (policy.get("LaunchTemplate") or {}).get("Overrides") or []
    types = [o["InstanceType"] for o in overrides if o.get("InstanceType")]
    if types:
        return types

    seen: list[str] = []
    for instance in asg.get("Instances", []):
        it = instance.get("InstanceType")
        if it and it not in seen:
            seen.append(it)
    return seen


def spot_percentage(asg: Mapping[str, Any], tags: Mapping[str, str]) -> int:
    if tags.get(CAPACITY_TYPE_TAG, "").upper() == "SPOT":
        return 100
    policy = asg.get("MixedInstancesPolicy")
    if not policy:
        return 0
    distribution = policy.get("InstancesDistribution") or {}
    on_demand = distribution.get("OnDemandPercentageAboveBaseCapacity", 100)
    return max(0, 100 - int(on_demand))


def node_group_from_asg(asg: Mapping[str, Any], region: str) -> NodeGroup:
    name = asg["AutoScalingGroupName"]
    types = asg_instance_types(asg)
    instance_type = types[0] if types else "unknown"
    tags = asg_tags(asg)
    zones = asg.get("AvailabilityZones") or []
    spot = spot_percentage(asg, tags)
    return NodeGroup(
        id=name,
        name=name,
        instance_type=instance_type,
        instance_family=try_extract_family(instance_type),
        current_count=len(asg.get("Instances", [])),
        desired_count=int(asg.get("DesiredCapacity", 0)),
        min_count=int(asg.get("MinSize", 0)),
        max_count=int(asg.get("MaxSize", 0)),
        zone=zones[0] if zones else "",
        region=region,
        lifecycle="spot" if spot == 100 else "on-demand",
        labels=tags,
        spot_percentage=spot,
        instance_types=tuple(types),
    )


class AutoScalingGroups:
    """Discovery and sizing of a cluster's ASGs."""

    def __init__(self, autoscaling: Client[Any], region: str, cluster_name: str = "") -> None:
        self._autoscaling = autoscaling
        self._region = region
        self._cluster_name = cluster_name

    async def discover(self) -> list[NodeGroup]:
        async with self._autoscaling() as client:

            async def fetch(token: str | None) -> Page[Mapping[str, Any]]:
                params: dict[str, Any] = {"MaxRecords": 100}
                if token:
                    params["NextToken"] = token
                resp = await client.describe_auto_scaling_groups(**params)
                return Page(resp.get("AutoScalingGroups", []), resp.get("NextToken"))

            asgs = await collect_pages(
                fetch,
                max_pages=ASG_MAX_PAGES,
                provider="aws",
                operation="describe_auto_scaling_groups",
                region=self._region,
            )

        groups: list[NodeGroup] = []
        for asg in asgs:
            if not is_eks_node_group(asg, self._cluster_name):
                continue
            try:
                groups.append(node_group_from_asg(asg, self._region))
            except (KeyError, TypeError, ValueError) as e:
                log.warning(
                    "aws: skipping malformed ASG region={region} "
                    "operation=describe_auto_scaling_groups: {err}",
                    region=self._region, err=e,
                )
        log.debug("aws: discovered {n} EKS node groups", n=len(groups))
        return groups

    async def get(self, name: str) -> NodeGroup:
        async with self._autoscaling() as client:
            resp = await call_with_retry(
                lambda: client.describe_auto_scaling_groups(AutoScalingGroupNames=[name]),
                on=transient,
                context="aws:describe_auto_scaling_groups",
            )
        asgs = resp.get("AutoScalingGroups", [])
        if not asgs:
            raise UnknownNodeGroupError(name)
        return node_group_from_asg(asgs[0], self._region)

    async def set_desired(self, name: str, desired: int) -> None:
        async with self._autoscaling() as client:
            await call_with_retry(
                lambda: client.set_desired_capacity(
                    AutoScalingGroupName=name, DesiredCapacity=desired, HonorCooldown=False,
                ),
                on=transient,
                context="aws:set_desired_capacity",
            )

    async def update_bounds(
        self, name: str, *, min_size: int | None = None, max_size: int | None = None,
    ) -> None:
        params: dict[str, Any] = {"AutoScalingGroupName": name}
        if min_size is not None:
            params["MinSize"] = min_size
        if max_size is not None:
            params["MaxSize"] = max_size
        async with self._autoscaling() as client:
            await call_with_retry(
                lambda: client.update_auto_scaling_group(**params),
                on=transient,
                context="aws:update_auto_scaling_group",
            )
        log.info("aws: updated bounds of {name}: {params}", name=name, params=params)


__all__ = [
    "AutoScalingGroups",
    "asg_instance_types",
    "asg_tags",
    "is_eks_node_group",
    "node_group_from_asg",
    "spot_percentage",
]
