"""Reserved Instances and Savings Plans."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from loguru import logger

from fleetward.commitments import hourly_from_upfront, on_demand_equivalent, parse_expiry
from fleetward.family import try_extract_family
from fleetward.infra.pagination import Page, collect_pages
from fleetward.infra.retry import call_with_retry, transient
from fleetward.types import Commitment

from .clients import Client

log = logger.bind(provider="aws")

SAVINGS_PLANS_MAX_PAGES = 50

_PLAN_KINDS = {
    "Compute": "compute-savings-plan",
    "EC2Instance": "ec2-instance-savings-plan",
}
# SageMaker plans never cover EKS nodes.
_NON_COMPUTE_PLANS = frozenset({"SageMaker"})


def zone_to_region(zone: str) -> str:
    """``us-east-1a`` -> ``us-east-1``."""
    if zone and "a" <= zone[-1] <= "z":
        return zone[:-1]
    return zone


def reserved_instance_commitment(ri: Mapping[str, Any], region: str) -> Commitment:
    instance_type = ri["InstanceType"]
    count = int(ri.get("InstanceCount") or 1)
    recurring = sum(
        float(rc.get("Amount", 0))
        for rc in ri.get("RecurringCharges", [])
        if rc.get("Frequency") == "Hourly"
    )
    hourly = hourly_from_upfront(
        float(ri.get("FixedPrice") or 0), float(ri.get("Duration") or 0), count, recurring,
    )
    end = ri.get("End")
    if isinstance(end, datetime):
        expires_at = end if end.tzinfo else end.replace(tzinfo=UTC)
    else:
        expires_at = parse_expiry(end)

    scope_region = region if ri.get("Scope") == "Region" else zone_to_region(ri.get("AvailabilityZone", ""))
    return Commitment(
        id=ri["ReservedInstancesId"],
        type="reserved-instance",
        instance_family=try_extract_family(instance_type),
        instance_type=instance_type,
        region=scope_region or region,
        count=count,
        hourly_cost_usd=hourly,
        on_demand_cost_usd=float(ri.get("UsagePrice") or 0),
        expires_at=expires_at,
        status=str(ri.get("State", "active")),
    )


def savings_plan_commitment(sp: Mapping[str, Any]) -> Commitment | None:
    """Normalize one Savings Plan; ``None`` for non-compute plans."""
    plan_type = sp.get("savingsPlanType", "")
    if plan_type in _NON_COMPUTE_PLANS:
        return None
    kind = _PLAN_KINDS.get(plan_type, "savings-plan")
    hourly = float(sp.get("commitment") or 0)
    return Commitment(
        id=sp["savingsPlanId"],
        type=kind,  # type: ignore[arg-type]
        instance_family=sp.get("ec2InstanceFamily") or "",
        region=sp.get("region") or "",
        count=1,
        hourly_cost_usd=hourly,
        on_demand_cost_usd=on_demand_equivalent(hourly, kind),
        expires_at=parse_expiry(sp.get("end")),
        status=str(sp.get("state", "active")),
    )


async def get_reserved_instances(ec2: Client[Any], region: str) -> list[Commitment]:
    async with ec2() as client:
        resp = await call_with_retry(
            lambda: client.describe_reserved_instances(
                Filters=[{"Name": "state", "Values": ["active"]}],
            ),
            on=transient,
            context="aws:describe_reserved_instances",
        )

    commitments: list[Commitment] = []
    for ri in resp.get("ReservedInstances", []):
        try:
            commitments.append(reserved_instance_commitment(ri, region))
        except (KeyError, TypeError, ValueError) as e:
            log.warning(
                "aws: skipping malformed reserved instance region={region} "
                "operation=describe_reserved_instances: {err}",
                region=region, err=e,
            )
    return commitments


async def get_savings_plans(savingsplans: Client[Any], region: str) -> list[Commitment]:
    async with savingsplans() as client:

        async def fetch(token: str | None) -> Page[Mapping[str, Any]]:
            params: dict[str, Any] = {"states": ["active"], "maxResults": 100}
            if token:
                params["nextToken"] = token
            resp = await client.describe_savings_plans(**params)
            return Page(resp.get("savingsPlans", []), resp.get("nextToken"))

        plans = await collect_pages(
            fetch,
            max_pages=SAVINGS_PLANS_MAX_PAGES,
            provider="aws",
            operation="describe_savings_plans",
            region=region,
        )

    commitments: list[Commitment] = []
    for sp in plans:
        try:
            commitment = savings_plan_commitment(sp)
        except (KeyError, TypeError, ValueError) as e:
            log.warning(
                "aws: skipping malformed savings plan region={region} "
                "operation=describe_savings_plans: {err}",
                region=region, err=e,
            )
            continue
        if commitment is None:
            log.debug("aws: skipping non-compute savings plan {id}", id=sp.get("savingsPlanId"))
            continue
        commitments.append(commitment)
    return commitments


__all__ = [
    "get_reserved_instances",
    "get_savings_plans",
    "reserved_instance_commitment",
    "savings_plan_commitment",
    "zone_to_region",
]
