"""GCP Committed Use Discounts."""

from __future__ import annotations

from typing import Any, Final

from loguru import logger

from fleetward.commitments import parse_expiry
from fleetward.types import Commitment

from .compute import ComputeEngine
from .rates import RATES

log = logger.bind(provider="gcp")

# Committed price as a fraction of on-demand.
ONE_YEAR_FACTOR: Final = 0.63
THREE_YEAR_FACTOR: Final = 0.45

COMMITMENT_TYPE_SERIES: Final[dict[str, str]] = {
    "COMPUTE_OPTIMIZED": "c2",
    "COMPUTE_OPTIMIZED_C2D": "c2d",
    "COMPUTE_OPTIMIZED_C3": "c3",
    "COMPUTE_OPTIMIZED_C3D": "c3d",
    "COMPUTE_OPTIMIZED_C4": "c4",
    "GENERAL_PURPOSE": "n1",
    "GENERAL_PURPOSE_N2": "n2",
    "GENERAL_PURPOSE_N2D": "n2d",
    "GENERAL_PURPOSE_N4": "n4",
    "GENERAL_PURPOSE_E2": "e2",
    "GENERAL_PURPOSE_T2D": "t2d",
    "GENERAL_PURPOSE_T2A": "t2a",
    "MEMORY_OPTIMIZED": "m2",
    "MEMORY_OPTIMIZED_M3": "m3",
    "ACCELERATOR_OPTIMIZED": "a2",
}


def commitment_series(commitment_type: str) -> str:
    return COMMITMENT_TYPE_SERIES.get(commitment_type.upper(), "n1")


def plan_factor(plan: str) -> float:
    return THREE_YEAR_FACTOR if "THIRTY_SIX" in plan.upper() else ONE_YEAR_FACTOR


def _resources(commitment: Any) -> tuple[int, float]:
    """Committed vCPUs and memory in GiB (the API reports memory in MB)."""
    vcpus, memory_gib = 0, 0.0
    for resource in getattr(commitment, "resources", None) or []:
        kind = str(getattr(resource, "type_", "")).upper()
        amount = getattr(resource, "amount", 0) or 0
        if kind == "VCPU":
            vcpus = int(amount)
        elif kind == "MEMORY":
            memory_gib = float(amount) / 1024
    return vcpus, memory_gib


def cud_commitment(commitment: Any, region: str) -> Commitment:
    """Normalize one regional commitment.

    Raises ``ValueError`` when the end timestamp is present but unreadable.
    """
    end = str(getattr(commitment, "end_timestamp", "") or "")
    expires_at = parse_expiry(end)
    if end and expires_at is None:
        raise ValueError(f"unreadable end timestamp {end!r}")

    family = commitment_series(str(getattr(commitment, "type_", "") or ""))
    vcpus, memory_gib = _resources(commitment)
    rates = RATES.rates_for(family)
    on_demand = rates.cpu_per_hour * vcpus + rates.mem_per_gib_hour * memory_gib

    return Commitment(
        id=str(getattr(commitment, "id", "") or commitment.name),
        type="cud",
        instance_family=family,
        region=region,
        count=vcpus,
        hourly_cost_usd=on_demand * plan_factor(str(getattr(commitment, "plan", "") or "")),
        on_demand_cost_usd=on_demand,
        expires_at=expires_at,
        status=str(getattr(commitment, "status", "") or "active").lower(),
    )


async def get_cuds(compute: ComputeEngine, region: str) -> list[Commitment]:
    """Active commitments of the region; malformed ones are logged and skipped."""
    cuds: list[Commitment] = []
    for raw in await compute.commitments(region):
        try:
            cuds.append(cud_commitment(raw, region))
        except (AttributeError, TypeError, ValueError) as e:
            log.warning(
                "gcp: skipping malformed commitment {name} region={region} "
                "operation=list_commitments: {err}",
                name=getattr(raw, "name", "?"), region=region, err=e,
            )
    return cuds


__all__ = [
    "COMMITMENT_TYPE_SERIES",
    "commitment_series",
    "cud_commitment",
    "get_cuds",
    "plan_factor",
]
