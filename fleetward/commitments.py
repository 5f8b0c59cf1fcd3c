"""Commitment normalization helpers shared by every provider.

Clouds report purchased discounts in different shapes (upfront + recurring,
total per term, per-hour commitment). Everything here turns them into an
hourly USD figure plus an on-demand equivalent.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Final

from fleetward.family import same_family
from fleetward.types import Commitment, NodeGroup

HOURS_PER_YEAR: Final = 365.25 * 24

# Savings Plans hide their on-demand baseline. These are the usual discount
# depths for each plan kind.
COMPUTE_PLAN_RATIO: Final = 0.70
INSTANCE_PLAN_RATIO: Final = 0.60

EXPIRY_FORMATS: Final = (
    "%Y-%m-%dT%H:%M:%SZ",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d",
)


def hourly_from_upfront(
    fixed_price: float, duration_seconds: float, count: int, recurring: float = 0.0,
) -> float:
    """Amortize an upfront fee per instance-hour and add the recurring rate."""
    hours = duration_seconds / 3600
    if hours <= 0 or count <= 0:
        return recurring
    return fixed_price / hours / count + recurring


def hourly_from_total(total: float, years: int) -> float:
    if years <= 0:
        return 0.0
    return total / (years * HOURS_PER_YEAR)


def term_years(term: str) -> int:
    """``P3Y``, ``3Year`` or ``3 Years`` -> 3; ``P5Y`` -> 5; anything else -> 1."""
    normalized = term.replace(" ", "").upper()
    if normalized in {"P3Y", "3YEAR", "3YEARS"}:
        return 3
    if normalized in {"P5Y", "5YEAR", "5YEARS"}:
        return 5
    return 1


def on_demand_equivalent(hourly: float, kind: str) -> float:
    """Estimate what a Savings Plan commitment would cost at on-demand rates."""
    ratio = INSTANCE_PLAN_RATIO if kind == "ec2-instance-savings-plan" else COMPUTE_PLAN_RATIO
    return hourly / ratio


def parse_expiry(value: str | None, formats: Sequence[str] = EXPIRY_FORMATS) -> datetime | None:
    """Parse an expiry timestamp into an aware UTC datetime, or ``None``.

    RFC 3339 (fractional seconds, ``Z`` or offsets) is tried first, then
    each of ``formats`` in order.
    """
    if not value:
        return None
    value = value.strip()
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        parsed = None
    if parsed is None:
        for fmt in formats:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def covers_family(commitment_family: str, group_family: str, *, series_wide: bool = False) -> bool:
    """Same family, case-insensitively.

    With ``series_wide`` (GCP CUDs), a series (``n2``) also covers its
    shapes (``n2-standard``).
    """
    if same_family(commitment_family, group_family):
        return True
    return series_wide and group_family.casefold().startswith(f"{commitment_family.casefold()}-")


def matches_node_group(commitment: Commitment, group: NodeGroup) -> bool:
    """A commitment covers a group when families match and, if set, regions do."""
    if not commitment.instance_family or not group.instance_family:
        return False
    series_wide = commitment.type == "cud"
    if not covers_family(commitment.instance_family, group.instance_family, series_wide=series_wide):
        return False
    return not commitment.region or commitment.region == group.region


def matching_commitments(
    commitments: Iterable[Commitment], group: NodeGroup,
) -> list[Commitment]:
    return [c for c in commitments if matches_node_group(c, group)]


__all__ = [
    "COMPUTE_PLAN_RATIO",
    "EXPIRY_FORMATS",
    "HOURS_PER_YEAR",
    "INSTANCE_PLAN_RATIO",
    "covers_family",
    "hourly_from_total",
    "hourly_from_upfront",
    "matches_node_group",
    "matching_commitments",
    "on_demand_equivalent",
    "parse_expiry",
    "term_years",
]
