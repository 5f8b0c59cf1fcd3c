"""Azure Reservations."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from loguru import logger

from fleetward.commitments import hourly_from_total, parse_expiry, term_years
from fleetward.errors import TransientError
from fleetward.family import try_extract_family
from fleetward.infra.http import HttpError
from fleetward.types import Commitment

from .arm import ArmClient

log = logger.bind(provider="azure")

RESERVATIONS_API_VERSION = "2024-04-01"
RESERVATION_ORDERS_MAX_PAGES = 50
RESERVATIONS_MAX_PAGES = 50

_TERMINAL_STATES = frozenset({"expired", "cancelled", "failed"})


def reservation_status(provisioning_state: str) -> str:
    state = (provisioning_state or "").lower()
    return state if state in _TERMINAL_STATES else "active"


def is_vm_reservation(reservation: Mapping[str, Any]) -> bool:
    kind = (reservation.get("properties") or {}).get("reservedResourceType") or ""
    return not kind or kind.lower() == "virtualmachines"


def reservation_commitment(
    reservation: Mapping[str, Any], order: Mapping[str, Any],
) -> Commitment | None:
    """Normalize one reservation; ``None`` for non-VM reservations."""
    if not is_vm_reservation(reservation):
        return None
    props = reservation.get("properties") or {}
    order_props = order.get("properties") or {}
    instance_type = (reservation.get("sku") or {}).get("name") or ""

    expiry = (
        props.get("expiryDateTime")
        or props.get("expiryDate")
        or order_props.get("expiryDateTime")
        or order_props.get("expiryDate")
    )

    aggregates = (props.get("utilization") or {}).get("aggregates") or []
    utilization = float(aggregates[-1].get("value") or 0) if aggregates else 0.0

    total = float((props.get("billingCurrencyTotal") or {}).get("amount") or 0)
    years = term_years(order_props.get("term") or "")
    hourly = hourly_from_total(total, years) if total > 0 else 0.0

    return Commitment(
        id=reservation["name"],
        type="reservation",
        instance_family=try_extract_family(instance_type),
        instance_type=instance_type,
        region=reservation.get("location") or "",
        count=int(props.get("quantity") or 0),
        hourly_cost_usd=hourly,
        utilization_pct=utilization,
        expires_at=parse_expiry(expiry),
        status=reservation_status(props.get("provisioningState") or ""),
    )


async def _order_reservations(
    arm: ArmClient, order_name: str, region: str,
) -> list[Mapping[str, Any]]:
    return [
        r async for r in arm.list(
            f"/providers/Microsoft.Capacity/reservationOrders/{order_name}/reservations",
            RESERVATIONS_API_VERSION,
            operation="list_reservations",
            max_pages=RESERVATIONS_MAX_PAGES,
            region=region,
        )
    ]


async def get_reservations(arm: ArmClient, region: str) -> list[Commitment]:
    """Every VM reservation visible to the identity, across all orders.

    A failing order is logged and skipped; the rest are still returned.
    """
    commitments: list[Commitment] = []
    async for order in arm.list(
        "/providers/Microsoft.Capacity/reservationOrders",
        RESERVATIONS_API_VERSION,
        operation="list_reservation_orders",
        max_pages=RESERVATION_ORDERS_MAX_PAGES,
        region=region,
    ):
        order_name = order.get("name") or ""
        try:
            reservations = await _order_reservations(arm, order_name, region)
        except (HttpError, TransientError) as e:
            log.warning(
                "azure: skipping reservation order {order} region={region} "
                "operation=list_reservations: {err}",
                order=order_name, region=region, err=e,
            )
            continue

        for reservation in reservations:
            try:
                commitment = reservation_commitment(reservation, order)
            except (KeyError, TypeError, ValueError) as e:
                log.warning(
                    "azure: skipping malformed reservation in order {order} region={region} "
                    "operation=list_reservations: {err}",
                    order=order_name, region=region, err=e,
                )
                continue
            if commitment is not None:
                commitments.append(commitment)
    return commitments


__all__ = [
    "RESERVATIONS_API_VERSION",
    "get_reservations",
    "is_vm_reservation",
    "reservation_commitment",
    "reservation_status",
]
