"""Static Azure rates (East US pay-as-you-go Linux, 2024-Q4).

Keyed by VM series: the leading letter of the size, or the two letters of
GPU series (``NC``, ``ND``, ``NV``). Estimates only; used when the Retail
Prices API is unavailable.
"""

from __future__ import annotations

from fleetward.family import try_extract_family
from fleetward.pricing import ComponentRates, RateTable

_C = ComponentRates

GPU_SERIES = frozenset({"NC", "ND", "NV"})

RATES = RateTable(
    version="azure-2024q4",
    components={
        "A": _C(0.0336, 0.0059),
        "B": _C(0.0146, 0.0031),
        "D": _C(0.0336, 0.0036),
        "E": _C(0.0336, 0.0037),
        "F": _C(0.0336, 0.0043),
        "L": _C(0.0336, 0.0055),
        "M": _C(0.0336, 0.0084),
        "NC": _C(0.0336, 0.0036),
        "ND": _C(0.0336, 0.0036),
        "NV": _C(0.0336, 0.0036),
    },
    default_family="D",
    gpu_rates={
        "H100": 12.29,
        "A100": 3.67,
        "V100": 3.06,
        "P40": 2.07,
        "M60": 1.14,
        "K80": 0.90,
        "T4": 0.526,
        "A10": 0.454,
    },
    default_gpu_rate=1.0,
    spot_discounts={"NC": 0.40, "ND": 0.40, "NV": 0.40, "B": 0.55},
    default_spot_discount=0.60,
    # Published eviction ranges per series (% per month).
    interruption_rates={"NC": 15.0, "ND": 15.0, "NV": 12.0, "B": 12.0},
    default_interruption_rate=8.0,
)


def series_key(vm_size: str) -> str:
    """``Standard_NC6s_v3`` -> ``NC``, ``Standard_D4s_v5`` -> ``D``."""
    family = try_extract_family(vm_size)
    _, _, letters = family.partition("_")
    letters = letters.split("_", 1)[0]
    if letters.startswith("N"):
        return letters[:2]
    return letters[:1]


def gpu_model_rate(gpu_type: str) -> float:
    """Hourly rate of one GPU, matched by model name within ``gpu_type``."""
    for model in sorted(RATES.gpu_rates, key=len, reverse=True):
        if model in gpu_type:
            return RATES.gpu_rates[model]
    return RATES.default_gpu_rate


__all__ = ["GPU_SERIES", "RATES", "gpu_model_rate", "series_key"]
