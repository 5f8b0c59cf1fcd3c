"""Static AWS rates (us-east-1 on-demand, 2024-Q4).

Only used when the Pricing API or spot history is unavailable; these
numbers drift and are estimates.
"""

from __future__ import annotations

from fleetward.pricing import ComponentRates, RateTable

_C = ComponentRates

# Interruption buckets from public Spot Advisor analyses (% per month).
HIGH_INTERRUPTION = frozenset({"m5", "m5a", "c5", "c5a", "r5", "r5a", "t3", "t3a"})
MEDIUM_INTERRUPTION = frozenset({"m6i", "m6a", "c6i", "c6a", "r6i", "r6a", "m5zn"})
LOW_INTERRUPTION = frozenset({
    "m7i", "m7a", "m7g",
    "c7i", "c7a", "c7g",
    "r7i", "r7a", "r7g",
    "m6g", "c6g", "r6g",
})

RATES = RateTable(
    version="aws-2024q4",
    components={
        "m5": _C(0.048, 0.00643),
        "m5a": _C(0.0432, 0.00579),
        "m5n": _C(0.0594, 0.00796),
        "m5zn": _C(0.0826, 0.01108),
        "m6i": _C(0.048, 0.00643),
        "m6a": _C(0.0432, 0.00579),
        "m6g": _C(0.0385, 0.00514),
        "m7i": _C(0.0504, 0.00675),
        "m7a": _C(0.0463, 0.00620),
        "m7g": _C(0.0408, 0.00547),
        "c5": _C(0.0425, 0.00569),
        "c5a": _C(0.0383, 0.00513),
        "c5n": _C(0.054, 0.00724),
        "c6i": _C(0.0425, 0.00569),
        "c6a": _C(0.0383, 0.00513),
        "c6g": _C(0.034, 0.00456),
        "c7i": _C(0.04462, 0.00598),
        "c7a": _C(0.04089, 0.00548),
        "c7g": _C(0.0361, 0.00484),
        "r5": _C(0.063, 0.00844),
        "r5a": _C(0.0567, 0.0076),
        "r5n": _C(0.0744, 0.00998),
        "r6i": _C(0.063, 0.00844),
        "r6a": _C(0.0567, 0.0076),
        "r6g": _C(0.0504, 0.00675),
        "r7i": _C(0.06615, 0.00886),
        "r7a": _C(0.06066, 0.00813),
        "r7g": _C(0.0535, 0.00717),
        "t3": _C(0.0416, 0.00557),
        "t3a": _C(0.0374, 0.00502),
        "t4g": _C(0.0336, 0.0045),
        "i3": _C(0.156, 0.0209),
        "d3": _C(0.1499, 0.02009),
    },
    default_family="m5",
    gpu_rates={
        "V100": 2.448,
        "A100": 3.40,
        "A10G": 1.006,
        "T4": 0.526,
        "K80": 0.90,
        "H100": 6.98,
        "L4": 0.726,
        "L40S": 2.754,
        "Inferentia": 0.228,
        "Trainium": 1.343,
    },
    default_gpu_rate=1.0,
    spot_discounts={
        "m5": 0.70, "m5a": 0.70, "m5n": 0.65, "m5zn": 0.60,
        "m6i": 0.70, "m6a": 0.70, "m6g": 0.72,
        "m7i": 0.68, "m7a": 0.68, "m7g": 0.70,
        "c5": 0.70, "c5a": 0.70, "c5n": 0.65,
        "c6i": 0.70, "c6a": 0.70, "c6g": 0.72,
        "c7i": 0.68, "c7a": 0.68, "c7g": 0.70,
        "r5": 0.70, "r5a": 0.70, "r5n": 0.65,
        "r6i": 0.70, "r6a": 0.70, "r6g": 0.72,
        "r7i": 0.68, "r7a": 0.68, "r7g": 0.70,
        "t3": 0.70, "t3a": 0.70,
        "p3": 0.60, "p4d": 0.60, "p5": 0.55,
        "g4dn": 0.60, "g5": 0.60, "g6": 0.58,
        "i3": 0.65, "i3en": 0.65, "i4i": 0.63,
        "d2": 0.65, "d3": 0.63,
    },
    default_spot_discount=0.70,
    interruption_rates={
        **dict.fromkeys(LOW_INTERRUPTION, 3.0),
        **dict.fromkeys(MEDIUM_INTERRUPTION, 8.0),
        **dict.fromkeys(HIGH_INTERRUPTION, 15.0),
    },
    default_interruption_rate=10.0,
)

__all__ = ["HIGH_INTERRUPTION", "LOW_INTERRUPTION", "MEDIUM_INTERRUPTION", "RATES"]
