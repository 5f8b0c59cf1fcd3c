"""Static GCP rates (us-central1 on-demand, 2024-Q4).

Component rates are keyed by machine series (``n2``, ``e2``, ``c3d``...),
the text before the first dash of a machine type. Other regions are priced
through ``region_multipliers``.
"""

from __future__ import annotations

from typing import Final

from fleetward.pricing import ComponentRates, RateTable

_C = ComponentRates

RATES = RateTable(
    version="gcp-2024q4",
    components={
        "n1": _C(0.031611, 0.004237),
        "n2": _C(0.031611, 0.004237),
        "n2d": _C(0.027502, 0.003686),
        "n4": _C(0.02830, 0.00379),
        "e2": _C(0.021811, 0.002923),
        "c2": _C(0.03398, 0.004554),
        "c2d": _C(0.02909, 0.003898),
        "c3": _C(0.03616, 0.00484),
        "c3d": _C(0.03245, 0.00435),
        "c4": _C(0.03810, 0.00510),
        "h3": _C(0.03535, 0.00473),
        "m3": _C(0.03710, 0.00890),
        "t2d": _C(0.027502, 0.003686),
        "t2a": _C(0.0245, 0.00328),
        "a2": _C(0.031611, 0.004237),
        "a3": _C(0.031611, 0.004237),
        "g2": _C(0.031611, 0.004237),
    },
    default_family="n2",
    gpu_rates={
        "nvidia-tesla-a100": 2.934,
        "nvidia-a100-80gb": 2.934,
        "nvidia-tesla-v100": 2.48,
        "nvidia-tesla-t4": 0.35,
        "nvidia-l4": 0.70,
        "nvidia-h100-80gb": 3.0,
        "nvidia-h100-mega-80gb": 3.0,
    },
    # Conservative rate for accelerators missing above.
    default_gpu_rate=1.0,
    spot_discounts={
        "e2": 0.69,
        "n2": 0.69,
        "n2d": 0.69,
        "n1": 0.80,
        "c2": 0.69,
        "c2d": 0.69,
        "c3": 0.65,
        "c3d": 0.65,
        "c4": 0.63,
        "m1": 0.69,
        "m2": 0.69,
        "m3": 0.65,
        "n4": 0.67,
        "a2": 0.60,
        "a3": 0.60,
        "g2": 0.60,
        "t2a": 0.69,
        "t2d": 0.69,
        "h3": 0.65,
    },
    default_spot_discount=0.69,
    # Preemption estimates (% per month).
    interruption_rates={"a2": 15.0, "a3": 15.0, "g2": 15.0, "n1": 12.0, "e2": 10.0},
    default_interruption_rate=7.0,
    region_multipliers={
        "us-central1": 1.00,
        "us-east1": 1.00,
        "us-east4": 1.10,
        "us-east5": 1.10,
        "us-south1": 1.10,
        "us-west1": 1.00,
        "us-west2": 1.20,
        "us-west3": 1.20,
        "us-west4": 1.10,
        "europe-west1": 1.10,
        "europe-west2": 1.15,
        "europe-west3": 1.15,
        "europe-west4": 1.10,
        "europe-west6": 1.25,
        "europe-west8": 1.12,
        "europe-west9": 1.12,
        "europe-north1": 1.10,
        "europe-central2": 1.15,
        "europe-southwest1": 1.12,
        "asia-east1": 1.10,
        "asia-east2": 1.20,
        "asia-northeast1": 1.15,
        "asia-northeast2": 1.15,
        "asia-northeast3": 1.15,
        "asia-south1": 1.08,
        "asia-south2": 1.08,
        "asia-southeast1": 1.10,
        "asia-southeast2": 1.15,
        "australia-southeast1": 1.20,
        "australia-southeast2": 1.20,
        "northamerica-northeast1": 1.10,
        "northamerica-northeast2": 1.10,
        "southamerica-east1": 1.25,
        "southamerica-west1": 1.25,
        "me-west1": 1.20,
        "me-central1": 1.20,
        "me-central2": 1.20,
        "africa-south1": 1.25,
    },
)

# Machine types with built-in accelerators: name -> (accelerator, count).
GPU_MACHINE_TYPES: Final[dict[str, tuple[str, int]]] = {
    "a2-highgpu-1g": ("nvidia-tesla-a100", 1),
    "a2-highgpu-2g": ("nvidia-tesla-a100", 2),
    "a2-highgpu-4g": ("nvidia-tesla-a100", 4),
    "a2-highgpu-8g": ("nvidia-tesla-a100", 8),
    "a2-ultragpu-1g": ("nvidia-a100-80gb", 1),
    "a2-ultragpu-2g": ("nvidia-a100-80gb", 2),
    "a2-ultragpu-4g": ("nvidia-a100-80gb", 4),
    "a2-ultragpu-8g": ("nvidia-a100-80gb", 8),
    "g2-standard-4": ("nvidia-l4", 1),
    "g2-standard-8": ("nvidia-l4", 1),
    "g2-standard-12": ("nvidia-l4", 1),
    "g2-standard-16": ("nvidia-l4", 1),
    "g2-standard-24": ("nvidia-l4", 2),
    "g2-standard-32": ("nvidia-l4", 1),
    "g2-standard-48": ("nvidia-l4", 4),
    "g2-standard-96": ("nvidia-l4", 8),
    "a3-highgpu-1g": ("nvidia-h100-80gb", 1),
    "a3-highgpu-2g": ("nvidia-h100-80gb", 2),
    "a3-highgpu-4g": ("nvidia-h100-80gb", 4),
    "a3-highgpu-8g": ("nvidia-h100-80gb", 8),
    "a3-megagpu-8g": ("nvidia-h100-mega-80gb", 8),
}

# Memory per accelerator, MiB.
GPU_MEMORY_MIB: Final[dict[str, int]] = {
    "nvidia-tesla-a100": 40 * 1024,
    "nvidia-a100-80gb": 80 * 1024,
    "nvidia-tesla-v100": 16 * 1024,
    "nvidia-tesla-t4": 16 * 1024,
    "nvidia-l4": 24 * 1024,
    "nvidia-h100-80gb": 80 * 1024,
    "nvidia-h100-mega-80gb": 80 * 1024,
}


def series(machine_type: str) -> str:
    """``n2-standard-4`` -> ``n2``; ``e2-medium`` -> ``e2``."""
    return machine_type.split("-", 1)[0]
