"""Core data model shared by every provider.

All records are immutable. Providers build fresh instances on every
discovery or pricing call; nothing here is mutated in place.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Final, Literal

from fleetward.errors import NodeError

type Lifecycle = Literal["on-demand", "spot"]
type Architecture = Literal["amd64", "arm64"]
type TaintEffect = Literal["NoSchedule", "NoExecute", "PreferNoSchedule", ""]
type CommitmentType = Literal[
    "reserved-instance",
    "savings-plan",
    "compute-savings-plan",
    "ec2-instance-savings-plan",
    "cud",
    "reservation",
]

HOURS_PER_MONTH: Final[float] = 730.5

LABEL_INSTANCE_TYPE: Final = "node.kubernetes.io/instance-type"
LABEL_INSTANCE_TYPE_BETA: Final = "beta.kubernetes.io/instance-type"
LABEL_REGION: Final = "topology.kubernetes.io/region"
LABEL_ZONE: Final = "topology.kubernetes.io/zone"

SPOT_LABELS: Final[tuple[tuple[str, str], ...]] = (
    ("node.kubernetes.io/lifecycle", "spot"),
    ("cloud.google.com/gke-spot", "true"),
    ("cloud.google.com/gke-preemptible", "true"),
    ("kubernetes.azure.com/scalesetpriority", "spot"),
    ("eks.amazonaws.com/capacityType", "SPOT"),
)


def _frozen_map[K, V](data: Mapping[K, V] | None) -> Mapping[K, V]:
    return MappingProxyType(dict(data or {}))


# =============================================================================
# Node groups
# =============================================================================


@dataclass(frozen=True, slots=True)
class Taint:
    key: str
    value: str = ""
    effect: TaintEffect = ""


@dataclass(frozen=True, slots=True)
class NodeGroup:
    """A cloud scaling primitive (ASG, VMSS or GKE node pool).

    ``instance_family`` is derived from ``instance_type`` at discovery time
    and is treated as immutable by the family lock.
    """

    id: str
    name: str
    instance_type: str
    instance_family: str
    current_count: int
    desired_count: int
    min_count: int
    max_count: int
    zone: str = ""
    region: str = ""
    lifecycle: Lifecycle = "on-demand"
    labels: Mapping[str, str] = field(default_factory=dict)
    taints: tuple[Taint, ...] = ()
    disk_type: str = ""
    disk_size_gb: int = 0
    spot_percentage: int = 0
    instance_types: tuple[str, ...] = ()


# =============================================================================
# Instance types and pricing
# =============================================================================


@dataclass(frozen=True, slots=True)
class InstanceType:
    name: str
    family: str
    cpu_cores: int
    memory_mib: int
    gpus: int = 0
    gpu_type: str = ""
    architecture: Architecture = "amd64"
    price_per_hour: float = 0.0


@dataclass(frozen=True, slots=True)
class GPUInstanceType:
    instance_type: InstanceType
    gpu_memory_mib: int = 0
    gpu_model: str = ""

    @property
    def name(self) -> str:
        return self.instance_type.name

    @property
    def gpus(self) -> int:
        return self.instance_type.gpus


@dataclass(frozen=True, slots=True)
class PricingInfo:
    """Hourly USD prices for one (provider, region).

    Superseded wholesale on refresh; ``prices`` is a read-only view.
    ``fallback`` is set when the prices come from static rate tables.
    """

    region: str
    prices: Mapping[str, float]
    updated_at: datetime
    fallback: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "prices", _frozen_map(self.prices))

    def price(self, instance_type: str) -> float | None:
        return self.prices.get(instance_type)


# =============================================================================
# Commitments, spot, cost
# =============================================================================


@dataclass(frozen=True, slots=True)
class Commitment:
    """A purchased discount instrument normalized to hourly terms.

    ``utilization_pct`` is filled in by an external utilization tracker,
    except where the cloud reports it directly.
    """

    id: str
    type: CommitmentType
    instance_family: str = ""
    instance_type: str = ""
    region: str = ""
    count: int = 0
    hourly_cost_usd: float = 0.0
    on_demand_cost_usd: float = 0.0
    utilization_pct: float = 0.0
    expires_at: datetime | None = None
    status: str = "active"


@dataclass(frozen=True, slots=True)
class SpotInstanceInfo:
    instance_type: str
    availability_zone: str
    spot_price: float
    on_demand_price: float
    savings_percent: float
    interruption_freq_pct: float | None = None


@dataclass(frozen=True, slots=True)
class NodeCost:
    node_name: str
    instance_type: str
    hourly_cost_usd: float
    monthly_cost_usd: float
    is_spot: bool = False
    spot_discount: float = 0.0


# =============================================================================
# Kubernetes node view
# =============================================================================


@dataclass(frozen=True, slots=True)
class Node:
    """The slice of a Kubernetes ``Node`` object this library reads."""

    name: str
    labels: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_k8s(cls, obj: Mapping[str, object]) -> Node:
        """Build from a Kubernetes API object dict (``metadata.name/labels``)."""
        metadata = obj.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise NodeError(f"node metadata is not an object: {metadata!r}")
        labels = metadata.get("labels") or {}
        if not isinstance(labels, Mapping):
            raise NodeError(f"labels of node {metadata.get('name', '')} are not an object")
        return cls(name=str(metadata.get("name", "")), labels=dict(labels))


def node_instance_type(node: Node) -> str:
    for label in (LABEL_INSTANCE_TYPE, LABEL_INSTANCE_TYPE_BETA):
        if value := node.labels.get(label):
            return value
    raise NodeError(f"instance type not found on node {node.name}")


def node_region(node: Node, default: str) -> str:
    return node.labels.get(LABEL_REGION) or default


def node_zone(node: Node) -> str:
    if zone := node.labels.get(LABEL_ZONE):
        return zone
    raise NodeError(f"zone not found on node {node.name}")


def is_spot_node(node: Node) -> bool:
    return any(node.labels.get(key) == value for key, value in SPOT_LABELS)


__all__ = [
    "HOURS_PER_MONTH",
    "Architecture",
    "Commitment",
    "CommitmentType",
    "GPUInstanceType",
    "InstanceType",
    "Lifecycle",
    "Node",
    "NodeCost",
    "NodeGroup",
    "PricingInfo",
    "SpotInstanceInfo",
    "Taint",
    "TaintEffect",
    "is_spot_node",
    "node_instance_type",
    "node_region",
    "node_zone",
]
