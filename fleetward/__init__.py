"""fleetward - cloud fleet operations for Kubernetes node groups.

One interface over AWS Auto Scaling Groups, Azure Virtual Machine Scale Sets
and GKE node pools, with tiered instance pricing, commitment and spot
normalization, and a guard that keeps every node group in its hardware
family.

Example:

    from fleetward import FamilyLockGuard, create_provider

    provider = await create_provider("aws", "us-east-1")
    guard = FamilyLockGuard(provider)
    await guard.refresh()
    await guard.validate_scale_up("eks-workers", "m5.2xlarge")
    await provider.scale_node_group("eks-workers", 6)
"""

# Logging (disabled until setup_logging is called)
from fleetward.logging import LogConfig, setup_logging, teardown_logging

# Configuration
from fleetward.config import Settings, load_settings

# Errors
from fleetward.errors import (
    ActionNotAllowedError,
    ConfigError,
    FamilyMismatchError,
    FleetwardError,
    PricingError,
    SafetyViolation,
    ScaleBoundsError,
    SourceError,
    TransientError,
    UnknownNodeGroupError,
    UnrecognizedFormatError,
)

# Families
from fleetward.family import extract_family, is_same_family, same_family

# Guard
from fleetward.guard import FamilyLockGuard, NodeGroupAction

# Providers
from fleetward.providers import AWS, GCP, Azure, CloudProvider, create_provider

# Types
from fleetward.types import (
    Commitment,
    GPUInstanceType,
    InstanceType,
    Node,
    NodeCost,
    NodeGroup,
    PricingInfo,
    SpotInstanceInfo,
    Taint,
)

__version__ = "0.1.0"

__all__ = [
    "AWS",
    "GCP",
    "ActionNotAllowedError",
    "Azure",
    "CloudProvider",
    "Commitment",
    "ConfigError",
    "FamilyLockGuard",
    "FamilyMismatchError",
    "FleetwardError",
    "GPUInstanceType",
    "InstanceType",
    "LogConfig",
    "Node",
    "NodeCost",
    "NodeGroup",
    "NodeGroupAction",
    "PricingError",
    "PricingInfo",
    "SafetyViolation",
    "ScaleBoundsError",
    "Settings",
    "SourceError",
    "SpotInstanceInfo",
    "Taint",
    "TransientError",
    "UnknownNodeGroupError",
    "UnrecognizedFormatError",
    "create_provider",
    "extract_family",
    "is_same_family",
    "load_settings",
    "same_family",
    "setup_logging",
    "teardown_logging",
]
