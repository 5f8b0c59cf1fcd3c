"""Exception hierarchy for fleetward.

Errors fall into a few families with different handling rules:

- transient failures (network, 429, 5xx) are retried inside the resilience
  layer and only surface as ``TransientError`` once retries run out;
- source errors are per-record problems that get skipped and logged, and only
  surface as ``SourceError`` when a whole response cannot be used;
- safety violations are always fatal to the requested operation;
- configuration errors are raised while a provider is being constructed.

Falling back to static pricing is a state (``PricingInfo.fallback``), not an
exception.
"""

from __future__ import annotations


class FleetwardError(Exception):
    """Base class for every error raised by fleetward."""


# =============================================================================
# Transient / source errors
# =============================================================================


class TransientError(FleetwardError):
    """A retryable failure that exhausted its retry budget."""

    def __init__(self, operation: str, attempts: int, cause: BaseException) -> None:
        super().__init__(f"{operation} failed after {attempts} attempts: {cause}")
        self.operation = operation
        self.attempts = attempts
        self.cause = cause


class SourceError(FleetwardError):
    """An upstream response could not be used at all."""


class PricingError(FleetwardError):
    """No price could be resolved for an instance type."""


class NodeError(FleetwardError):
    """A Kubernetes node is malformed or missing a label the core depends on."""


class UnrecognizedFormatError(FleetwardError, ValueError):
    """An instance type string matches none of the known naming grammars."""

    def __init__(self, instance_type: str) -> None:
        if instance_type:
            message = f"unrecognized instance type format: {instance_type!r}"
        else:
            message = "empty instance type"
        super().__init__(message)
        self.instance_type = instance_type


class ScaleBoundsError(FleetwardError, ValueError):
    """A requested node count falls outside the group's bounds."""


# =============================================================================
# Safety violations
# =============================================================================


class SafetyViolation(FleetwardError):
    """An operation would break the family-lock invariant. Never retried."""


class FamilyMismatchError(SafetyViolation):
    def __init__(self, group_id: str, current_family: str, proposed_family: str) -> None:
        super().__init__(
            f"BLOCKED: cannot change family from {current_family} "
            f"to {proposed_family} in node group {group_id}"
        )
        self.group_id = group_id
        self.current_family = current_family
        self.proposed_family = proposed_family


class ActionNotAllowedError(SafetyViolation):
    def __init__(self, action: str, reason: str) -> None:
        super().__init__(f"BLOCKED: {reason}")
        self.action = action


class UnknownNodeGroupError(SafetyViolation, LookupError):
    def __init__(self, group_id: str) -> None:
        super().__init__(f"node group {group_id} not found")
        self.group_id = group_id


# =============================================================================
# Configuration
# =============================================================================


class ConfigError(FleetwardError):
    """Missing or invalid configuration or credentials."""


__all__ = [
    "ActionNotAllowedError",
    "ConfigError",
    "FamilyMismatchError",
    "FleetwardError",
    "NodeError",
    "PricingError",
    "SafetyViolation",
    "ScaleBoundsError",
    "SourceError",
    "TransientError",
    "UnknownNodeGroupError",
    "UnrecognizedFormatError",
]
