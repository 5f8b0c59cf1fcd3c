"""Cloud providers for fleetward."""

from fleetward.providers.aws import AWS
from fleetward.providers.azure import Azure
from fleetward.providers.gcp import GCP
from fleetward.providers.provider import CloudProvider
from fleetward.providers.registry import create_provider

__all__ = [
    "AWS",
    "GCP",
    "Azure",
    "CloudProvider",
    "create_provider",
]
