"""Azure provider for fleetward (AKS node pools on Virtual Machine Scale Sets).

NOTE: Only the config class is imported at package level. For the provider
implementation, import explicitly:

    from fleetward.providers.azure.provider import AzureProvider

Environment Variables:
    AZURE_SUBSCRIPTION_ID: Subscription holding the cluster (required)
    AZURE_RESOURCE_GROUP / AKS_RESOURCE_GROUP: Node resource group (required)
    AZURE_TENANT_ID, AZURE_CLIENT_ID, AZURE_CLIENT_SECRET: Service principal
        (optional; managed identity is used otherwise)
    CLUSTER_NAME: AKS cluster name, needed for autoscaler bounds (optional)
"""

from __future__ import annotations

from .config import Azure

__all__ = ["Azure"]
