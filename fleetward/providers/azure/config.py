"""Azure provider configuration.

Immutable configuration dataclass for the Azure provider.
"""

from __future__ import annotations

import os
import typing
from collections.abc import Mapping
from dataclasses import dataclass

from fleetward.config import first_env
from fleetward.errors import ConfigError

if typing.TYPE_CHECKING:
    from fleetward.providers.azure.provider import AzureProvider
    from fleetward.store.pricing_cache import PricingCache


@dataclass(frozen=True, slots=True)
class Azure:
    """Azure provider configuration.

    Node groups are the AKS-managed Virtual Machine Scale Sets of one
    resource group. When no service principal is configured the provider
    authenticates through the instance metadata service (managed identity).

    Example:
        >>> from fleetward.providers.azure import Azure
        >>> config = Azure(subscription_id="...", resource_group="MC_prod_aks_eastus")

    Args:
        subscription_id: Azure subscription holding the cluster.
        resource_group: Resource group of the scale sets (the AKS node
            resource group).
        region: Azure location, e.g. ``eastus``.
        cluster_name: AKS cluster name. Needed to read and change agent
            pool autoscaler bounds.
        tenant_id: Service principal tenant.
        client_id: Service principal application id.
        client_secret: Service principal secret.
        request_timeout: Per-request timeout in seconds.
    """

    subscription_id: str
    resource_group: str
    region: str = "eastus"
    cluster_name: str = ""
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    request_timeout: int = 30

    @property
    def type(self) -> str: return "azure"

    @property
    def has_service_principal(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)

    @classmethod
    def from_env(
        cls,
        region: str = "",
        cluster_name: str = "",
        env: Mapping[str, str] | None = None,
        **overrides: typing.Any,
    ) -> Azure:
        env = os.environ if env is None else env
        subscription_id = overrides.pop("subscription_id", "") or first_env(
            env, "AZURE_SUBSCRIPTION_ID",
        )
        if not subscription_id:
            raise ConfigError("AZURE_SUBSCRIPTION_ID environment variable is required")
        resource_group = overrides.pop("resource_group", "") or first_env(
            env, "AZURE_RESOURCE_GROUP", "AKS_RESOURCE_GROUP",
        )
        if not resource_group:
            raise ConfigError(
                "AZURE_RESOURCE_GROUP or AKS_RESOURCE_GROUP environment variable is required"
            )
        return cls(
            subscription_id=subscription_id,
            resource_group=resource_group,
            region=region or first_env(env, "AZURE_LOCATION", "REGION") or "eastus",
            cluster_name=cluster_name or first_env(env, "CLUSTER_NAME", "FLEETWARD_CLUSTER_NAME"),
            tenant_id=overrides.pop("tenant_id", "") or first_env(env, "AZURE_TENANT_ID"),
            client_id=overrides.pop("client_id", "") or first_env(env, "AZURE_CLIENT_ID"),
            client_secret=(
                overrides.pop("client_secret", "") or first_env(env, "AZURE_CLIENT_SECRET")
            ),
            **overrides,
        )

    async def create_provider(self, *, cache: PricingCache) -> AzureProvider:
        from fleetward.providers.azure.provider import AzureProvider
        return await AzureProvider.create(self, cache=cache)
