"""GCP provider configuration.

Immutable configuration dataclass for the GKE provider.
"""

from __future__ import annotations

import os
import typing
from collections.abc import Mapping
from dataclasses import dataclass

from fleetward.config import first_env
from fleetward.errors import ConfigError

if typing.TYPE_CHECKING:
    from fleetward.providers.gcp.provider import GCPProvider
    from fleetward.store.pricing_cache import PricingCache


@dataclass(frozen=True, slots=True)
class GCP:
    """GKE provider configuration.

    The project is auto-detected from GOOGLE_CLOUD_PROJECT, GCP_PROJECT or
    Application Default Credentials if not specified.

    Example:
        >>> from fleetward.providers.gcp import GCP
        >>> config = GCP(project="my-project", region="us-central1", cluster_name="prod")

    Args:
        project: GCP project ID.
        region: Compute Engine region. Default: us-central1.
        cluster_name: GKE cluster whose node pools are managed (required).
        location: Cluster location when it differs from ``region`` (zonal
            clusters). Default: the region.
        request_timeout: Per-request timeout in seconds for REST calls.
        thread_pool_size: Workers for the sync Compute Engine clients.
    """

    project: str | None = None
    region: str = "us-central1"
    cluster_name: str = ""
    location: str = ""
    request_timeout: int = 30
    thread_pool_size: int = 8

    @property
    def type(self) -> str: return "gcp"

    @property
    def cluster_location(self) -> str:
        return self.location or self.region

    @classmethod
    def from_env(
        cls,
        region: str = "",
        cluster_name: str = "",
        env: Mapping[str, str] | None = None,
        **overrides: typing.Any,
    ) -> GCP:
        env = os.environ if env is None else env
        cluster = cluster_name or first_env(env, "CLUSTER_NAME", "FLEETWARD_CLUSTER_NAME")
        if not cluster:
            raise ConfigError("CLUSTER_NAME environment variable is required for GCP")
        return cls(
            project=(
                overrides.pop("project", None)
                or first_env(env, "GOOGLE_CLOUD_PROJECT", "GCP_PROJECT")
                or None
            ),
            region=region or first_env(env, "GCP_REGION", "REGION") or "us-central1",
            cluster_name=cluster,
            location=overrides.pop("location", "") or first_env(env, "GKE_LOCATION"),
            **overrides,
        )

    async def create_provider(self, *, cache: PricingCache) -> GCPProvider:
        from fleetward.providers.gcp.provider import GCPProvider
        return await GCPProvider.create(self, cache=cache)
