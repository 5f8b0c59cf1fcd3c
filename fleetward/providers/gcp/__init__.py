"""GCP provider for fleetward (GKE node pools).

NOTE: Only the config class is imported at package level. For the provider
implementation, import explicitly:

    from fleetward.providers.gcp.provider import GCPProvider

Environment Variables:
    GOOGLE_CLOUD_PROJECT / GCP_PROJECT: Project ID (optional, ADC otherwise)
    CLUSTER_NAME: GKE cluster name (required)
    GKE_LOCATION: Cluster location for zonal clusters (optional)
    GOOGLE_APPLICATION_CREDENTIALS: Service account key file (optional, ADC)
"""

from __future__ import annotations

from .config import GCP

__all__ = ["GCP"]
