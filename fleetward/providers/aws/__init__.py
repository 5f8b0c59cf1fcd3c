"""AWS provider for fleetward (EKS node groups on Auto Scaling Groups).

NOTE: Only the config class is imported at package level. For the provider
implementation, import explicitly:

    from fleetward.providers.aws.provider import AWSProvider

Environment Variables:
    AWS_REGION / AWS_DEFAULT_REGION: Cluster region
    CLUSTER_NAME: Restrict discovery to one EKS cluster (optional)
"""

from __future__ import annotations

from .config import AWS

__all__ = ["AWS"]
