"""AWS provider configuration.

Immutable configuration dataclass for the AWS provider.
"""

from __future__ import annotations

import os
import typing
from collections.abc import Mapping
from dataclasses import dataclass

from fleetward.config import first_env

if typing.TYPE_CHECKING:
    from fleetward.providers.aws.provider import AWSProvider
    from fleetward.store.pricing_cache import PricingCache


@dataclass(frozen=True, slots=True)
class AWS:
    """AWS provider configuration.

    Credentials come from the standard boto credential chain; nothing
    secret is stored here.

    Example:
        >>> from fleetward.providers.aws import AWS
        >>> config = AWS(region="us-west-2", cluster_name="prod")

    Args:
        region: Region of the EKS cluster. Default: us-east-1
        cluster_name: Restrict discovery to this cluster's groups. Empty
            matches every EKS-tagged group.
        pricing_region: Region hosting the Pricing API endpoint.
        request_timeout: Per-request read timeout in seconds.
    """

    region: str = "us-east-1"
    cluster_name: str = ""
    pricing_region: str = "us-east-1"
    request_timeout: int = 30

    @property
    def type(self) -> str: return "aws"

    @classmethod
    def from_env(
        cls,
        region: str = "",
        cluster_name: str = "",
        env: Mapping[str, str] | None = None,
        **overrides: typing.Any,
    ) -> AWS:
        env = os.environ if env is None else env
        return cls(
            region=region or first_env(env, "AWS_REGION", "AWS_DEFAULT_REGION", "REGION") or "us-east-1",
            cluster_name=cluster_name or first_env(env, "CLUSTER_NAME", "FLEETWARD_CLUSTER_NAME"),
            **overrides,
        )

    async def create_provider(self, *, cache: PricingCache) -> AWSProvider:
        from fleetward.providers.aws.provider import AWSProvider
        return await AWSProvider.create(self, cache=cache)
