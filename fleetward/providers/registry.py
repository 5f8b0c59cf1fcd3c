"""Provider construction from a cloud name.

Example:
    from fleetward.providers.registry import create_provider

    provider = await create_provider("gcp", "us-central1")
    await provider.start()
    try:
        groups = await provider.discover_node_groups()
    finally:
        await provider.close()
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from loguru import logger

from fleetward.config import Settings
from fleetward.errors import ConfigError
from fleetward.providers.aws.config import AWS
from fleetward.providers.azure.config import Azure
from fleetward.providers.base import BaseProvider
from fleetward.providers.gcp.config import GCP
from fleetward.store.db import open_database
from fleetward.store.pricing_cache import PricingCache
from fleetward.store.writer import AsyncWriter

log = logger.bind(component="registry")

type ProviderConfig = AWS | Azure | GCP


async def open_cache(settings: Settings) -> PricingCache:
    """Pricing cache for ``settings``: durable when a database path is set.

    Durable rows past the retention window are deleted on open.
    """
    if not settings.database_path:
        return PricingCache(memory_ttl=settings.memory_ttl, durable_ttl=settings.durable_ttl)

    writer = AsyncWriter(settings.writer_capacity)
    writer.start()
    cache = PricingCache(
        open_database(settings.database_path),
        memory_ttl=settings.memory_ttl,
        durable_ttl=settings.durable_ttl,
        writer=writer,
    )
    await cache.evict_older_than(timedelta(days=settings.retention_days))
    return cache


def provider_config(
    cloud: str,
    region: str = "",
    *,
    settings: Settings | None = None,
    env: Mapping[str, str] | None = None,
) -> ProviderConfig:
    """Cloud config from the ``[providers.<cloud>]`` table, then the environment."""
    settings = settings or Settings()
    section: dict[str, Any] = dict(settings.provider_section(cloud))
    section_region = section.pop("region", "")
    region = region or section_region or settings.region
    cluster_name = section.pop("cluster_name", "") or settings.cluster_name

    match cloud.lower():
        case "aws":
            return AWS.from_env(region, cluster_name, env, **section)
        case "azure":
            return Azure.from_env(region, cluster_name, env, **section)
        case "gcp":
            return GCP.from_env(region, cluster_name, env, **section)
        case "":
            raise ConfigError("cloud provider is required")
        case _:
            raise ConfigError(f"unsupported cloud provider: {cloud}")


async def create_provider(
    cloud: str,
    region: str = "",
    *,
    cache: PricingCache | None = None,
    settings: Settings | None = None,
    env: Mapping[str, str] | None = None,
) -> BaseProvider:
    """Build the provider for ``cloud``.

    When no ``cache`` is given one is opened from ``settings`` and closed
    with the provider.

    Raises
    ------
    ConfigError
        Empty or unsupported cloud, or missing cloud configuration.
    """
    settings = settings or Settings()
    config = provider_config(cloud, region, settings=settings, env=env)

    owned = cache is None
    if cache is None:
        cache = await open_cache(settings)

    try:
        provider: BaseProvider = await config.create_provider(cache=cache)
    except BaseException:
        if owned:
            await cache.close()
        raise

    provider.resolver.refresh_interval = settings.refresh_interval
    if owned:
        provider.own_cache(cache)
    log.info(
        "Created {cloud} provider for region {region}",
        cloud=config.type, region=provider.region,
    )
    return provider


__all__ = ["ProviderConfig", "create_provider", "open_cache", "provider_config"]
