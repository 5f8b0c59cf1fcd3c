"""TOML-based runtime configuration.

Loads ~/.fleetward/defaults.toml (global) and fleetward.toml (project),
merges them, and fills anything still empty from the environment.

Example fleetward.toml::

    cloud_provider = "aws"
    region = "us-east-1"
    cluster_name = "prod"
    database_path = "/var/lib/fleetward/pricing.db"

    [providers.azure]
    subscription_id = "..."
    resource_group = "aks-prod"
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from datetime import timedelta
from pathlib import Path
from typing import Any, Final

from fleetward.errors import ConfigError

type RawConfig = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".fleetward" / "defaults.toml"
PROJECT_CONFIG_NAME = "fleetward.toml"

SUPPORTED_CLOUDS: Final = ("aws", "azure", "gcp")


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"invalid TOML in {path}: {e}") from e


def load_config(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_path = (project_dir or Path.cwd()) / PROJECT_CONFIG_NAME
    project_cfg = _read_toml(project_path)

    merged = _deep_merge(global_cfg, project_cfg)
    merged.setdefault("providers", {})
    return merged


def first_env(env: Mapping[str, str], *names: str) -> str:
    """Value of the first non-empty variable among ``names``, else ``""``."""
    for name in names:
        if value := env.get(name):
            return value
    return ""


# =============================================================================
# Settings
# =============================================================================


@dataclass(frozen=True, slots=True)
class Settings:
    """Process-wide settings.

    Args:
        cloud_provider: ``aws``, ``azure`` or ``gcp``.
        region: Cloud region the cluster runs in.
        cluster_name: Cluster whose node groups are managed.
        database_path: SQLite file for the durable pricing tier.
            ``None`` keeps pricing in memory only.
        retention_days: Age after which durable pricing rows are deleted.
        memory_ttl: Lifetime of in-memory pricing.
        durable_ttl: Lifetime of durable pricing.
        refresh_interval: Period of the background pricing refresh.
        writer_capacity: Bound of the async durable write queue.
        providers: Raw ``[providers.<cloud>]`` tables.
    """

    cloud_provider: str = ""
    region: str = ""
    cluster_name: str = ""
    database_path: str | None = None
    retention_days: int = 90
    memory_ttl: timedelta = timedelta(hours=1)
    durable_ttl: timedelta = timedelta(hours=24)
    refresh_interval: timedelta = timedelta(minutes=45)
    writer_capacity: int = 4096
    providers: Mapping[str, Mapping[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_raw(cls, raw: RawConfig, env: Mapping[str, str] | None = None) -> Settings:
        """Build from a merged TOML mapping, then apply environment fallbacks."""
        env = os.environ if env is None else env
        known = {f.name for f in fields(cls)}
        unknown = set(raw) - known - {"providers"}
        if unknown:
            raise ConfigError(f"unknown settings: {', '.join(sorted(unknown))}")

        values: dict[str, Any] = {k: v for k, v in raw.items() if k in known}
        for name in ("memory_ttl", "durable_ttl", "refresh_interval"):
            if name in values and not isinstance(values[name], timedelta):
                values[name] = timedelta(seconds=float(values[name]))

        settings = cls(**values)
        return settings.with_env(env)

    def with_env(self, env: Mapping[str, str]) -> Settings:
        """Fill empty cloud, region and cluster name from the environment."""
        cloud = self.cloud_provider or first_env(env, "CLOUD_PROVIDER") or _infer_cloud(env)
        region = self.region or first_env(env, "REGION", "AWS_REGION", "AWS_DEFAULT_REGION")
        cluster = self.cluster_name or first_env(env, "CLUSTER_NAME", "FLEETWARD_CLUSTER_NAME")
        return Settings(
            cloud_provider=cloud.lower(),
            region=region,
            cluster_name=cluster,
            database_path=self.database_path,
            retention_days=self.retention_days,
            memory_ttl=self.memory_ttl,
            durable_ttl=self.durable_ttl,
            refresh_interval=self.refresh_interval,
            writer_capacity=self.writer_capacity,
            providers=self.providers,
        )

    def validate(self) -> None:
        problems: list[str] = []
        if not self.cloud_provider:
            problems.append("cloud provider is required")
        elif self.cloud_provider not in SUPPORTED_CLOUDS:
            problems.append(f"invalid cloud provider {self.cloud_provider!r}")
        if not self.region:
            problems.append("region is required")
        if self.retention_days < 1:
            problems.append("retention_days must be >= 1")
        if self.writer_capacity < 1:
            problems.append("writer_capacity must be >= 1")
        if problems:
            raise ConfigError(f"config validation failed: {'; '.join(problems)}")

    def provider_section(self, cloud: str) -> Mapping[str, Any]:
        return self.providers.get(cloud, {})


def _infer_cloud(env: Mapping[str, str]) -> str:
    if env.get("GOOGLE_CLOUD_PROJECT"):
        return "gcp"
    if env.get("AWS_REGION") or env.get("AWS_DEFAULT_REGION"):
        return "aws"
    if env.get("AZURE_SUBSCRIPTION_ID"):
        return "azure"
    return ""


def load_settings(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> Settings:
    settings = Settings.from_raw(
        load_config(project_dir=project_dir, global_path=global_path), env,
    )
    settings.validate()
    return settings


__all__ = [
    "GLOBAL_CONFIG_PATH",
    "PROJECT_CONFIG_NAME",
    "SUPPORTED_CLOUDS",
    "Settings",
    "first_env",
    "load_config",
    "load_settings",
]
