from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Any

import pytest

from fleetward.infra import retry as retry_module
from fleetward.store.pricing_cache import PricingCache
from fleetward.types import InstanceType, NodeGroup


class FakeClock:
    """Settable wall clock for TTL tests."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, delta: timedelta | float) -> None:
        self.now += delta.total_seconds() if isinstance(delta, timedelta) else delta


def client_factory(client: Any):
    """Wrap a mock boto client in the ``Client[T]`` factory shape."""

    @asynccontextmanager
    async def factory() -> AsyncIterator[Any]:
        yield client

    return factory


def make_group(
    group_id: str = "workers",
    instance_type: str = "m5.xlarge",
    *,
    min_count: int = 1,
    max_count: int = 10,
    count: int = 3,
    region: str = "us-east-1",
    family: str | None = None,
) -> NodeGroup:
    from fleetward.family import try_extract_family

    return NodeGroup(
        id=group_id,
        name=group_id,
        instance_type=instance_type,
        instance_family=try_extract_family(instance_type) if family is None else family,
        current_count=count,
        desired_count=count,
        min_count=min_count,
        max_count=max_count,
        region=region,
    )


def make_type(name: str, cpu: int, memory_mib: int, **kwargs: Any) -> InstanceType:
    from fleetward.family import try_extract_family

    return InstanceType(
        name=name,
        family=kwargs.pop("family", None) or try_extract_family(name),
        cpu_cores=cpu,
        memory_mib=memory_mib,
        **kwargs,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> PricingCache:
    return PricingCache(clock=clock)


@pytest.fixture
def no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make every retry in the resilience layer wait zero seconds."""
    monkeypatch.setattr(retry_module, "backoff_delay", lambda *_, **__: 0.0)
