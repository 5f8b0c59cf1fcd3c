"""AWS client factories with dependency injection.

Provides typed client factories that can be injected into components.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any

import aioboto3
from botocore.config import Config
from injector import Module, provider, singleton

from .config import AWS

# =============================================================================
# Client Type
# =============================================================================

type Client[T] = Callable[[], AbstractAsyncContextManager[T]]
"""Factory that returns an async context manager for a client."""

# =============================================================================
# Wrapper Classes for DI (each needs a unique type)
# =============================================================================


class _ClientFactory:
    def __init__(self, factory: Callable[[], AbstractAsyncContextManager[Any]]) -> None:
        self._factory = factory

    def __call__(self) -> AbstractAsyncContextManager[Any]:
        return self._factory()


class EC2ClientFactory(_ClientFactory):
    """EC2 client factory (instance types, RIs, spot history)."""


class AutoScalingClientFactory(_ClientFactory):
    """Auto Scaling client factory (node groups)."""


class PricingClientFactory(_ClientFactory):
    """Pricing API client factory, pinned to the pricing endpoint region."""


class SavingsPlansClientFactory(_ClientFactory):
    """Savings Plans client factory."""


def _factory(
    session: aioboto3.Session, service: str, region: str, timeout: int,
) -> Callable[[], AbstractAsyncContextManager[Any]]:
    # Retries are handled by the pagination walker, not botocore.
    client_config = Config(read_timeout=timeout, retries={"max_attempts": 1, "mode": "standard"})

    @asynccontextmanager
    async def factory() -> AsyncIterator[Any]:
        async with session.client(service, region_name=region, config=client_config) as client:
            yield client

    return factory


# =============================================================================
# AWS Module
# =============================================================================


class AWSModule(Module):
    """DI module that provides AWS client factories.

    Usage:
        >>> from injector import Injector
        >>> from fleetward.providers.aws.clients import AWSModule, EC2ClientFactory
        >>>
        >>> injector = Injector([AWSModule()])
        >>> injector.binder.bind(AWS, to=AWS(region="us-east-1"))
        >>> ec2 = injector.get(EC2ClientFactory)
        >>> async with ec2() as client:
        ...     await client.describe_instance_types()
    """

    @singleton
    @provider
    def provide_session(self) -> aioboto3.Session:
        """Provide singleton aioboto3 session."""
        return aioboto3.Session()

    @singleton
    @provider
    def provide_ec2(self, session: aioboto3.Session, config: AWS) -> EC2ClientFactory:
        return EC2ClientFactory(_factory(session, "ec2", config.region, config.request_timeout))

    @singleton
    @provider
    def provide_autoscaling(
        self, session: aioboto3.Session, config: AWS,
    ) -> AutoScalingClientFactory:
        return AutoScalingClientFactory(
            _factory(session, "autoscaling", config.region, config.request_timeout),
        )

    @singleton
    @provider
    def provide_pricing(self, session: aioboto3.Session, config: AWS) -> PricingClientFactory:
        return PricingClientFactory(
            _factory(session, "pricing", config.pricing_region, config.request_timeout),
        )

    @singleton
    @provider
    def provide_savingsplans(
        self, session: aioboto3.Session, config: AWS,
    ) -> SavingsPlansClientFactory:
        # Savings Plans is a global service served from us-east-1.
        return SavingsPlansClientFactory(
            _factory(session, "savingsplans", "us-east-1", config.request_timeout),
        )


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    "AWSModule",
    "AutoScalingClientFactory",
    "Client",
    "EC2ClientFactory",
    "PricingClientFactory",
    "SavingsPlansClientFactory",
]
