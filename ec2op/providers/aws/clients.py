"""AWS client factories with dependency injection.

Provides a region-keyed EC2 client factory that can be injected into
components instead of building clients from ambient global state.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import TYPE_CHECKING, Any

import aioboto3
from botocore.exceptions import ProfileNotFound
from injector import Module, provider, singleton

from ec2op.core.exceptions import ConfigurationError

from .config import AWS

if TYPE_CHECKING:
    from types_aiobotocore_ec2 import EC2Client


# =============================================================================
# Client Factory
# =============================================================================


class EC2ClientFactory:
    """Wrapper for a region-keyed EC2 client factory.

    ``factory(region)`` opens a client for that region. An empty region
    falls back to ``default_region``.
    """

    def __init__(
        self,
        factory: Callable[[str], AbstractAsyncContextManager[Any]],
        default_region: str = "us-east-1",
    ) -> None:
        self._factory = factory
        self.default_region = default_region

    def __call__(self, region: str = "") -> AbstractAsyncContextManager[Any]:
        return self._factory(region or self.default_region)


def ec2_factory(session: aioboto3.Session, default_region: str) -> EC2ClientFactory:
    @asynccontextmanager
    async def factory(region: str) -> AsyncIterator[EC2Client]:
        async with session.client("ec2", region_name=region) as client:
            yield client

    return EC2ClientFactory(factory, default_region=default_region)


# =============================================================================
# AWS Module
# =============================================================================


class AWSModule(Module):
    """DI module that provides AWS client factories.

    Usage:
        >>> from injector import Injector
        >>> from ec2op.providers.aws import AWSModule, AWS
        >>>
        >>> injector = Injector([AWSModule(AWS(region="us-east-1"))])
        >>> ec2 = injector.get(EC2ClientFactory)
        >>>
        >>> async with ec2("eu-west-1") as client:
        ...     await client.describe_instances()
    """

    def __init__(self, config: AWS | None = None) -> None:
        self._config = config or AWS()

    @singleton
    @provider
    def provide_config(self) -> AWS:
        return self._config

    @singleton
    @provider
    def provide_session(self, config: AWS) -> aioboto3.Session:
        """Provide singleton aioboto3 session."""
        try:
            return aioboto3.Session(profile_name=config.profile)
        except ProfileNotFound as e:
            raise ConfigurationError(f"AWS profile {config.profile!r} not found") from e

    @singleton
    @provider
    def provide_ec2(self, session: aioboto3.Session, config: AWS) -> EC2ClientFactory:
        """Provide EC2 client factory."""
        return ec2_factory(session, config.region)


# =============================================================================
# Exports
# =============================================================================

__all__ = [
    "AWSModule",
    "EC2ClientFactory",
    "ec2_factory",
]
