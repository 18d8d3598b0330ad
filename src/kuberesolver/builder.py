"""
Resolver builder.

Turns target strings into running resolvers. The builder validates the
target, fills in the namespace, creates a change source for the new resolver
and starts it. Apart from the shared metrics and directory client it keeps no
state about the resolvers it built.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from prometheus_client import CollectorRegistry

from .backoff import create_backoff
from .client import DirectoryClient
from .config import ChangeSourceKind, ResolverSettings
from .namespace import current_namespace
from .observability.metrics import ResolverMetrics
from .resolver import ConsumerLike, KubeResolver
from .sources.base import ChangeSource
from .sources.reflector import ReflectorChangeSource
from .sources.stream import StreamChangeSource
from .target import TargetDescriptor, parse_target

logger = logging.getLogger(__name__)

ChangeSourceFactory = Callable[[], ChangeSource]


def change_source_factory(
    client: DirectoryClient, settings: ResolverSettings
) -> ChangeSourceFactory:
    """Factory producing the change source strategy chosen in ``settings``."""
    if settings.change_source == ChangeSourceKind.STREAM:
        return lambda: StreamChangeSource(
            client,
            resource_kind=settings.resource_kind,
            watch_timeout=settings.watch_timeout,
            queue_size=settings.queue_size,
        )
    return lambda: ReflectorChangeSource(
        client,
        resource_kind=settings.resource_kind,
        watch_timeout=settings.watch_timeout,
        queue_size=settings.queue_size,
        backoff=settings.backoff_config(),
    )


class ResolverBuilder:
    """Builds KubeResolver instances for one target scheme."""

    def __init__(
        self,
        source_factory: ChangeSourceFactory,
        settings: ResolverSettings | None = None,
        metrics: ResolverMetrics | None = None,
        client: DirectoryClient | None = None,
    ):
        self.settings = settings or ResolverSettings()
        self.metrics = metrics or ResolverMetrics.for_registry()
        self._source_factory = source_factory
        self._client = client

    @classmethod
    def in_cluster(
        cls,
        settings: ResolverSettings | None = None,
        registry: CollectorRegistry | None = None,
    ) -> ResolverBuilder:
        """Builder talking to the API server of the current cluster."""
        settings = settings or ResolverSettings()
        client = DirectoryClient.in_cluster(settings)
        return cls(
            change_source_factory(client, settings),
            settings=settings,
            metrics=ResolverMetrics.for_registry(registry),
            client=client,
        )

    @property
    def scheme(self) -> str:
        return self.settings.scheme

    def parse_target(self, target: str) -> TargetDescriptor:
        """Validate ``target``, defaulting its namespace to the pod's own.

        Raises:
            TargetParseError: the target is malformed.
        """
        descriptor = parse_target(target)
        if not descriptor.namespace:
            descriptor = descriptor.with_namespace(
                current_namespace(self.settings.namespace_file, self.settings.default_namespace)
            )
        return descriptor

    async def build(self, target: str | TargetDescriptor, consumer: ConsumerLike) -> KubeResolver:
        """Create and start a resolver publishing to ``consumer``."""
        descriptor = self.parse_target(target) if isinstance(target, str) else target

        resolver = KubeResolver(
            descriptor,
            self._source_factory(),
            consumer,
            self.metrics.for_target(str(descriptor)),
            backoff=create_backoff(self.settings.backoff_config()),
            publish_timeout=self.settings.publish_timeout,
            delete_policy=self.settings.delete_policy,
        )
        resolver.start()
        logger.info("Built resolver for %s", descriptor)
        return resolver

    async def close(self) -> None:
        """Release the shared directory client."""
        if self._client is not None:
            await self._client.close()
