"""
Prometheus metrics for resolvers.

One ResolverMetrics exists per collector registry; every resolver built
against that registry gets a TargetMetrics view labelled with its target.
"""

from __future__ import annotations

import logging
import weakref

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge

logger = logging.getLogger(__name__)

_by_registry: weakref.WeakKeyDictionary[CollectorRegistry, ResolverMetrics] = (
    weakref.WeakKeyDictionary()
)


class TargetMetrics:
    """Metric children for one target label."""

    def __init__(self, metrics: ResolverMetrics, target: str):
        self.target = target
        self._endpoints = metrics.endpoints.labels(target=target)
        self._addresses = metrics.addresses.labels(target=target)
        self._skipped_groups = metrics.skipped_groups.labels(target=target)
        self._resyncs = metrics.resyncs.labels(target=target)

    def observe_publish(self, groups: int, addresses: int) -> None:
        self._endpoints.set(groups)
        self._addresses.set(addresses)

    def record_skipped_groups(self, count: int) -> None:
        if count:
            self._skipped_groups.inc(count)

    def record_resync(self) -> None:
        self._resyncs.inc()


class ResolverMetrics:
    """Resolver metric families registered on one registry."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry if registry is not None else REGISTRY

        self.endpoints = Gauge(
            "kuberesolver_endpoints_total",
            "The number of endpoints for a given target",
            ["target"],
            registry=self.registry,
        )
        self.addresses = Gauge(
            "kuberesolver_addresses_total",
            "The number of addresses for a given target",
            ["target"],
            registry=self.registry,
        )
        self.skipped_groups = Counter(
            "kuberesolver_skipped_groups",
            "Endpoint groups skipped because no port matched the target",
            ["target"],
            registry=self.registry,
        )
        self.resyncs = Counter(
            "kuberesolver_resyncs",
            "Times a resolver resubscribed to its resource",
            ["target"],
            registry=self.registry,
        )

    @classmethod
    def for_registry(cls, registry: CollectorRegistry | None = None) -> ResolverMetrics:
        """Return the metrics registered on ``registry``, creating them once."""
        registry = registry if registry is not None else REGISTRY
        metrics = _by_registry.get(registry)
        if metrics is None:
            metrics = cls(registry)
            _by_registry[registry] = metrics
            logger.debug("Registered resolver metrics on %r", registry)
        return metrics

    def for_target(self, target: str) -> TargetMetrics:
        return TargetMetrics(self, target)
