"""Scheme registry mapping target schemes to resolver builders."""

from __future__ import annotations

import builtins
import logging

from prometheus_client import CollectorRegistry

from .builder import ResolverBuilder
from .config import ResolverSettings
from .errors import TargetParseError
from .resolver import ConsumerLike, KubeResolver

logger = logging.getLogger(__name__)

_builders: builtins.dict[str, ResolverBuilder] = {}


def register(builder: ResolverBuilder) -> None:
    """Register ``builder`` for its scheme, replacing any previous one."""
    if builder.scheme in _builders:
        logger.warning("Replacing resolver builder for scheme %s", builder.scheme)
    _builders[builder.scheme] = builder


def unregister(scheme: str) -> ResolverBuilder | None:
    return _builders.pop(scheme, None)


def get_builder(scheme: str) -> ResolverBuilder | None:
    return _builders.get(scheme)


def register_in_cluster(
    scheme: str | None = None,
    settings: ResolverSettings | None = None,
    registry: CollectorRegistry | None = None,
) -> ResolverBuilder:
    """Register an in-cluster builder, optionally under a custom scheme."""
    settings = settings or ResolverSettings()
    if scheme:
        settings = settings.model_copy(update={"scheme": scheme})
    builder = ResolverBuilder.in_cluster(settings, registry)
    register(builder)
    return builder


def scheme_of(target: str) -> str:
    scheme, sep, _ = target.partition("://")
    return scheme if sep else ""


async def resolve(target: str, consumer: ConsumerLike) -> KubeResolver:
    """Build a resolver for ``target`` with the builder registered for its scheme.

    Raises:
        TargetParseError: no builder handles the target's scheme.
    """
    scheme = scheme_of(target)
    builder = _builders.get(scheme)
    if builder is None:
        raise TargetParseError(target, f"no resolver registered for scheme {scheme!r}")
    return await builder.build(target, consumer)
