"""
Address consumers and the gRPC dialing front end.

RoundRobinBalancer is the smallest useful consumer: it keeps the latest list
and hands addresses out in rotation. ChannelConsumer keeps a ``grpc.aio``
channel pointed at the current address list with the ``round_robin`` load
balancing policy. Balancer ties a resolver builder to channel consumers the
way a client dials a service by name.
"""

from __future__ import annotations

import asyncio
import builtins
import logging
from collections.abc import Sequence
from typing import Any

import grpc
from grpc import aio

from .builder import ResolverBuilder
from .config import ResolverSettings
from .errors import ResolverError
from .models import ResolvedAddress
from .registry import scheme_of
from .resolver import KubeResolver, ResolverState

logger = logging.getLogger(__name__)

DNS_SCHEME = "dns"

DEFAULT_CHANNEL_OPTIONS = [
    ("grpc.lb_policy_name", "round_robin"),
    ("grpc.keepalive_time_ms", 30000),
    ("grpc.keepalive_timeout_ms", 5000),
]


class RoundRobinBalancer:
    """Round-robin picker over the latest published addresses."""

    def __init__(self):
        self._addresses: builtins.list[ResolvedAddress] = []
        self._current_index = 0

    @property
    def addresses(self) -> builtins.list[ResolvedAddress]:
        return list(self._addresses)

    def update_addresses(self, addresses: builtins.list[ResolvedAddress]) -> None:
        self._addresses = list(addresses)
        if self._addresses:
            self._current_index %= len(self._addresses)
        else:
            self._current_index = 0

    def pick(self) -> ResolvedAddress | None:
        """Next address in rotation, or None when nothing is resolved."""
        if not self._addresses:
            return None

        address = self._addresses[self._current_index]
        self._current_index = (self._current_index + 1) % len(self._addresses)
        return address

    def healthy(self) -> bool:
        return bool(self._addresses)


def _is_ipv6(address: str) -> bool:
    return address.startswith("[")


def channel_target(addresses: Sequence[ResolvedAddress]) -> str | None:
    """gRPC target string dialling every address in ``addresses``.

    gRPC's static address schemes take one family per target, so a mixed list
    dials its IPv4 addresses only.
    """
    ipv4 = [a.address for a in addresses if not _is_ipv6(a.address)]
    ipv6 = [a.address for a in addresses if _is_ipv6(a.address)]
    if ipv4:
        if ipv6:
            logger.warning("Mixed address families, dialling %d IPv4 addresses only", len(ipv4))
        return "ipv4:" + ",".join(ipv4)
    if ipv6:
        return "ipv6:" + ",".join(ipv6)
    return None


class ChannelConsumer:
    """Address consumer keeping a gRPC channel at the current addresses.

    The channel is replaced when the address list changes; the old one is
    closed with ``close_grace`` seconds for in-flight calls. An empty list
    keeps the previous channel, so callers hold on to something usable during
    a rollout that briefly drops every endpoint.
    """

    def __init__(
        self,
        credentials: grpc.ChannelCredentials | None = None,
        options: Sequence[tuple[str, Any]] | None = None,
        close_grace: float | None = 1.0,
    ):
        self.credentials = credentials
        self.options = list(options or []) + DEFAULT_CHANNEL_OPTIONS
        self.close_grace = close_grace
        self._channel: aio.Channel | None = None
        self._target: str | None = None
        self._ready = asyncio.Event()

    @property
    def channel(self) -> aio.Channel | None:
        return self._channel

    @property
    def target(self) -> str | None:
        return self._target

    def _open(self, target: str) -> aio.Channel:
        if self.credentials is not None:
            return aio.secure_channel(target, self.credentials, options=self.options)
        return aio.insecure_channel(target, options=self.options)

    async def connect(self, target: str) -> aio.Channel:
        """Point the channel at ``target``, closing the previous channel."""
        if target == self._target and self._channel is not None:
            return self._channel

        previous = self._channel
        self._channel = self._open(target)
        self._target = target
        self._ready.set()
        logger.debug("Channel now dialling %s", target)

        if previous is not None:
            await previous.close(grace=self.close_grace)
        return self._channel

    async def update_addresses(self, addresses: builtins.list[ResolvedAddress]) -> None:
        target = channel_target(addresses)
        if target is None:
            logger.warning("No addresses resolved, keeping channel to %s", self._target)
            return
        await self.connect(target)

    async def wait_ready(self, timeout: float | None = None) -> aio.Channel:
        """Wait until a channel has been opened.

        Raises:
            asyncio.TimeoutError: no address was published in time.
        """
        await asyncio.wait_for(self._ready.wait(), timeout=timeout)
        return self._channel

    async def close(self) -> None:
        if self._channel is not None:
            await self._channel.close(grace=self.close_grace)
            self._channel = None
            self._target = None
            self._ready.clear()


class Balancer:
    """Dials targets, resolving ``kubernetes://`` ones through a resolver."""

    def __init__(
        self,
        builder: ResolverBuilder,
        credentials: grpc.ChannelCredentials | None = None,
        options: Sequence[tuple[str, Any]] | None = None,
    ):
        self.builder = builder
        self.credentials = credentials
        self.options = options
        self._resolvers: builtins.list[KubeResolver] = []
        self._consumers: builtins.list[ChannelConsumer] = []

    @classmethod
    def in_cluster(cls, settings: ResolverSettings | None = None, **kwargs: Any) -> Balancer:
        return cls(ResolverBuilder.in_cluster(settings), **kwargs)

    async def dial(self, target: str) -> ChannelConsumer:
        """Return a consumer whose ``channel`` reaches ``target``.

        Targets using the builder's scheme are resolved from endpoints; the
        channel appears with the first published address list. ``dns``
        targets and bare ``host:port`` strings are dialled directly.

        Raises:
            TargetParseError: a resolver target is malformed.
        """
        consumer = ChannelConsumer(self.credentials, self.options)
        scheme = scheme_of(target)

        if scheme == self.builder.scheme:
            logger.info("Using kubernetes resolver for %s", target)
            resolver = await self.builder.build(target, consumer)
            self._resolvers.append(resolver)
        elif scheme == DNS_SCHEME:
            host = target.split("://", 1)[1].lstrip("/")
            await consumer.connect(f"dns:///{host}")
        else:
            await consumer.connect(target)

        self._consumers.append(consumer)
        return consumer

    def healthy(self) -> None:
        """Check every resolved target has addresses.

        Raises:
            ResolverError: a target has no endpoints.
        """
        for resolver in self._resolvers:
            if resolver.state is ResolverState.CLOSED:
                continue
            if not resolver.addresses:
                raise ResolverError(f"target {resolver.target} does not have endpoints")

    async def close(self) -> None:
        for resolver in self._resolvers:
            await resolver.close()
        for consumer in self._consumers:
            await consumer.close()
        self._resolvers.clear()
        self._consumers.clear()
        await self.builder.close()
