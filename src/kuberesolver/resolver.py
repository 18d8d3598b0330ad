"""
Per-target resolver.

One KubeResolver owns one change source subscription for one resource and
one background task. That task is the only writer of the materialized address
set, so the set needs no lock, and it is the only caller of the consumer, so
publishes for a target never overlap and follow event order.

States::

    STARTING -> WATCHING -> (RESYNCING <-> WATCHING) -> CLOSED

A lost subscription does not clear the address set. Addresses are only
removed when a fresh snapshot no longer contains them, or when the resource
is reported deleted and the delete policy says to clear.
"""

from __future__ import annotations

import asyncio
import builtins
import inspect
import logging
from collections.abc import Awaitable, Callable, Sequence
from enum import Enum
from typing import Protocol, Union, runtime_checkable

from .backoff import Backoff, create_backoff
from .config import DeletePolicy
from .differ import address_list, diff_snapshot
from .errors import ChangeSourceError, ResolverClosedError
from .models import ChangeEvent, EventType, ResolvedAddress, ResourceKey
from .observability.logging import current_target
from .observability.metrics import TargetMetrics
from .sources.base import ChangeSource, Subscription
from .target import TargetDescriptor

logger = logging.getLogger(__name__)


class ResolverState(Enum):
    """Lifecycle states of a resolver."""

    STARTING = "starting"
    WATCHING = "watching"
    RESYNCING = "resyncing"
    CLOSED = "closed"


@runtime_checkable
class AddressConsumer(Protocol):
    """Receives the complete address list of a target on every change."""

    def update_addresses(
        self, addresses: builtins.list[ResolvedAddress]
    ) -> Awaitable[None] | None: ...


ConsumerLike = Union[
    AddressConsumer,
    Callable[[builtins.list[ResolvedAddress]], Union[Awaitable[None], None]],
]


class KubeResolver:
    """Keeps a consumer's address list in sync with one endpoints resource."""

    def __init__(
        self,
        target: TargetDescriptor,
        source: ChangeSource,
        consumer: ConsumerLike,
        metrics: TargetMetrics,
        backoff: Backoff | None = None,
        publish_timeout: float = 5.0,
        delete_policy: DeletePolicy = DeletePolicy.CLEAR,
    ):
        self.target = target
        self.key = ResourceKey(namespace=target.namespace, name=target.service_name)
        self._source = source
        self._publish = getattr(consumer, "update_addresses", consumer)
        self._metrics = metrics
        self._backoff = backoff or create_backoff()
        self._publish_timeout = publish_timeout
        self._delete_policy = delete_policy

        self._addresses: builtins.dict[str, ResolvedAddress] = {}
        self._state = ResolverState.STARTING
        self._stop = asyncio.Event()
        self._resync_requested = False
        self._subscription: Subscription | None = None
        self._task: asyncio.Task | None = None

    @property
    def state(self) -> ResolverState:
        return self._state

    @property
    def addresses(self) -> builtins.list[ResolvedAddress]:
        """Current address list, ordered by address."""
        return address_list(self._addresses)

    def start(self) -> None:
        """Start the background loop. Must be called from a running event loop.

        Raises:
            ResolverClosedError: the resolver was already closed.
        """
        if self._stop.is_set():
            raise ResolverClosedError(f"resolver for {self.target} is closed")
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._run(), name=f"kuberesolver-{self.key}")

    def resolve_now(self) -> None:
        """Resubscribe right away to pull a fresh snapshot.

        Only acts while watching; a resolver that is starting or already
        resyncing is on its way to a fresh snapshot anyway.
        """
        if self._state is not ResolverState.WATCHING or self._subscription is None:
            return
        logger.debug("Resolve requested for %s, resubscribing", self.target)
        self._resync_requested = True
        self._subscription.stop()

    async def close(self) -> None:
        """Stop watching. No publish happens once this returns."""
        self._stop.set()
        if self._subscription is not None:
            self._subscription.stop()

        task = self._task
        if task is not None and task is not asyncio.current_task():
            await task

        await self._source.close()
        self._state = ResolverState.CLOSED
        logger.info("Resolver for %s closed", self.target)

    async def _run(self) -> None:
        current_target.set(str(self.target))
        logger.info("Resolver for %s starting, watching %s", self.target, self.key)
        try:
            while not self._stop.is_set():
                await self._watch()
                if self._stop.is_set():
                    break

                self._state = ResolverState.RESYNCING
                self._metrics.record_resync()
                if self._resync_requested:
                    self._resync_requested = False
                    delay = 0.0
                else:
                    delay = self._backoff.next_delay()
                logger.info(
                    "Subscription for %s ended, resubscribing in %.2fs keeping %d addresses",
                    self.target,
                    delay,
                    len(self._addresses),
                )
                await self._sleep(delay)
        finally:
            self._state = ResolverState.CLOSED

    async def _sleep(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def _watch(self) -> None:
        """Run one subscription until it ends."""
        try:
            subscription = await self._source.subscribe(self.key)
        except ChangeSourceError as e:
            logger.warning("Cannot subscribe to %s: %s", self.key, e)
            return

        self._subscription = subscription
        self._state = ResolverState.WATCHING
        try:
            async for event in subscription:
                if self._stop.is_set():
                    break
                try:
                    await self._handle(event)
                except Exception:
                    logger.exception(
                        "Failed to handle %s event for %s, resubscribing", event.type.value, self.target
                    )
                    break
        finally:
            subscription.stop()
            await subscription.wait_closed()
            self._subscription = None

    async def _handle(self, event: ChangeEvent) -> None:
        if event.type is EventType.ERROR:
            logger.warning(
                "Watch error for %s: %s (status %s)", self.target, event.error, event.status_code
            )
            return

        snapshot = event.snapshot
        if event.type is EventType.DELETED:
            if self._delete_policy is DeletePolicy.RETAIN:
                logger.info("%s was deleted, retaining %d addresses", self.key, len(self._addresses))
                self._backoff.reset()
                return
            logger.info("%s was deleted, clearing addresses", self.key)
            snapshot = None

        diff = diff_snapshot(self._addresses, snapshot, self.target)
        self._metrics.record_skipped_groups(diff.skipped_groups)

        if diff.changed:
            addresses = address_list(diff.next)
            if not await self._deliver(addresses):
                return
            groups = len(snapshot.groups) if snapshot is not None else 0
            self._metrics.observe_publish(groups, len(addresses))
            logger.info(
                "Published %d addresses for %s (+%d -%d)",
                len(addresses),
                self.target,
                len(diff.added),
                len(diff.removed),
            )

        self._addresses = diff.next
        self._backoff.reset()

    async def _deliver(self, addresses: Sequence[ResolvedAddress]) -> bool:
        if self._stop.is_set():
            return False
        result = self._publish(list(addresses))
        if inspect.isawaitable(result):
            await asyncio.wait_for(result, timeout=self._publish_timeout)
        return True
