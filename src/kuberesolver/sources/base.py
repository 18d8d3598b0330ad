"""
Change source abstraction.

A ChangeSource hands out Subscriptions. A Subscription is an async iterator of
ChangeEvents fed by exactly one producer task through a bounded handoff, so
events come out in the order the producer saw them and a slow resolver applies
backpressure to the transport instead of growing a buffer.

Ending the iteration means the subscription is over. ``stop()`` ends it from
the consuming side and unblocks a pending read; the producer ending on its own
(server closed the stream, transport failure) ends it from the other side.
"""

from __future__ import annotations

import asyncio
import builtins
import logging
from abc import ABC, abstractmethod

from ..errors import ChangeSourceError, SubscriptionActiveError
from ..models import ChangeEvent, ResourceKey

logger = logging.getLogger(__name__)

_END = object()


class Subscription:
    """Ordered stream of change events for one resource."""

    def __init__(self, source: ChangeSource, key: ResourceKey, queue_size: int = 16):
        self.source = source
        self.key = key
        self._queue: asyncio.Queue = asyncio.Queue()
        self._slots = asyncio.Semaphore(queue_size)
        self._stopped = False
        self._finished = False
        self._task: asyncio.Task | None = None

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def active(self) -> bool:
        return not (self._stopped or self._finished)

    def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"kuberesolver-subscription-{self.key}")

    async def _run(self) -> None:
        try:
            await self.source.produce(self)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Change source for %s crashed", self.key)
            if not self._stopped:
                await self.emit(ChangeEvent.failure(f"change source crashed: {e!r}"))
        finally:
            self._finished = True
            self._queue.put_nowait(_END)

    async def emit(self, event: ChangeEvent) -> None:
        """Hand one event to the consumer, waiting while the handoff is full."""
        if self._stopped:
            return
        await self._slots.acquire()
        self._queue.put_nowait(event)

    def stop(self) -> None:
        """End the subscription. Idempotent, safe to call from the consumer."""
        if self._stopped:
            return
        self._stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._queue.put_nowait(_END)
        logger.debug("Subscription for %s stopped", self.key)

    async def wait_closed(self) -> None:
        """Wait until the producer task has exited."""
        if self._task is None:
            return
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.cancelled():
                raise

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> ChangeEvent:
        if self._stopped:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END or self._stopped:
            self._queue.put_nowait(_END)
            raise StopAsyncIteration
        self._slots.release()
        return item


class ChangeSource(ABC):
    """Delivers an initial state and ordered changes for named resources."""

    def __init__(self, queue_size: int = 16):
        self.queue_size = queue_size
        self._subscriptions: builtins.dict[ResourceKey, Subscription] = {}
        self._closed = False

    async def subscribe(self, key: ResourceKey) -> Subscription:
        """Open the subscription for ``key``.

        Raises:
            SubscriptionActiveError: a subscription for ``key`` is still open.
        """
        if self._closed:
            raise ChangeSourceError(f"change source is closed, cannot watch {key}")
        current = self._subscriptions.get(key)
        if current is not None and current.active:
            raise SubscriptionActiveError(f"subscription for {key} is already active")

        subscription = Subscription(self, key, self.queue_size)
        self._subscriptions[key] = subscription
        subscription.start()
        return subscription

    @abstractmethod
    async def produce(self, subscription: Subscription) -> None:
        """Emit events for ``subscription.key`` until the subscription ends.

        Returning ends the subscription. Transport failures should be emitted
        as ERROR events before returning; an expected end returns silently.
        """

    async def close(self) -> None:
        """Stop every subscription and release transport resources."""
        self._closed = True
        subscriptions = list(self._subscriptions.values())
        self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.stop()
        for subscription in subscriptions:
            await subscription.wait_closed()
