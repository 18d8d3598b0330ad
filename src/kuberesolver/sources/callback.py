"""
Push-based change source.

For notification frameworks that call add/update/delete handlers instead of
exposing a stream. Handlers turn each notification into a ChangeEvent on the
active subscription, so the resolver consumes pushes exactly like a watch.
The latest state is remembered per resource and replayed as ADDED when a new
subscription opens.
"""

from __future__ import annotations

import asyncio
import builtins
import logging
from collections.abc import Mapping
from typing import Any

from ..models import ChangeEvent, ResourceKey, Snapshot
from .base import ChangeSource, Subscription

logger = logging.getLogger(__name__)


def _as_snapshot(obj: Snapshot | Mapping[str, Any]) -> Snapshot:
    return obj if isinstance(obj, Snapshot) else Snapshot.from_object(obj)


class CallbackChangeSource(ChangeSource):
    """Change source fed by notification handlers."""

    def __init__(self, queue_size: int = 16):
        super().__init__(queue_size)
        self._state: builtins.dict[ResourceKey, Snapshot] = {}
        self._ended: builtins.dict[ResourceKey, asyncio.Event] = {}

    async def produce(self, subscription: Subscription) -> None:
        ended = asyncio.Event()
        self._ended[subscription.key] = ended
        try:
            state = self._state.get(subscription.key)
            if state is not None:
                await subscription.emit(ChangeEvent.added(state))
            await ended.wait()
        finally:
            if self._ended.get(subscription.key) is ended:
                del self._ended[subscription.key]

    def _active(self, key: ResourceKey) -> Subscription | None:
        subscription = self._subscriptions.get(key)
        if subscription is not None and subscription.active:
            return subscription
        return None

    async def _push(self, key: ResourceKey, event: ChangeEvent) -> None:
        subscription = self._active(key)
        if subscription is None:
            logger.debug("No subscription for %s, keeping %s as state only", key, event.type.value)
            return
        await subscription.emit(event)

    async def on_add(self, key: ResourceKey, obj: Snapshot | Mapping[str, Any]) -> None:
        snapshot = _as_snapshot(obj)
        self._state[key] = snapshot
        await self._push(key, ChangeEvent.added(snapshot))

    async def on_update(
        self,
        key: ResourceKey,
        old: Snapshot | Mapping[str, Any] | None,
        new: Snapshot | Mapping[str, Any],
    ) -> None:
        snapshot = _as_snapshot(new)
        self._state[key] = snapshot
        await self._push(key, ChangeEvent.modified(snapshot))

    async def on_delete(self, key: ResourceKey, obj: Snapshot | Mapping[str, Any] | None = None) -> None:
        last = self._state.pop(key, None)
        snapshot = _as_snapshot(obj) if obj is not None else last
        await self._push(key, ChangeEvent.deleted(snapshot))

    async def on_error(self, key: ResourceKey, error: str, status_code: int | None = None) -> None:
        await self._push(key, ChangeEvent.failure(error, status_code))

    def end_subscription(self, key: ResourceKey) -> None:
        """End the active subscription for ``key`` as if its transport died."""
        ended = self._ended.get(key)
        if ended is not None:
            ended.set()
