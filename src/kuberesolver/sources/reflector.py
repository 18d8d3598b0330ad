"""
Reflector change source: list, then watch, with a local cache.

A subscription starts with a full list of the resource, seeds the cache and
emits it as one ADDED snapshot (or DELETED when the list proves the resource
does not exist). It then watches from the list's resource version and applies
every incremental event to the cache, emitting the resulting snapshot.

Servers end watch requests after ``timeoutSeconds``; the reflector re-watches
from the last resource version it saw. A watch that ends almost at once
without delivering anything waits on a backoff first. When the version has
expired (410 Gone) it relists and emits a full snapshot again. Any other
failure emits an ERROR event and ends the subscription.

Watching endpoint slices works the same way: the cache holds every slice of
the service and the emitted snapshot is their union.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import aiohttp

from ..backoff import BackoffConfig, create_backoff
from ..client import DirectoryClient, watch_read_timeout
from ..config import ResourceKind
from ..errors import ChangeSourceError, ResourceExpiredError, WatchDecodeError
from ..models import ChangeEvent, EventType, Snapshot
from .base import ChangeSource, Subscription
from .cache import ResourceCache
from .decoder import iter_watch_objects

logger = logging.getLogger(__name__)

HTTP_GONE = 410
BOOKMARK = "BOOKMARK"


class ReflectorChangeSource(ChangeSource):
    """List-then-watch change source with relist on expiry."""

    def __init__(
        self,
        client: DirectoryClient,
        resource_kind: ResourceKind = ResourceKind.ENDPOINTS,
        watch_timeout: int = 300,
        queue_size: int = 16,
        backoff: BackoffConfig | None = None,
        min_watch_duration: float = 1.0,
    ):
        super().__init__(queue_size)
        self.client = client
        self.resource_kind = resource_kind
        self.watch_timeout = watch_timeout
        self.backoff = backoff
        self.min_watch_duration = min_watch_duration

    async def produce(self, subscription: Subscription) -> None:
        key = subscription.key
        cache = ResourceCache(key)
        rewatch = create_backoff(self.backoff)
        loop = asyncio.get_running_loop()

        try:
            while True:
                await self._list(subscription, cache)
                try:
                    while True:
                        started = loop.time()
                        received = await self._watch(subscription, cache)
                        if received or loop.time() - started >= self.min_watch_duration:
                            rewatch.reset()
                            logger.debug("Watch of %s ended at %s, rewatching", key, cache.resource_version)
                            continue

                        delay = rewatch.next_delay()
                        logger.info(
                            "Watch of %s closed without events, rewatching in %.2fs", key, delay
                        )
                        await asyncio.sleep(delay)
                except ResourceExpiredError:
                    logger.info(
                        "Resource version %s of %s expired, relisting", cache.resource_version, key
                    )
        except ChangeSourceError as e:
            logger.warning("Reflector for %s failed: %s", key, e)
            await subscription.emit(ChangeEvent.failure(str(e)))
        except aiohttp.ClientPayloadError as e:
            logger.warning("Unexpected EOF during watch stream of %s: %s", key, e)
            await subscription.emit(ChangeEvent.failure(f"unexpected EOF: {e}"))
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning("Reflector for %s lost its connection: %s", key, e)
            await subscription.emit(ChangeEvent.failure(f"watch failed: {e!r}"))

    async def _list(self, subscription: Subscription, cache: ResourceCache) -> None:
        key = subscription.key
        data = await self.client.get_json(
            self.client.collection_path(key, self.resource_kind),
            self.client.selector_params(key, self.resource_kind),
        )
        items = [Snapshot.from_object(item) for item in data.get("items") or ()]
        resource_version = str((data.get("metadata") or {}).get("resourceVersion", ""))
        cache.replace(items, resource_version)

        logger.debug("Listed %s: %d objects at %s", key, len(items), resource_version)
        await subscription.emit(cache.event(EventType.ADDED))

    async def _watch(self, subscription: Subscription, cache: ResourceCache) -> int:
        """Run one watch request; returns how many objects it delivered."""
        key = subscription.key
        params = {
            **self.client.selector_params(key, self.resource_kind),
            "watch": "1",
            "allowWatchBookmarks": "true",
            "timeoutSeconds": str(self.watch_timeout),
        }
        if cache.resource_version:
            params["resourceVersion"] = cache.resource_version

        path = self.client.collection_path(key, self.resource_kind)
        received = 0
        async with self.client.stream(
            path, params, read_timeout=watch_read_timeout(self.watch_timeout)
        ) as response:
            if response.status == HTTP_GONE:
                raise ResourceExpiredError(await response.text())
            if response.status != 200:
                raise ChangeSourceError(
                    f"watch of {key} answered with status {response.status}: {await response.text()}"
                )

            async for data in iter_watch_objects(response):
                received += 1
                await self._handle(subscription, cache, data)
        return received

    async def _handle(
        self, subscription: Subscription, cache: ResourceCache, data: Any
    ) -> None:
        if isinstance(data, Mapping) and data.get("type") == BOOKMARK:
            metadata = (data.get("object") or {}).get("metadata") or {}
            if metadata.get("resourceVersion"):
                cache.resource_version = str(metadata["resourceVersion"])
            return

        event = ChangeEvent.from_dict(data)
        if event.type is EventType.ERROR:
            if event.status_code == HTTP_GONE:
                raise ResourceExpiredError(event.error or "resource version expired")
            raise WatchDecodeError(f"watch error event: {event.error} ({event.status_code})")

        if not cache.apply(event):
            logger.debug(
                "Dropping stale %s event for %s at %s", event.type.value, subscription.key, event.resource_version
            )
            return
        await subscription.emit(cache.event(EventType.MODIFIED))
