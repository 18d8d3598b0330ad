"""
Streaming change source.

Opens one long-lived watch request per subscription and decodes the response
body as it arrives. When the server ends the stream cleanly the subscription
ends quietly; when the connection breaks, goes silent or the body cannot be
decoded an ERROR event is emitted first. Reconnecting is the resolver's job.

Endpoints are watched through the single-object watch path. Endpoint slices
are watched as a collection filtered by the service-name label; every slice
event updates a cache and the emitted snapshot is the union of the slices.

The resource version of the last delivered event is remembered so the next
subscription resumes where this one stopped. A 410 Gone answer forgets it
(and the slice cache) and the following subscription starts from the current
state.
"""

from __future__ import annotations

import asyncio
import builtins
import logging

import aiohttp

from ..client import DirectoryClient, watch_read_timeout
from ..config import ResourceKind
from ..errors import WatchDecodeError
from ..models import ChangeEvent, EventType, ResourceKey
from .base import ChangeSource, Subscription
from .cache import ResourceCache
from .decoder import iter_watch_objects

logger = logging.getLogger(__name__)

HTTP_GONE = 410


class StreamChangeSource(ChangeSource):
    """Change source backed by a single watch stream per subscription."""

    def __init__(
        self,
        client: DirectoryClient,
        resource_kind: ResourceKind = ResourceKind.ENDPOINTS,
        watch_timeout: int = 300,
        queue_size: int = 16,
    ):
        super().__init__(queue_size)
        self.client = client
        self.resource_kind = resource_kind
        self.watch_timeout = watch_timeout
        self._resource_versions: builtins.dict[ResourceKey, str] = {}
        self._slices: builtins.dict[ResourceKey, ResourceCache] = {}

    def resource_version(self, key: ResourceKey) -> str | None:
        return self._resource_versions.get(key)

    def _forget(self, key: ResourceKey) -> None:
        self._resource_versions.pop(key, None)
        self._slices.pop(key, None)

    def _request(self, key: ResourceKey) -> tuple[str, builtins.dict[str, str]]:
        params = {"timeoutSeconds": str(self.watch_timeout)}
        resource_version = self._resource_versions.get(key)
        if resource_version:
            params["resourceVersion"] = resource_version

        if self.resource_kind == ResourceKind.ENDPOINT_SLICES:
            params.update(self.client.selector_params(key, self.resource_kind))
            params["watch"] = "1"
            return self.client.collection_path(key, self.resource_kind), params
        return self.client.watch_path(key), params

    async def produce(self, subscription: Subscription) -> None:
        key = subscription.key
        path, params = self._request(key)

        try:
            async with self.client.stream(
                path, params, read_timeout=watch_read_timeout(self.watch_timeout)
            ) as response:
                if response.status != 200:
                    body = await response.text()
                    if response.status == HTTP_GONE:
                        self._forget(key)
                    logger.warning(
                        "Watch of %s answered with status %d: %s", key, response.status, body
                    )
                    await subscription.emit(
                        ChangeEvent.failure(
                            f"invalid response code {response.status}", response.status
                        )
                    )
                    return

                async for data in iter_watch_objects(response):
                    event = ChangeEvent.from_dict(data)
                    await self._deliver(subscription, event)

            logger.debug("Watch of %s closed normally", key)

        except WatchDecodeError as e:
            logger.warning("Watch of %s: %s", key, e)
            await subscription.emit(ChangeEvent.failure(str(e)))
        except aiohttp.ClientPayloadError as e:
            logger.warning("Unexpected EOF during watch stream of %s: %s", key, e)
            await subscription.emit(ChangeEvent.failure(f"unexpected EOF: {e}"))
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.warning("Watch of %s failed: %s", key, e)
            await subscription.emit(ChangeEvent.failure(f"watch failed: {e!r}"))

    async def _deliver(self, subscription: Subscription, event: ChangeEvent) -> None:
        key = subscription.key
        if event.type is EventType.ERROR:
            if event.status_code == HTTP_GONE:
                logger.info("Resource version for %s expired, next watch starts fresh", key)
                self._forget(key)
            await subscription.emit(event)
            return

        if self.resource_kind == ResourceKind.ENDPOINT_SLICES:
            cache = self._slices.setdefault(key, ResourceCache(key))
            if not cache.apply(event):
                logger.debug("Dropping stale %s event for %s", event.type.value, key)
                return
            merged_type = EventType.ADDED if event.type is EventType.ADDED else EventType.MODIFIED
            event = cache.event(merged_type)

        if event.resource_version:
            self._resource_versions[key] = event.resource_version
        await subscription.emit(event)
