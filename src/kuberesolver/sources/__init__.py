"""Change sources: where resolvers get endpoint changes from."""

from .base import ChangeSource, Subscription
from .callback import CallbackChangeSource
from .cache import ResourceCache
from .decoder import WatchStreamDecoder, iter_watch_objects
from .reflector import ReflectorChangeSource
from .stream import StreamChangeSource

__all__ = [
    "CallbackChangeSource",
    "ChangeSource",
    "ReflectorChangeSource",
    "ResourceCache",
    "StreamChangeSource",
    "Subscription",
    "WatchStreamDecoder",
    "iter_watch_objects",
]
