"""
Local mirror of the objects backing one resource key.

Endpoints resources map to a single object; endpoint slices map to every
slice labelled with the service name. Either way the emitted snapshot is the
union of the cached objects.
"""

from __future__ import annotations

import builtins

from ..models import ChangeEvent, EventType, ResourceKey, Snapshot


def _is_newer(candidate: str, current: str) -> bool:
    """Whether ``candidate`` is strictly newer than ``current``.

    Resource versions are opaque; only when both are integers can an older or
    repeated event be recognised and dropped.
    """
    if candidate.isdigit() and current.isdigit():
        return int(candidate) > int(current)
    return True


class ResourceCache:
    """Objects of one resource key, keyed by object name."""

    def __init__(self, key: ResourceKey):
        self.key = key
        self.resource_version = ""
        self._objects: builtins.dict[str, Snapshot] = {}
        # Resource version each deleted object was removed at
        self._tombstones: builtins.dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._objects)

    def replace(self, items: builtins.list[Snapshot], resource_version: str) -> None:
        self._objects = {item.name: item for item in items}
        self._tombstones.clear()
        self.resource_version = resource_version

    def _is_stale(self, event: ChangeEvent) -> bool:
        snapshot = event.snapshot
        if not snapshot.resource_version:
            return False

        current = self._objects.get(snapshot.name)
        if current is not None:
            seen = current.resource_version
        else:
            seen = self._tombstones.get(snapshot.name, "")
        return bool(seen) and not _is_newer(snapshot.resource_version, seen)

    def apply(self, event: ChangeEvent) -> bool:
        """Apply one watch event; False when it is stale and was dropped."""
        snapshot = event.snapshot
        if snapshot is None:
            return False

        if event.type is not EventType.DELETED and self._is_stale(event):
            return False

        if event.type is EventType.DELETED:
            self._objects.pop(snapshot.name, None)
            if snapshot.resource_version:
                self._tombstones[snapshot.name] = snapshot.resource_version
        else:
            self._objects[snapshot.name] = snapshot
            self._tombstones.pop(snapshot.name, None)

        if snapshot.resource_version and (
            not self.resource_version or _is_newer(snapshot.resource_version, self.resource_version)
        ):
            self.resource_version = snapshot.resource_version
        return True

    def snapshot(self) -> Snapshot:
        return Snapshot.merge(
            self.key.name,
            self.key.namespace,
            self.resource_version,
            (self._objects[name] for name in sorted(self._objects)),
        )

    def event(self, event_type: EventType) -> ChangeEvent:
        """The event describing the whole cache."""
        if not self._objects:
            return ChangeEvent.deleted(self.snapshot())
        return ChangeEvent(event_type, self.snapshot())
