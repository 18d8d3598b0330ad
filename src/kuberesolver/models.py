"""
Endpoint models and the JSON codec for directory-service objects.

Both ``v1/Endpoints`` (subsets) and ``discovery.k8s.io/v1/EndpointSlice``
objects decode into the same shape: a Snapshot holding EndpointGroups, where a
group is a set of addresses sharing one port list.
"""

from __future__ import annotations

import builtins
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import WatchDecodeError


class EventType(str, Enum):
    """Watch event types."""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class ResourceKey:
    """Exact resource watched by one resolver."""

    namespace: str
    name: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclass(frozen=True)
class EndpointPort:
    name: str
    port: int
    protocol: str = "TCP"


@dataclass(frozen=True)
class EndpointAddress:
    """One address with its readiness conditions.

    ``ready`` of None means the directory service did not say; that counts as
    ready.
    """

    ip: str
    ready: bool | None = True
    serving: bool | None = None
    terminating: bool | None = None
    hostname: str | None = None
    node_name: str | None = None
    zone: str | None = None

    @property
    def is_ready(self) -> bool:
        return self.ready is not False


@dataclass(frozen=True)
class EndpointGroup:
    """Addresses sharing a list of ports."""

    addresses: tuple[EndpointAddress, ...] = ()
    ports: tuple[EndpointPort, ...] = ()

    @property
    def ready_addresses(self) -> builtins.list[EndpointAddress]:
        return [address for address in self.addresses if address.is_ready]


@dataclass(frozen=True)
class Snapshot:
    """State of one resource at one resource version."""

    name: str
    namespace: str = ""
    resource_version: str = ""
    groups: tuple[EndpointGroup, ...] = ()

    @property
    def address_count(self) -> int:
        return sum(len(group.addresses) for group in self.groups)

    @classmethod
    def from_object(cls, obj: Mapping[str, Any]) -> Snapshot:
        """Decode an Endpoints or EndpointSlice object."""
        if not isinstance(obj, Mapping):
            raise WatchDecodeError(f"expected an object, got {type(obj).__name__}")

        metadata = obj.get("metadata") or {}
        try:
            if obj.get("kind") == "EndpointSlice" or "endpoints" in obj:
                groups = (_decode_slice(obj),)
            else:
                groups = tuple(_decode_subset(subset) for subset in obj.get("subsets") or ())
        except (KeyError, TypeError, ValueError) as e:
            raise WatchDecodeError(f"malformed endpoints object: {e}") from e

        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            resource_version=str(metadata.get("resourceVersion", "")),
            groups=groups,
        )

    @classmethod
    def merge(
        cls,
        name: str,
        namespace: str,
        resource_version: str,
        parts: Iterable[Snapshot],
    ) -> Snapshot:
        """Combine several snapshots (e.g. the slices of one service) into one."""
        groups: builtins.list[EndpointGroup] = []
        for part in parts:
            groups.extend(part.groups)
        return cls(
            name=name,
            namespace=namespace,
            resource_version=resource_version,
            groups=tuple(groups),
        )


def _decode_ports(raw_ports: Iterable[Mapping[str, Any]] | None) -> tuple[EndpointPort, ...]:
    ports = []
    for raw in raw_ports or ():
        if raw.get("port") is None:
            continue
        ports.append(
            EndpointPort(
                name=raw.get("name") or "",
                port=int(raw["port"]),
                protocol=raw.get("protocol") or "TCP",
            )
        )
    return tuple(ports)


def _decode_subset(subset: Mapping[str, Any]) -> EndpointGroup:
    addresses = [
        EndpointAddress(
            ip=raw["ip"],
            ready=True,
            hostname=raw.get("hostname"),
            node_name=raw.get("nodeName"),
        )
        for raw in subset.get("addresses") or ()
    ]
    addresses.extend(
        EndpointAddress(
            ip=raw["ip"],
            ready=False,
            hostname=raw.get("hostname"),
            node_name=raw.get("nodeName"),
        )
        for raw in subset.get("notReadyAddresses") or ()
    )
    return EndpointGroup(addresses=tuple(addresses), ports=_decode_ports(subset.get("ports")))


def _decode_slice(obj: Mapping[str, Any]) -> EndpointGroup:
    addresses = []
    for endpoint in obj.get("endpoints") or ():
        conditions = endpoint.get("conditions") or {}
        for ip in endpoint.get("addresses") or ():
            addresses.append(
                EndpointAddress(
                    ip=ip,
                    ready=conditions.get("ready"),
                    serving=conditions.get("serving"),
                    terminating=conditions.get("terminating"),
                    hostname=endpoint.get("hostname"),
                    node_name=endpoint.get("nodeName"),
                    zone=endpoint.get("zone"),
                )
            )
    return EndpointGroup(addresses=tuple(addresses), ports=_decode_ports(obj.get("ports")))


@dataclass(frozen=True)
class ChangeEvent:
    """One change to the watched resource.

    ERROR events carry ``error`` and, when the server sent a Status object,
    its HTTP ``status_code``. DELETED events may carry the last known
    snapshot; consumers treat them as an empty resource.
    """

    type: EventType
    snapshot: Snapshot | None = None
    error: str | None = None
    status_code: int | None = None

    @property
    def resource_version(self) -> str:
        return self.snapshot.resource_version if self.snapshot else ""

    @classmethod
    def added(cls, snapshot: Snapshot) -> ChangeEvent:
        return cls(EventType.ADDED, snapshot)

    @classmethod
    def modified(cls, snapshot: Snapshot) -> ChangeEvent:
        return cls(EventType.MODIFIED, snapshot)

    @classmethod
    def deleted(cls, snapshot: Snapshot | None = None) -> ChangeEvent:
        return cls(EventType.DELETED, snapshot)

    @classmethod
    def failure(cls, error: str, status_code: int | None = None) -> ChangeEvent:
        return cls(EventType.ERROR, error=error, status_code=status_code)

    @classmethod
    def from_dict(cls, data: Any) -> ChangeEvent:
        """Decode one watch event ``{"type": ..., "object": ...}``."""
        if not isinstance(data, Mapping):
            raise WatchDecodeError(f"expected a watch event object, got {type(data).__name__}")

        try:
            event_type = EventType(data.get("type"))
        except ValueError as e:
            raise WatchDecodeError(f"got invalid watch event type: {data.get('type')!r}") from e

        obj = data.get("object") or {}
        if event_type is EventType.ERROR:
            code = obj.get("code") if isinstance(obj, Mapping) else None
            message = obj.get("message") if isinstance(obj, Mapping) else None
            return cls.failure(message or "watch error", int(code) if code else None)

        return cls(event_type, Snapshot.from_object(obj))


@dataclass(frozen=True)
class ResolvedAddress:
    """A ``host:port`` address handed to the consumer."""

    address: str
    server_name: str = ""
    metadata: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def __str__(self) -> str:
        return self.address
