"""
Snapshot differencing.

Turns a Snapshot into the set of resolved addresses it implies and compares it
against the set currently held by a resolver. Pure apart from logging.
"""

from __future__ import annotations

import builtins
import ipaddress
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from .errors import PortResolutionError
from .models import EndpointAddress, ResolvedAddress, Snapshot
from .ports import resolve_port
from .target import TargetDescriptor

logger = logging.getLogger(__name__)

MaterializedSet = Mapping[str, ResolvedAddress]


@dataclass
class EndpointDiff:
    """Result of applying a snapshot to a materialized set."""

    added: builtins.dict[str, ResolvedAddress] = field(default_factory=dict)
    removed: builtins.set[str] = field(default_factory=set)
    next: builtins.dict[str, ResolvedAddress] = field(default_factory=dict)
    skipped_groups: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


def join_host_port(host: str, port: str) -> str:
    """Join host and port, bracketing IPv6 literals."""
    try:
        if ipaddress.ip_address(host).version == 6:
            return f"[{host}]:{port}"
    except ValueError:
        pass
    return f"{host}:{port}"


def _address_metadata(address: EndpointAddress) -> builtins.dict[str, str]:
    metadata = {}
    if address.hostname:
        metadata["hostname"] = address.hostname
    if address.node_name:
        metadata["node_name"] = address.node_name
    if address.zone:
        metadata["zone"] = address.zone
    return metadata


def materialize(
    snapshot: Snapshot | None, target: TargetDescriptor
) -> tuple[builtins.dict[str, ResolvedAddress], int]:
    """Resolve every ready address of ``snapshot``.

    Returns the address mapping and the number of groups skipped because no
    port could be resolved for them.
    """
    resolved: builtins.dict[str, ResolvedAddress] = {}
    skipped = 0
    if snapshot is None:
        return resolved, skipped

    for group in snapshot.groups:
        try:
            port = resolve_port(group.ports, target)
        except PortResolutionError as e:
            skipped += 1
            logger.warning(
                "Skipping endpoint group of %s with %d addresses: %s",
                target,
                len(group.addresses),
                e,
            )
            continue

        for address in group.ready_addresses:
            key = join_host_port(address.ip, port)
            resolved[key] = ResolvedAddress(
                address=key,
                server_name=target.server_name,
                metadata=_address_metadata(address),
            )

    return resolved, skipped


def diff_snapshot(
    previous: MaterializedSet, snapshot: Snapshot | None, target: TargetDescriptor
) -> EndpointDiff:
    """Compute what changes when ``snapshot`` replaces ``previous``.

    A None snapshot stands for a deleted resource and resolves to nothing.
    """
    current, skipped = materialize(snapshot, target)

    added = {key: value for key, value in current.items() if key not in previous}
    removed = {key for key in previous if key not in current}

    for key in sorted(added):
        logger.debug("%s ADDED %s", target, key)
    for key in sorted(removed):
        logger.debug("%s DELETED %s", target, key)

    return EndpointDiff(added=added, removed=removed, next=current, skipped_groups=skipped)


def address_list(addresses: MaterializedSet) -> builtins.list[ResolvedAddress]:
    """Render a materialized set as a list ordered by address."""
    return [addresses[key] for key in sorted(addresses)]
