"""Port selection for an endpoint group."""

from __future__ import annotations

from collections.abc import Sequence

from .errors import PortResolutionError
from .models import EndpointPort
from .target import TargetDescriptor


def resolve_port(ports: Sequence[EndpointPort], target: TargetDescriptor) -> str:
    """Pick the port ``target`` asks for out of one group's port list.

    A by-name lookup that finds nothing fails instead of falling back to the
    literal name, so a group never produces an address like ``1.2.3.4:grpc``.

    Raises:
        PortResolutionError: the group cannot serve this target.
    """
    if target.use_first_port:
        if not ports:
            raise PortResolutionError("endpoint group has no ports")
        return str(ports[0].port)

    if target.resolve_by_name:
        for port in ports:
            if port.name == target.port_spec:
                return str(port.port)
        raise PortResolutionError(f"no port named {target.port_spec!r}")

    if not target.port_spec:
        raise PortResolutionError("target has no port")
    return target.port_spec
