"""
Target parsing.

Accepted forms::

    kubernetes:///service.namespace:port
    kubernetes://namespace/service:port
    kubernetes://service.namespace:port
    kubernetes://service.namespace.svc.cluster.local:port

The port may be a number, a port name, or absent (first port of each group).
Only the service name and namespace are taken from a fully qualified name; the
cluster domain is ignored because endpoints are looked up by name.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace

from .errors import TargetParseError

KUBERNETES_SCHEME = "kubernetes"

_NUMERIC_PORT = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class TargetDescriptor:
    """Validated resolver target."""

    service_name: str
    namespace: str = ""
    port_spec: str | None = None
    resolve_by_name: bool = False
    use_first_port: bool = True

    def with_namespace(self, namespace: str) -> TargetDescriptor:
        """Return a copy bound to ``namespace``."""
        return replace(self, namespace=namespace)

    @property
    def server_name(self) -> str:
        return f"{self.service_name}.{self.namespace}"

    def __str__(self) -> str:
        port = f":{self.port_spec}" if self.port_spec else ""
        return f"{KUBERNETES_SCHEME}://{self.namespace}/{self.service_name}{port}"


def split_service_port_namespace(hpn: str) -> tuple[str, str, str]:
    """Split ``service[.namespace[.rest]][:port]`` into (service, port, namespace)."""
    service, port, namespace = hpn, "", ""

    colon = service.rfind(":")
    if colon != -1:
        service, port = service[:colon], service[colon + 1 :]

    parts = service.split(".", 2)
    if len(parts) >= 2:
        service, namespace = parts[0], parts[1]

    return service, port, namespace


def _split_target(target: str) -> tuple[str, str]:
    """Return (authority, endpoint) for a target string with or without scheme."""
    _, sep, rest = target.partition("://")
    if not sep:
        if not target.startswith("//"):
            return "", target[1:] if target.startswith("/") else target
        rest = target[2:]

    authority, _, endpoint = rest.partition("/")
    return authority, endpoint


def parse_target(target: str) -> TargetDescriptor:
    """Parse a target string into a TargetDescriptor.

    The namespace is left empty when the target does not name one; the
    builder substitutes the current namespace.

    Raises:
        TargetParseError: the target names no service or carries a bad port.
    """
    authority, endpoint = _split_target(target)

    if not authority:
        service, port, namespace = split_service_port_namespace(endpoint)
    elif ":" not in authority and endpoint:
        service, port, _ = split_service_port_namespace(endpoint)
        namespace = authority
    else:
        service, port, namespace = split_service_port_namespace(authority)

    if not service:
        raise TargetParseError(target, "target must specify a service")

    if not port:
        return TargetDescriptor(service_name=service, namespace=namespace)

    if _NUMERIC_PORT.fullmatch(port):
        if not 0 < int(port) < 65536:
            raise TargetParseError(target, f"port {port} out of range")
        return TargetDescriptor(
            service_name=service,
            namespace=namespace,
            port_spec=port,
            resolve_by_name=False,
            use_first_port=False,
        )

    return TargetDescriptor(
        service_name=service,
        namespace=namespace,
        port_spec=port,
        resolve_by_name=True,
        use_first_port=False,
    )
