"""
Shared fixtures for resolver tests.
"""

import asyncio
import logging
from typing import Any

import pytest
from prometheus_client import CollectorRegistry

from kuberesolver.models import ResolvedAddress, ResourceKey
from kuberesolver.observability.metrics import ResolverMetrics


class RecordingConsumer:
    """Async address consumer remembering every published list."""

    def __init__(self):
        self.published: list[list[str]] = []
        self._updates: asyncio.Queue = asyncio.Queue()

    async def update_addresses(self, addresses: list[ResolvedAddress]) -> None:
        plain = [address.address for address in addresses]
        self.published.append(plain)
        self._updates.put_nowait(plain)

    async def next_publish(self, timeout: float = 2.0) -> list[str]:
        return await asyncio.wait_for(self._updates.get(), timeout=timeout)

    def pending(self) -> int:
        return self._updates.qsize()


def endpoints_object(
    name: str = "service",
    namespace: str = "test-namespace",
    addresses: tuple[str, ...] = ("1.1.1.1", "2.2.2.2"),
    not_ready: tuple[str, ...] = (),
    ports: tuple[tuple[str, int], ...] = (("http", 8080),),
    resource_version: str = "1",
) -> dict[str, Any]:
    """Build a v1 Endpoints object with one subset."""
    subset: dict[str, Any] = {
        "addresses": [{"ip": ip} for ip in addresses],
        "ports": [{"name": port_name, "port": port, "protocol": "TCP"} for port_name, port in ports],
    }
    if not_ready:
        subset["notReadyAddresses"] = [{"ip": ip} for ip in not_ready]
    return {
        "kind": "Endpoints",
        "apiVersion": "v1",
        "metadata": {"name": name, "namespace": namespace, "resourceVersion": resource_version},
        "subsets": [subset],
    }


@pytest.fixture(autouse=True)
def reset_package_logger():
    """Undo configure_logging() so caplog keeps seeing package records."""
    yield
    logger = logging.getLogger("kuberesolver")
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def registry():
    """Isolated prometheus registry."""
    return CollectorRegistry()


@pytest.fixture
def metrics(registry):
    return ResolverMetrics.for_registry(registry)


@pytest.fixture
def resource_key():
    return ResourceKey(namespace="test-namespace", name="service")


@pytest.fixture
def make_endpoints():
    """Factory for Endpoints objects."""
    return endpoints_object


@pytest.fixture
def consumer():
    return RecordingConsumer()
