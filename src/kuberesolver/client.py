"""
HTTP access to the directory service.

A thin aiohttp wrapper: it knows how to reach the API server, how to
authenticate, and how to build list and watch URLs for one endpoints
resource. Connection details (host, CA bundle, client certificates and the
service account token) come from the ``kubernetes`` client's configuration
loaders. Everything above this layer deals in decoded JSON.
"""

from __future__ import annotations

import builtins
import logging
import ssl
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

import aiohttp
from kubernetes import config as k8s_config
from kubernetes.client import Configuration

from .config import ResolverSettings, ResourceKind
from .errors import ChangeSourceError, ResourceExpiredError
from .models import ResourceKey

logger = logging.getLogger(__name__)

SERVICE_NAME_LABEL = "kubernetes.io/service-name"

# Extra silence tolerated on a watch past its server-side timeout (seconds)
WATCH_READ_MARGIN = 30


def watch_read_timeout(watch_timeout: int) -> float:
    """Longest gap between reads on a watch asking for ``watch_timeout`` seconds.

    The server closes the watch after ``watch_timeout``; a connection silent
    well past that is half-open.
    """
    return watch_timeout + min(watch_timeout, WATCH_READ_MARGIN)


def load_configuration(settings: ResolverSettings) -> Configuration:
    """Load API server connection details.

    Uses ``settings.kubeconfig`` when set, the pod's service account
    otherwise.

    Raises:
        ChangeSourceError: no usable configuration was found.
    """
    configuration = Configuration()
    if settings.kubeconfig:
        try:
            k8s_config.load_kube_config(
                config_file=settings.kubeconfig, client_configuration=configuration
            )
        except k8s_config.ConfigException as e:
            raise ChangeSourceError(f"cannot load kubeconfig {settings.kubeconfig}: {e}") from e
    else:
        try:
            k8s_config.load_incluster_config(client_configuration=configuration)
        except k8s_config.ConfigException as e:
            raise ChangeSourceError(
                f"not running in a cluster and no kubeconfig is configured: {e}"
            ) from e
    return configuration


class DirectoryClient:
    """aiohttp client for endpoints list/watch requests."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        authorization: Callable[[], str | None] | None = None,
        ssl_context: ssl.SSLContext | bool | None = None,
        request_timeout: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._token = token
        self._authorization = authorization
        self._ssl = ssl_context
        self._request_timeout = request_timeout
        self._http_session = session
        self._owns_session = session is None

    @classmethod
    def in_cluster(cls, settings: ResolverSettings | None = None) -> DirectoryClient:
        """Client for the API server of the cluster this process runs in."""
        settings = settings or ResolverSettings()
        return cls.from_configuration(load_configuration(settings), settings)

    @classmethod
    def from_configuration(
        cls, configuration: Configuration, settings: ResolverSettings | None = None
    ) -> DirectoryClient:
        """Client using the host, TLS material and credentials of ``configuration``."""
        settings = settings or ResolverSettings()

        ssl_context: ssl.SSLContext | bool | None = None
        if not (settings.verify_ssl and configuration.verify_ssl):
            ssl_context = False
        elif configuration.ssl_ca_cert or configuration.cert_file:
            ssl_context = ssl.create_default_context(cafile=configuration.ssl_ca_cert)
            if configuration.cert_file:
                ssl_context.load_cert_chain(configuration.cert_file, configuration.key_file)

        def authorization() -> str | None:
            # The loaders' refresh hook rereads rotated service account tokens.
            return configuration.get_api_key_with_prefix("authorization")

        return cls(
            settings.api_server or configuration.host,
            authorization=authorization,
            ssl_context=ssl_context,
            request_timeout=settings.request_timeout,
        )

    async def _get_http_session(self) -> aiohttp.ClientSession:
        """Get or create the shared HTTP session."""
        if self._http_session is None or self._http_session.closed:
            self._http_session = aiohttp.ClientSession(
                connector=aiohttp.TCPConnector(limit=100, limit_per_host=30),
            )
            self._owns_session = True
        return self._http_session

    async def close(self) -> None:
        """Close the underlying HTTP session if this client created it."""
        if self._owns_session and self._http_session and not self._http_session.closed:
            await self._http_session.close()
        self._http_session = None

    def _headers(self) -> builtins.dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        elif self._authorization is not None:
            value = self._authorization()
            if value:
                headers["Authorization"] = value
        return headers

    def _request_kwargs(self) -> builtins.dict[str, Any]:
        kwargs: builtins.dict[str, Any] = {"headers": self._headers()}
        if self._ssl is not None:
            kwargs["ssl"] = self._ssl
        return kwargs

    @staticmethod
    def collection_path(key: ResourceKey, kind: ResourceKind = ResourceKind.ENDPOINTS) -> str:
        if kind == ResourceKind.ENDPOINT_SLICES:
            return f"/apis/discovery.k8s.io/v1/namespaces/{key.namespace}/endpointslices"
        return f"/api/v1/namespaces/{key.namespace}/endpoints"

    @staticmethod
    def selector_params(
        key: ResourceKey, kind: ResourceKind = ResourceKind.ENDPOINTS
    ) -> builtins.dict[str, str]:
        """Query parameters narrowing a collection to the resource of ``key``."""
        if kind == ResourceKind.ENDPOINT_SLICES:
            return {"labelSelector": f"{SERVICE_NAME_LABEL}={key.name}"}
        return {"fieldSelector": f"metadata.name={key.name}"}

    @staticmethod
    def watch_path(key: ResourceKey) -> str:
        """Legacy single-object watch path for an Endpoints resource."""
        return f"/api/v1/watch/namespaces/{key.namespace}/endpoints/{key.name}"

    async def get_json(
        self, path: str, params: builtins.dict[str, str] | None = None
    ) -> builtins.dict[str, Any]:
        """GET ``path`` and decode the JSON body.

        Raises:
            ResourceExpiredError: the server answered 410 Gone.
            ChangeSourceError: any other non-200 answer.
        """
        session = await self._get_http_session()
        url = f"{self.base_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self._request_timeout)

        async with session.get(url, params=params, timeout=timeout, **self._request_kwargs()) as response:
            if response.status == 200:
                return await response.json(content_type=None)
            error_text = await response.text()
            if response.status == 410:
                raise ResourceExpiredError(f"{path}: {error_text}")
            raise ChangeSourceError(f"GET {path} failed with status {response.status}: {error_text}")

    @asynccontextmanager
    async def stream(
        self,
        path: str,
        params: builtins.dict[str, str] | None = None,
        read_timeout: float | None = None,
    ) -> AsyncIterator[aiohttp.ClientResponse]:
        """Open a long-lived GET; the body is read by the caller.

        A gap of more than ``read_timeout`` seconds between reads fails the
        read with ``asyncio.TimeoutError``.
        """
        session = await self._get_http_session()
        url = f"{self.base_url}{path}"
        timeout = aiohttp.ClientTimeout(
            total=None, sock_connect=self._request_timeout, sock_read=read_timeout
        )

        logger.debug("Opening watch stream %s params=%s", url, params)
        async with session.get(url, params=params, timeout=timeout, **self._request_kwargs()) as response:
            yield response
