"""
kuberesolver

Client-side name resolution for ``kubernetes://`` targets: watches endpoints
in the directory service and keeps an address consumer up to date.
"""

__version__ = "0.1.0"

from .balancer import Balancer, ChannelConsumer, RoundRobinBalancer
from .builder import ResolverBuilder
from .config import ChangeSourceKind, DeletePolicy, ResolverSettings, ResourceKind
from .errors import (
    ChangeSourceError,
    PortResolutionError,
    ResolverClosedError,
    ResolverError,
    ResourceExpiredError,
    SubscriptionActiveError,
    TargetParseError,
    WatchDecodeError,
)
from .models import ChangeEvent, EventType, ResolvedAddress, ResourceKey, Snapshot
from .registry import get_builder, register, register_in_cluster, resolve
from .resolver import KubeResolver, ResolverState
from .target import KUBERNETES_SCHEME, TargetDescriptor, parse_target

__all__ = [
    "KUBERNETES_SCHEME",
    "Balancer",
    "ChangeEvent",
    "ChangeSourceError",
    "ChangeSourceKind",
    "ChannelConsumer",
    "DeletePolicy",
    "EventType",
    "KubeResolver",
    "PortResolutionError",
    "ResolvedAddress",
    "ResolverBuilder",
    "ResolverClosedError",
    "ResolverError",
    "ResolverSettings",
    "ResolverState",
    "ResourceExpiredError",
    "ResourceKey",
    "ResourceKind",
    "RoundRobinBalancer",
    "Snapshot",
    "SubscriptionActiveError",
    "TargetDescriptor",
    "TargetParseError",
    "WatchDecodeError",
    "get_builder",
    "parse_target",
    "register",
    "register_in_cluster",
    "resolve",
]
