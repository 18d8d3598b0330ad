"""
Exception hierarchy for the resolver.

Parse errors surface synchronously to whoever builds a resolver. Everything
under ChangeSourceError is recovered inside the resolver loop and never
reaches the address consumer.
"""


class ResolverError(Exception):
    """Base resolver error."""


class TargetParseError(ResolverError, ValueError):
    """Target string is malformed or names no service."""

    def __init__(self, target: str, reason: str):
        super().__init__(f"invalid target {target!r}: {reason}")
        self.target = target
        self.reason = reason


class PortResolutionError(ResolverError):
    """No port could be selected for an endpoint group."""


class ChangeSourceError(ResolverError):
    """Transport level failure while watching a resource."""


class SubscriptionActiveError(ChangeSourceError):
    """A subscription for the same resource is already open."""


class WatchDecodeError(ChangeSourceError):
    """A watch stream produced something that is not a valid event."""


class ResourceExpiredError(ChangeSourceError):
    """The requested resource version is too old to resume from (HTTP 410)."""


class ResolverClosedError(ResolverError):
    """Operation attempted on a closed resolver."""
