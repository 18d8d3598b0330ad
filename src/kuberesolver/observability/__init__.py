"""Logging and metrics for resolvers."""

from .logging import configure_logging, current_target
from .metrics import ResolverMetrics, TargetMetrics

__all__ = [
    "ResolverMetrics",
    "TargetMetrics",
    "configure_logging",
    "current_target",
]
