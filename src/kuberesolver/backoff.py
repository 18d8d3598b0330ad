"""
Backoff policies for resubscribing after a lost watch.

Delays grow exponentially with jitter so that many resolvers losing the same
API server do not reconnect in lockstep.
"""

import logging
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class BackoffStrategy(Enum):
    """Backoff strategy types."""

    EXPONENTIAL = "exponential"
    CONSTANT = "constant"


@dataclass
class BackoffConfig:
    """Configuration for resubscription backoff."""

    strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL

    # Delay before the first retry (seconds)
    base_delay: float = 1.0

    # Upper bound on any single delay (seconds)
    max_delay: float = 30.0

    backoff_multiplier: float = 2.0

    jitter: bool = True

    # Maximum jitter factor (0.0 to 1.0)
    jitter_factor: float = 0.2


class Backoff(ABC):
    """Stateful backoff: each call to next_delay() is one more failed attempt."""

    def __init__(self, config: BackoffConfig):
        self.config = config
        self.attempt = 0

    @abstractmethod
    def calculate_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt number (1-based)."""

    def next_delay(self) -> float:
        self.attempt += 1
        delay = self.calculate_delay(self.attempt)
        logger.debug("Backoff attempt %d, waiting %.2f seconds", self.attempt, delay)
        return delay

    def reset(self) -> None:
        self.attempt = 0

    def _apply_jitter(self, delay: float) -> float:
        if not self.config.jitter:
            return delay
        jitter_range = delay * self.config.jitter_factor
        return max(0.0, delay + random.uniform(-jitter_range, jitter_range))


class ExponentialBackoff(Backoff):
    """Exponential backoff with optional jitter."""

    def calculate_delay(self, attempt: int) -> float:
        delay = self.config.base_delay * (self.config.backoff_multiplier ** (attempt - 1))
        delay = min(delay, self.config.max_delay)
        return self._apply_jitter(delay)


class ConstantBackoff(Backoff):
    """Constant delay with optional jitter."""

    def calculate_delay(self, attempt: int) -> float:
        return self._apply_jitter(min(self.config.base_delay, self.config.max_delay))


def create_backoff(config: BackoffConfig | None = None) -> Backoff:
    """Create a backoff tracker for ``config``."""
    config = config or BackoffConfig()
    if config.strategy == BackoffStrategy.CONSTANT:
        return ConstantBackoff(config)
    return ExponentialBackoff(config)
