"""Hit counter store interfaces.

The limiter should depend on this abstraction (not the concrete implementation)
so we can swap storage backends later (e.g., Redis) with minimal changes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable


@dataclass(frozen=True)
class IncrementResult:
    """Result of incrementing a client's hit counter.

    Attributes:
        has_passed_limit: Whether the client is over the ceiling for this window.
        total_hits: Hit count reported for this call.
        reset_time: UTC time at which the client's window ends.
    """

    has_passed_limit: bool
    total_hits: int
    reset_time: datetime


class AbstractStore(ABC):
    """Interface for hit counter stores.

    ``increment`` may return the result directly or an awaitable resolving to
    it; backends doing network I/O are expected to be asynchronous. Failures
    must be raised, never reported as "not rate limited".
    """

    @property
    @abstractmethod
    def window_seconds(self) -> float:
        """Length of the fixed window in seconds."""

    @property
    @abstractmethod
    def max_connections(self) -> int:
        """Maximum number of hits allowed within one window."""

    @abstractmethod
    def increment(self, key: str) -> IncrementResult | Awaitable[IncrementResult]:
        """Record a hit for ``key`` and decide whether it passed the limit.

        Args:
            key: Unique client identifier (e.g., IP address).

        Returns:
            IncrementResult describing the hit.
        """
        raise NotImplementedError

    @abstractmethod
    def reset_key(self, key: str) -> None | Awaitable[None]:
        """Forget the hit counter for ``key`` so its next hit opens a new window."""
        raise NotImplementedError
