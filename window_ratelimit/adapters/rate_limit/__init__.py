"""Hit-counting stores.

The limiter middleware depends on the abstract store interface so the
in-memory window store can later be replaced by a shared backend without
changing the HTTP layer.
"""

from window_ratelimit.adapters.rate_limit.base import AbstractStore, IncrementResult
from window_ratelimit.adapters.rate_limit.in_memory import MemoryStore

__all__ = ["AbstractStore", "IncrementResult", "MemoryStore"]
