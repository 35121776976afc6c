"""In-memory fixed-window hit counter store.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: keys are spread over shards, each guarded by its own lock.
- Expired records are dropped lazily on access, by the background sweeper and
  by explicit ``clean_store()`` calls.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from window_ratelimit.adapters.rate_limit.base import AbstractStore, IncrementResult
from window_ratelimit.core.config import CountingMode

logger = logging.getLogger(__name__)

COUNTING_MODES: tuple[str, ...] = ("legacy", "exact")


@dataclass
class _HitRecord:
    first_access_time: float
    total_hits: int


@dataclass
class _Shard:
    lock: threading.Lock = field(default_factory=threading.Lock)
    records: dict[str, _HitRecord] = field(default_factory=dict)


class MemoryStore(AbstractStore):
    """Store that counts hits per key within a fixed window.

    The window for a key starts at its first hit and ends ``window_seconds``
    later, independent of further traffic. Once it ends, the next hit opens a
    fresh window.

    Two counting modes are supported:

    ``legacy``
        Each call reports the stored count and then increments it; the first
        hit reports 1. Once the stored count exceeds ``max_connections`` it is
        frozen and every further call in the window is reported as over the
        limit with the same count and reset time.

    ``exact``
        Each call increments first and reports the new count; counting goes on
        past the limit. A call is over the limit when the new count exceeds
        ``max_connections``.

    In both modes the ``max_connections + 1``-th call in a window is the first
    one over the limit (except that ``legacy`` always admits the first call).

    Important:
        This store is per-process only. If the API runs with multiple workers,
        each worker enforces its own independent limits.
    """

    def __init__(
        self,
        *,
        window_seconds: float,
        max_connections: int,
        counting_mode: CountingMode = "legacy",
        shard_count: int = 16,
        sweep_interval_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the in-memory store.

        Args:
            window_seconds: Length of the fixed window in seconds.
            max_connections: Maximum number of hits allowed per window.
            counting_mode: ``legacy`` or ``exact`` (see class docstring).
            shard_count: Number of independently locked partitions.
            sweep_interval_seconds: Run ``clean_store`` from a daemon thread at
                this interval. ``None`` disables the sweeper; callers must then
                call ``clean_store`` themselves to bound memory.
            clock: Time source function returning UNIX time in seconds.

        Raises:
            ValueError: If any argument is out of range.
        """
        if window_seconds < 0:
            raise ValueError("window_seconds must be >= 0")
        if max_connections < 0:
            raise ValueError("max_connections must be >= 0")
        if counting_mode not in COUNTING_MODES:
            raise ValueError(f"counting_mode must be one of {COUNTING_MODES}")
        if shard_count < 1:
            raise ValueError("shard_count must be >= 1")
        if sweep_interval_seconds is not None and sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")

        self._window_seconds = window_seconds
        self._max_connections = max_connections
        self._counting_mode = counting_mode
        self._clock = clock
        self._shards: tuple[_Shard, ...] = tuple(_Shard() for _ in range(shard_count))

        self._sweep_interval = sweep_interval_seconds
        self._stop_event = threading.Event()
        self._sweeper: threading.Thread | None = None
        if sweep_interval_seconds is not None:
            self._start_sweeper()

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"MemoryStore(window_seconds={self._window_seconds}, "
            f"max_connections={self._max_connections}, "
            f"counting_mode={self._counting_mode!r}, shards={len(self._shards)}, "
            f"size={len(self)})"
        )

    def __len__(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.records)
        return total

    def __enter__(self) -> MemoryStore:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    @property
    def max_connections(self) -> int:
        return self._max_connections

    @property
    def counting_mode(self) -> CountingMode:
        return self._counting_mode  # type: ignore[return-value]

    def _shard_for(self, key: str) -> _Shard:
        return self._shards[hash(key) % len(self._shards)]

    def _is_expired(self, record: _HitRecord, now: float) -> bool:
        return now >= record.first_access_time + self._window_seconds

    def _build_result(self, record: _HitRecord, *, passed: bool, total_hits: int) -> IncrementResult:
        reset_at = record.first_access_time + self._window_seconds
        return IncrementResult(
            has_passed_limit=passed,
            total_hits=total_hits,
            reset_time=datetime.fromtimestamp(reset_at, tz=timezone.utc),
        )

    def _count_legacy(self, record: _HitRecord, *, created: bool) -> IncrementResult:
        """Report the stored count, then increment it unless already over."""
        before = record.total_hits
        if not created and before > self._max_connections:
            return self._build_result(record, passed=True, total_hits=before)

        record.total_hits += 1
        return self._build_result(record, passed=False, total_hits=before)

    def _count_exact(self, record: _HitRecord) -> IncrementResult:
        """Increment, then report the new count."""
        record.total_hits += 1
        passed = record.total_hits > self._max_connections
        return self._build_result(record, passed=passed, total_hits=record.total_hits)

    def increment(self, key: str) -> IncrementResult:
        """Record a hit for ``key``.

        The lookup, expiry check and update happen under the key's shard lock,
        so concurrent hits on the same key are serialized.

        Args:
            key: Unique client identifier.

        Returns:
            IncrementResult for this hit.

        Raises:
            ValueError: If key is empty.
        """
        if not key:
            raise ValueError("key must be a non-empty string")

        shard = self._shard_for(key)
        with shard.lock:
            now = self._clock()
            record = shard.records.get(key)
            created = record is None or self._is_expired(record, now)
            if created:
                initial = 1 if self._counting_mode == "legacy" else 0
                record = _HitRecord(first_access_time=now, total_hits=initial)
                shard.records[key] = record

            if self._counting_mode == "exact":
                return self._count_exact(record)
            return self._count_legacy(record, created=created)

    def reset_key(self, key: str) -> None:
        """Drop the record for ``key``; unknown keys are ignored."""
        shard = self._shard_for(key)
        with shard.lock:
            shard.records.pop(key, None)

    def clean_store(self) -> int:
        """Remove every record whose window has ended.

        Returns:
            Number of records removed.
        """
        now = self._clock()
        removed = 0
        for shard in self._shards:
            with shard.lock:
                expired_keys = [k for k, record in shard.records.items() if self._is_expired(record, now)]
                for key in expired_keys:
                    del shard.records[key]
            removed += len(expired_keys)

        if removed:
            logger.debug(
                "window_store.swept",
                extra={
                    "removed": removed,
                    "window_s": self._window_seconds,
                },
            )
        return removed

    def _start_sweeper(self) -> None:
        # Daemon thread: it must never keep the interpreter alive on its own.
        self._sweeper = threading.Thread(
            target=self._sweep_loop,
            name="window-store-sweeper",
            daemon=True,
        )
        self._sweeper.start()
        logger.debug(
            "window_store.sweeper_started",
            extra={"interval_s": self._sweep_interval},
        )

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self._sweep_interval):
            try:
                self.clean_store()
            except Exception:
                # The next tick retries.
                logger.exception("window_store.sweep_failed")

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def close(self) -> None:
        """Stop the background sweeper, if any. Stored records are kept."""
        if self._sweeper is None:
            return
        self._stop_event.set()
        self._sweeper.join(timeout=5)
        self._sweeper = None
        logger.debug("window_store.sweeper_stopped")
