"""
Fixed-window rate limiter for the Vault service.

Each caller identity owns a window of ``window_seconds`` in which at most
``limit`` requests are admitted. Windows live in a bounded, sharded LRU
registry so state stays bounded no matter how many identities callers mint.
"""

import math
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from shared.logging import get_logger, fingerprint


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a single admission check."""

    allowed: bool
    remaining: int
    retry_after: float
    limit: int

    @property
    def retry_after_seconds(self) -> int:
        """Retry-after rounded up to whole seconds for headers."""
        if self.retry_after <= 0:
            return 0
        return int(math.ceil(self.retry_after))


class RateWindow:
    """Per-identity counter state. Mutated only under ``lock``."""

    __slots__ = ("count", "window_start", "limit", "window_duration", "lock", "retired")

    def __init__(self, window_start: float, limit: int, window_duration: float):
        self.count = 0
        self.window_start = window_start
        self.limit = limit
        self.window_duration = window_duration
        self.lock = threading.Lock()
        # Set once the window has left the registry; holders must look up again
        self.retired = False

    def expired(self, now: float) -> bool:
        return now - self.window_start >= self.window_duration

    def roll(self, now: float) -> None:
        """Start a fresh window if the current one has elapsed."""
        if self.expired(now):
            self.window_start = now
            self.count = 0

    def reset_in(self, now: float) -> float:
        return max(0.0, self.window_start + self.window_duration - now)


class _Shard:
    """One slice of the registry: an LRU of windows behind its own lock."""

    def __init__(self, capacity: int):
        self.capacity = capacity
        self.windows: "OrderedDict[str, RateWindow]" = OrderedDict()
        self.lock = threading.Lock()


class FixedWindowRateLimiter:
    """In-process fixed-window limiter keyed by caller identity."""

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        max_identities: int = 10000,
        shards: int = 16,
        clock: Callable[[], float] = time.monotonic,
        on_evict: Optional[Callable[[int], None]] = None,
    ):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if max_identities < 1:
            raise ValueError("max_identities must be at least 1")

        self.limit = limit
        self.window_seconds = float(window_seconds)
        self.max_identities = max_identities
        self.clock = clock
        self.on_evict = on_evict
        self.logger = get_logger("vault.rate_limiter")

        shard_count = max(1, min(shards, max_identities))
        base, extra = divmod(max_identities, shard_count)
        # Shard capacities sum to exactly max_identities
        self._shards: List[_Shard] = [
            _Shard(base + (1 if index < extra else 0)) for index in range(shard_count)
        ]

    def _shard_for(self, identity: str) -> _Shard:
        return self._shards[hash(identity) % len(self._shards)]

    def _get_or_create_window(self, identity: str, now: float) -> RateWindow:
        """Look up (or lazily create) the window and mark it most recently used."""
        shard = self._shard_for(identity)
        evicted = 0

        with shard.lock:
            window = shard.windows.get(identity)
            if window is None:
                window = RateWindow(now, self.limit, self.window_seconds)
                shard.windows[identity] = window
                while len(shard.windows) > shard.capacity:
                    _, stale = shard.windows.popitem(last=False)
                    with stale.lock:
                        stale.retired = True
                    evicted += 1
            else:
                shard.windows.move_to_end(identity)

        if evicted:
            self.logger.debug("Evicted idle rate limit windows", count=evicted)
            if self.on_evict:
                self.on_evict(evicted)

        return window

    def check_and_consume(self, identity: str) -> RateLimitDecision:
        """
        Admit or reject one request for ``identity``.

        The test-and-increment runs under the identity's own lock, so
        concurrent callers sharing an identity are serialized while other
        identities proceed in parallel. Rejections do not consume quota.
        Admitted decisions report ``retry_after == 0``.
        """
        while True:
            window = self._get_or_create_window(identity, self.clock())

            with window.lock:
                if window.retired:
                    continue

                now = self.clock()
                window.roll(now)

                if window.count + 1 > window.limit:
                    decision = RateLimitDecision(
                        allowed=False,
                        remaining=0,
                        retry_after=window.reset_in(now),
                        limit=window.limit,
                    )
                else:
                    window.count += 1
                    decision = RateLimitDecision(
                        allowed=True,
                        remaining=window.limit - window.count,
                        retry_after=0.0,
                        limit=window.limit,
                    )
                break

        if not decision.allowed:
            self.logger.warning(
                "Rate limit exceeded",
                caller=fingerprint(identity),
                limit=decision.limit,
                retry_after=round(decision.retry_after, 3)
            )

        return decision

    def get_status(self, identity: str) -> Dict[str, Any]:
        """Current quota for ``identity`` without consuming or creating state."""
        shard = self._shard_for(identity)
        with shard.lock:
            window = shard.windows.get(identity)

        if window is None:
            return {
                "tracked": False,
                "limit": self.limit,
                "remaining": self.limit,
                "reset_in_seconds": 0.0,
            }

        with window.lock:
            now = self.clock()
            if window.expired(now):
                remaining, reset_in = window.limit, 0.0
            else:
                remaining, reset_in = window.limit - window.count, window.reset_in(now)

        return {
            "tracked": True,
            "limit": window.limit,
            "remaining": remaining,
            "reset_in_seconds": reset_in,
        }

    def sweep_expired(self) -> int:
        """Drop windows whose period has fully elapsed. Returns how many went."""
        now = self.clock()
        removed = 0

        for shard in self._shards:
            with shard.lock:
                for key, window in list(shard.windows.items()):
                    with window.lock:
                        if not window.expired(now):
                            continue
                        window.retired = True
                    del shard.windows[key]
                    removed += 1

        if removed:
            self.logger.info("Swept expired rate limit windows", count=removed)

        return removed

    def tracked_identities(self) -> int:
        """Number of identities currently held in the registry."""
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.windows)
        return total

    def get_global_stats(self) -> Dict[str, Any]:
        """Registry-wide statistics for health reporting."""
        return {
            "tracked_identities": self.tracked_identities(),
            "max_identities": self.max_identities,
            "limit": self.limit,
            "window_seconds": self.window_seconds,
        }
