"""Fixed-window quota limiter for the REST API.

Three independent tiers guard the analysis endpoint (global by IP, hourly per
client, per-minute per client) plus a small admin tier. Each (tier, key) owns
one window counter; counters are sharded over striped locks so requests for
unrelated keys never wait on each other.
"""

import enum
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Iterable, Optional, Union

from config.settings import (
    ADMIN_RATE_LIMIT, ADMIN_WINDOW_SECONDS, CLIENT_HOURLY_WINDOW_SECONDS,
    CLIENT_MINUTE_WINDOW_SECONDS, GLOBAL_RATE_LIMIT, GLOBAL_WINDOW_SECONDS,
    PER_MINUTE_FLOOR, PER_MINUTE_LIMITS, RATE_LIMIT_STRIPES,
    UNAUTHENTICATED_HOURLY_LIMIT,
)


class Tier(str, enum.Enum):
    GLOBAL = "global"
    CLIENT_HOURLY = "client_hourly"
    CLIENT_PER_MINUTE = "client_per_minute"
    ADMIN = "admin"


TIER_WINDOWS = {
    Tier.GLOBAL: GLOBAL_WINDOW_SECONDS,
    Tier.CLIENT_HOURLY: CLIENT_HOURLY_WINDOW_SECONDS,
    Tier.CLIENT_PER_MINUTE: CLIENT_MINUTE_WINDOW_SECONDS,
    Tier.ADMIN: ADMIN_WINDOW_SECONDS,
}

# Operations on a stripe between sweeps of its expired windows.
_SWEEP_EVERY = 1024


def anonymous_key(ip: str) -> str:
    """Quota key for callers without a client identity."""
    return f"ip:{ip}"


def per_minute_limit(plan: Optional[str]) -> int:
    return PER_MINUTE_LIMITS.get(plan, PER_MINUTE_FLOOR)


def default_limit_resolver(tier: Tier, key: str) -> int:
    """Limits that do not depend on a client record."""
    if tier == Tier.GLOBAL:
        return GLOBAL_RATE_LIMIT
    if tier == Tier.ADMIN:
        return ADMIN_RATE_LIMIT
    if tier == Tier.CLIENT_HOURLY:
        return UNAUTHENTICATED_HOURLY_LIMIT
    return PER_MINUTE_FLOOR


def _iso(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


@dataclass
class QuotaWindow:
    window_start: float
    window_duration: float
    count: int
    limit: int

    @property
    def reset_at(self) -> float:
        return self.window_start + self.window_duration

    def expired(self, now: float) -> bool:
        return now >= self.reset_at


@dataclass(frozen=True)
class Allowed:
    tier: Tier
    key: str
    limit: int
    remaining: int
    window_start: float
    reset_at: float

    allowed = True

    @property
    def reset_time(self) -> str:
        return _iso(self.reset_at)


@dataclass(frozen=True)
class Denied:
    tier: Tier
    key: str
    limit: int
    retry_after: int
    window_start: float
    reset_at: float

    allowed = False
    remaining = 0

    @property
    def reset_time(self) -> str:
        return _iso(self.reset_at)


Decision = Union[Allowed, Denied]


class QuotaLimiter:
    """Per-key fixed-window counters with atomic check-and-increment."""

    def __init__(self, resolver: Callable[[Tier, str], int] = default_limit_resolver,
                 windows: dict = None, stripes: int = RATE_LIMIT_STRIPES,
                 clock: Callable[[], float] = time.time):
        """
        Args:
            resolver: ``(tier, key) -> limit`` used when a check passes no limit.
            windows: window length in seconds per tier.
            stripes: number of lock shards.
            clock: epoch-seconds source, injectable for tests.
        """
        self._resolver = resolver
        self._durations = dict(TIER_WINDOWS if windows is None else windows)
        self._clock = clock
        self._locks = [Lock() for _ in range(stripes)]
        self._shards: list[dict] = [{} for _ in range(stripes)]
        self._ops = [0] * stripes

    def _stripe(self, tier: Tier, key: str) -> int:
        return hash((tier.value, key)) % len(self._locks)

    def check_and_increment(self, tier: Tier, key: str, limit: int = None) -> Decision:
        """Count one request against (tier, key) if the window has room."""
        if limit is None:
            limit = self._resolver(tier, key)
        duration = self._durations[tier]
        idx = self._stripe(tier, key)

        with self._locks[idx]:
            now = self._clock()
            shard = self._shards[idx]
            self._ops[idx] += 1
            if self._ops[idx] % _SWEEP_EVERY == 0:
                self._sweep(shard, now)

            window = shard.get((tier, key))
            if window is None or window.expired(now):
                window = QuotaWindow(window_start=now, window_duration=duration, count=0, limit=limit)
                shard[(tier, key)] = window
            window.limit = limit

            if window.count >= limit:
                return Denied(
                    tier=tier, key=key, limit=limit,
                    retry_after=max(1, math.ceil(window.reset_at - now)),
                    window_start=window.window_start, reset_at=window.reset_at,
                )

            window.count += 1
            return Allowed(
                tier=tier, key=key, limit=limit, remaining=limit - window.count,
                window_start=window.window_start, reset_at=window.reset_at,
            )

    def release(self, decision: Allowed) -> None:
        """Give back an increment, provided its window is still the live one."""
        idx = self._stripe(decision.tier, decision.key)
        with self._locks[idx]:
            window = self._shards[idx].get((decision.tier, decision.key))
            if window is not None and window.window_start == decision.window_start and window.count > 0:
                window.count -= 1

    def check_chain(self, checks: Iterable[tuple]) -> Optional[Decision]:
        """Run ``(tier, key, limit)`` checks in order, stopping at the first denial.

        Later tiers are not touched after a denial and increments taken by
        earlier tiers are released, so a denied request consumes no quota.
        Returns the denial, or the last Allowed decision.
        """
        taken = []
        for tier, key, limit in checks:
            decision = self.check_and_increment(tier, key, limit)
            if not decision.allowed:
                for prior in reversed(taken):
                    self.release(prior)
                return decision
            taken.append(decision)
        return taken[-1] if taken else None

    def remaining(self, tier: Tier, key: str, limit: int = None) -> int:
        if limit is None:
            limit = self._resolver(tier, key)
        idx = self._stripe(tier, key)
        with self._locks[idx]:
            window = self._shards[idx].get((tier, key))
            if window is None or window.expired(self._clock()):
                return limit
            return max(0, limit - window.count)

    def count(self, tier: Tier, key: str) -> int:
        """Committed count in the live window (0 when none)."""
        idx = self._stripe(tier, key)
        with self._locks[idx]:
            window = self._shards[idx].get((tier, key))
            if window is None or window.expired(self._clock()):
                return 0
            return window.count

    def evict_expired(self) -> int:
        """Drop every window whose period has elapsed. Returns how many were dropped."""
        dropped = 0
        for lock, shard in zip(self._locks, self._shards):
            with lock:
                dropped += self._sweep(shard, self._clock())
        return dropped

    @staticmethod
    def _sweep(shard: dict, now: float) -> int:
        stale = [k for k, w in shard.items() if w.expired(now)]
        for k in stale:
            del shard[k]
        return len(stale)
