"""
Fixed-window rate limiting and failure lockout, keyed by string.

Two independent in-memory maps share the same key shape:

- rate windows: `check_rate_limit` counts calls per window and rejects once
  `max` calls were admitted; the window restarts in place after it elapses.
- failure windows: `record_failure` counts failures per window and bans the
  key for `ban_ms` once `max` is reached; `check_lockout` only reads.

Usage:
    from mediaportal.lib.rate_limit import check_rate_limit, RateLimitOptions

    result = check_rate_limit(f"login:{ip}", RateLimitOptions(window_ms=60_000, max=10))
    if not result.ok:
        return retry_after(result.retry_after_sec)
"""
import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional

from mediaportal.lib.keyed_lock import LockStripes
from mediaportal.lib.logging import get_logger
from mediaportal.lib.metrics import get_metrics_collector


logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitOptions:
    window_ms: int
    max: int

    def __post_init__(self):
        if self.window_ms <= 0 or self.max <= 0:
            raise ValueError("window_ms and max must be positive")


@dataclass(frozen=True)
class LockoutOptions:
    window_ms: int
    max: int
    ban_ms: int

    def __post_init__(self):
        if self.window_ms <= 0 or self.max <= 0 or self.ban_ms <= 0:
            raise ValueError("window_ms, max and ban_ms must be positive")


@dataclass(frozen=True)
class RateLimitResult:
    ok: bool
    retry_after_sec: Optional[int] = None


@dataclass(frozen=True)
class LockoutResult:
    locked: bool
    retry_after_sec: Optional[int] = None


@dataclass
class _Window:
    count: int
    reset_at: float
    banned_until: Optional[float] = None


def _retry_after(remaining_seconds: float) -> int:
    return max(1, math.ceil(remaining_seconds))


class RateLimiter:
    """
    In-process rate limiter and lockout tracker.

    Updates for one key are atomic: each key maps to a lock stripe, so
    parallel requests on the same key serialize while other keys proceed.

    Args:
        clock: Monotonic time source in seconds (injectable for tests)
        stripes: Number of lock stripes
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, stripes: int = 64):
        self._clock = clock
        self._stripes = LockStripes(stripes)
        self._rate_windows: Dict[str, _Window] = {}
        self._failure_windows: Dict[str, _Window] = {}

    def check_rate_limit(self, key: str, opts: RateLimitOptions) -> RateLimitResult:
        """Count one call for `key`; reject once `opts.max` calls were admitted in the window."""
        with self._stripes.hold(key):
            now = self._clock()
            window = self._rate_windows.get(key)
            if window is None or window.reset_at <= now:
                self._rate_windows[key] = _Window(count=1, reset_at=now + opts.window_ms / 1000)
                return RateLimitResult(ok=True)
            if window.count >= opts.max:
                retry_after = _retry_after(window.reset_at - now)
            else:
                window.count += 1
                return RateLimitResult(ok=True)

        get_metrics_collector().increment_rate_limit_rejections(kind="rate_limit")
        logger.info(f"Rate limit exceeded for {key}", extra={"retry_after_sec": retry_after})
        return RateLimitResult(ok=False, retry_after_sec=retry_after)

    def check_lockout(self, key: str, opts: LockoutOptions) -> LockoutResult:
        """Report whether `key` is banned without recording anything."""
        with self._stripes.hold(key):
            now = self._clock()
            window = self._failure_windows.get(key)
            if window is None:
                return LockoutResult(locked=False)
            if window.banned_until is not None:
                if window.banned_until > now:
                    return LockoutResult(locked=True, retry_after_sec=_retry_after(window.banned_until - now))
                # Ban served; start from a clean slate
                del self._failure_windows[key]
                return LockoutResult(locked=False)
            if window.reset_at <= now:
                del self._failure_windows[key]
            return LockoutResult(locked=False)

    def record_failure(self, key: str, opts: LockoutOptions) -> LockoutResult:
        """Count one failure for `key`; ban it for `opts.ban_ms` once `opts.max` is reached."""
        with self._stripes.hold(key):
            now = self._clock()
            window = self._failure_windows.get(key)
            if window is not None and window.banned_until is not None:
                if window.banned_until > now:
                    return LockoutResult(locked=True, retry_after_sec=_retry_after(window.banned_until - now))
                window = None
            if window is None or window.reset_at <= now:
                window = _Window(count=0, reset_at=now + opts.window_ms / 1000)
                self._failure_windows[key] = window
            window.count += 1
            if window.count < opts.max:
                return LockoutResult(locked=False)
            window.banned_until = now + opts.ban_ms / 1000

        get_metrics_collector().increment_rate_limit_rejections(kind="lockout")
        logger.warning(f"Key locked out after {opts.max} failures: {key}", extra={"ban_ms": opts.ban_ms})
        return LockoutResult(locked=True, retry_after_sec=_retry_after(opts.ban_ms / 1000))

    def clear_failures(self, key: str) -> None:
        """Forget failures and any ban for `key` (call after a successful check)."""
        with self._stripes.hold(key):
            self._failure_windows.pop(key, None)

    def sweep(self) -> int:
        """
        Drop windows that can no longer influence a decision.

        Returns:
            Number of entries removed
        """
        removed = 0
        for store in (self._rate_windows, self._failure_windows):
            for key in list(store):
                with self._stripes.hold(key):
                    window = store.get(key)
                    if window is None:
                        continue
                    now = self._clock()
                    banned = window.banned_until is not None and window.banned_until > now
                    if not banned and window.reset_at <= now:
                        del store[key]
                        removed += 1
                    elif window.banned_until is not None and not banned:
                        del store[key]
                        removed += 1
        return removed

    def reset(self) -> None:
        """Drop all state (for testing)."""
        self._rate_windows.clear()
        self._failure_windows.clear()


# Global singleton instance
_rate_limiter: Optional[RateLimiter] = None
_rate_limiter_lock = Lock()


def get_rate_limiter() -> RateLimiter:
    """Get the process-wide rate limiter."""
    global _rate_limiter
    if _rate_limiter is None:
        with _rate_limiter_lock:
            if _rate_limiter is None:
                _rate_limiter = RateLimiter()
    return _rate_limiter


def check_rate_limit(key: str, opts: RateLimitOptions) -> RateLimitResult:
    return get_rate_limiter().check_rate_limit(key, opts)


def check_lockout(key: str, opts: LockoutOptions) -> LockoutResult:
    return get_rate_limiter().check_lockout(key, opts)


def record_failure(key: str, opts: LockoutOptions) -> LockoutResult:
    return get_rate_limiter().record_failure(key, opts)


def clear_failures(key: str) -> None:
    get_rate_limiter().clear_failures(key)
