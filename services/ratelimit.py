"""
Query deduplication and rate limiting for the alert feed.

All state lives in a RateLimitState record that callers pass in and get back,
so the timing rules can be exercised with a fake clock.
"""
import logging
import math
import time
from dataclasses import dataclass, replace
from email.utils import parsedate_to_datetime
from typing import Iterable, Optional

from config import DEFAULT_BACKOFF_MS, KEY_PRECISION, MIN_FETCH_INTERVAL_MS

log = logging.getLogger(__name__)

# gate verdicts
GO = "go"
BACKOFF = "backoff"
THROTTLED = "throttled"
UNCHANGED = "unchanged"


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class RateLimitState:
    backoff_until: int = 0
    last_fetch_at: int = 0
    last_query_key: str = ""


@dataclass(frozen=True)
class GateDecision:
    verdict: str
    state: RateLimitState
    key: str = ""
    cooldown_s: int = 0

    @property
    def allowed(self) -> bool:
        return self.verdict == GO


def query_key(boxes: Iterable, env: str, precision: int = KEY_PRECISION) -> str:
    """Canonical key for a set of request boxes plus the env tag."""
    parts = [
        ",".join(f"{edge:.{precision}f}" for edge in (b.top, b.bottom, b.left, b.right))
        for b in boxes
    ]
    return "|".join(parts) + f"@{env}"


def gate(state: RateLimitState, boxes, env: str, now: int,
         min_interval_ms: int = MIN_FETCH_INTERVAL_MS) -> GateDecision:
    """
    Decides whether a fetch cycle may go out.

    Order matters: server cooldown first, then the local throttle, then the
    unchanged-query check. On GO the returned state already carries the new
    key, so a second cycle for the same query is refused while the first one
    is still in flight.
    """
    if now < state.backoff_until:
        cooldown = math.ceil((state.backoff_until - now) / 1000)
        return GateDecision(BACKOFF, state, cooldown_s=cooldown)

    if now - state.last_fetch_at < min_interval_ms:
        return GateDecision(THROTTLED, state)

    key = query_key(boxes, env)
    if key == state.last_query_key:
        return GateDecision(UNCHANGED, state, key=key)

    return GateDecision(GO, replace(state, last_query_key=key), key=key)


def retry_after_ms(value: Optional[str], now: int, default_ms: int = DEFAULT_BACKOFF_MS) -> int:
    """Parses a Retry-After directive: delta seconds or an HTTP date."""
    if value is None:
        return default_ms
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        seconds = None
    if seconds is not None and math.isfinite(seconds):
        return max(0, int(seconds * 1000))

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        log.debug("unparseable Retry-After %r, using default", value)
        return default_ms
    if when is None:
        return default_ms
    return max(0, int(when.timestamp() * 1000) - now)


def record_rate_limited(state: RateLimitState, retry_after: Optional[str], now: int) -> RateLimitState:
    wait = retry_after_ms(retry_after, now)
    log.warning("alert feed rate limited, backing off %.1fs", wait / 1000)
    return replace(state, backoff_until=now + wait)


def record_success(state: RateLimitState, now: int) -> RateLimitState:
    return replace(state, last_fetch_at=now)


def cooldown_seconds(state: RateLimitState, now: int) -> int:
    return max(0, math.ceil((state.backoff_until - now) / 1000))
