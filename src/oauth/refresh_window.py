"""
Proactive refresh window calculation.

Decides whether a credential is "expiring soon" and when the ideal refresh
instant is. A random jitter drawn uniformly from [-jitter_ms, +jitter_ms] is
applied per call so that many processes holding tokens with similar expiry
times do not all hit the token endpoint at the same moment.

Everything here is pure apart from one clock read and one random draw; the
clock and the random source can be injected for deterministic tests.
"""

import math
import random
import time
from dataclasses import dataclass
from typing import Optional

from .config import DEFAULT_REFRESH_JITTER_MS, DEFAULT_REFRESH_THRESHOLD_MS
from .exceptions import InvalidArgumentError

_default_rng = random.SystemRandom()


@dataclass(frozen=True)
class RefreshWindow:
    """
    When and whether to refresh a credential.

    Attributes:
        should_refresh: Refresh is due now
        refresh_at_ms: Epoch ms of the ideal refresh (clamped to now when due)
        time_until_refresh_ms: Milliseconds until refresh (0 when due)
        expiry_ms: Credential expiry used for the calculation
        threshold_ms: Threshold used for the calculation
        jitter_ms: Jitter actually applied (signed)
    """

    should_refresh: bool
    refresh_at_ms: int
    time_until_refresh_ms: int
    expiry_ms: int
    threshold_ms: int
    jitter_ms: int = 0


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def _require_number(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidArgumentError(
            f"{name} must be a number, got {type(value).__name__}",
            operation="calculate_refresh_window",
        )
    if not math.isfinite(value):
        raise InvalidArgumentError(
            f"{name} must be a finite number", operation="calculate_refresh_window"
        )


def calculate_refresh_window(
    expiry_ms: float,
    threshold_ms: float = DEFAULT_REFRESH_THRESHOLD_MS,
    jitter_ms: float = DEFAULT_REFRESH_JITTER_MS,
    current_ms: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> RefreshWindow:
    """
    Calculate the refresh window for a credential.

    Args:
        expiry_ms: Credential expiry in epoch milliseconds
        threshold_ms: Refresh when expiry is within this many milliseconds
        jitter_ms: Half-width of the uniform jitter range
        current_ms: Override for "now" (epoch ms)
        rng: Random source for the jitter draw

    Returns:
        RefreshWindow describing the decision

    Raises:
        InvalidArgumentError: Non-finite inputs, or negative threshold/jitter
    """
    _require_number("expiry_ms", expiry_ms)
    _require_number("threshold_ms", threshold_ms)
    _require_number("jitter_ms", jitter_ms)
    if threshold_ms < 0:
        raise InvalidArgumentError(
            f"Refresh threshold cannot be negative (provided: {threshold_ms})",
            operation="calculate_refresh_window",
        )
    if jitter_ms < 0:
        raise InvalidArgumentError(
            f"Jitter value cannot be negative (provided: {jitter_ms})",
            operation="calculate_refresh_window",
        )

    now = now_ms() if current_ms is None else int(current_ms)
    expiry = int(expiry_ms)
    threshold = int(threshold_ms)

    if expiry <= now:
        return RefreshWindow(True, now, 0, expiry, threshold)

    # Zero threshold disables proactive refresh; only expiry triggers it
    if threshold == 0:
        return RefreshWindow(False, expiry, expiry - now, expiry, threshold)

    jitter = 0
    if jitter_ms > 0:
        jitter = round((rng or _default_rng).uniform(-jitter_ms, jitter_ms))

    # Positive jitter moves the refresh earlier
    refresh_at = expiry - threshold - jitter
    should_refresh = now >= refresh_at

    if should_refresh:
        return RefreshWindow(True, now, 0, expiry, threshold, jitter)
    return RefreshWindow(False, refresh_at, refresh_at - now, expiry, threshold, jitter)


def is_expiring_soon(
    expiry_ms: float,
    threshold_ms: float = DEFAULT_REFRESH_THRESHOLD_MS,
    jitter_ms: float = DEFAULT_REFRESH_JITTER_MS,
    current_ms: Optional[int] = None,
    rng: Optional[random.Random] = None,
) -> bool:
    """
    Check whether a credential should be refreshed now.

    Uses calculate_refresh_window so the decision and the reported timing
    always agree.

    Raises:
        InvalidArgumentError: Non-finite inputs, or negative threshold/jitter
    """
    return calculate_refresh_window(
        expiry_ms, threshold_ms, jitter_ms, current_ms=current_ms, rng=rng
    ).should_refresh
