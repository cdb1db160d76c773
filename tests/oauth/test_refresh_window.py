"""Tests for the proactive refresh window calculation."""

import math
import random

import pytest

from src.oauth.exceptions import InvalidArgumentError
from src.oauth.refresh_window import calculate_refresh_window, is_expiring_soon

NOW = 1_700_000_000_000
THRESHOLD = 300_000
JITTER = 30_000


class FixedRandom(random.Random):
    """Random source whose uniform() always returns the same value."""

    def __init__(self, value: float):
        super().__init__()
        self.value = value

    def uniform(self, a, b):
        return self.value


class TestCalculateRefreshWindow:
    """Tests for calculate_refresh_window()."""

    def test_expired_credential_refreshes_now(self):
        """Expired credentials must be refreshed immediately."""
        window = calculate_refresh_window(NOW - 1000, THRESHOLD, 0, current_ms=NOW)

        assert window.should_refresh is True
        assert window.time_until_refresh_ms == 0
        assert window.refresh_at_ms == NOW

    def test_expiry_exactly_now_counts_as_expired(self):
        """expiry == now is already expired."""
        window = calculate_refresh_window(NOW, THRESHOLD, JITTER, current_ms=NOW)

        assert window.should_refresh is True
        assert window.time_until_refresh_ms == 0

    def test_far_from_expiry_without_jitter(self):
        """A credential outside the threshold is not refreshed."""
        window = calculate_refresh_window(NOW + 400_000, THRESHOLD, 0, current_ms=NOW)

        assert window.should_refresh is False
        assert window.refresh_at_ms == NOW + 100_000
        assert window.time_until_refresh_ms == 100_000
        assert window.expiry_ms == NOW + 400_000
        assert window.threshold_ms == THRESHOLD

    def test_within_threshold_refreshes_and_clamps(self):
        """Refresh-due windows report now as the refresh instant."""
        window = calculate_refresh_window(NOW + 60_000, THRESHOLD, 0, current_ms=NOW)

        assert window.should_refresh is True
        assert window.refresh_at_ms == NOW
        assert window.time_until_refresh_ms == 0

    def test_zero_threshold_disables_proactive_refresh(self):
        """threshold=0 only refreshes expired credentials."""
        window = calculate_refresh_window(NOW + 1, 0, JITTER, current_ms=NOW)

        assert window.should_refresh is False
        assert window.refresh_at_ms == NOW + 1
        assert window.time_until_refresh_ms == 1

    def test_positive_jitter_refreshes_earlier(self):
        """Positive jitter widens the refresh window."""
        rng = FixedRandom(20_000)
        # 310s left: outside the 300s threshold, inside threshold + 20s jitter
        window = calculate_refresh_window(
            NOW + 310_000, THRESHOLD, JITTER, current_ms=NOW, rng=rng
        )

        assert window.should_refresh is True
        assert window.jitter_ms == 20_000

    def test_negative_jitter_refreshes_later(self):
        """Negative jitter narrows the refresh window."""
        rng = FixedRandom(-20_000)
        window = calculate_refresh_window(
            NOW + 290_000, THRESHOLD, JITTER, current_ms=NOW, rng=rng
        )

        assert window.should_refresh is False
        assert window.refresh_at_ms == NOW + 10_000
        assert window.time_until_refresh_ms == 10_000

    def test_jitter_is_rounded(self):
        """The applied jitter is a whole number of milliseconds."""
        window = calculate_refresh_window(
            NOW + 10_000_000, THRESHOLD, JITTER, current_ms=NOW, rng=FixedRandom(1234.6)
        )

        assert window.jitter_ms == 1235

    def test_reported_values_are_consistent(self):
        """A due refresh never reports a future refresh instant."""
        rng = random.Random(42)
        for offset in range(0, 400_000, 7_919):
            window = calculate_refresh_window(
                NOW + offset, THRESHOLD, JITTER, current_ms=NOW, rng=rng
            )
            if window.should_refresh:
                assert window.refresh_at_ms == NOW
                assert window.time_until_refresh_ms == 0
            else:
                assert window.refresh_at_ms > NOW
                assert window.time_until_refresh_ms == window.refresh_at_ms - NOW

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"threshold_ms": -1},
            {"jitter_ms": -1},
            {"expiry_ms": math.inf},
            {"expiry_ms": math.nan},
            {"expiry_ms": "soon"},
            {"threshold_ms": None},
            {"expiry_ms": True},
        ],
    )
    def test_invalid_inputs_raise(self, kwargs):
        """Invalid inputs raise InvalidArgumentError instead of using defaults."""
        args = {"expiry_ms": NOW + 1000, "threshold_ms": THRESHOLD, "jitter_ms": JITTER}
        args.update(kwargs)

        with pytest.raises(InvalidArgumentError):
            calculate_refresh_window(current_ms=NOW, **args)


class TestIsExpiringSoon:
    """Tests for is_expiring_soon()."""

    def test_false_beyond_threshold_plus_jitter(self):
        """Credentials beyond threshold + jitter are never expiring soon."""
        rng = random.Random(7)
        for extra in (1, 1000, 60_000, 3_600_000):
            expiry = NOW + THRESHOLD + JITTER + extra
            for _ in range(20):
                assert is_expiring_soon(expiry, THRESHOLD, JITTER, current_ms=NOW, rng=rng) is False

    def test_true_when_expired(self):
        """Expired credentials are always expiring soon."""
        for expiry in (NOW, NOW - 1, NOW - 10_000_000):
            assert is_expiring_soon(expiry, THRESHOLD, JITTER, current_ms=NOW) is True

    def test_true_within_threshold_minus_jitter(self):
        """Credentials closer than threshold - jitter are always expiring soon."""
        rng = random.Random(11)
        expiry = NOW + THRESHOLD - JITTER - 1
        for _ in range(20):
            assert is_expiring_soon(expiry, THRESHOLD, JITTER, current_ms=NOW, rng=rng) is True

    def test_uses_defaults(self):
        """Defaults are a five minute threshold and thirty second jitter."""
        assert is_expiring_soon(NOW + 60_000, current_ms=NOW) is True
        assert is_expiring_soon(NOW + 3_600_000, current_ms=NOW) is False

    def test_uses_wall_clock_when_now_not_given(self):
        """Without current_ms the real clock is used."""
        assert is_expiring_soon(1000, 0, 0) is True

    def test_rejects_negative_threshold(self):
        """Negative threshold raises InvalidArgumentError."""
        with pytest.raises(InvalidArgumentError, match="threshold"):
            is_expiring_soon(NOW, -5, 0, current_ms=NOW)
