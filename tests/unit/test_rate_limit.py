"""
Unit tests for the sliding-window rate limiter.
"""

from bidengine.api.rate_limit import RateLimiter


class ManualClock:
    def __init__(self):
        self.t = 100.0

    def __call__(self):
        return self.t


class TestRateLimiter:
    """Tests for RateLimiter.is_rate_limited."""

    def test_limit_reached(self):
        """The 11th request inside 10 s is limited."""
        limiter = RateLimiter(clock=ManualClock())
        for _ in range(10):
            assert limiter.is_rate_limited("u1", "place_bid", 10, 10) == (False, None)
        limited, retry_after = limiter.is_rate_limited("u1", "place_bid", 10, 10)
        assert limited
        assert retry_after == 10

    def test_window_slides(self):
        clock = ManualClock()
        limiter = RateLimiter(clock=clock)
        for i in range(10):
            clock.t = 100.0 + i
            limiter.is_rate_limited("u1", "place_bid", 10, 10)

        clock.t = 109.5
        limited, retry_after = limiter.is_rate_limited("u1", "place_bid", 10, 10)
        assert limited
        assert retry_after == 1

        clock.t = 110.5
        assert limiter.is_rate_limited("u1", "place_bid", 10, 10)[0] is False

    def test_subjects_and_actions_independent(self):
        limiter = RateLimiter(clock=ManualClock())
        for _ in range(3):
            limiter.is_rate_limited("u1", "place_bid", 3, 10)
        assert limiter.is_rate_limited("u1", "place_bid", 3, 10)[0]
        assert not limiter.is_rate_limited("u2", "place_bid", 3, 10)[0]
        assert not limiter.is_rate_limited("u1", "other", 3, 10)[0]

    def test_rejected_requests_not_counted(self):
        """Limited calls do not extend the window."""
        clock = ManualClock()
        limiter = RateLimiter(clock=clock)
        limiter.is_rate_limited("u1", "a", 1, 10)
        clock.t = 105.0
        assert limiter.is_rate_limited("u1", "a", 1, 10)[0]
        clock.t = 110.5
        assert not limiter.is_rate_limited("u1", "a", 1, 10)[0]

    def test_reset(self):
        limiter = RateLimiter(clock=ManualClock())
        limiter.is_rate_limited("u1", "a", 1, 10)
        limiter.is_rate_limited("u2", "a", 1, 10)
        limiter.reset("u1")
        assert not limiter.is_rate_limited("u1", "a", 1, 10)[0]
        assert limiter.is_rate_limited("u2", "a", 1, 10)[0]
        limiter.reset()
        assert not limiter.is_rate_limited("u2", "a", 1, 10)[0]

    def test_idle_keys_swept(self):
        """Subjects with no request left in their window are forgotten."""
        clock = ManualClock()
        limiter = RateLimiter(clock=clock, sweep_interval=60)
        for i in range(50):
            limiter.is_rate_limited(f"ip:10.0.0.{i}", "place_bid", 10, 10)
        assert len(limiter) == 50

        clock.t = 161.0
        limiter.is_rate_limited("u1", "place_bid", 10, 10)
        assert len(limiter) == 1

    def test_sweep_keeps_keys_inside_window(self):
        clock = ManualClock()
        limiter = RateLimiter(clock=clock, sweep_interval=60)
        limiter.is_rate_limited("u1", "slow", 1, 120)
        limiter.is_rate_limited("u2", "fast", 1, 10)

        clock.t = 170.0
        limiter.is_rate_limited("u3", "fast", 1, 10)
        assert len(limiter) == 2
        assert limiter.is_rate_limited("u1", "slow", 1, 120)[0]
