"""
Unit tests for the sliding-window rate limiter.
"""

import pytest

from auth.rate_limit import SlidingWindowRateLimiter


class ManualClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def tick():
    return ManualClock()


@pytest.fixture
def limiter(tick):
    return SlidingWindowRateLimiter(3, 60, clock=tick)


class TestSlidingWindowRateLimiter:
    def test_fourth_request_rejected(self, limiter):
        decisions = [limiter.check("user-1") for _ in range(4)]

        assert [d.allowed for d in decisions] == [True, True, True, False]
        assert [d.remaining for d in decisions[:3]] == [2, 1, 0]
        assert decisions[3].retry_after == 60

    def test_window_elapses(self, limiter, tick):
        for _ in range(3):
            limiter.check("user-1")
        assert not limiter.check("user-1").allowed

        tick.now += 60
        decision = limiter.check("user-1")
        assert decision.allowed
        assert decision.remaining == 2

    def test_retry_after_tracks_oldest_entry(self, limiter, tick):
        limiter.check("user-1")
        tick.now += 20
        limiter.check("user-1")
        limiter.check("user-1")
        tick.now += 10

        assert limiter.check("user-1").retry_after == 30

    def test_rejections_do_not_consume_quota(self, limiter, tick):
        for _ in range(3):
            limiter.check("user-1")
        for _ in range(5):
            limiter.check("user-1")

        tick.now += 60
        assert limiter.peek("user-1").remaining == 3

    def test_keys_are_independent(self, limiter):
        for _ in range(3):
            limiter.check("ip:10.0.0.1")
        assert limiter.check("ip:10.0.0.2").allowed
        assert not limiter.check("ip:10.0.0.1").allowed

    def test_peek_does_not_consume(self, limiter):
        limiter.check("user-1")
        assert limiter.peek("user-1").remaining == 2
        assert limiter.peek("user-1").remaining == 2

    def test_reset(self, limiter):
        for _ in range(3):
            limiter.check("user-1")
        limiter.reset("user-1")
        assert limiter.check("user-1").allowed

    def test_prune_drops_idle_keys(self, limiter, tick):
        limiter.check("a")
        tick.now += 30
        limiter.check("b")
        tick.now += 31

        assert limiter.prune() == 1
        assert limiter.peek("b").remaining == 2

    @pytest.mark.parametrize("capacity,window", [(0, 60), (3, 0)])
    def test_invalid_configuration(self, capacity, window):
        with pytest.raises(ValueError):
            SlidingWindowRateLimiter(capacity, window)
