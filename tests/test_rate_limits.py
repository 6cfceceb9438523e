import time

from linkparse.utils.rate_limits import (
    LimitsRateLimitStore,
    SlidingWindowRateLimiter,
    build_rate_limit_store,
)


def test_sliding_window_blocks_after_limit():
    limiter = SlidingWindowRateLimiter()

    assert limiter.hit("client:a", 2, 60) == (True, 0.0)
    assert limiter.hit("client:a", 2, 60) == (True, 0.0)
    allowed, retry_after = limiter.hit("client:a", 2, 60)

    assert allowed is False
    assert 0 < retry_after <= 60
    assert limiter.hit("client:b", 2, 60)[0] is True


def test_sliding_window_reset_and_disabled_limit():
    limiter = SlidingWindowRateLimiter()
    limiter.hit("k", 1, 60)

    assert limiter.hit("k", 1, 60)[0] is False
    assert limiter.hit("k", 0, 60) == (True, 0.0)

    limiter.reset()

    assert limiter.hit("k", 1, 60)[0] is True


def test_idle_keys_are_dropped_after_their_window():
    limiter = SlidingWindowRateLimiter(sweep_interval=0)
    for client in ("client:a", "client:b", "client:c"):
        limiter.hit(client, 5, 0.05)

    assert limiter.tracked_keys() == 3

    time.sleep(0.1)
    limiter.hit("client:d", 5, 60)

    assert limiter.tracked_keys() == 1


def test_limits_backed_store():
    store = LimitsRateLimitStore("memory://", namespace="test")

    assert store.hit("domain:example.com", 1, 60) == (True, 0.0)
    allowed, retry_after = store.hit("domain:example.com", 1, 60)

    assert allowed is False
    assert retry_after >= 0


def test_store_selection():
    assert isinstance(build_rate_limit_store(None), SlidingWindowRateLimiter)
    assert isinstance(build_rate_limit_store("memory://"), SlidingWindowRateLimiter)
