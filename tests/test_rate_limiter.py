from unittest.mock import MagicMock, PropertyMock, patch

from rate_limiter import RedisRateLimiter, TokenBucketRateLimiter, build_rate_limiter


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_bucket_denies_when_empty_and_refills_over_time():
    clock = FakeClock()
    limiter = TokenBucketRateLimiter(capacity=2, window_seconds=10, clock=clock)

    assert limiter.allow("admin-1")
    assert limiter.allow("admin-1")
    assert not limiter.allow("admin-1")

    clock.now = 5.0
    assert limiter.allow("admin-1")
    assert not limiter.allow("admin-1")


def test_keys_are_limited_independently():
    limiter = TokenBucketRateLimiter(capacity=1, window_seconds=60, clock=FakeClock())

    assert limiter.allow("a")
    assert not limiter.allow("a")
    assert limiter.allow("b")


def test_fully_refilled_buckets_are_evicted():
    clock = FakeClock()
    limiter = TokenBucketRateLimiter(capacity=2, window_seconds=10, clock=clock)
    limiter.allow("a")
    limiter.allow("b")
    assert len(limiter) == 2

    clock.now = 100.0
    assert limiter.evict_idle() == 2
    assert len(limiter) == 0


def test_bucket_map_is_bounded():
    limiter = TokenBucketRateLimiter(capacity=5, window_seconds=60, max_keys=3, clock=FakeClock())
    for key in "abcde":
        limiter.allow(key)
    assert len(limiter) == 3


def test_memory_limiter_is_default_without_redis():
    with patch("rate_limiter.REDIS_URL", None):
        assert isinstance(build_rate_limiter(10, 60), TokenBucketRateLimiter)
    with patch("rate_limiter.REDIS_URL", "redis://localhost:6379/0"):
        assert isinstance(build_rate_limiter(10, 60, "admin"), RedisRateLimiter)


def test_redis_limiter_counts_window():
    limiter = RedisRateLimiter("redis://localhost:6379/0", capacity=2, window_seconds=60)
    client = MagicMock()
    client.pipeline.return_value.execute.side_effect = [[0, 1, 1, True], [2, 2, 1, True]]

    with patch.object(RedisRateLimiter, "redis", new_callable=PropertyMock, return_value=client):
        assert limiter.allow("admin-1")
        assert not limiter.allow("admin-1")

    client.zrem.assert_called_once()


def test_redis_limiter_fails_open():
    limiter = RedisRateLimiter("redis://localhost:6379/0", capacity=1, window_seconds=60)
    client = MagicMock()
    client.pipeline.side_effect = ConnectionError("connection refused")

    with patch.object(RedisRateLimiter, "redis", new_callable=PropertyMock, return_value=client):
        assert limiter.allow("admin-1")
