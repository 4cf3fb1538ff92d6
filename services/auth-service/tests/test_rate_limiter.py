"""Tests for the sliding window rate limiters guarding the credential endpoints."""

from __future__ import annotations

import time

import fakeredis
import pytest
from redis.exceptions import ResponseError

from auth_service.security.rate_limiter import SlidingWindowRateLimiter
from auth_service.security.redis_rate_limiter import RedisSlidingWindowRateLimiter


@pytest.fixture()
def redis_client() -> fakeredis.FakeStrictRedis:
    client = fakeredis.FakeStrictRedis()
    client.flushall()
    return client


def test_memory_rate_limiter_blocks_excess_with_retry_after():
    limiter = SlidingWindowRateLimiter(max_requests=2, window_seconds=60)
    key = "login:10.0.0.1"

    assert limiter.hit(key).allowed
    assert limiter.hit(key).allowed
    decision = limiter.hit(key)

    assert not decision.allowed
    assert 1 <= decision.retry_after_seconds <= 60


def test_memory_rate_limiter_keys_are_independent():
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60)

    assert limiter.hit("login:10.0.0.1").allowed
    assert limiter.hit("login:10.0.0.2").allowed
    assert not limiter.hit("login:10.0.0.1").allowed


def test_memory_rate_limiter_reset():
    limiter = SlidingWindowRateLimiter(max_requests=1, window_seconds=60)
    limiter.hit("login:10.0.0.1")

    limiter.reset("login:10.0.0.1")

    assert limiter.hit("login:10.0.0.1").allowed


def test_redis_rate_limiter_allows_within_threshold(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=3, window_seconds=1, key_prefix="test"
    )
    key = "login:10.0.0.1"
    assert limiter.hit(key).allowed
    assert limiter.hit(key).allowed
    assert limiter.hit(key).allowed


def test_redis_rate_limiter_blocks_excess(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=2, window_seconds=1, key_prefix="test"
    )
    key = "login:10.0.0.1"
    assert limiter.hit(key).allowed
    assert limiter.hit(key).allowed
    decision = limiter.hit(key)
    assert not decision.allowed
    assert decision.retry_after_seconds == 1


def test_redis_rate_limiter_expires_entries(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=1, window_seconds=1, key_prefix="test"
    )
    key = "login:10.0.0.1"
    assert limiter.hit(key).allowed
    assert not limiter.hit(key).allowed
    time.sleep(1.1)
    assert limiter.hit(key).allowed


def test_redis_rate_limiter_reset(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=1, window_seconds=60, key_prefix="test"
    )
    limiter.hit("login:10.0.0.1")

    limiter.reset("login:10.0.0.1")

    assert limiter.hit("login:10.0.0.1").allowed


@pytest.mark.parametrize(
    "message",
    [
        "unknown command 'evalsha', with args beginning with: ",
        "ERR unknown command `evalsha`, with args beginning with: ",
        "unknown command 'eval'",
    ],
)
def test_redis_rate_limiter_falls_back_without_scripting(redis_client, message):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=1, window_seconds=60, key_prefix="test"
    )

    def scripting_disabled(*args, **kwargs):
        raise ResponseError(message)

    limiter._script = scripting_disabled

    assert limiter.hit("login:10.0.0.1").allowed
    assert not limiter.hit("login:10.0.0.1").allowed
    assert redis_client.zcard("test:login:10.0.0.1") == 1


def test_redis_rate_limiter_propagates_other_errors(redis_client):
    limiter = RedisSlidingWindowRateLimiter(
        redis_client, max_requests=1, window_seconds=60, key_prefix="test"
    )

    def broken(*args, **kwargs):
        raise ResponseError("WRONGTYPE Operation against a key holding the wrong kind of value")

    limiter._script = broken

    with pytest.raises(ResponseError):
        limiter.hit("login:10.0.0.1")


def test_memory_rate_limiter_sweeps_idle_keys(monkeypatch):
    clock = iter([1000.0, 1001.0, 1100.0])
    monkeypatch.setattr(time, "time", lambda: next(clock))
    limiter = SlidingWindowRateLimiter(max_requests=5, window_seconds=60, max_keys=2)

    limiter.hit("login:10.0.0.1")
    limiter.hit("login:10.0.0.2")
    limiter.hit("login:10.0.0.3")

    assert limiter.tracked_keys() == 1
