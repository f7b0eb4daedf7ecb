"""
Tests for the database-backed multi-dimension rate limiter.
"""

import asyncio
from datetime import timedelta

import pytest

from shortlink.core.exceptions import RateLimitedError
from shortlink.core.setting import Settings
from shortlink.services.rate_limiter import Dimension, RateLimiter, RateLimitPolicy

HOUR = timedelta(hours=1)


@pytest.fixture
def make_limiter(session_maker, adapter, clock):
    def build(scope="test", per_ip=5, per_subject=3, window=HOUR, cooldown=timedelta(0)):
        policy = RateLimitPolicy(
            per_ip_ceiling=per_ip,
            per_subject_ceiling=per_subject,
            window_duration=window,
            cooldown_duration=cooldown,
        )
        return RateLimiter(scope, policy, session_maker, adapter, clock=clock, timeout=10.0)
    return build


@pytest.mark.asyncio
async def test_sixth_request_from_ip_is_denied(make_limiter, clock):
    limiter = make_limiter(per_ip=5)
    window_opened = clock()

    for _ in range(5):
        clock.advance(minutes=1)
        assert (await limiter.check_and_increment({Dimension.PER_IP: "10.0.0.1"})).allowed

    decision = await limiter.check_and_increment({Dimension.PER_IP: "10.0.0.1"})

    assert not decision.allowed
    assert decision.denied == (Dimension.PER_IP,)
    # Window opened one minute after window_opened, on the first request
    boundary = window_opened + timedelta(minutes=1) + HOUR
    assert decision.retry_after == (boundary - clock()).total_seconds()

    other = await limiter.check_and_increment({Dimension.PER_IP: "10.0.0.2"})
    assert other.allowed


@pytest.mark.asyncio
async def test_window_resets_after_boundary(make_limiter, clock):
    limiter = make_limiter(per_ip=2)
    keys = {Dimension.PER_IP: "10.0.0.1"}
    await limiter.check_and_increment(keys)
    await limiter.check_and_increment(keys)
    assert not (await limiter.check_and_increment(keys)).allowed

    clock.advance(hours=1)

    assert (await limiter.check_and_increment(keys)).allowed


@pytest.mark.asyncio
async def test_denied_request_consumes_nothing(make_limiter, clock):
    limiter = make_limiter(per_ip=10, per_subject=1)
    await limiter.check_and_increment({Dimension.PER_IP: "10.0.0.1", Dimension.PER_SUBJECT: "alice"})

    # Subject is exhausted, so the IP dimension must not be charged either
    for _ in range(5):
        decision = await limiter.check_and_increment({Dimension.PER_IP: "10.0.0.1", Dimension.PER_SUBJECT: "alice"})
        assert not decision.allowed
        assert decision.denied == (Dimension.PER_SUBJECT,)

    for _ in range(9):
        assert (await limiter.check_and_increment({Dimension.PER_IP: "10.0.0.1"})).allowed
    assert not (await limiter.check_and_increment({Dimension.PER_IP: "10.0.0.1"})).allowed


@pytest.mark.asyncio
async def test_retry_after_is_minimum_across_denied_dimensions(make_limiter, clock):
    limiter = make_limiter(per_ip=1, per_subject=1, cooldown=timedelta(minutes=5))
    keys = {Dimension.PER_IP: "10.0.0.1", Dimension.PER_SUBJECT: "alice", Dimension.COOLDOWN: "alice"}
    assert (await limiter.check_and_increment(keys)).allowed
    clock.advance(minutes=1)

    decision = await limiter.check_and_increment(keys)

    assert not decision.allowed
    assert set(decision.denied) == {Dimension.PER_IP, Dimension.PER_SUBJECT, Dimension.COOLDOWN}
    assert decision.retry_after == timedelta(minutes=4).total_seconds()


@pytest.mark.asyncio
async def test_cooldown(make_limiter, clock):
    limiter = make_limiter(per_ip=100, per_subject=100, cooldown=timedelta(minutes=5))
    keys = {Dimension.PER_SUBJECT: "alice", Dimension.COOLDOWN: "alice"}

    assert (await limiter.check_and_increment(keys)).allowed
    clock.advance(minutes=4)
    decision = await limiter.check_and_increment(keys)
    assert not decision.allowed
    assert decision.denied == (Dimension.COOLDOWN,)
    assert decision.retry_after == 60.0

    clock.advance(minutes=1)
    assert (await limiter.check_and_increment(keys)).allowed


@pytest.mark.asyncio
async def test_disabled_dimensions_and_missing_keys_are_skipped(make_limiter):
    limiter = make_limiter(per_ip=0, per_subject=1)

    for _ in range(3):
        decision = await limiter.check_and_increment({
            Dimension.PER_IP: "10.0.0.1",
            Dimension.PER_SUBJECT: None,
            Dimension.COOLDOWN: "alice",
        })
        assert decision.allowed


@pytest.mark.asyncio
async def test_scopes_do_not_share_counters(make_limiter):
    create = make_limiter(scope="create", per_ip=1)
    recovery = make_limiter(scope="recovery", per_ip=1)
    keys = {Dimension.PER_IP: "10.0.0.1"}

    assert (await create.check_and_increment(keys)).allowed
    assert (await recovery.check_and_increment(keys)).allowed
    assert not (await create.check_and_increment(keys)).allowed


@pytest.mark.asyncio
async def test_concurrent_requests_never_exceed_ceiling(make_limiter):
    limiter = make_limiter(per_ip=5)

    decisions = await asyncio.gather(
        *[limiter.check_and_increment({Dimension.PER_IP: "10.0.0.1"}) for _ in range(15)]
    )

    assert sum(1 for d in decisions if d.allowed) == 5


@pytest.mark.asyncio
async def test_enforce_raises(make_limiter):
    limiter = make_limiter(per_ip=1)
    await limiter.enforce({Dimension.PER_IP: "10.0.0.1"})

    with pytest.raises(RateLimitedError) as exc_info:
        await limiter.enforce({Dimension.PER_IP: "10.0.0.1"})

    assert exc_info.value.status_code == 429
    assert exc_info.value.retry_after == HOUR.total_seconds()
    assert exc_info.value.dimensions == ["per_ip"]


@pytest.mark.asyncio
async def test_purge_expired_counters(make_limiter, clock):
    limiter = make_limiter(per_ip=5)
    await limiter.check_and_increment({Dimension.PER_IP: "10.0.0.1"})
    await limiter.check_and_increment({Dimension.PER_IP: "10.0.0.2"})

    assert await limiter.purge_expired() == 0
    clock.advance(hours=2)
    assert await limiter.purge_expired() == 2


def test_policy_from_settings():
    settings = Settings(RECOVERY_PER_IP_CEILING=5, RECOVERY_PER_SUBJECT_CEILING=3,
                        RECOVERY_WINDOW_SECONDS=3600, RECOVERY_COOLDOWN_SECONDS=300)

    policy = RateLimitPolicy.from_settings(settings, "recovery")

    assert policy.limit_for(Dimension.PER_IP) == (5, HOUR)
    assert policy.limit_for(Dimension.PER_SUBJECT) == (3, HOUR)
    assert policy.limit_for(Dimension.COOLDOWN) == (1, timedelta(minutes=5))
