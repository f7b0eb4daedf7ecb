"""
Tests for rate-limited credential recovery tokens.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from shortlink.core.exceptions import GoneError, NotFoundError, RateLimitedError, TransientError, ValidationError
from shortlink.db.models import RecoveryToken
from shortlink.services.rate_limiter import RateLimiter, RateLimitPolicy
from shortlink.services.recovery_service import RecoveryService, TokenDelivery, hash_token


class CapturingDelivery(TokenDelivery):
    def __init__(self, fail=False):
        self.delivered = []
        self.fail = fail

    async def deliver(self, issued):
        if self.fail:
            raise ConnectionError("smtp down")
        self.delivered.append(issued)


@pytest.fixture
def delivery():
    return CapturingDelivery()


@pytest.fixture
def make_service(session_maker, adapter, clock, delivery):
    def build(per_ip=5, per_subject=3, cooldown=timedelta(minutes=5), delivery=delivery):
        policy = RateLimitPolicy(per_ip, per_subject, timedelta(hours=1), cooldown)
        limiter = RateLimiter("recovery", policy, session_maker, adapter, clock=clock, timeout=10.0)
        return RecoveryService(session_maker, limiter, delivery=delivery, token_ttl=timedelta(hours=1), clock=clock)
    return build


@pytest.mark.asyncio
async def test_token_is_stored_hashed_and_delivered(make_service, delivery, session_maker):
    service = make_service()

    issued = await service.request_token("Alice@Example.com", client_ip="10.0.0.1")

    assert delivery.delivered == [issued]
    assert issued.subject == "alice@example.com"
    async with session_maker() as session:
        rows = (await session.execute(select(RecoveryToken))).scalars().all()
    assert len(rows) == 1
    assert rows[0].token_hash == hash_token(issued.token)
    assert issued.token not in rows[0].token_hash


@pytest.mark.asyncio
async def test_cooldown_between_requests_for_one_subject(make_service, clock):
    service = make_service()
    await service.request_token("alice@example.com", client_ip="10.0.0.1")

    with pytest.raises(RateLimitedError) as exc_info:
        await service.request_token("alice@example.com", client_ip="10.0.0.2")
    assert exc_info.value.retry_after == 300.0

    clock.advance(minutes=5)
    await service.request_token("alice@example.com", client_ip="10.0.0.2")


@pytest.mark.asyncio
async def test_per_subject_ceiling(make_service, clock):
    service = make_service()
    for i in range(3):
        await service.request_token("alice@example.com", client_ip=f"10.0.0.{i}")
        clock.advance(minutes=6)

    with pytest.raises(RateLimitedError):
        await service.request_token("alice@example.com", client_ip="10.0.0.9")


@pytest.mark.asyncio
async def test_per_ip_ceiling(make_service):
    service = make_service()
    for i in range(5):
        await service.request_token(f"user{i}@example.com", client_ip="10.0.0.1")

    with pytest.raises(RateLimitedError) as exc_info:
        await service.request_token("user9@example.com", client_ip="10.0.0.1")
    assert exc_info.value.dimensions == ["per_ip"]

    await service.request_token("user9@example.com", client_ip="10.0.0.2")


@pytest.mark.asyncio
async def test_consume_once(make_service, clock):
    service = make_service()
    issued = await service.request_token("alice@example.com", client_ip="10.0.0.1")

    assert await service.consume(issued.token) == "alice@example.com"

    with pytest.raises(GoneError) as exc_info:
        await service.consume(issued.token)
    assert exc_info.value.reason == "used"


@pytest.mark.asyncio
async def test_consume_expired_and_unknown(make_service, clock):
    service = make_service()
    issued = await service.request_token("alice@example.com", client_ip="10.0.0.1")
    clock.advance(hours=1, seconds=1)

    with pytest.raises(GoneError) as exc_info:
        await service.consume(issued.token)
    assert exc_info.value.reason == "expired"

    with pytest.raises(NotFoundError):
        await service.consume("not-a-token")


@pytest.mark.asyncio
async def test_empty_subject_is_rejected(make_service):
    with pytest.raises(ValidationError):
        await make_service().request_token("   ", client_ip="10.0.0.1")


@pytest.mark.asyncio
async def test_delivery_failure_is_transient(make_service):
    service = make_service(delivery=CapturingDelivery(fail=True))

    with pytest.raises(TransientError):
        await service.request_token("alice@example.com", client_ip="10.0.0.1")


class UnreachableSessions:
    """Session factory whose every session fails to connect."""

    def __call__(self):
        return self

    async def __aenter__(self):
        raise OperationalError("INSERT", {}, ConnectionRefusedError("connection refused"))

    async def __aexit__(self, *exc_info):
        return False


@pytest.mark.asyncio
async def test_token_store_unavailable_is_transient(session_maker, adapter, clock, delivery):
    policy = RateLimitPolicy(5, 3, timedelta(hours=1), timedelta(minutes=5))
    limiter = RateLimiter("recovery", policy, session_maker, adapter, clock=clock, timeout=10.0)
    service = RecoveryService(UnreachableSessions(), limiter, delivery=delivery, clock=clock)

    with pytest.raises(TransientError) as exc_info:
        await service.request_token("alice@example.com", client_ip="10.0.0.1")
    assert isinstance(exc_info.value.original_error, OperationalError)
    assert delivery.delivered == []

    with pytest.raises(TransientError):
        await service.consume("some-token")
