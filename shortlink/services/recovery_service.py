"""
Credential Recovery Tokens

Issues single-use recovery tokens behind the "recovery" rate limiter
(per IP, per subject, and a cooldown between requests for one subject).

Design Decisions:
- Only the sha256 of a token is stored; the plain token exists only in the
  TokenDelivery call
- Delivery is pluggable. The default delivery logs that a token was issued
  and never logs the token itself
- consume() is a single conditional UPDATE, so a token can be used once even
  under concurrent attempts
"""

import hashlib
import logging
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from shortlink.core.exceptions import GoneError, NotFoundError, TransientError, ValidationError
from shortlink.core.timeutil import Clock, utc_now
from shortlink.db.helpers import handle_store_errors
from shortlink.db.models import RecoveryToken
from shortlink.services.rate_limiter import Dimension, RateLimiter

logger = logging.getLogger(__name__)

MAX_SUBJECT_LENGTH = 255


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class IssuedToken:
    subject: str
    token: str
    expires_at: datetime


class TokenDelivery(ABC):
    @abstractmethod
    async def deliver(self, issued: IssuedToken) -> None:
        """Hand the token to the subject (e-mail, SMS, ...)."""


class LoggingTokenDelivery(TokenDelivery):
    async def deliver(self, issued: IssuedToken) -> None:
        logger.info(f"Recovery token issued for {issued.subject}, expires at {issued.expires_at}")


class RecoveryService:
    def __init__(
        self,
        session_maker: async_sessionmaker,
        limiter: RateLimiter,
        delivery: Optional[TokenDelivery] = None,
        token_ttl: timedelta = timedelta(hours=1),
        clock: Clock = utc_now,
        timeout: float = 2.0,
    ):
        self.session_maker = session_maker
        self.limiter = limiter
        self.delivery = delivery or LoggingTokenDelivery()
        self.token_ttl = token_ttl
        self.clock = clock
        self.timeout = timeout
        # Token writes are single-shot; a replayed insert or consume is not safe
        self.retry_attempts = 0

    async def request_token(self, subject: str, client_ip: Optional[str] = None) -> IssuedToken:
        """
        Issue a recovery token for a subject.

        Raises:
            ValidationError: Empty or oversized subject
            RateLimitedError: Per-IP, per-subject or cooldown limit hit
            TransientError: Token could not be stored or delivered
        """
        subject = (subject or "").strip().lower()
        if not subject or len(subject) > MAX_SUBJECT_LENGTH:
            raise ValidationError("subject must be 1-255 characters")

        await self.limiter.enforce({
            Dimension.PER_IP: client_ip,
            Dimension.PER_SUBJECT: subject,
            Dimension.COOLDOWN: subject,
        })

        now = self.clock()
        issued = IssuedToken(subject=subject, token=secrets.token_urlsafe(32), expires_at=now + self.token_ttl)
        await self._store_token(issued, now)

        try:
            await self.delivery.deliver(issued)
        except Exception as e:
            logger.error(f"Recovery token delivery failed for {subject}: {e}", exc_info=True)
            raise TransientError("recovery token delivery failed", original_error=e)
        return issued

    async def consume(self, token: str) -> str:
        """
        Mark a token used and return its subject.

        Raises:
            NotFoundError: Unknown token
            GoneError: Token already used or expired
            TransientError: Token store unavailable
        """
        token_hash = hash_token(token)
        marked, found = await self._mark_used(token_hash, self.clock())

        if found is None:
            raise NotFoundError("recovery token")
        if not marked:
            reason = "used" if found.used_at is not None else "expired"
            raise GoneError("recovery token", reason=reason)
        return found.subject

    @handle_store_errors(retry=False)
    async def _store_token(self, issued: IssuedToken, now: datetime) -> None:
        async with self.session_maker() as session:
            session.add(RecoveryToken(
                subject=issued.subject,
                token_hash=hash_token(issued.token),
                created_at=now,
                expires_at=issued.expires_at,
            ))
            await session.commit()

    @handle_store_errors(retry=False)
    async def _mark_used(self, token_hash: str, now: datetime):
        """Conditionally mark a live token used; returns (marked, row or None)."""
        async with self.session_maker() as session:
            result = await session.execute(
                update(RecoveryToken)
                .where(
                    RecoveryToken.token_hash == token_hash,
                    RecoveryToken.used_at.is_(None),
                    RecoveryToken.expires_at >= now,
                )
                .values(used_at=now)
            )
            row = await session.execute(
                select(RecoveryToken.subject, RecoveryToken.used_at).where(RecoveryToken.token_hash == token_hash)
            )
            found = row.first()
            await session.commit()
        return result.rowcount > 0, found
