"""
Identifier Allocator

This service produces unique short codes and creates link records:
- Caller-supplied (custom) codes are validated and inserted as-is
- Auto-generated codes are random base62 strings of fixed length

Design Decisions:
- Base62 alphabet: Uses [0-9a-zA-Z] for maximum URL compatibility
- Random, not counter-based: codes are not enumerable and need no shared
  counter between service instances
- Insert-first: uniqueness is enforced by the store's unique constraint, so
  there is no check-then-insert race. A collision on an auto-generated code
  is retried with a fresh code; a collision on a custom code is reported
- Bounded retries: repeated collisions mean the code space is saturated,
  which is reported as AllocationExhausted rather than retried forever

Capacity: 62^7 is about 3.5 trillion codes, so at realistic fill levels a
single collision is rare and exhaustion points at a configuration problem.
"""

import logging
import secrets
from datetime import datetime
from typing import Callable, Optional

from shortlink.core.exceptions import AllocationExhaustedError, CodeCollisionError, ValidationError
from shortlink.core.timeutil import Clock, to_naive_utc, utc_now
from shortlink.core.validators import RESERVED_CODES, validate_short_code, validate_target
from shortlink.db.interface import LinkRecord, LinkStore
from shortlink.db.models import LinkStatus

logger = logging.getLogger(__name__)

BASE62_CHARS = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"


def generate_code(length: int = 7) -> str:
    """
    Generate a random base62 code.

    Uses ``secrets`` so codes cannot be predicted from earlier ones.
    """
    return ''.join(secrets.choice(BASE62_CHARS) for _ in range(length))


class IdentifierAllocator:
    """Allocates short codes and creates the matching link records."""

    def __init__(
        self,
        store: LinkStore,
        code_length: int = 7,
        max_attempts: int = 10,
        clock: Clock = utc_now,
        generator: Optional[Callable[[int], str]] = None,
    ):
        """
        Args:
            store: Lifecycle store that enforces code uniqueness
            code_length: Length of auto-generated codes
            max_attempts: Collision retries before AllocationExhausted
            clock: Source of "now" for created_at and expiry checks
            generator: Code generator, replaceable in tests
        """
        self.store = store
        self.code_length = code_length
        self.max_attempts = max_attempts
        self.clock = clock
        self.generator = generator or generate_code

    async def allocate(
        self,
        requested_code: Optional[str],
        target: str,
        owner: Optional[str] = None,
        expires_at: Optional[datetime] = None,
    ) -> LinkRecord:
        """
        Create a new active link record.

        Args:
            requested_code: Custom code; auto-generated when None
            target: Destination URL
            owner: Owning subject, None for anonymous links
            expires_at: Optional expiration, must be in the future

        Returns:
            The created LinkRecord

        Raises:
            InvalidCodeError / InvalidTargetError / ValidationError: Bad input
            CodeCollisionError: The custom code is taken or retired
            AllocationExhaustedError: Auto-generation kept colliding
            TransientError: The store was unavailable
        """
        validate_target(target)
        if requested_code is not None:
            validate_short_code(requested_code)

        now = self.clock()
        if expires_at is not None:
            expires_at = to_naive_utc(expires_at)
            if expires_at <= now:
                raise ValidationError("Expiration must be in the future")

        if requested_code is not None:
            return await self.store.create(
                self._new_record(requested_code, target, owner, now, expires_at)
            )

        for attempt in range(1, self.max_attempts + 1):
            code = self.generator(self.code_length)
            if code in RESERVED_CODES:
                continue
            try:
                return await self.store.create(
                    self._new_record(code, target, owner, now, expires_at)
                )
            except CodeCollisionError:
                logger.warning(f"Generated code collision on {code} (attempt {attempt}/{self.max_attempts})")

        logger.error(
            f"Short code allocation exhausted after {self.max_attempts} attempts; "
            f"code space of length {self.code_length} may be saturated"
        )
        raise AllocationExhaustedError(self.max_attempts)

    @staticmethod
    def _new_record(code: str, target: str, owner: Optional[str], now: datetime,
                    expires_at: Optional[datetime]) -> LinkRecord:
        return LinkRecord(
            code=code,
            target=target,
            owner=owner,
            status=LinkStatus.ACTIVE.value,
            created_at=now,
            expires_at=expires_at,
        )
