"""
Multi-Dimension Rate Limiter

Fixed-window counters keyed by (dimension, key), stored in the database so
every service instance shares them.

Design Decisions:
- All dimensions of one request are checked and incremented inside a single
  transaction. If any dimension is out of headroom the transaction is rolled
  back, so a denied request consumes nothing on any dimension
- Each increment is one conditional upsert (INSERT ... ON CONFLICT DO UPDATE
  ... WHERE): the row resets when its window has closed, otherwise increments
  only while count < ceiling. Zero affected rows means "denied"; there is no
  read-then-write gap for concurrent requests to slip through
- Cooldown is a dimension with ceiling 1 over cooldown_duration
- Keys are namespaced by scope ("create", "recovery", "manage") so limiters
  with different policies share one table without interfering
- retry_after on denial is the earliest window_end among the denying
  dimensions
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Mapping, Optional

from sqlalchemy import and_, case, delete, or_, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from shortlink.core.exceptions import RateLimitedError
from shortlink.core.setting import Settings
from shortlink.core.timeutil import Clock, utc_now
from shortlink.db.adapters import DatabaseAdapter
from shortlink.db.helpers import handle_store_errors
from shortlink.db.models import RateLimitCounter

logger = logging.getLogger(__name__)


class Dimension(str, Enum):
    PER_IP = "per_ip"
    PER_SUBJECT = "per_subject"
    COOLDOWN = "cooldown"


@dataclass(frozen=True)
class RateLimitPolicy:
    """
    Ceilings and windows for one limiter.

    A ceiling of 0 or a cooldown of zero length disables that dimension.
    """

    per_ip_ceiling: int
    per_subject_ceiling: int
    window_duration: timedelta
    cooldown_duration: timedelta = timedelta(0)

    def limit_for(self, dimension: Dimension) -> Optional[tuple[int, timedelta]]:
        if dimension is Dimension.PER_IP:
            limit = (self.per_ip_ceiling, self.window_duration)
        elif dimension is Dimension.PER_SUBJECT:
            limit = (self.per_subject_ceiling, self.window_duration)
        else:
            limit = (1, self.cooldown_duration)

        ceiling, window = limit
        if ceiling <= 0 or window <= timedelta(0):
            return None
        return limit

    @classmethod
    def from_settings(cls, settings: Settings, scope: str) -> "RateLimitPolicy":
        """Read <SCOPE>_PER_IP_CEILING etc. from settings."""
        prefix = scope.upper()
        return cls(
            per_ip_ceiling=getattr(settings, f"{prefix}_PER_IP_CEILING"),
            per_subject_ceiling=getattr(settings, f"{prefix}_PER_SUBJECT_CEILING"),
            window_duration=timedelta(seconds=getattr(settings, f"{prefix}_WINDOW_SECONDS")),
            cooldown_duration=timedelta(seconds=getattr(settings, f"{prefix}_COOLDOWN_SECONDS")),
        )


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: float = 0.0
    denied: tuple[Dimension, ...] = ()


class RateLimiter:
    """
    Rate limiter for one scope.

    Args:
        scope: Namespace for counter keys (e.g. "recovery")
        policy: Ceilings and windows
        session_maker: Async session factory
        adapter: Database adapter providing the dialect upsert
        clock: Source of "now"
        timeout: Bound for one check_and_increment round-trip
    """

    def __init__(
        self,
        scope: str,
        policy: RateLimitPolicy,
        session_maker: async_sessionmaker,
        adapter: DatabaseAdapter,
        clock: Clock = utc_now,
        timeout: float = 2.0,
    ):
        self.scope = scope
        self.policy = policy
        self.session_maker = session_maker
        self.adapter = adapter
        self.clock = clock
        self.timeout = timeout
        self.retry_attempts = 0

    def _key(self, key: str) -> str:
        return f"{self.scope}:{key}"

    def _increment_statement(self, dimension: Dimension, key: str, ceiling: int,
                             window: timedelta, now: datetime):
        table = RateLimitCounter.__table__
        window_closed = table.c.window_end <= now

        stmt = self.adapter.insert(table).values(
            dimension=dimension.value,
            key=key,
            count=1,
            window_start=now,
            window_end=now + window,
        )
        return stmt.on_conflict_do_update(
            index_elements=[table.c.dimension, table.c.key],
            set_={
                "count": case((window_closed, 1), else_=table.c.count + 1),
                "window_start": case((window_closed, now), else_=table.c.window_start),
                "window_end": case((window_closed, now + window), else_=table.c.window_end),
            },
            where=or_(window_closed, table.c.count < ceiling),
        )

    @handle_store_errors(retry=False)
    async def check_and_increment(self, dimensions: Mapping[Dimension, Optional[str]]) -> RateLimitDecision:
        """
        Atomically check every dimension and consume one unit on each.

        Dimensions whose key is None or whose policy is disabled are skipped.
        """
        now = self.clock()
        limits = []
        for dimension, key in dimensions.items():
            limit = self.policy.limit_for(dimension)
            if key and limit is not None:
                limits.append((dimension, self._key(key), *limit))

        if not limits:
            return RateLimitDecision(allowed=True)

        denied: list[tuple[Dimension, str]] = []
        async with self.session_maker() as session:
            for dimension, key, ceiling, window in limits:
                result = await session.execute(
                    self._increment_statement(dimension, key, ceiling, window, now)
                )
                if result.rowcount == 0:
                    denied.append((dimension, key))

            if not denied:
                await session.commit()
                return RateLimitDecision(allowed=True)

            windows = await session.execute(
                select(RateLimitCounter.window_end).where(
                    or_(*[
                        and_(RateLimitCounter.dimension == dimension.value, RateLimitCounter.key == key)
                        for dimension, key in denied
                    ])
                )
            )
            retry_after = min(
                (max((window_end - now).total_seconds(), 0.0) for window_end in windows.scalars().all()),
                default=0.0,
            )
            await session.rollback()

        denied_dimensions = tuple(dimension for dimension, _ in denied)
        logger.warning(
            f"Rate limit exceeded in scope '{self.scope}' on "
            f"{[d.value for d in denied_dimensions]}, retry after {retry_after:.0f}s"
        )
        return RateLimitDecision(allowed=False, retry_after=retry_after, denied=denied_dimensions)

    async def enforce(self, dimensions: Mapping[Dimension, Optional[str]]) -> None:
        """
        Raises:
            RateLimitedError: If any dimension is out of headroom
        """
        decision = await self.check_and_increment(dimensions)
        if not decision.allowed:
            raise RateLimitedError(decision.retry_after, dimensions=[d.value for d in decision.denied])

    async def purge_expired(self) -> int:
        """Delete counters whose window has closed."""
        now = self.clock()
        async with self.session_maker() as session:
            result = await session.execute(
                delete(RateLimitCounter).where(
                    and_(
                        RateLimitCounter.key.startswith(f"{self.scope}:"),
                        RateLimitCounter.window_end <= now,
                    )
                )
            )
            await session.commit()
        return result.rowcount
