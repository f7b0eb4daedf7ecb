"""
SQL Event Store

Append-only storage for resolution events with aggregation queries.

Performance:
- write_batch() inserts a whole batch in one transaction
- summarize() runs grouped queries on (short_code, occurred_at), which is
  covered by the composite index on resolution_events
"""

import logging
from datetime import date, datetime
from typing import Optional, Sequence

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from shortlink.db.interface import DailyCount, EventRecord, EventStore, EventSummary
from shortlink.db.models import EventOutcome, ResolutionEvent

logger = logging.getLogger(__name__)


def _as_date(value) -> date:
    # SQLite returns 'YYYY-MM-DD' strings for date(), PostgreSQL returns dates
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class SQLEventStore(EventStore):
    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def write_batch(self, events: Sequence[EventRecord]) -> None:
        if not events:
            return
        rows = [
            ResolutionEvent(
                short_code=event.short_code,
                link_created_at=event.link_created_at,
                occurred_at=event.occurred_at,
                outcome=event.outcome,
                client_ip=event.client_ip,
                user_agent=event.user_agent,
                referrer=event.referrer,
                country_code=event.country_code,
            )
            for event in events
        ]
        async with self.session_maker() as session:
            session.add_all(rows)
            await session.commit()
        logger.debug(f"Wrote {len(rows)} resolution event(s)")

    async def summarize(self, codes: Sequence[str], start: datetime, end: datetime,
                        top: int = 5) -> EventSummary:
        if not codes:
            return EventSummary()

        in_range = (
            ResolutionEvent.short_code.in_(list(codes)),
            ResolutionEvent.occurred_at >= start,
            ResolutionEvent.occurred_at < end,
        )
        day = func.date(ResolutionEvent.occurred_at)

        async with self.session_maker() as session:
            totals = await session.execute(
                select(ResolutionEvent.outcome, func.count())
                .where(*in_range)
                .group_by(ResolutionEvent.outcome)
            )
            by_outcome = {outcome: count for outcome, count in totals.all()}

            unique = await session.execute(
                select(func.count(distinct(ResolutionEvent.client_ip)))
                .where(*in_range, ResolutionEvent.outcome == EventOutcome.SERVED.value)
            )
            unique_visitors = unique.scalar_one() or 0

            daily_rows = await session.execute(
                select(day, ResolutionEvent.outcome, func.count())
                .where(*in_range)
                .group_by(day, ResolutionEvent.outcome)
                .order_by(day)
            )
            daily: dict[date, dict[str, int]] = {}
            for bucket, outcome, count in daily_rows.all():
                daily.setdefault(_as_date(bucket), {})[outcome] = count

            referrer_count = func.count().label("hits")
            referrers = await session.execute(
                select(ResolutionEvent.referrer, referrer_count)
                .where(*in_range, ResolutionEvent.referrer.is_not(None))
                .group_by(ResolutionEvent.referrer)
                .order_by(referrer_count.desc(), ResolutionEvent.referrer)
                .limit(top)
            )
            top_referrers = [(referrer, count) for referrer, count in referrers.all()]

        return EventSummary(
            served=by_outcome.get(EventOutcome.SERVED.value, 0),
            blocked=by_outcome.get(EventOutcome.BLOCKED.value, 0),
            unique_visitors=unique_visitors,
            daily=[
                DailyCount(
                    day=bucket,
                    served=counts.get(EventOutcome.SERVED.value, 0),
                    blocked=counts.get(EventOutcome.BLOCKED.value, 0),
                )
                for bucket, counts in sorted(daily.items())
            ],
            top_referrers=top_referrers,
        )

    async def count(self, code: str, outcome: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(ResolutionEvent).where(ResolutionEvent.short_code == code)
        if outcome is not None:
            stmt = stmt.where(ResolutionEvent.outcome == outcome)
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            return result.scalar_one()
