"""
Statistics Service

Read-only aggregation over recorded resolution events.

Design Decisions:
- Counts are best-effort: the event pipeline may drop events under load or
  during outages, so totals can undercount but never overcount
- Access control: stats for an owned link are visible only to its owner;
  anonymous links are public. Owner-wide stats require caller == owner
- Owner aggregates are computed over the owner's current links, so events of
  hard-deleted links (unknown identifiers) are excluded
- Periods are rolling windows ending now: day = 1d, week = 7d, month = 30d,
  or an explicit [start, end) range
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from shortlink.core.exceptions import PermissionDeniedError, ValidationError
from shortlink.core.timeutil import Clock, to_naive_utc, utc_now
from shortlink.db.interface import DailyCount, EventStore, LinkStore


class Period(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    CUSTOM = "custom"


PERIOD_LENGTHS = {
    Period.DAY: timedelta(days=1),
    Period.WEEK: timedelta(days=7),
    Period.MONTH: timedelta(days=30),
}


@dataclass(frozen=True)
class LinkStats:
    subject: str
    period: Period
    start: datetime
    end: datetime
    served: int = 0
    blocked: int = 0
    unique_visitors: int = 0
    daily: list[DailyCount] = field(default_factory=list)
    top_referrers: list[tuple[str, int]] = field(default_factory=list)
    links: int = 1


def resolve_period(
    period: Period,
    now: datetime,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """Turn a period (or explicit range) into a [start, end) window."""
    if period is Period.CUSTOM:
        if start is None or end is None:
            raise ValidationError("Custom period requires both start and end")
        start, end = to_naive_utc(start), to_naive_utc(end)
        if start >= end:
            raise ValidationError("start must be before end")
        return start, end
    return now - PERIOD_LENGTHS[period], now


class StatsService:
    def __init__(self, link_store: LinkStore, event_store: EventStore, clock: Clock = utc_now):
        self.link_store = link_store
        self.event_store = event_store
        self.clock = clock

    async def stats(
        self,
        code: str,
        period: Period = Period.DAY,
        caller: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> LinkStats:
        """
        Stats for one link.

        Raises:
            NotFoundError: Unknown code
            PermissionDeniedError: Link is owned by someone other than caller
        """
        record = await self.link_store.get(code)
        if record.owner is not None and caller != record.owner:
            raise PermissionDeniedError(f"Not allowed to read stats for '{code}'")

        window_start, window_end = resolve_period(period, self.clock(), start, end)
        summary = await self.event_store.summarize([record.code], window_start, window_end)
        return LinkStats(
            subject=record.code,
            period=period,
            start=window_start,
            end=window_end,
            served=summary.served,
            blocked=summary.blocked,
            unique_visitors=summary.unique_visitors,
            daily=summary.daily,
            top_referrers=summary.top_referrers,
        )

    async def owner_stats(
        self,
        owner: str,
        period: Period = Period.DAY,
        caller: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> LinkStats:
        """
        Stats across every link an owner currently has.

        Raises:
            PermissionDeniedError: caller is not the owner
        """
        if caller is None or caller != owner:
            raise PermissionDeniedError("Owner statistics are only available to the owner")

        window_start, window_end = resolve_period(period, self.clock(), start, end)
        records = await self.link_store.list_by_owner(owner)
        summary = await self.event_store.summarize(
            [record.code for record in records], window_start, window_end
        )
        return LinkStats(
            subject=owner,
            period=period,
            start=window_start,
            end=window_end,
            served=summary.served,
            blocked=summary.blocked,
            unique_visitors=summary.unique_visitors,
            daily=summary.daily,
            top_referrers=summary.top_referrers,
            links=len(records),
        )
