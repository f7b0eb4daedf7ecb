"""
In-Memory Stores

Dict-backed LinkStore and EventStore with the same semantics as the SQL
implementations. Used by unit tests and for running the services without a
database. An asyncio.Lock serializes mutations so check-then-write sequences
stay atomic across tasks.
"""

import asyncio
import dataclasses
from collections import Counter
from datetime import datetime
from typing import Optional, Sequence

from shortlink.core.exceptions import CodeCollisionError, ExpiredError, NotFoundError
from shortlink.core.timeutil import Clock, utc_now
from shortlink.db.interface import (
    DailyCount,
    EventRecord,
    EventStore,
    EventSummary,
    LinkRecord,
    LinkStore,
)
from shortlink.db.models import EventOutcome, LinkStatus


class InMemoryLinkStore(LinkStore):
    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self.records: dict[str, LinkRecord] = {}
        self.retired: set[str] = set()
        self._lock = asyncio.Lock()

    def _lookup(self, code: str, owner: Optional[str]) -> LinkRecord:
        record = self.records.get(code)
        if record is None or (owner is not None and record.owner != owner):
            raise NotFoundError(code)
        return record

    async def create(self, record: LinkRecord, timeout: Optional[float] = None) -> LinkRecord:
        async with self._lock:
            if record.code in self.records or record.code in self.retired:
                raise CodeCollisionError(record.code)
            if record.created_at is None:
                record = dataclasses.replace(record, created_at=self.clock())
            self.records[record.code] = record
            return record

    async def get(self, code: str, timeout: Optional[float] = None) -> LinkRecord:
        record = self.records.get(code)
        if record is None:
            raise NotFoundError(code)
        return record

    async def deactivate(self, code: str, owner: Optional[str] = None,
                         timeout: Optional[float] = None) -> None:
        async with self._lock:
            record = self._lookup(code, owner)
            self.records[code] = dataclasses.replace(record, status=LinkStatus.INACTIVE.value)

    async def reactivate(self, code: str, owner: Optional[str] = None,
                         timeout: Optional[float] = None) -> None:
        async with self._lock:
            record = self._lookup(code, owner)
            if record.is_expired(self.clock()):
                raise ExpiredError(code)
            self.records[code] = dataclasses.replace(record, status=LinkStatus.ACTIVE.value)

    async def set_expiration(self, code: str, expires_at: Optional[datetime],
                             owner: Optional[str] = None,
                             timeout: Optional[float] = None) -> None:
        async with self._lock:
            record = self._lookup(code, owner)
            self.records[code] = dataclasses.replace(record, expires_at=expires_at)

    async def delete(self, code: str, owner: Optional[str] = None,
                     timeout: Optional[float] = None) -> None:
        async with self._lock:
            self._lookup(code, owner)
            del self.records[code]
            self.retired.add(code)

    async def list_by_owner(self, owner: str, timeout: Optional[float] = None) -> list[LinkRecord]:
        owned = [record for record in self.records.values() if record.owner == owner]
        return sorted(owned, key=lambda record: record.created_at, reverse=True)

    async def list_expiring(self, owner: str, until: datetime,
                            timeout: Optional[float] = None) -> list[LinkRecord]:
        now = self.clock()
        expiring = [
            record for record in self.records.values()
            if record.owner == owner and record.expires_at is not None
            and now <= record.expires_at <= until
        ]
        return sorted(expiring, key=lambda record: record.expires_at)

    async def purge_expired(self, before: datetime, timeout: Optional[float] = None) -> int:
        async with self._lock:
            expired = [
                code for code, record in self.records.items()
                if record.expires_at is not None and record.expires_at < before
            ]
            for code in expired:
                del self.records[code]
                self.retired.add(code)
            return len(expired)


class InMemoryEventStore(EventStore):
    """
    List-backed event store.

    ``fail_writes`` makes write_batch raise, which simulates an unavailable
    analytics backend.
    """

    def __init__(self):
        self.events: list[EventRecord] = []
        self.fail_writes = False
        self.write_calls = 0

    async def write_batch(self, events: Sequence[EventRecord]) -> None:
        self.write_calls += 1
        if self.fail_writes:
            raise ConnectionError("event store unavailable")
        self.events.extend(events)

    async def summarize(self, codes: Sequence[str], start: datetime, end: datetime,
                        top: int = 5) -> EventSummary:
        wanted = set(codes)
        selected = [
            event for event in self.events
            if event.short_code in wanted and start <= event.occurred_at < end
        ]
        served = [event for event in selected if event.outcome == EventOutcome.SERVED.value]

        daily: dict = {}
        for event in selected:
            counts = daily.setdefault(event.occurred_at.date(), Counter())
            counts[event.outcome] += 1

        referrers = Counter(event.referrer for event in selected if event.referrer is not None)
        ranked = sorted(referrers.items(), key=lambda item: (-item[1], item[0]))[:top]

        return EventSummary(
            served=len(served),
            blocked=len(selected) - len(served),
            unique_visitors=len({event.client_ip for event in served if event.client_ip is not None}),
            daily=[
                DailyCount(
                    day=day,
                    served=counts[EventOutcome.SERVED.value],
                    blocked=counts[EventOutcome.BLOCKED.value],
                )
                for day, counts in sorted(daily.items())
            ],
            top_referrers=ranked,
        )

    async def count(self, code: str, outcome: Optional[str] = None) -> int:
        return sum(
            1 for event in self.events
            if event.short_code == code and (outcome is None or event.outcome == outcome)
        )
