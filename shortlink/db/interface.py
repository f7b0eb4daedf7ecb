"""
Storage Capability Interfaces

This module defines the contracts every storage backend must satisfy:

- LinkStore: durable mapping of short code -> link record with lifecycle
  transitions (deactivate, reactivate, expire, delete)
- EventStore: append-only resolution events plus time-windowed summaries

Each interface has a SQL implementation (link_store.py, event_store.py) and
an in-memory implementation (memory.py) used by tests. Records crossing this
boundary are plain dataclasses, never ORM rows.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Optional, Sequence

from shortlink.core.exceptions import ShortLinkError
from shortlink.core.validators import validate_short_code
from shortlink.db.models import EventOutcome, LinkStatus


@dataclass(frozen=True)
class LinkRecord:
    """An identifier record as seen by the services."""

    code: str
    target: str
    owner: Optional[str] = None
    status: str = LinkStatus.ACTIVE.value
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    def state(self, now: datetime) -> str:
        """Lifecycle state with expiration derived at read time."""
        if self.is_expired(now):
            return "expired"
        return self.status


@dataclass(frozen=True)
class EventRecord:
    """
    One resolution attempt.

    (short_code, link_created_at) is a weak reference to the link that
    existed when the event occurred.
    """

    short_code: str
    link_created_at: datetime
    occurred_at: datetime
    outcome: str = EventOutcome.SERVED.value
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    country_code: Optional[str] = None


@dataclass(frozen=True)
class DailyCount:
    day: date
    served: int = 0
    blocked: int = 0


@dataclass(frozen=True)
class EventSummary:
    """Aggregate counts over a set of codes and a time range."""

    served: int = 0
    blocked: int = 0
    unique_visitors: int = 0
    daily: list[DailyCount] = field(default_factory=list)
    top_referrers: list[tuple[str, int]] = field(default_factory=list)


class BulkOperation(str, Enum):
    DEACTIVATE = "deactivate"
    REACTIVATE = "reactivate"
    DELETE = "delete"
    SET_EXPIRATION = "set_expiration"


@dataclass(frozen=True)
class BulkItemResult:
    """
    Outcome for one item of a bulk request.

    ``code`` is None for a failed auto-generated creation; ``record`` is set
    when the item created a link.
    """

    code: Optional[str]
    success: bool
    error: Optional[str] = None
    message: Optional[str] = None
    record: Optional[LinkRecord] = None


class LinkStore(ABC):
    """
    Lifecycle store contract.

    Mutations accept an optional ``owner``: when given, a record owned by
    anyone else is reported as NotFound. ``timeout`` bounds a single call.
    """

    @abstractmethod
    async def create(self, record: LinkRecord, timeout: Optional[float] = None) -> LinkRecord:
        """
        Insert a new record.

        Raises:
            CodeCollisionError: If the code is in use (any status) or retired
        """

    @abstractmethod
    async def get(self, code: str, timeout: Optional[float] = None) -> LinkRecord:
        """
        Return the latest committed record for a code.

        Raises:
            NotFoundError: If no record has this code
        """

    @abstractmethod
    async def deactivate(self, code: str, owner: Optional[str] = None,
                         timeout: Optional[float] = None) -> None:
        """Set status to inactive. Idempotent."""

    @abstractmethod
    async def reactivate(self, code: str, owner: Optional[str] = None,
                         timeout: Optional[float] = None) -> None:
        """
        Set status to active. Never touches expires_at.

        Raises:
            ExpiredError: If the record's expiration has passed
        """

    @abstractmethod
    async def set_expiration(self, code: str, expires_at: Optional[datetime],
                             owner: Optional[str] = None,
                             timeout: Optional[float] = None) -> None:
        """Set or clear expires_at."""

    @abstractmethod
    async def delete(self, code: str, owner: Optional[str] = None,
                     timeout: Optional[float] = None) -> None:
        """Hard delete. The code is retired and never reassigned."""

    @abstractmethod
    async def list_by_owner(self, owner: str, timeout: Optional[float] = None) -> list[LinkRecord]:
        """All records owned by a subject, newest first."""

    @abstractmethod
    async def list_expiring(self, owner: str, until: datetime,
                            timeout: Optional[float] = None) -> list[LinkRecord]:
        """
        Owned records that are still live but expire no later than ``until``,
        soonest first.
        """

    @abstractmethod
    async def purge_expired(self, before: datetime, timeout: Optional[float] = None) -> int:
        """Hard delete every record already expired at ``before`` (expires_at < before)."""

    async def bulk_update(
        self,
        codes: Sequence[str],
        operation: BulkOperation,
        expires_at: Optional[datetime] = None,
        owner: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> list[BulkItemResult]:
        """
        Apply one operation to many codes.

        Partial failure is expected: the result list has one entry per input
        code, in input order, each succeeding or failing independently.
        """
        results = []
        for code in codes:
            try:
                validate_short_code(code)
                if operation is BulkOperation.DEACTIVATE:
                    await self.deactivate(code, owner=owner, timeout=timeout)
                elif operation is BulkOperation.REACTIVATE:
                    await self.reactivate(code, owner=owner, timeout=timeout)
                elif operation is BulkOperation.DELETE:
                    await self.delete(code, owner=owner, timeout=timeout)
                elif operation is BulkOperation.SET_EXPIRATION:
                    await self.set_expiration(code, expires_at, owner=owner, timeout=timeout)
                else:
                    raise ValueError(f"Unsupported bulk operation: {operation}")
                results.append(BulkItemResult(code=code, success=True))
            except ShortLinkError as e:
                results.append(BulkItemResult(code=code, success=False, error=e.kind, message=e.message))
        return results


class EventStore(ABC):
    """Append-only storage for resolution events."""

    @abstractmethod
    async def write_batch(self, events: Sequence[EventRecord]) -> None:
        """Persist a batch of events in one write."""

    @abstractmethod
    async def summarize(self, codes: Sequence[str], start: datetime, end: datetime,
                        top: int = 5) -> EventSummary:
        """Aggregate events for ``codes`` with start <= occurred_at < end."""

    @abstractmethod
    async def count(self, code: str, outcome: Optional[str] = None) -> int:
        """Total events recorded for a code, optionally for one outcome."""
