"""
Redirect Service

This service handles the hot path: short code -> target URL.

Design Decisions:
- Malformed codes are rejected as NotFound without touching storage
- Inactive and expired codes are Gone, which clients can tell apart from
  NotFound (never existed or deleted)
- Analytics are fire-and-forget: an event is handed to the pipeline with a
  non-blocking submit, and nothing the pipeline does can fail or slow down
  the redirect
- Store failures surface as Transient, never as NotFound
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from shortlink.core.exceptions import GoneError, NotFoundError
from shortlink.core.timeutil import Clock, utc_now
from shortlink.core.validators import sanitize_short_code
from shortlink.db.interface import EventRecord, LinkRecord, LinkStore
from shortlink.db.models import EventOutcome, LinkStatus
from shortlink.services.event_pipeline import EventPipeline

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestMetadata:
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    referrer: Optional[str] = None


@dataclass(frozen=True)
class Resolution:
    code: str
    target: str
    created_at: datetime


class RedirectService:
    """
    Resolves short codes to their targets and reports each attempt.

    Args:
        store: Lifecycle store to read records from
        pipeline: Event pipeline that receives resolution events
        clock: Source of "now" for the expiration check
        record_blocked: Also record resolutions of inactive/expired codes
        timeout: Default bound for the store lookup
    """

    def __init__(
        self,
        store: LinkStore,
        pipeline: EventPipeline,
        clock: Clock = utc_now,
        record_blocked: bool = True,
        timeout: Optional[float] = None,
    ):
        self.store = store
        self.pipeline = pipeline
        self.clock = clock
        self.record_blocked = record_blocked
        self.timeout = timeout

    async def resolve(
        self,
        code: str,
        metadata: Optional[RequestMetadata] = None,
        timeout: Optional[float] = None,
    ) -> Resolution:
        """
        Resolve a code to its target.

        Raises:
            NotFoundError: Malformed code, or no record with this code
            GoneError: Record is inactive or expired
            TransientError: Store timed out or is unavailable
        """
        sanitized = sanitize_short_code(code)
        if not sanitized:
            raise NotFoundError(code)

        record = await self.store.get(sanitized, timeout=timeout if timeout is not None else self.timeout)
        now = self.clock()

        if record.is_expired(now):
            self._report(record, EventOutcome.BLOCKED, metadata, now)
            raise GoneError(sanitized, reason="expired")
        if record.status != LinkStatus.ACTIVE.value:
            self._report(record, EventOutcome.BLOCKED, metadata, now)
            raise GoneError(sanitized, reason="inactive")

        self._report(record, EventOutcome.SERVED, metadata, now)
        return Resolution(code=record.code, target=record.target, created_at=record.created_at)

    def _report(self, record: LinkRecord, outcome: EventOutcome,
                metadata: Optional[RequestMetadata], now: datetime) -> None:
        if outcome is EventOutcome.BLOCKED and not self.record_blocked:
            return

        metadata = metadata or RequestMetadata()
        event = EventRecord(
            short_code=record.code,
            link_created_at=record.created_at,
            occurred_at=now,
            outcome=outcome.value,
            client_ip=metadata.client_ip,
            user_agent=metadata.user_agent,
            referrer=metadata.referrer,
        )
        try:
            accepted = self.pipeline.submit(event)
        except Exception as e:
            logger.warning(f"Event submission failed for {record.code}: {e}", exc_info=True)
            return
        if not accepted:
            logger.debug(f"Event for {record.code} was not accepted by the pipeline")
