"""
Event Pipeline

Moves resolution events from the redirect path to durable storage without
ever making the redirect wait.

Design Decisions:
- submit() is synchronous and non-blocking: it does a put_nowait() on a
  bounded asyncio.Queue and drops the event when the queue is full
- One background worker drains the queue in batches, flushing when the batch
  is full or the flush interval elapses, whichever comes first
- A failed batch write is retried with exponential backoff; after the last
  retry the batch is dropped and the loss is logged as PipelineDegraded
- Nothing in this module raises into the caller: analytics are best-effort
  and every loss is counted

Counters (see stats()):
- submitted: events accepted into the queue
- dropped_full: events rejected because the queue was full
- written: events persisted
- dropped_failed: events lost after exhausted flush retries
- flush_failures: individual failed write attempts
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Optional, Sequence

from shortlink.core.exceptions import PipelineDegradedError
from shortlink.db.interface import EventRecord, EventStore

logger = logging.getLogger(__name__)

Enricher = Callable[[EventRecord], EventRecord]


class EventPipeline(ABC):
    """Interface the redirect path submits events to."""

    @abstractmethod
    def submit(self, event: EventRecord) -> bool:
        """Accept an event without blocking. Returns False if it was dropped."""

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    def stats(self) -> dict[str, int]:
        return {}


class BufferedEventPipeline(EventPipeline):
    """
    Bounded queue + single flush worker.

    Args:
        store: Event store batches are written to
        queue_size: Capacity of the buffer
        batch_size: Flush once this many events are collected
        flush_interval: Flush at least this often (seconds) while events are pending
        max_retries: Retries for a failed write before the batch is dropped
        backoff: Base delay (seconds); retry n waits backoff * 2**n
        enrichers: Functions applied to each event before it is written
    """

    def __init__(
        self,
        store: EventStore,
        queue_size: int = 10000,
        batch_size: int = 100,
        flush_interval: float = 1.0,
        max_retries: int = 3,
        backoff: float = 0.5,
        enrichers: Sequence[Enricher] = (),
    ):
        self.store = store
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.max_retries = max_retries
        self.backoff = backoff
        self.enrichers = list(enrichers)

        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._worker: Optional[asyncio.Task] = None
        self._stopping = False

        self.submitted = 0
        self.dropped_full = 0
        self.written = 0
        self.dropped_failed = 0
        self.flush_failures = 0

    def submit(self, event: EventRecord) -> bool:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped_full += 1
            if self.dropped_full == 1 or self.dropped_full % 1000 == 0:
                logger.warning(f"Event queue full, dropped {self.dropped_full} event(s) so far")
            return False
        self.submitted += 1
        return True

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def stats(self) -> dict[str, int]:
        return {
            "submitted": self.submitted,
            "dropped_full": self.dropped_full,
            "written": self.written,
            "dropped_failed": self.dropped_failed,
            "flush_failures": self.flush_failures,
            "pending": self.pending,
        }

    async def start(self) -> None:
        if self.running:
            return
        self._stopping = False
        self._worker = asyncio.create_task(self._run(), name="event-pipeline-flush")
        logger.info("Event pipeline started")

    async def stop(self) -> None:
        """Stop the worker and flush whatever is still buffered."""
        self._stopping = True
        if self._worker is not None:
            await self._worker
            self._worker = None

        while not self._queue.empty():
            batch = []
            while len(batch) < self.batch_size and not self._queue.empty():
                batch.append(self._queue.get_nowait())
            await self.flush(batch)

        logger.info(f"Event pipeline stopped: {self.stats()}")

    async def _run(self) -> None:
        while not self._stopping:
            batch = await self._collect_batch()
            if batch:
                await self.flush(batch)

    async def _collect_batch(self) -> list[EventRecord]:
        """Wait up to one flush interval for events, returning early on a full batch."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.flush_interval
        batch: list[EventRecord] = []

        while len(batch) < self.batch_size:
            try:
                batch.append(self._queue.get_nowait())
                continue
            except asyncio.QueueEmpty:
                pass

            remaining = deadline - loop.time()
            if remaining <= 0 or self._stopping:
                break
            try:
                batch.append(await asyncio.wait_for(self._queue.get(), timeout=remaining))
            except asyncio.TimeoutError:
                break

        return batch

    async def flush(self, batch: list[EventRecord]) -> bool:
        """
        Write one batch, retrying with exponential backoff.

        Returns True if the batch was written, False if it was dropped.
        """
        if not batch:
            return True

        events = [self._enrich(event) for event in batch]
        for attempt in range(self.max_retries + 1):
            try:
                await self.store.write_batch(events)
                self.written += len(events)
                return True
            except Exception as e:
                self.flush_failures += 1
                if attempt == self.max_retries:
                    break
                delay = self.backoff * (2 ** attempt)
                logger.warning(
                    f"Event flush failed (attempt {attempt + 1}/{self.max_retries + 1}), "
                    f"retrying in {delay:.2f}s: {e}"
                )
                await asyncio.sleep(delay)

        self.dropped_failed += len(events)
        degraded = PipelineDegradedError(len(events), reason="flush retries exhausted")
        logger.error(str(degraded))
        return False

    def _enrich(self, event: EventRecord) -> EventRecord:
        for enricher in self.enrichers:
            try:
                event = enricher(event)
            except Exception as e:
                logger.warning(f"Event enricher {getattr(enricher, '__name__', enricher)} failed: {e}")
        return event


class InMemoryEventPipeline(EventPipeline):
    """
    Pipeline fake that keeps submitted events in a list.

    ``capacity`` emulates a full buffer; ``fail`` makes submit() raise, which
    the redirect path must tolerate.
    """

    def __init__(self, capacity: Optional[int] = None, fail: bool = False):
        self.events: list[EventRecord] = []
        self.capacity = capacity
        self.fail = fail
        self.dropped = 0

    def submit(self, event: EventRecord) -> bool:
        if self.fail:
            raise RuntimeError("event pipeline unavailable")
        if self.capacity is not None and len(self.events) >= self.capacity:
            self.dropped += 1
            return False
        self.events.append(event)
        return True

    def stats(self) -> dict[str, int]:
        return {"submitted": len(self.events), "dropped_full": self.dropped}
