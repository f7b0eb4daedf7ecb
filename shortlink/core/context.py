"""
Application Context

Holds every long-lived object the service needs: engine, session factory,
stores, event pipeline, rate limiters and services.

Design:
- Built once per application by create_app() and stored on app.state, so
  tests can build as many independent contexts as they like
- startup() creates missing tables (when AUTO_CREATE_SCHEMA is set) and
  starts the event pipeline's flush worker
- shutdown() drains the pipeline before the engine is disposed, so buffered
  events are written on a clean stop
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from shortlink.core.setting import Settings
from shortlink.core.timeutil import Clock, utc_now
from shortlink.db.adapters import DatabaseAdapter
from shortlink.db.event_store import SQLEventStore
from shortlink.db.interface import EventStore, LinkStore
from shortlink.db.link_store import SQLLinkStore
from shortlink.db.session import build_engine, build_session_maker, create_schema
from shortlink.services.allocator import IdentifierAllocator
from shortlink.services.event_pipeline import BufferedEventPipeline, EventPipeline
from shortlink.services.link_service import LinkService
from shortlink.services.rate_limiter import RateLimiter, RateLimitPolicy
from shortlink.services.recovery_service import RecoveryService, TokenDelivery
from shortlink.services.redirect_service import RedirectService
from shortlink.services.stats_service import StatsService

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    adapter: DatabaseAdapter
    engine: AsyncEngine
    session_maker: async_sessionmaker
    link_store: LinkStore
    event_store: EventStore
    pipeline: EventPipeline
    limiters: dict[str, RateLimiter]
    allocator: IdentifierAllocator
    redirects: RedirectService
    links: LinkService
    stats: StatsService
    recovery: RecoveryService

    @classmethod
    def build(
        cls,
        settings: Settings,
        clock: Clock = utc_now,
        delivery: Optional[TokenDelivery] = None,
    ) -> "AppContext":
        adapter, engine = build_engine(settings.DATABASE_URL)
        session_maker = build_session_maker(engine)

        link_store = SQLLinkStore(
            session_maker,
            timeout=settings.STORE_TIMEOUT_SECONDS,
            retry_attempts=settings.STORE_RETRY_ATTEMPTS,
            clock=clock,
        )
        event_store = SQLEventStore(session_maker)
        pipeline = BufferedEventPipeline(
            event_store,
            queue_size=settings.EVENT_QUEUE_SIZE,
            batch_size=settings.EVENT_BATCH_SIZE,
            flush_interval=settings.EVENT_FLUSH_INTERVAL,
            max_retries=settings.EVENT_FLUSH_MAX_RETRIES,
            backoff=settings.EVENT_FLUSH_BACKOFF,
        )
        limiters = {
            scope: RateLimiter(
                scope,
                RateLimitPolicy.from_settings(settings, scope),
                session_maker,
                adapter,
                clock=clock,
                timeout=settings.STORE_TIMEOUT_SECONDS,
            )
            for scope in ("create", "recovery", "manage")
        }
        allocator = IdentifierAllocator(
            link_store,
            code_length=settings.SHORT_CODE_LENGTH,
            max_attempts=settings.SHORT_CODE_MAX_ATTEMPTS,
            clock=clock,
        )

        return cls(
            settings=settings,
            adapter=adapter,
            engine=engine,
            session_maker=session_maker,
            link_store=link_store,
            event_store=event_store,
            pipeline=pipeline,
            limiters=limiters,
            allocator=allocator,
            redirects=RedirectService(
                link_store,
                pipeline,
                clock=clock,
                record_blocked=settings.RECORD_BLOCKED_RESOLUTIONS,
            ),
            links=LinkService(link_store, allocator, limiters["create"], limiters["manage"], clock=clock),
            stats=StatsService(link_store, event_store, clock=clock),
            recovery=RecoveryService(
                session_maker,
                limiters["recovery"],
                delivery=delivery,
                token_ttl=timedelta(seconds=settings.RECOVERY_TOKEN_TTL_SECONDS),
                clock=clock,
                timeout=settings.STORE_TIMEOUT_SECONDS,
            ),
        )

    async def startup(self) -> None:
        if self.settings.AUTO_CREATE_SCHEMA:
            await create_schema(self.engine)
        await self.pipeline.start()
        logger.info(
            f"Service {self.settings.SERVICE_NAME or 'shortlink'} started "
            f"({self.adapter.get_dialect_name()} backend)"
        )

    async def shutdown(self) -> None:
        await self.pipeline.stop()
        await self.engine.dispose()
        logger.info("Service stopped")
