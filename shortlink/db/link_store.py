"""
SQL Lifecycle Store

LinkStore implementation on SQLAlchemy async sessions. Works on SQLite and
PostgreSQL alike; no dialect-specific statements are needed here.

Design Decisions:
- Uniqueness comes from the database: create() inserts directly and maps
  IntegrityError to CodeCollisionError, so concurrent creators of the same
  code cannot both succeed
- State transitions are single conditional UPDATEs; rowcount 0 means the
  code does not exist (or belongs to another owner)
- reactivate() carries the expiration check in its WHERE clause, so an
  expired record is never flipped back to active
- delete() removes the row and retires the code in one transaction
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from shortlink.core.exceptions import CodeCollisionError, ExpiredError, NotFoundError
from shortlink.core.timeutil import Clock, utc_now
from shortlink.db.helpers import handle_store_errors
from shortlink.db.interface import LinkRecord, LinkStore
from shortlink.db.models import LinkStatus, RetiredCode, ShortLink

logger = logging.getLogger(__name__)


def _to_record(row: ShortLink) -> LinkRecord:
    return LinkRecord(
        code=row.code,
        target=row.target,
        owner=row.owner,
        status=row.status,
        created_at=row.created_at,
        expires_at=row.expires_at,
    )


class SQLLinkStore(LinkStore):
    def __init__(
        self,
        session_maker: async_sessionmaker,
        timeout: float = 2.0,
        retry_attempts: int = 2,
        clock: Clock = utc_now,
    ):
        self.session_maker = session_maker
        self.timeout = timeout
        self.retry_attempts = retry_attempts
        self.clock = clock

    def _scoped(self, stmt, code: str, owner: Optional[str]):
        stmt = stmt.where(ShortLink.code == code)
        if owner is not None:
            stmt = stmt.where(ShortLink.owner == owner)
        return stmt

    @handle_store_errors(retry=False)
    async def create(self, record: LinkRecord) -> LinkRecord:
        created_at = record.created_at or self.clock()
        row = ShortLink(
            code=record.code,
            target=record.target,
            owner=record.owner,
            status=record.status,
            created_at=created_at,
            expires_at=record.expires_at,
        )
        async with self.session_maker() as session:
            session.add(row)
            try:
                await session.flush()
            except IntegrityError:
                await session.rollback()
                raise CodeCollisionError(record.code)

            # A retired code stays taken forever
            retired = await session.execute(
                select(RetiredCode.code).where(RetiredCode.code == record.code)
            )
            if retired.scalar_one_or_none() is not None:
                await session.rollback()
                raise CodeCollisionError(record.code)

            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise CodeCollisionError(record.code)

        logger.info(f"Created short link: {record.code} -> {record.target}")
        return _to_record(row)

    @handle_store_errors()
    async def get(self, code: str) -> LinkRecord:
        async with self.session_maker() as session:
            result = await session.execute(select(ShortLink).where(ShortLink.code == code))
            row = result.scalar_one_or_none()
        if row is None:
            raise NotFoundError(code)
        return _to_record(row)

    @handle_store_errors()
    async def deactivate(self, code: str, owner: Optional[str] = None) -> None:
        stmt = self._scoped(update(ShortLink), code, owner).values(status=LinkStatus.INACTIVE.value)
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            await session.commit()
        if result.rowcount == 0:
            raise NotFoundError(code)
        logger.info(f"Deactivated short link: {code}")

    @handle_store_errors()
    async def reactivate(self, code: str, owner: Optional[str] = None) -> None:
        now = self.clock()
        stmt = (
            self._scoped(update(ShortLink), code, owner)
            .where(or_(ShortLink.expires_at.is_(None), ShortLink.expires_at >= now))
            .values(status=LinkStatus.ACTIVE.value)
        )
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            if result.rowcount == 0:
                await session.rollback()
                exists = await session.execute(self._scoped(select(ShortLink.id), code, owner))
                if exists.scalar_one_or_none() is None:
                    raise NotFoundError(code)
                raise ExpiredError(code)
            await session.commit()
        logger.info(f"Reactivated short link: {code}")

    @handle_store_errors()
    async def set_expiration(self, code: str, expires_at: Optional[datetime],
                             owner: Optional[str] = None) -> None:
        stmt = self._scoped(update(ShortLink), code, owner).values(expires_at=expires_at)
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            await session.commit()
        if result.rowcount == 0:
            raise NotFoundError(code)
        logger.info(f"Set expiration for {code}: {expires_at}")

    @handle_store_errors(retry=False)
    async def delete(self, code: str, owner: Optional[str] = None) -> None:
        async with self.session_maker() as session:
            result = await session.execute(self._scoped(delete(ShortLink), code, owner))
            if result.rowcount == 0:
                await session.rollback()
                raise NotFoundError(code)
            session.add(RetiredCode(code=code, retired_at=self.clock()))
            await session.commit()
        logger.info(f"Deleted short link and retired code: {code}")

    @handle_store_errors()
    async def list_by_owner(self, owner: str) -> list[LinkRecord]:
        stmt = (
            select(ShortLink)
            .where(ShortLink.owner == owner)
            .order_by(ShortLink.created_at.desc())
        )
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return [_to_record(row) for row in rows]

    @handle_store_errors()
    async def list_expiring(self, owner: str, until: datetime) -> list[LinkRecord]:
        stmt = (
            select(ShortLink)
            .where(
                ShortLink.owner == owner,
                ShortLink.expires_at.is_not(None),
                ShortLink.expires_at >= self.clock(),
                ShortLink.expires_at <= until,
            )
            .order_by(ShortLink.expires_at)
        )
        async with self.session_maker() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return [_to_record(row) for row in rows]

    @handle_store_errors(retry=False)
    async def purge_expired(self, before: datetime) -> int:
        async with self.session_maker() as session:
            result = await session.execute(
                select(ShortLink.code).where(
                    ShortLink.expires_at.is_not(None),
                    ShortLink.expires_at < before,
                )
            )
            codes = list(result.scalars().all())
            if not codes:
                return 0

            await session.execute(delete(ShortLink).where(ShortLink.code.in_(codes)))
            retired_at = self.clock()
            session.add_all([RetiredCode(code=code, retired_at=retired_at) for code in codes])
            await session.commit()

        logger.info(f"Purged {len(codes)} expired short link(s) expiring before {before}: {codes}")
        return len(codes)
