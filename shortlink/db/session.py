"""
Database Session Management

This module builds the async engine and session factory from settings.
Nothing here is created at import time: the application context calls
these functions once at process start and hands the results to each store.
"""

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession as SQLModelAsyncSession

from shortlink.db import models  # noqa: F401  registers tables on SQLModel.metadata
from shortlink.db.adapters import DatabaseAdapter, get_database_adapter


def build_engine(database_url: str) -> tuple[DatabaseAdapter, AsyncEngine]:
    """Pick the adapter for ``database_url`` and create the engine with it."""
    db_adapter = get_database_adapter(database_url)
    return db_adapter, db_adapter.create_engine(database_url)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker:
    """
    Create the async session factory.

    Sessions are used as ``async with session_maker() as session:`` and must
    commit explicitly; leaving the block without a commit rolls back.
    """
    return async_sessionmaker(
        engine,
        class_=SQLModelAsyncSession,
        expire_on_commit=False,  # Prevents SQLAlchemy from expiring objects after commit
        autoflush=False,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create any missing tables. Production deployments use Alembic instead."""
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
