"""
Database Models for the Short-Link Service

This module defines the SQLModel database schemas for:
- ShortLink: the identifier record (code -> target, lifecycle state)
- RetiredCode: codes freed by a hard delete, kept so they are never reassigned
- ResolutionEvent: append-only analytics events, one per resolution attempt
- RateLimitCounter: one fixed-window counter per (dimension, key)
- RecoveryToken: hashed credential-recovery tokens

Design Decisions:
- ResolutionEvent references its link by (short_code, link_created_at) only,
  without a foreign key, so hard deletes leave a dangling weak reference
- Unique index on short_code is the allocation uniqueness constraint
- Expiration is derived at read time from expires_at, never stored as a status
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlmodel import Field, SQLModel

from shortlink.core.timeutil import utc_now


class LinkStatus(str, Enum):
    """Stored lifecycle status. Expired is derived, not stored."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class EventOutcome(str, Enum):
    """Whether a resolution was served or blocked (inactive/expired)."""
    SERVED = "served"
    BLOCKED = "blocked"


class ShortLink(SQLModel, table=True):
    """
    Main table storing short code mappings.

    Fields:
    - code: Unique short code (3-50 chars), immutable
    - target: The destination URL, immutable
    - owner: Owning subject, NULL for anonymous links
    - status: active / inactive
    - created_at: Timestamp when the link was created
    - expires_at: Optional expiration; NULL means never expires

    Indexes:
    - code: Unique index for fast lookups (most critical path)
    - owner: For per-owner listing and aggregation
    - expires_at: For purging expired links
    """
    __tablename__ = "short_links"

    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(
        sa_column=Column(String(50), nullable=False, unique=True, index=True),
        max_length=50
    )
    target: str = Field(sa_column=Column(Text, nullable=False))
    owner: Optional[str] = Field(
        default=None,
        sa_column=Column(String(255), nullable=True, index=True)
    )
    status: str = Field(
        default=LinkStatus.ACTIVE.value,
        sa_column=Column(String(20), nullable=False, default=LinkStatus.ACTIVE.value, index=True)
    )
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(), nullable=False, index=True)
    )
    expires_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(), nullable=True, index=True)
    )


class RetiredCode(SQLModel, table=True):
    """Codes released by a hard delete. Allocation treats them as taken."""
    __tablename__ = "retired_codes"

    code: str = Field(sa_column=Column(String(50), primary_key=True))
    retired_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(), nullable=False)
    )


class ResolutionEvent(SQLModel, table=True):
    """
    Resolution event table for analytics.

    One row per resolution attempt against an existing identifier. Rows are
    immutable and append-only; retention is an external policy.

    Design Rationale:
    - Separate table allows independent scaling (can be moved to time-series DB)
    - (short_code, link_created_at) is a weak reference, not a foreign key
    - outcome separates served traffic from blocked traffic
    """
    __tablename__ = "resolution_events"
    __table_args__ = (
        Index("ix_resolution_events_code_occurred", "short_code", "occurred_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    short_code: str = Field(sa_column=Column(String(50), nullable=False, index=True))
    link_created_at: datetime = Field(sa_column=Column(DateTime(), nullable=False))
    occurred_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(), nullable=False, index=True)
    )
    outcome: str = Field(
        default=EventOutcome.SERVED.value,
        sa_column=Column(String(10), nullable=False)
    )
    client_ip: Optional[str] = Field(
        default=None,
        sa_column=Column(String(45), nullable=True)  # IPv6 max length
    )
    user_agent: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    referrer: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    country_code: Optional[str] = Field(
        default=None,
        sa_column=Column(String(2), nullable=True)
    )


class RateLimitCounter(SQLModel, table=True):
    """
    Fixed-window rate limit counter.

    One row per (dimension, key). The window opens on the first attempt and
    the row is reset lazily by the first attempt after window_end.
    """
    __tablename__ = "rate_limit_counters"

    dimension: str = Field(sa_column=Column(String(20), primary_key=True))
    key: str = Field(sa_column=Column(String(255), primary_key=True))
    count: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    window_start: datetime = Field(sa_column=Column(DateTime(), nullable=False))
    window_end: datetime = Field(sa_column=Column(DateTime(), nullable=False, index=True))


class RecoveryToken(SQLModel, table=True):
    """Credential-recovery tokens. Only the sha256 of the token is stored."""
    __tablename__ = "recovery_tokens"

    id: Optional[int] = Field(default=None, primary_key=True)
    subject: str = Field(sa_column=Column(String(255), nullable=False, index=True))
    token_hash: str = Field(sa_column=Column(String(64), nullable=False, unique=True))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(), nullable=False)
    )
    expires_at: datetime = Field(sa_column=Column(DateTime(), nullable=False, index=True))
    used_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(), nullable=True))
