"""
API Request and Response Schemas

This module defines all Pydantic models for API requests and responses.
Separated from endpoints to keep concerns separated and enable reuse.

Design Principles:
- Request models: Define input shape only; URL and short code rules live in
  core/validators.py so the services enforce them for every caller
- Response models: Define output structure
- Separation: Can be imported by other modules (services, tests, etc.)
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field

from shortlink.db.interface import BulkItemResult, BulkOperation, LinkRecord
from shortlink.services.stats_service import LinkStats, Period


class ShortenRequest(BaseModel):
    """Request model for URL shortening endpoint."""
    url: str = Field(..., description="The long URL to shorten (http or https)")
    custom_code: Optional[str] = Field(
        default=None,
        description="Optional custom short code, 3-50 characters of [A-Za-z0-9_-]"
    )
    expires_at: Optional[datetime] = Field(default=None, description="Optional expiration time")


class LinkResponse(BaseModel):
    """A link and its lifecycle state."""
    short_code: str = Field(..., description="The short code")
    short_url: str = Field(..., description="The complete short URL")
    original_url: str = Field(..., description="The target URL")
    status: str = Field(..., description="active, inactive or expired")
    created_at: datetime
    expires_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: LinkRecord, base_url: str, now: datetime) -> "LinkResponse":
        return cls(
            short_code=record.code,
            short_url=f"{base_url}/{record.code}",
            original_url=record.target,
            status=record.state(now),
            created_at=record.created_at,
            expires_at=record.expires_at,
        )


class BulkShortenRequest(BaseModel):
    items: list[ShortenRequest] = Field(..., min_length=1, max_length=100)


class LinkListResponse(BaseModel):
    links: list[LinkResponse]
    total_count: int
    expiring_within_days: Optional[int] = None


class ExpirationRequest(BaseModel):
    expires_at: Optional[datetime] = Field(default=None, description="New expiration; null clears it")


class BulkRequest(BaseModel):
    codes: list[str] = Field(..., min_length=1, max_length=1000)
    operation: BulkOperation
    expires_at: Optional[datetime] = Field(default=None, description="Used by set_expiration")


class BulkItemResponse(BaseModel):
    short_code: Optional[str] = None
    success: bool
    error: Optional[str] = None
    message: Optional[str] = None
    link: Optional[LinkResponse] = Field(default=None, description="The created link, for bulk shorten")


class BulkResponse(BaseModel):
    total_processed: int
    successful: int
    failed: int
    results: list[BulkItemResponse]

    @classmethod
    def from_results(cls, results: list[BulkItemResult], base_url: str, now: datetime) -> "BulkResponse":
        items = [
            BulkItemResponse(
                short_code=r.code,
                success=r.success,
                error=r.error,
                message=r.message,
                link=LinkResponse.from_record(r.record, base_url, now) if r.record is not None else None,
            )
            for r in results
        ]
        successful = sum(1 for item in items if item.success)
        return cls(
            total_processed=len(items),
            successful=successful,
            failed=len(items) - successful,
            results=items,
        )


class DailyCountResponse(BaseModel):
    day: date
    served: int
    blocked: int


class ReferrerCount(BaseModel):
    referrer: str
    count: int


class StatsResponse(BaseModel):
    """
    Response model for statistics endpoints.

    Counts are best-effort: events may be dropped under load, so totals can
    undercount.
    """
    subject: str = Field(..., description="Short code, or owner for owner-wide stats")
    period: Period
    start: datetime
    end: datetime
    served: int
    blocked: int
    unique_visitors: int
    links: int = 1
    daily: list[DailyCountResponse]
    top_referrers: list[ReferrerCount]

    @classmethod
    def from_stats(cls, stats: LinkStats) -> "StatsResponse":
        return cls(
            subject=stats.subject,
            period=stats.period,
            start=stats.start,
            end=stats.end,
            served=stats.served,
            blocked=stats.blocked,
            unique_visitors=stats.unique_visitors,
            links=stats.links,
            daily=[DailyCountResponse(day=d.day, served=d.served, blocked=d.blocked) for d in stats.daily],
            top_referrers=[ReferrerCount(referrer=r, count=c) for r, c in stats.top_referrers],
        )


class RecoveryRequest(BaseModel):
    subject: str = Field(..., min_length=1, max_length=255, description="Account identifier, e.g. e-mail")


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Stable error kind")
    message: str
    retry_after: Optional[int] = None
