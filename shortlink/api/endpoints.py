"""
FastAPI Endpoints for the Short-Link Service

This module defines all REST API endpoints with minimal logic.
Endpoints only handle:
- Request parsing (Pydantic models)
- Edge rate limiting (slowapi) on public read paths
- Extracting caller identity and client metadata
- Delegating to the service layer

Errors are not handled here: services raise ShortLinkError subclasses and a
single exception handler in main.py maps them to JSON responses.

Design Principles:
- Thin endpoints: Only validation and rate limiting
- Service layer: All business logic
- Caller identity comes from the X-Subject-Id header; authenticating it is
  the job of whatever sits in front of this service
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response, status
from fastapi.responses import RedirectResponse

from shortlink.api.schemas import (
    BulkRequest,
    BulkResponse,
    BulkShortenRequest,
    ExpirationRequest,
    LinkListResponse,
    LinkResponse,
    RecoveryRequest,
    ShortenRequest,
    StatsResponse,
)
from shortlink.core.context import AppContext
from shortlink.core.rate_limit import RATE_LIMITS, edge_limits_disabled, limiter
from shortlink.middleware.logging import get_client_ip
from shortlink.services.link_service import LinkDraft
from shortlink.services.redirect_service import RequestMetadata
from shortlink.services.stats_service import Period

router = APIRouter()


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_caller(x_subject_id: Optional[str] = Header(default=None)) -> Optional[str]:
    """Caller identity, or None for anonymous requests."""
    if x_subject_id is None:
        return None
    return x_subject_id.strip() or None


def _link_response(context: AppContext, record) -> LinkResponse:
    return LinkResponse.from_record(record, context.settings.BASE_URL, context.links.clock())


@router.post(
    "/shorten",
    response_model=LinkResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a short URL",
    description="Takes a long URL and returns a short link, optionally with a custom code and expiration"
)
async def create_short_url(
    request: Request,
    body: ShortenRequest,
    context: AppContext = Depends(get_context),
    caller: Optional[str] = Depends(get_caller),
) -> LinkResponse:
    record = await context.links.create(
        body.url,
        custom_code=body.custom_code,
        owner=caller,
        expires_at=body.expires_at,
        client_ip=get_client_ip(request),
    )
    return _link_response(context, record)


@router.post(
    "/shorten/bulk",
    response_model=BulkResponse,
    summary="Create many short URLs",
    description="One result per item in request order; items succeed or fail independently"
)
async def bulk_create_short_urls(
    request: Request,
    body: BulkShortenRequest,
    context: AppContext = Depends(get_context),
    caller: Optional[str] = Depends(get_caller),
) -> BulkResponse:
    drafts = [
        LinkDraft(target=item.url, custom_code=item.custom_code, expires_at=item.expires_at)
        for item in body.items
    ]
    results = await context.links.bulk_create(drafts, owner=caller, client_ip=get_client_ip(request))
    return BulkResponse.from_results(results, context.settings.BASE_URL, context.links.clock())


@router.get(
    "/stats",
    response_model=StatsResponse,
    summary="Get statistics for all of the caller's links",
    description="Best-effort counts; analytics events may be dropped under load"
)
@limiter.limit(RATE_LIMITS["stats"], exempt_when=edge_limits_disabled)
async def get_owner_stats(
    request: Request,
    period: Period = Period.DAY,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    context: AppContext = Depends(get_context),
    caller: Optional[str] = Depends(get_caller),
) -> StatsResponse:
    if start is not None or end is not None:
        period = Period.CUSTOM
    stats = await context.stats.owner_stats(caller, period=period, caller=caller, start=start, end=end)
    return StatsResponse.from_stats(stats)


@router.get(
    "/stats/{short_code}",
    response_model=StatsResponse,
    summary="Get statistics for one short link",
    description="Best-effort counts; analytics events may be dropped under load"
)
@limiter.limit(RATE_LIMITS["stats"], exempt_when=edge_limits_disabled)
async def get_url_stats(
    short_code: str,
    request: Request,
    period: Period = Period.DAY,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    context: AppContext = Depends(get_context),
    caller: Optional[str] = Depends(get_caller),
) -> StatsResponse:
    if start is not None or end is not None:
        period = Period.CUSTOM
    stats = await context.stats.stats(short_code, period=period, caller=caller, start=start, end=end)
    return StatsResponse.from_stats(stats)


@router.get(
    "/links",
    response_model=LinkListResponse,
    summary="List the caller's links",
    description="Newest first; with expiring_within_days, only live links expiring in that window, soonest first"
)
async def list_links(
    expiring_within_days: Optional[int] = Query(default=None, ge=1, le=365),
    context: AppContext = Depends(get_context),
    caller: Optional[str] = Depends(get_caller),
) -> LinkListResponse:
    if expiring_within_days is None:
        records = await context.links.list_links(caller)
    else:
        records = await context.links.expiring_soon(caller, timedelta(days=expiring_within_days))
    return LinkListResponse(
        links=[_link_response(context, record) for record in records],
        total_count=len(records),
        expiring_within_days=expiring_within_days,
    )


@router.post("/links/bulk", response_model=BulkResponse, summary="Apply one operation to many links")
async def bulk_update(
    request: Request,
    body: BulkRequest,
    context: AppContext = Depends(get_context),
    caller: Optional[str] = Depends(get_caller),
) -> BulkResponse:
    results = await context.links.bulk_update(
        body.codes,
        body.operation,
        caller=caller,
        expires_at=body.expires_at,
        client_ip=get_client_ip(request),
    )
    return BulkResponse.from_results(results, context.settings.BASE_URL, context.links.clock())


@router.get("/links/{short_code}", response_model=LinkResponse, summary="Get a link and its state")
async def get_link(
    short_code: str,
    context: AppContext = Depends(get_context),
    caller: Optional[str] = Depends(get_caller),
) -> LinkResponse:
    return _link_response(context, await context.links.get(short_code, caller))


@router.post("/links/{short_code}/deactivate", response_model=LinkResponse, summary="Deactivate a link")
async def deactivate_link(
    short_code: str,
    request: Request,
    context: AppContext = Depends(get_context),
    caller: Optional[str] = Depends(get_caller),
) -> LinkResponse:
    record = await context.links.deactivate(short_code, caller, client_ip=get_client_ip(request))
    return _link_response(context, record)


@router.post("/links/{short_code}/reactivate", response_model=LinkResponse, summary="Reactivate a link")
async def reactivate_link(
    short_code: str,
    request: Request,
    context: AppContext = Depends(get_context),
    caller: Optional[str] = Depends(get_caller),
) -> LinkResponse:
    record = await context.links.reactivate(short_code, caller, client_ip=get_client_ip(request))
    return _link_response(context, record)


@router.put("/links/{short_code}/expiration", response_model=LinkResponse, summary="Set or clear expiration")
async def set_expiration(
    short_code: str,
    request: Request,
    body: ExpirationRequest,
    context: AppContext = Depends(get_context),
    caller: Optional[str] = Depends(get_caller),
) -> LinkResponse:
    record = await context.links.set_expiration(
        short_code, body.expires_at, caller, client_ip=get_client_ip(request)
    )
    return _link_response(context, record)


@router.delete(
    "/links/{short_code}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a link permanently; its code is never reused"
)
async def delete_link(
    short_code: str,
    request: Request,
    context: AppContext = Depends(get_context),
    caller: Optional[str] = Depends(get_caller),
) -> Response:
    await context.links.delete(short_code, caller, client_ip=get_client_ip(request))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/recovery",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Request a credential-recovery token"
)
async def request_recovery(
    request: Request,
    body: RecoveryRequest,
    context: AppContext = Depends(get_context),
) -> dict:
    await context.recovery.request_token(body.subject, client_ip=get_client_ip(request))
    return {"status": "accepted"}


# Catch-all route: must stay last
@router.get(
    "/{short_code}",
    status_code=status.HTTP_302_FOUND,
    summary="Redirect to original URL",
    description="302 to the target; 404 if unknown, 410 if inactive or expired, 503 if storage is unavailable"
)
@limiter.limit(RATE_LIMITS["redirect"], exempt_when=edge_limits_disabled)
async def redirect_to_url(
    short_code: str,
    request: Request,
    context: AppContext = Depends(get_context),
) -> RedirectResponse:
    resolution = await context.redirects.resolve(
        short_code,
        RequestMetadata(
            client_ip=get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
            referrer=request.headers.get("Referer"),
        ),
    )
    return RedirectResponse(url=resolution.target, status_code=status.HTTP_302_FOUND)
