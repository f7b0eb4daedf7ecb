"""
Link Management Service

Write operations on links, each gated by a rate limiter:
- Custom-code creation passes the "create" limiter, which keeps callers from
  probing or squatting the custom namespace
- Auto-generated creation and lifecycle writes pass the "manage" limiter

Lifecycle writes are always owner-scoped: a caller can only touch its own
links, and somebody else's link looks exactly like a missing one.
Listings (all of a caller's links, or those about to expire) are owner-scoped
the same way.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence

from shortlink.core.exceptions import PermissionDeniedError, ShortLinkError, ValidationError
from shortlink.core.timeutil import Clock, to_naive_utc, utc_now
from shortlink.core.validators import validate_short_code, validate_target
from shortlink.db.interface import BulkItemResult, BulkOperation, LinkRecord, LinkStore
from shortlink.services.allocator import IdentifierAllocator
from shortlink.services.rate_limiter import Dimension, RateLimiter

logger = logging.getLogger(__name__)

MAX_BULK_CODES = 1000
MAX_BULK_CREATE = 100


@dataclass(frozen=True)
class LinkDraft:
    """One link to create in a bulk request."""

    target: str
    custom_code: Optional[str] = None
    expires_at: Optional[datetime] = None


def limiter_keys(client_ip: Optional[str], subject: Optional[str]) -> dict[Dimension, Optional[str]]:
    return {
        Dimension.PER_IP: client_ip,
        Dimension.PER_SUBJECT: subject,
        Dimension.COOLDOWN: subject or client_ip,
    }


class LinkService:
    def __init__(
        self,
        store: LinkStore,
        allocator: IdentifierAllocator,
        create_limiter: RateLimiter,
        manage_limiter: RateLimiter,
        clock: Clock = utc_now,
    ):
        self.store = store
        self.allocator = allocator
        self.create_limiter = create_limiter
        self.manage_limiter = manage_limiter
        self.clock = clock

    async def create(
        self,
        target: str,
        custom_code: Optional[str] = None,
        owner: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        client_ip: Optional[str] = None,
    ) -> LinkRecord:
        """
        Create a link. Input is validated before the limiter is consulted, so
        malformed requests never consume quota.
        """
        validate_target(target)
        if custom_code is not None:
            validate_short_code(custom_code)
            await self.create_limiter.enforce(limiter_keys(client_ip, owner))
        else:
            await self.manage_limiter.enforce(limiter_keys(client_ip, owner))

        record = await self.allocator.allocate(custom_code, target, owner=owner, expires_at=expires_at)
        logger.info(f"Link {record.code} created by {owner or 'anonymous'} from {client_ip}")
        return record

    async def bulk_create(
        self,
        drafts: Sequence[LinkDraft],
        owner: Optional[str] = None,
        client_ip: Optional[str] = None,
    ) -> list[BulkItemResult]:
        """
        Create many links, one result per draft in input order.

        Each draft goes through create(), so validation and the limiters apply
        per item: a rate-limited or invalid item fails on its own and the
        rest still go ahead.
        """
        if not drafts:
            raise ValidationError("items must not be empty")
        if len(drafts) > MAX_BULK_CREATE:
            raise ValidationError(f"At most {MAX_BULK_CREATE} links per bulk request")

        results = []
        for draft in drafts:
            try:
                record = await self.create(
                    draft.target,
                    custom_code=draft.custom_code,
                    owner=owner,
                    expires_at=draft.expires_at,
                    client_ip=client_ip,
                )
                results.append(BulkItemResult(code=record.code, success=True, record=record))
            except ShortLinkError as e:
                results.append(BulkItemResult(code=draft.custom_code, success=False, error=e.kind, message=e.message))

        failed = sum(1 for result in results if not result.success)
        logger.info(f"Bulk create by {owner or 'anonymous'}: {len(results) - failed} succeeded, {failed} failed")
        return results

    async def list_links(self, caller: Optional[str]) -> list[LinkRecord]:
        if caller is None:
            raise PermissionDeniedError("Listing links requires a caller identity")
        return await self.store.list_by_owner(caller)

    async def expiring_soon(self, caller: Optional[str], within: timedelta) -> list[LinkRecord]:
        """The caller's live links that expire within ``within`` from now, soonest first."""
        if caller is None:
            raise PermissionDeniedError("Listing links requires a caller identity")
        if within <= timedelta(0):
            raise ValidationError("Look-ahead window must be positive")
        return await self.store.list_expiring(caller, self.clock() + within)

    async def get(self, code: str, caller: Optional[str]) -> LinkRecord:
        record = await self.store.get(validate_short_code(code))
        if record.owner is not None and record.owner != caller:
            raise PermissionDeniedError(f"Not allowed to view '{code}'")
        return record

    async def deactivate(self, code: str, caller: Optional[str], client_ip: Optional[str] = None) -> LinkRecord:
        code = self._check_write(code, caller)
        await self.manage_limiter.enforce(limiter_keys(client_ip, caller))
        await self.store.deactivate(code, owner=caller)
        return await self.store.get(code)

    async def reactivate(self, code: str, caller: Optional[str], client_ip: Optional[str] = None) -> LinkRecord:
        code = self._check_write(code, caller)
        await self.manage_limiter.enforce(limiter_keys(client_ip, caller))
        await self.store.reactivate(code, owner=caller)
        return await self.store.get(code)

    async def set_expiration(self, code: str, expires_at: Optional[datetime], caller: Optional[str],
                             client_ip: Optional[str] = None) -> LinkRecord:
        code = self._check_write(code, caller)
        expires_at = to_naive_utc(expires_at) if expires_at is not None else None
        await self.manage_limiter.enforce(limiter_keys(client_ip, caller))
        await self.store.set_expiration(code, expires_at, owner=caller)
        return await self.store.get(code)

    async def delete(self, code: str, caller: Optional[str], client_ip: Optional[str] = None) -> None:
        code = self._check_write(code, caller)
        await self.manage_limiter.enforce(limiter_keys(client_ip, caller))
        await self.store.delete(code, owner=caller)

    async def bulk_update(
        self,
        codes: Sequence[str],
        operation: BulkOperation,
        caller: Optional[str],
        expires_at: Optional[datetime] = None,
        client_ip: Optional[str] = None,
    ) -> list[BulkItemResult]:
        """Apply one operation to many codes; one limiter unit for the whole batch."""
        if caller is None:
            raise PermissionDeniedError("Managing links requires a caller identity")
        if not codes:
            raise ValidationError("codes must not be empty")
        if len(codes) > MAX_BULK_CODES:
            raise ValidationError(f"At most {MAX_BULK_CODES} codes per bulk request")
        if operation is BulkOperation.SET_EXPIRATION and expires_at is not None:
            expires_at = to_naive_utc(expires_at)

        await self.manage_limiter.enforce(limiter_keys(client_ip, caller))
        results = await self.store.bulk_update(codes, operation, expires_at=expires_at, owner=caller)

        failed = sum(1 for result in results if not result.success)
        logger.info(
            f"Bulk {operation.value} by {caller}: {len(results) - failed} succeeded, {failed} failed"
        )
        return results

    def _check_write(self, code: str, caller: Optional[str]) -> str:
        if caller is None:
            raise PermissionDeniedError("Managing links requires a caller identity")
        return validate_short_code(code)
