from __future__ import annotations

import math
from typing import Tuple

from pooladmin.config import dlog
from pooladmin.errors import AdminServiceError, CredentialNotFound, InternalError, UpstreamError
from pooladmin.models import BalanceResponse, CredentialStatusItem, CredentialsStatusResponse
from pooladmin.pool import CredentialPoolFacade, PoolError, PoolErrorCode


UPSTREAM_CODES = frozenset(
    {
        PoolErrorCode.UPSTREAM_AUTH_FAILURE,
        PoolErrorCode.UPSTREAM_RATE_LIMITED,
        PoolErrorCode.UPSTREAM_UNAVAILABLE,
        PoolErrorCode.NETWORK_FAILURE,
    }
)

# Fallback phrases for facades that raise plain exceptions instead of PoolError.
OUT_OF_RANGE_PHRASES: Tuple[str, ...] = ("out of range", "索引超出范围")
UPSTREAM_PHRASES: Tuple[str, ...] = (
    "expired or invalid",
    "insufficient permission",
    "permission denied",
    "forbidden",
    "rate limit",
    "too many requests",
    "server error",
    "refresh failed",
    "temporarily unavailable",
    "error trying to connect",
    "connection",
    "timeout",
    "timed out",
)


def classify_error(e: Exception, index: int, total: int, *, upstream: bool = False) -> AdminServiceError:
    """Map a facade failure onto NotFound / UpstreamError / InternalError.

    `upstream` is only set for operations that cross the network; without it
    the result is never an UpstreamError.
    """
    msg = str(e) or e.__class__.__name__
    if isinstance(e, PoolError):
        if e.code == PoolErrorCode.INDEX_OUT_OF_RANGE:
            return CredentialNotFound(index, total)
        if upstream and e.code in UPSTREAM_CODES:
            return UpstreamError(e.message)
        return InternalError(e.message)

    lowered = msg.lower()
    if any(phrase in lowered for phrase in OUT_OF_RANGE_PHRASES):
        return CredentialNotFound(index, total)
    if upstream:
        if isinstance(e, (TimeoutError, ConnectionError)):
            return UpstreamError(msg)
        if any(phrase in lowered for phrase in UPSTREAM_PHRASES):
            return UpstreamError(msg)
    return InternalError(msg)


def compute_balance(current_usage: float, usage_limit: float) -> Tuple[float, float]:
    """Return (remaining, usage_percentage); a limit <= 0 means unknown."""
    remaining = max(usage_limit - current_usage, 0.0)
    if usage_limit > 0:
        usage_percentage = min(current_usage / usage_limit * 100.0, 100.0)
    else:
        usage_percentage = 0.0
    return remaining, usage_percentage


class AdminService:
    """Admin business logic over a credential pool.

    Holds no state besides the pool reference; every call works from a fresh
    snapshot so results always reflect the pool at call time.
    """

    def __init__(self, pool: CredentialPoolFacade) -> None:
        self.pool = pool

    def get_all_credentials(self) -> CredentialsStatusResponse:
        snapshot = self.pool.snapshot()
        credentials = [CredentialStatusItem.from_entry(entry, snapshot.current_index) for entry in snapshot.entries]
        return CredentialsStatusResponse(
            total=snapshot.total,
            available=snapshot.available,
            current_index=snapshot.current_index,
            credentials=credentials,
        )

    def set_disabled(self, index: int, disabled: bool) -> None:
        # current_index is read before the mutation and not atomically with it;
        # a concurrent switch in between can make the failover decision stale.
        snapshot = self.pool.snapshot()
        current_index = snapshot.current_index
        total = snapshot.total

        try:
            self.pool.set_disabled(index, disabled)
        except Exception as e:
            raise self._classified("set_disabled", e, index, total) from e
        dlog("admin_set_disabled", {"index": index, "disabled": disabled})

        if disabled and index == current_index:
            # Fire-and-forget failover: "no other credential" is an expected
            # outcome and must not turn a successful disable into an error.
            try:
                new_index = self.pool.switch_to_next()
                dlog("admin_failover", {"from": index, "to": new_index})
            except Exception as e:
                dlog("admin_failover_skipped", {"index": index, "reason": str(e)})

    def set_priority(self, index: int, priority: int) -> None:
        total = self.pool.snapshot().total
        try:
            self.pool.set_priority(index, priority)
        except Exception as e:
            raise self._classified("set_priority", e, index, total) from e
        dlog("admin_set_priority", {"index": index, "priority": priority})

    def reset_and_enable(self, index: int) -> None:
        total = self.pool.snapshot().total
        try:
            self.pool.reset_and_enable(index)
        except Exception as e:
            raise self._classified("reset_and_enable", e, index, total) from e
        dlog("admin_reset_and_enable", {"index": index})

    async def get_balance(self, index: int) -> BalanceResponse:
        total = self.pool.snapshot().total
        try:
            usage = await self.pool.get_usage_limits_for(index)
        except Exception as e:
            raise self._classified("get_balance", e, index, total, upstream=True) from e

        if not (math.isfinite(usage.current_usage) and math.isfinite(usage.usage_limit)):
            bad = PoolError(
                PoolErrorCode.UPSTREAM_UNAVAILABLE,
                f"Upstream returned non-finite usage values: {usage.current_usage}/{usage.usage_limit}",
            )
            raise self._classified("get_balance", bad, index, total, upstream=True)

        next_reset_at = usage.next_reset_at
        if next_reset_at is not None and not math.isfinite(next_reset_at):
            next_reset_at = None

        remaining, usage_percentage = compute_balance(usage.current_usage, usage.usage_limit)
        return BalanceResponse(
            index=index,
            subscription_title=usage.subscription_title,
            current_usage=usage.current_usage,
            usage_limit=usage.usage_limit,
            remaining=remaining,
            usage_percentage=usage_percentage,
            next_reset_at=next_reset_at,
        )

    def _classified(
        self,
        operation: str,
        e: Exception,
        index: int,
        total: int,
        *,
        upstream: bool = False,
    ) -> AdminServiceError:
        err = classify_error(e, index, total, upstream=upstream)
        dlog(
            "admin_error",
            {"operation": operation, "index": index, "kind": err.error_type, "message": err.message},
        )
        return err
