from __future__ import annotations

import asyncio
import json
import math
import os
import tempfile
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from pooladmin.config import dlog


POOL_SCHEMA_VERSION = 1
MAX_FAILURES_PER_CREDENTIAL = 3


class AuthMethod(str, Enum):
    SOCIAL = "social"
    IDC = "idc"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "AuthMethod":
        if not raw:
            return cls.SOCIAL
        value = str(raw).strip().lower()
        # builder-id and iam-identity-center logins both refresh through OIDC
        if value in {"idc", "builder-id", "builderid", "iam"}:
            return cls.IDC
        if value == "social":
            return cls.SOCIAL
        raise PoolError(PoolErrorCode.VALIDATION_FAILURE, f"Unknown auth method: {raw}")


class PoolErrorCode(str, Enum):
    INDEX_OUT_OF_RANGE = "index_out_of_range"
    UPSTREAM_AUTH_FAILURE = "upstream_auth_failure"
    UPSTREAM_RATE_LIMITED = "upstream_rate_limited"
    UPSTREAM_UNAVAILABLE = "upstream_unavailable"
    NETWORK_FAILURE = "network_failure"
    VALIDATION_FAILURE = "validation_failure"
    NO_AVAILABLE_CREDENTIAL = "no_available_credential"


class PoolError(Exception):
    """Structured failure raised by a credential pool facade."""

    def __init__(self, code: PoolErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class CredentialEntry:
    index: int
    priority: int
    disabled: bool
    failure_count: int
    expires_at: Optional[str]
    auth_method: AuthMethod
    has_profile_arn: bool


@dataclass(frozen=True)
class CredentialSnapshot:
    """Point-in-time copy of the pool; never mutated after creation."""

    total: int
    available: int
    current_index: int
    entries: Tuple[CredentialEntry, ...] = ()


@dataclass(frozen=True)
class UsageLimits:
    subscription_title: Optional[str]
    current_usage: float
    usage_limit: float
    next_reset_at: Optional[float] = None

    @classmethod
    def from_upstream(cls, payload: Dict[str, Any]) -> "UsageLimits":
        """Parse a getUsageLimits response body."""
        if not isinstance(payload, dict):
            raise PoolError(PoolErrorCode.UPSTREAM_UNAVAILABLE, "Usage response is not a JSON object")

        subscription = payload.get("subscriptionInfo") or {}
        title = subscription.get("subscriptionTitle") if isinstance(subscription, dict) else None

        breakdowns = payload.get("usageBreakdownList") or []
        first = breakdowns[0] if breakdowns and isinstance(breakdowns[0], dict) else {}

        def number(*keys: str) -> float:
            for key in keys:
                val = first.get(key)
                if val is not None:
                    try:
                        parsed = float(val)
                    except (TypeError, ValueError):
                        continue
                    if math.isfinite(parsed):
                        return parsed
            return 0.0

        next_reset = payload.get("nextDateReset")
        try:
            next_reset_at = float(next_reset) if next_reset is not None else None
        except (TypeError, ValueError):
            next_reset_at = None
        if next_reset_at is not None and not math.isfinite(next_reset_at):
            next_reset_at = None

        return cls(
            subscription_title=title,
            current_usage=max(number("currentUsageWithPrecision", "currentUsage"), 0.0),
            usage_limit=number("usageLimitWithPrecision", "usageLimit"),
            next_reset_at=next_reset_at,
        )


class CredentialPoolFacade(Protocol):
    """What the admin service needs from a credential pool."""

    def snapshot(self) -> CredentialSnapshot: ...

    def set_disabled(self, index: int, disabled: bool) -> None: ...

    def set_priority(self, index: int, priority: int) -> None: ...

    def reset_and_enable(self, index: int) -> None: ...

    def switch_to_next(self) -> int: ...

    async def get_usage_limits_for(self, index: int) -> UsageLimits: ...


@dataclass
class Credential:
    id: int
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    priority: int = 0
    disabled: bool = False
    failure_count: int = 0
    expires_at: Optional[str] = None
    auth_method: AuthMethod = AuthMethod.SOCIAL
    profile_arn: Optional[str] = None

    def to_entry(self) -> CredentialEntry:
        return CredentialEntry(
            index=self.id,
            priority=self.priority,
            disabled=self.disabled,
            failure_count=self.failure_count,
            expires_at=self.expires_at,
            auth_method=self.auth_method,
            has_profile_arn=bool(self.profile_arn),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "priority": self.priority,
            "disabled": self.disabled,
            "failure_count": self.failure_count,
            "expires_at": self.expires_at,
            "auth_method": self.auth_method.value,
            "profile_arn": self.profile_arn,
        }


class CredentialPool:
    """In-memory credential pool with optional JSON persistence.

    Indices are the credentials' stable ids, so they stay valid when other
    entries are removed from the file. The current credential only moves
    through switch_to_next() or the auto-disable path of report_failure().
    """

    def __init__(self, path: Optional[str] = None, usage_client=None) -> None:
        self.path = path
        self.usage_client = usage_client
        self._lock = threading.Lock()
        self._credentials: List[Credential] = []
        self._current_index = 0

    # ---------- loading ----------
    def load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r") as f:
                raw = json.load(f)
        except Exception as e:
            dlog("pool_load_error", f"Could not read credentials file: {e}")
            return

        if isinstance(raw, list):
            raw = {"version": POOL_SCHEMA_VERSION, "credentials": raw}
        if not isinstance(raw, dict):
            dlog("pool_load_skip", f"Credentials file must hold an object or a list, got {type(raw).__name__}")
            return
        if raw.get("version", POOL_SCHEMA_VERSION) != POOL_SCHEMA_VERSION:
            dlog("pool_load_skip", f"Incompatible credentials file version: {raw.get('version')}")
            return

        self.replace([item for item in raw.get("credentials") or [] if isinstance(item, dict)])
        dlog("pool_loaded", {"path": self.path, "total": len(self._credentials)})

    def replace(self, records: List[Dict[str, Any]]) -> None:
        """Swap the pool contents for the given raw credential records."""
        credentials: List[Credential] = []
        seen = set()
        for position, item in enumerate(records):
            cred_id = int(item.get("id", position))
            if cred_id in seen:
                raise PoolError(PoolErrorCode.VALIDATION_FAILURE, f"Duplicate credential id: {cred_id}")
            seen.add(cred_id)
            credentials.append(
                Credential(
                    id=cred_id,
                    access_token=item.get("access_token") or item.get("accessToken"),
                    refresh_token=item.get("refresh_token") or item.get("refreshToken"),
                    priority=int(item.get("priority") or 0),
                    disabled=bool(item.get("disabled", False)),
                    failure_count=int(item.get("failure_count") or 0),
                    expires_at=item.get("expires_at") or item.get("expiresAt"),
                    auth_method=AuthMethod.parse(item.get("auth_method") or item.get("authMethod")),
                    profile_arn=item.get("profile_arn") or item.get("profileArn"),
                )
            )
        with self._lock:
            self._credentials = credentials
            best = self._best_candidate_locked(exclude=None)
            self._current_index = best.id if best else (credentials[0].id if credentials else 0)

    def save(self) -> None:
        with self._lock:
            self._persist_locked()

    def _persist_locked(self) -> None:
        if not self.path:
            return
        payload = {
            "version": POOL_SCHEMA_VERSION,
            "credentials": [c.to_dict() for c in self._credentials],
        }
        try:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            with tempfile.NamedTemporaryFile("w", delete=False, dir=os.path.dirname(self.path) or ".") as tmp:
                json.dump(payload, tmp, indent=2)
                tmp.flush()
                os.fsync(tmp.fileno())
                temp_name = tmp.name
            os.replace(temp_name, self.path)
        except Exception as e:
            dlog("pool_save_error", str(e))

    # ---------- facade ----------
    def snapshot(self) -> CredentialSnapshot:
        with self._lock:
            entries = tuple(c.to_entry() for c in self._credentials)
            current = self._current_index
        return CredentialSnapshot(
            total=len(entries),
            available=sum(1 for e in entries if not e.disabled),
            current_index=current,
            entries=entries,
        )

    def set_disabled(self, index: int, disabled: bool) -> None:
        with self._lock:
            cred = self._get_locked(index)
            cred.disabled = disabled
            self._persist_locked()

    def set_priority(self, index: int, priority: int) -> None:
        with self._lock:
            cred = self._get_locked(index)
            cred.priority = priority
            self._persist_locked()

    def reset_and_enable(self, index: int) -> None:
        with self._lock:
            cred = self._get_locked(index)
            cred.failure_count = 0
            cred.disabled = False
            self._persist_locked()

    def switch_to_next(self) -> int:
        with self._lock:
            return self._switch_locked()

    def report_failure(self, index: int) -> bool:
        """Count a failed upstream call; returns True if the credential got disabled."""
        with self._lock:
            cred = self._get_locked(index)
            cred.failure_count += 1
            disabled_now = False
            if cred.failure_count >= MAX_FAILURES_PER_CREDENTIAL and not cred.disabled:
                cred.disabled = True
                disabled_now = True
                dlog("pool_auto_disabled", {"index": index, "failure_count": cred.failure_count})
                if index == self._current_index:
                    try:
                        self._switch_locked()
                    except PoolError as e:
                        dlog("pool_auto_switch_failed", e.message)
            self._persist_locked()
            return disabled_now

    def report_success(self, index: int) -> None:
        with self._lock:
            self._get_locked(index).failure_count = 0
            self._persist_locked()

    async def get_usage_limits_for(self, index: int) -> UsageLimits:
        with self._lock:
            cred = self._get_locked(index)
            token = cred.access_token
            profile_arn = cred.profile_arn
        if self.usage_client is None:
            raise PoolError(PoolErrorCode.VALIDATION_FAILURE, "No usage client configured")
        if not token:
            raise PoolError(PoolErrorCode.VALIDATION_FAILURE, f"Credential {index} has no access token")
        return await asyncio.to_thread(self.usage_client.fetch, token, profile_arn)

    # ---------- helpers ----------
    def _get_locked(self, index: int) -> Credential:
        for cred in self._credentials:
            if cred.id == index:
                return cred
        raise PoolError(
            PoolErrorCode.INDEX_OUT_OF_RANGE,
            f"Index out of range: {index} (total {len(self._credentials)})",
        )

    def _best_candidate_locked(self, exclude: Optional[int]) -> Optional[Credential]:
        candidates = [c for c in self._credentials if not c.disabled and c.id != exclude]
        if not candidates:
            return None
        return min(candidates, key=lambda c: (c.priority, c.id))

    def _switch_locked(self) -> int:
        best = self._best_candidate_locked(exclude=self._current_index)
        if best is None:
            raise PoolError(PoolErrorCode.NO_AVAILABLE_CREDENTIAL, "No other enabled credential available")
        previous = self._current_index
        self._current_index = best.id
        dlog("pool_switched", {"from": previous, "to": best.id})
        return best.id
