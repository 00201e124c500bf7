from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pooladmin.pool import CredentialEntry


@dataclass(frozen=True)
class CredentialStatusItem:
    index: int
    priority: int
    disabled: bool
    failure_count: int
    is_current: bool
    expires_at: Optional[str]
    auth_method: str
    has_profile_arn: bool

    @classmethod
    def from_entry(cls, entry: CredentialEntry, current_index: int) -> "CredentialStatusItem":
        return cls(
            index=entry.index,
            priority=entry.priority,
            disabled=entry.disabled,
            failure_count=entry.failure_count,
            is_current=entry.index == current_index,
            expires_at=entry.expires_at,
            auth_method=entry.auth_method.value,
            has_profile_arn=entry.has_profile_arn,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "priority": self.priority,
            "disabled": self.disabled,
            "failureCount": self.failure_count,
            "isCurrent": self.is_current,
            "expiresAt": self.expires_at,
            "authMethod": self.auth_method,
            "hasProfileArn": self.has_profile_arn,
        }


@dataclass(frozen=True)
class CredentialsStatusResponse:
    """Pool listing. No item is current when the pool is empty or current_index is stale."""

    total: int
    available: int
    current_index: int
    credentials: List[CredentialStatusItem]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "available": self.available,
            "currentIndex": self.current_index,
            "credentials": [c.to_dict() for c in self.credentials],
        }


@dataclass(frozen=True)
class BalanceResponse:
    index: int
    subscription_title: Optional[str]
    current_usage: float
    usage_limit: float
    remaining: float
    usage_percentage: float
    next_reset_at: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "subscriptionTitle": self.subscription_title,
            "currentUsage": self.current_usage,
            "usageLimit": self.usage_limit,
            "remaining": self.remaining,
            "usagePercentage": self.usage_percentage,
            "nextResetAt": self.next_reset_at,
        }


def success_response(message: str) -> Dict[str, Any]:
    return {"success": True, "message": message}
