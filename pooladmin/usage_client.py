from typing import Dict, Optional

import requests

from pooladmin.config import dlog, DEFAULT_USAGE_API_URL
from pooladmin.pool import PoolError, PoolErrorCode, UsageLimits


class UsageLimitsClient:
    """Minimal client for the upstream getUsageLimits endpoint.

    Transport and HTTP failures are raised as PoolError with a stable code so
    callers never need to inspect message text.
    """

    def __init__(self, url: str = DEFAULT_USAGE_API_URL, timeout: float = 30.0) -> None:
        self._url = url
        self._timeout = timeout

    def fetch(self, access_token: str, profile_arn: Optional[str] = None) -> UsageLimits:
        params: Dict[str, str] = {"origin": "AI_EDITOR", "resourceType": "AGENTIC_REQUEST"}
        if profile_arn:
            params["profileArn"] = profile_arn
        headers = {
            "Accept": "application/json",
            "Authorization": f"Bearer {access_token}",
        }
        dlog("usage_limits_request", {"url": self._url, "has_profile_arn": bool(profile_arn)})
        try:
            resp = requests.get(self._url, params=params, headers=headers, timeout=self._timeout)
        except requests.Timeout as e:
            raise PoolError(PoolErrorCode.NETWORK_FAILURE, f"Usage request timed out: {e}") from e
        except requests.RequestException as e:
            raise PoolError(PoolErrorCode.NETWORK_FAILURE, f"Could not reach usage endpoint: {e}") from e

        if resp.status_code >= 400:
            raise PoolError(_code_for_status(resp.status_code), _error_message(resp))

        try:
            data = resp.json()
        except ValueError as e:
            raise PoolError(PoolErrorCode.UPSTREAM_UNAVAILABLE, f"Invalid JSON from usage response: {e}") from e

        limits = UsageLimits.from_upstream(data)
        dlog(
            "usage_limits_response",
            {
                "subscription_title": limits.subscription_title,
                "current_usage": limits.current_usage,
                "usage_limit": limits.usage_limit,
            },
        )
        return limits


def _code_for_status(status: int) -> PoolErrorCode:
    if status in (401, 403):
        return PoolErrorCode.UPSTREAM_AUTH_FAILURE
    if status == 429:
        return PoolErrorCode.UPSTREAM_RATE_LIMITED
    if status >= 500:
        return PoolErrorCode.UPSTREAM_UNAVAILABLE
    return PoolErrorCode.VALIDATION_FAILURE


def _error_message(resp: requests.Response) -> str:
    try:
        err_json = resp.json()
        err_msg = err_json.get("message") or err_json.get("error", {}).get("message") or resp.text
    except Exception:
        err_msg = resp.text
    return f"Upstream usage error ({resp.status_code}): {err_msg}"
