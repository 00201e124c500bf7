import pytest
import requests

import pooladmin.usage_client as usage_client
from pooladmin.pool import PoolError, PoolErrorCode
from pooladmin.usage_client import UsageLimitsClient


class FakeResponse:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


def _patch_get(monkeypatch, response=None, exc=None):
    seen = {}

    def fake_get(url, params=None, headers=None, timeout=None):
        seen.update({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if exc is not None:
            raise exc
        return response

    monkeypatch.setattr(usage_client.requests, "get", fake_get)
    return seen


def test_fetch_success(monkeypatch):
    payload = {
        "subscriptionInfo": {"subscriptionTitle": "PRO"},
        "usageBreakdownList": [{"currentUsage": 30, "usageLimit": 200}],
    }
    seen = _patch_get(monkeypatch, FakeResponse(200, payload))
    limits = UsageLimitsClient(url="https://usage.example/limits", timeout=5).fetch("tok", "arn:1")
    assert limits.current_usage == 30.0
    assert limits.usage_limit == 200.0
    assert seen["headers"]["Authorization"] == "Bearer tok"
    assert seen["params"]["profileArn"] == "arn:1"
    assert seen["timeout"] == 5


@pytest.mark.parametrize(
    "status,code",
    [
        (401, PoolErrorCode.UPSTREAM_AUTH_FAILURE),
        (403, PoolErrorCode.UPSTREAM_AUTH_FAILURE),
        (429, PoolErrorCode.UPSTREAM_RATE_LIMITED),
        (503, PoolErrorCode.UPSTREAM_UNAVAILABLE),
        (400, PoolErrorCode.VALIDATION_FAILURE),
    ],
)
def test_fetch_http_errors(monkeypatch, status, code):
    _patch_get(monkeypatch, FakeResponse(status, {"message": "nope"}))
    with pytest.raises(PoolError) as exc:
        UsageLimitsClient().fetch("tok")
    assert exc.value.code == code
    assert f"({status})" in exc.value.message
    assert "nope" in exc.value.message


def test_fetch_network_failure(monkeypatch):
    _patch_get(monkeypatch, exc=requests.ConnectionError("refused"))
    with pytest.raises(PoolError) as exc:
        UsageLimitsClient().fetch("tok")
    assert exc.value.code == PoolErrorCode.NETWORK_FAILURE


def test_fetch_timeout(monkeypatch):
    _patch_get(monkeypatch, exc=requests.Timeout("slow"))
    with pytest.raises(PoolError) as exc:
        UsageLimitsClient().fetch("tok")
    assert exc.value.code == PoolErrorCode.NETWORK_FAILURE
    assert "timed out" in exc.value.message


def test_fetch_invalid_json(monkeypatch):
    _patch_get(monkeypatch, FakeResponse(200, None, text="<html>"))
    with pytest.raises(PoolError) as exc:
        UsageLimitsClient().fetch("tok")
    assert exc.value.code == PoolErrorCode.UPSTREAM_UNAVAILABLE
