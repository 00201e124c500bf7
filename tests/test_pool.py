import asyncio
import json

import pytest

from pooladmin.pool import AuthMethod, CredentialPool, PoolError, PoolErrorCode, UsageLimits


RECORDS = [
    {"id": 0, "access_token": "a0", "priority": 1},
    {"id": 1, "access_token": "a1", "priority": 0, "auth_method": "idc", "profile_arn": "arn:aws:x"},
    {"id": 4, "access_token": "a4", "priority": 2, "disabled": True},
]


def _pool(records=RECORDS, usage_client=None):
    pool = CredentialPool(usage_client=usage_client)
    pool.replace([dict(r) for r in records])
    return pool


def test_snapshot_counts_and_current():
    snap = _pool().snapshot()
    assert snap.total == 3
    assert snap.available == 2
    # lowest priority value among enabled credentials starts as current
    assert snap.current_index == 1
    assert [e.index for e in snap.entries] == [0, 1, 4]
    assert snap.entries[1].auth_method is AuthMethod.IDC
    assert snap.entries[1].has_profile_arn is True


def test_snapshot_is_immutable_copy():
    pool = _pool()
    before = pool.snapshot()
    pool.set_disabled(0, True)
    assert before.entries[0].disabled is False
    assert pool.snapshot().entries[0].disabled is True


def test_unknown_index_raises_out_of_range():
    pool = _pool()
    with pytest.raises(PoolError) as exc:
        pool.set_priority(3, 1)
    assert exc.value.code == PoolErrorCode.INDEX_OUT_OF_RANGE


def test_switch_to_next_prefers_lowest_priority():
    pool = _pool()
    assert pool.switch_to_next() == 0
    assert pool.snapshot().current_index == 0


def test_switch_to_next_without_alternative():
    pool = _pool([{"id": 0, "priority": 0}])
    with pytest.raises(PoolError) as exc:
        pool.switch_to_next()
    assert exc.value.code == PoolErrorCode.NO_AVAILABLE_CREDENTIAL


def test_reset_and_enable_clears_failures():
    pool = _pool()
    pool.report_failure(4)
    pool.reset_and_enable(4)
    entry = pool.snapshot().entries[2]
    assert entry.disabled is False
    assert entry.failure_count == 0


def test_repeated_failures_disable_and_switch():
    pool = _pool()
    assert pool.report_failure(1) is False
    assert pool.report_failure(1) is False
    assert pool.report_failure(1) is True
    snap = pool.snapshot()
    assert snap.entries[1].disabled is True
    assert snap.current_index == 0


def test_duplicate_ids_rejected():
    with pytest.raises(PoolError):
        _pool([{"id": 1}, {"id": 1}])


def test_load_and_persist_roundtrip(tmp_path):
    path = tmp_path / "credentials.json"
    path.write_text(json.dumps({"version": 1, "credentials": RECORDS}))
    pool = CredentialPool(path=str(path))
    pool.load()
    pool.set_priority(4, 9)

    saved = json.loads(path.read_text())
    assert saved["version"] == 1
    assert [c["priority"] for c in saved["credentials"]] == [1, 0, 9]
    assert saved["credentials"][1]["auth_method"] == "idc"


def test_load_skips_incompatible_version(tmp_path):
    path = tmp_path / "credentials.json"
    path.write_text(json.dumps({"version": 99, "credentials": RECORDS}))
    pool = CredentialPool(path=str(path))
    pool.load()
    assert pool.snapshot().total == 0


class FakeUsageClient:
    def __init__(self):
        self.calls = []

    def fetch(self, access_token, profile_arn=None):
        self.calls.append((access_token, profile_arn))
        return UsageLimits(subscription_title="FREE", current_usage=1.0, usage_limit=50.0)


def test_get_usage_limits_uses_credential_token():
    client = FakeUsageClient()
    pool = _pool(usage_client=client)
    limits = asyncio.run(pool.get_usage_limits_for(1))
    assert limits.usage_limit == 50.0
    assert client.calls == [("a1", "arn:aws:x")]


def test_get_usage_limits_without_token():
    pool = _pool([{"id": 0}], usage_client=FakeUsageClient())
    with pytest.raises(PoolError) as exc:
        asyncio.run(pool.get_usage_limits_for(0))
    assert exc.value.code == PoolErrorCode.VALIDATION_FAILURE


def test_usage_limits_from_upstream():
    limits = UsageLimits.from_upstream(
        {
            "subscriptionInfo": {"subscriptionTitle": "KIRO PRO"},
            "usageBreakdownList": [{"currentUsageWithPrecision": 12.5, "usageLimitWithPrecision": 1000}],
            "nextDateReset": 1767225600,
        }
    )
    assert limits.subscription_title == "KIRO PRO"
    assert limits.current_usage == 12.5
    assert limits.usage_limit == 1000.0
    assert limits.next_reset_at == 1767225600.0


def test_usage_limits_from_sparse_payload():
    limits = UsageLimits.from_upstream({})
    assert limits.subscription_title is None
    assert limits.current_usage == 0.0
    assert limits.usage_limit == 0.0


def test_usage_limits_ignore_non_finite_numbers():
    payload = json.loads(
        '{"usageBreakdownList": [{"currentUsageWithPrecision": NaN, "currentUsage": 5, "usageLimit": "Infinity"}],'
        ' "nextDateReset": "-Infinity"}'
    )
    limits = UsageLimits.from_upstream(payload)
    assert limits.current_usage == 5.0
    assert limits.usage_limit == 0.0
    assert limits.next_reset_at is None


def test_report_success_clears_failure_count():
    pool = _pool()
    pool.report_failure(0)
    pool.report_failure(0)
    assert pool.snapshot().entries[0].failure_count == 2
    pool.report_success(0)
    assert pool.snapshot().entries[0].failure_count == 0
    assert pool.snapshot().entries[0].disabled is False


@pytest.mark.parametrize("content", ["1", '"credentials"', "null"])
def test_load_ignores_non_object_file(tmp_path, content):
    path = tmp_path / "credentials.json"
    path.write_text(content)
    pool = CredentialPool(path=str(path))
    pool.load()
    assert pool.snapshot().total == 0
