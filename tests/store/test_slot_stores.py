from unittest.mock import MagicMock, patch

import pytest

from enrollflow.settings import settings
from enrollflow.store.models import (
    EnrollmentRecord,
    WorkflowState,
    plan_from_dict,
    state_from_dict,
    state_to_dict,
)
from enrollflow.store.slots import (
    MemorySlotStore,
    RedisSlotStore,
    StorageQuotaExceeded,
    get_slot_store,
)
from enrollflow.core.plans import find_plan


def test_memory_store_basics():
    s = MemorySlotStore()
    assert s.get("a") is None
    s.set("a", "1")
    s.set("payment_record_x", "2")
    assert s.get("a") == "1"
    assert s.keys("payment_record_") == ["payment_record_x"]
    s.delete("a")
    s.delete("a")
    assert s.get("a") is None


def test_memory_store_quota_counts_other_keys():
    s = MemorySlotStore(quota_bytes=10)
    s.set("a", "12345")
    s.set("a", "1234567890")
    with pytest.raises(StorageQuotaExceeded):
        s.set("b", "x" * 6)


def test_redis_store_namespaces_keys():
    r = MagicMock()
    r.get.return_value = b"value"
    r.scan_iter.return_value = [b"enrollflow:payment_record_1", "enrollflow:payment_record_2"]
    s = RedisSlotStore(redis=r)

    s.set("k", "v")
    r.set.assert_called_once_with("enrollflow:k", "v")
    assert s.get("k") == "value"
    s.delete("k")
    r.delete.assert_called_once_with("enrollflow:k")
    assert s.keys("payment_record_") == ["payment_record_1", "payment_record_2"]
    r.scan_iter.assert_called_once_with(match="enrollflow:payment_record_*")


@patch("enrollflow.store.redis_conn.get_redis")
def test_get_slot_store_backend(mock_get_redis):
    mock_get_redis.return_value = MagicMock()
    with patch.object(settings, "STORAGE_BACKEND", "redis"):
        assert isinstance(get_slot_store(), RedisSlotStore)
    with patch.object(settings, "STORAGE_BACKEND", "memory"):
        assert isinstance(get_slot_store(), MemorySlotStore)


def test_state_dict_roundtrip_tolerates_stale_fields():
    state = WorkflowState(currentStep="payment", selectedPlan=find_plan("yearly"),
                          enrollmentRecord=EnrollmentRecord(phoneNumber="+919876543210"))
    data = state_to_dict(state)
    data["legacyFlag"] = True
    data["enrollmentRecord"]["removedField"] = 1
    data["errorsByStep"] = "garbage"

    back = state_from_dict(data)
    assert back.selectedPlan == find_plan("yearly")
    assert back.enrollmentRecord.phoneNumber == "+919876543210"
    assert back.errorsByStep == {}


def test_plan_from_dict_passthrough():
    plan = find_plan("monthly")
    assert plan_from_dict(plan) is plan
    assert plan_from_dict(None) is None


@patch("enrollflow.store.redis_conn.Redis")
def test_get_redis_reuses_client_per_url(mock_redis_cls):
    from enrollflow.store import redis_conn
    redis_conn._clients.clear()
    mock_redis_cls.from_url.side_effect = lambda url, **kw: MagicMock(name=url)

    a = redis_conn.get_redis("redis://cache:6379/1")
    assert redis_conn.get_redis("redis://cache:6379/1") is a
    assert redis_conn.get_redis("redis://cache:6379/2") is not a
    mock_redis_cls.from_url.assert_any_call("redis://cache:6379/1", decode_responses=True)
    redis_conn._clients.clear()


@patch("enrollflow.store.redis_conn.get_redis")
def test_ping_redis_reports_unreachable(mock_get_redis):
    from redis.exceptions import ConnectionError as RedisConnectionError
    from enrollflow.store.redis_conn import ping_redis

    mock_get_redis.return_value.ping.side_effect = RedisConnectionError("refused")
    assert ping_redis() is False
    mock_get_redis.return_value.ping.side_effect = None
    mock_get_redis.return_value.ping.return_value = True
    assert ping_redis() is True
