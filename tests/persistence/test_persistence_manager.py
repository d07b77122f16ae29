from unittest.mock import MagicMock

import pytest

from enrollflow.core.plans import find_plan
from enrollflow.persistence.manager import AutoSaver, PersistenceManager
from enrollflow.store.models import EnrollmentRecord, WorkflowState
from enrollflow.store.slots import MemorySlotStore
from enrollflow.utils.time import ManualClock
from enrollflow.utils.timers import ManualScheduler

MIN = 60 * 1000


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def store():
    return MemorySlotStore()


@pytest.fixture
def pm(store, clock):
    return PersistenceManager(store, key="enrollment_state", ttl_minutes=10, schema_version="1.0.0",
                              obfuscation_key="", clock=clock)


def _state(**overrides):
    s = WorkflowState(
        currentStep="pricing",
        phoneNumber="+919876543210",
        isAuthenticated=True,
        selectedPlan=find_plan("quarterly"),
        enrollmentRecord=EnrollmentRecord(phoneNumber="+919876543210", planId="quarterly"),
        errorsByStep={"pricing": "Please select a valid pricing plan."},
    )
    for k, v in overrides.items():
        setattr(s, k, v)
    return s


def test_save_then_load_within_ttl_strips_errors(pm, clock):
    assert pm.save(_state()) is True
    clock.advance(9 * MIN)

    loaded = pm.load()
    assert loaded is not None
    assert "errorsByStep" not in loaded
    assert loaded["currentStep"] == "pricing"
    assert loaded["phoneNumber"] == "+919876543210"
    assert loaded["selectedPlan"]["id"] == "quarterly"
    assert loaded["selectedPlan"]["sessions"] == 36
    assert loaded["enrollmentRecord"]["planId"] == "quarterly"


def test_loaded_state_equals_saved_minus_errors(pm):
    partial = {"currentStep": "facility", "isAuthenticated": True, "errorsByStep": {"auth": "x"}}
    pm.save(partial)
    assert pm.load() == {"currentStep": "facility", "isAuthenticated": True}


def test_in_flight_payment_status_loads_back_unchanged(pm):
    pm.save({"currentStep": "payment", "paymentStatus": "processing"})
    assert pm.load() == {"currentStep": "payment", "paymentStatus": "processing"}


def test_extra_transient_keys_are_stripped(store, clock):
    pm = PersistenceManager(store, ttl_minutes=10, clock=clock, transient_keys=("phoneNumber",))
    pm.save({"currentStep": "auth", "phoneNumber": "+919876543210"})
    assert pm.load() == {"currentStep": "auth"}


def test_load_after_expiry_returns_none_and_clears_slot(pm, store, clock):
    pm.save(_state())
    clock.advance(11 * MIN)
    assert pm.load() is None
    assert store.get("enrollment_state") is None


def test_schema_version_mismatch_clears_slot(pm, store, clock):
    pm.save(_state())
    newer = PersistenceManager(store, key="enrollment_state", ttl_minutes=10, schema_version="2.0.0", clock=clock)
    assert newer.load() is None
    assert store.get("enrollment_state") is None


def test_corrupt_slot_is_dropped(pm, store):
    store.set("enrollment_state", "}}garbage{{")
    assert pm.load() is None
    assert store.get("enrollment_state") is None


def test_quota_exceeded_returns_false(clock):
    pm = PersistenceManager(MemorySlotStore(quota_bytes=16), clock=clock)
    assert pm.save(_state()) is False


def test_backend_error_is_swallowed(clock):
    broken = MagicMock()
    broken.set.side_effect = RuntimeError("backend down")
    broken.get.side_effect = RuntimeError("backend down")
    pm = PersistenceManager(broken, clock=clock)
    assert pm.save({"currentStep": "auth"}) is False
    assert pm.load() is None
    pm.clear()


def test_save_overwrites_whole_envelope(pm):
    pm.save({"currentStep": "auth", "phoneNumber": "+919876543210"})
    pm.save({"currentStep": "facility"})
    assert pm.load() == {"currentStep": "facility"}


def test_extend_expiry_noop_when_empty(pm):
    assert pm.extend_expiry(10) is False


def test_extend_expiry_pushes_deadline(pm, clock):
    pm.save(_state())
    clock.advance(9 * MIN)
    assert pm.extend_expiry(10) is True
    assert pm.expires_at() == clock.now_ms() + 10 * MIN

    clock.advance(5 * MIN)
    assert pm.load() is not None


def test_extend_expiry_does_not_revive_expired_state(pm, store, clock):
    pm.save(_state())
    clock.advance(11 * MIN)
    assert pm.extend_expiry(10) is False
    assert store.get("enrollment_state") is None


def test_age_minutes_and_has_valid_state(pm, clock):
    assert pm.age_minutes() is None
    assert pm.has_valid_state() is False
    pm.save(_state())
    clock.advance(3 * MIN)
    assert pm.age_minutes() == pytest.approx(3.0)
    assert pm.has_valid_state() is True


def test_session_id_is_stable_across_saves(pm, clock):
    assert pm.session_id.startswith(f"session_{clock.now_ms()}_")
    pm.save({"currentStep": "auth"})
    from enrollflow.persistence.envelope import read_envelope
    first = read_envelope(pm.store.get(pm.key)).sessionId
    pm.save({"currentStep": "facility"})
    assert read_envelope(pm.store.get(pm.key)).sessionId == first == pm.session_id


def test_autosaver_debounces_to_last_write(pm, clock):
    scheduler = ManualScheduler(clock)
    saver = AutoSaver(pm, scheduler, debounce_ms=1000)

    saver.schedule({"currentStep": "auth"})
    scheduler.advance(500)
    saver.schedule({"currentStep": "facility"})
    scheduler.advance(500)
    saver.schedule({"currentStep": "pricing"})
    scheduler.advance(999)
    assert pm.load() is None
    assert saver.pending is True

    scheduler.advance(1)
    assert pm.load() == {"currentStep": "pricing"}
    assert saver.pending is False


def test_autosaver_flush_writes_immediately(pm, clock):
    scheduler = ManualScheduler(clock)
    saver = AutoSaver(pm, scheduler, debounce_ms=1000)
    saver.schedule({"currentStep": "payment"})

    assert saver.flush() is True
    assert pm.load() == {"currentStep": "payment"}
    assert scheduler.pending == 0
    assert saver.flush() is None


def test_autosaver_cancel_drops_pending(pm, clock):
    scheduler = ManualScheduler(clock)
    saver = AutoSaver(pm, scheduler, debounce_ms=1000)
    saver.schedule({"currentStep": "payment"})
    saver.cancel()
    scheduler.advance(5000)
    assert pm.load() is None


def test_pricing_step_survives_then_expires(pm, clock):
    pm.save({"currentStep": "pricing", "isAuthenticated": True})
    loaded = pm.load()
    assert loaded["currentStep"] == "pricing"
    assert loaded["isAuthenticated"] is True

    clock.advance(11 * MIN)
    assert pm.load() is None
