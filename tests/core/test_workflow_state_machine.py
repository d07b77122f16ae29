import itertools
from unittest.mock import MagicMock

import httpx
import pytest

from enrollflow.core.plans import find_plan
from enrollflow.core.state_machine import (
    STEPS,
    WorkflowSession,
    apply_patch,
    can_proceed_to,
    is_step_complete,
    resolve_step,
)
from enrollflow.store.models import EnrollmentRecord, PricingPlan, WorkflowState


def _expected_access(authed, has_plan, paid):
    return {
        "auth": True,
        "facility": authed,
        "pricing": authed,
        "payment": authed and has_plan,
        "confirmation": authed and has_plan and paid,
    }


@pytest.mark.parametrize(
    "authed,has_plan,paid,has_id",
    list(itertools.product([False, True], repeat=4)),
)
def test_can_proceed_to_matches_completion_predicates(authed, has_plan, paid, has_id):
    state = WorkflowState(
        isAuthenticated=authed,
        selectedPlan=find_plan("monthly") if has_plan else None,
        paymentStatus="success" if paid else "pending",
        enrollmentRecord=EnrollmentRecord(id="enr_1" if has_id else None),
    )
    expected = _expected_access(authed, has_plan, paid)
    for step in STEPS:
        assert can_proceed_to(state, step) is expected[step], step


def test_unknown_step_is_never_reachable():
    assert can_proceed_to(WorkflowState(isAuthenticated=True), "upsell") is False
    assert is_step_complete(WorkflowState(isAuthenticated=True), "upsell") is False


def test_confirmation_complete_needs_payment_and_enrollment_id():
    state = WorkflowState(paymentStatus="success", enrollmentRecord=EnrollmentRecord())
    assert is_step_complete(state, "confirmation") is False
    state.enrollmentRecord.id = "enr_1"
    assert is_step_complete(state, "confirmation") is True


def test_resolve_step_bounces():
    assert resolve_step(WorkflowState(), "payment") == "pricing"
    with_plan = WorkflowState(selectedPlan=find_plan("monthly"))
    assert resolve_step(with_plan, "payment") == "payment"
    assert resolve_step(with_plan, "confirmation") == "payment"
    with_plan.enrollmentRecord.id = "enr_1"
    assert resolve_step(with_plan, "confirmation") == "confirmation"


def test_apply_patch_rebuilds_nested_and_ignores_unknown_keys():
    state = apply_patch(WorkflowState(), {
        "selectedPlan": {"id": "quarterly", "duration": "3-month", "price": 13107, "originalPrice": 13788,
                         "totalPrice": 13107, "sessions": 36, "legacyField": 1},
        "enrollmentRecord": {"phoneNumber": "+919876543210", "planId": "quarterly"},
        "notAField": True,
    })
    assert isinstance(state.selectedPlan, PricingPlan)
    assert state.selectedPlan.sessions == 36
    assert isinstance(state.enrollmentRecord, EnrollmentRecord)
    assert state.enrollmentRecord.planId == "quarterly"
    assert not hasattr(state, "notAField")


def test_update_schedules_autosave():
    saver = MagicMock()
    session = WorkflowSession(autosaver=saver)
    new = session.update({"phoneNumber": "+919876543210"})
    saver.schedule.assert_called_once_with(new)


def test_update_notifies_supervisor_only_on_auth_change():
    supervisor = MagicMock()
    session = WorkflowSession(supervisor=supervisor)
    session.update({"isAuthenticated": True})
    session.update({"currentStep": "facility"})
    supervisor.set_authenticated.assert_called_once_with(True)


def test_leaving_a_step_clears_only_its_error():
    session = WorkflowSession(initial=WorkflowState(isAuthenticated=True))
    session.set_error("auth", "bad code")
    session.set_error("pricing", "pick a plan")

    session.go_to("facility")
    assert session.state.errorsByStep == {"pricing": "pick a plan"}


def test_set_error_does_not_autosave():
    saver = MagicMock()
    session = WorkflowSession(autosaver=saver)
    session.set_error("auth", "bad code")
    saver.schedule.assert_not_called()
    assert session.error_for("auth") == "bad code"


def test_set_error_from_exception_uses_user_message():
    session = WorkflowSession()
    msg = session.set_error("payment", httpx.ConnectTimeout("timed out"))
    assert msg.startswith("Request timed out")
    entries = session.error_log.entries()
    assert len(entries) == 1
    assert entries[0].step == "payment"
    assert entries[0].error.code == "NETWORK_TIMEOUT"


def test_clear_error():
    session = WorkflowSession()
    session.set_error(None, "oops")
    session.clear_error()
    assert session.error_for() is None


def test_go_to_bounces_and_rejects_unknown():
    session = WorkflowSession(initial=WorkflowState(isAuthenticated=True))
    assert session.go_to("payment") == "pricing"
    assert session.state.currentStep == "pricing"
    with pytest.raises(ValueError):
        session.go_to("checkout")


def test_next_and_previous_step():
    session = WorkflowSession(initial=WorkflowState(isAuthenticated=True))
    assert session.next_step() == "facility"
    assert session.next_step() == "pricing"
    # no plan yet
    assert session.next_step() == "pricing"
    session.update({"selectedPlan": find_plan("monthly")})
    assert session.next_step() == "payment"
    assert session.previous_step() == "pricing"


def test_merge_recovered_replaces_nested_objects():
    supervisor = MagicMock()
    session = WorkflowSession(supervisor=supervisor,
                              initial=WorkflowState(enrollmentRecord=EnrollmentRecord(sport="cricket")))
    session.merge_recovered({
        "currentStep": "pricing",
        "isAuthenticated": True,
        "enrollmentRecord": {"phoneNumber": "+919876543210"},
    })
    assert session.state.currentStep == "pricing"
    # wholesale replacement: sport falls back to the default
    assert session.state.enrollmentRecord.sport == "football"
    supervisor.set_authenticated.assert_called_once_with(True)


def test_reset_clears_everything():
    saver, persistence, supervisor = MagicMock(), MagicMock(), MagicMock()
    session = WorkflowSession(autosaver=saver, persistence=persistence, supervisor=supervisor,
                              initial=WorkflowState(currentStep="payment", isAuthenticated=True))
    state = session.reset()
    assert state == WorkflowState()
    saver.cancel.assert_called_once()
    persistence.clear.assert_called_once()
    supervisor.set_authenticated.assert_called_once_with(False)


def test_dispose_flushes_pending_save():
    saver, supervisor = MagicMock(), MagicMock()
    WorkflowSession(autosaver=saver, supervisor=supervisor).dispose()
    saver.flush.assert_called_once()
    supervisor.dispose.assert_called_once()


def test_step_name():
    assert WorkflowSession().step_name() == "Phone Verification"
    assert WorkflowSession().step_name("pricing") == "Plan Selection"


def test_unknown_current_step_falls_back_to_auth():
    assert apply_patch(WorkflowState(currentStep="pricing"), {"currentStep": "checkout"}).currentStep == "auth"

    session = WorkflowSession()
    session.merge_recovered({"currentStep": "checkout", "isAuthenticated": True})
    assert session.state.currentStep == "auth"
    assert session.next_step() == "facility"
    assert session.previous_step() == "auth"


def test_merge_recovered_extends_stored_expiry_when_timer_arms():
    persistence, supervisor = MagicMock(), MagicMock()
    supervisor.is_armed = True
    supervisor.timeout_minutes = 10.0
    session = WorkflowSession(persistence=persistence, supervisor=supervisor)

    session.merge_recovered({"currentStep": "pricing", "isAuthenticated": True})
    persistence.extend_expiry.assert_called_once_with(10.0)

    supervisor.is_armed = False
    session.merge_recovered({"isAuthenticated": False})
    persistence.extend_expiry.assert_called_once()
