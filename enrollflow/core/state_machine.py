from dataclasses import fields as dc_fields, replace
from typing import Any, Dict, Optional, Union

from enrollflow.core.errors import ErrorLog, handle_error
from enrollflow.observability.logging import log
from enrollflow.persistence.recovery import STEP_NAMES
from enrollflow.store.models import (
    WorkflowState,
    enrollment_from_dict,
    plan_from_dict,
    state_to_dict,
)

# Enrollment workflow steps (linear, no branches on the happy path)

# Phone verification (OTP)
AUTH = "auth"

# Facility / court details. Informational only
FACILITY = "facility"

# Plan selection
PRICING = "pricing"

# Gateway checkout. Bounces to PRICING when no plan is selected
PAYMENT = "payment"

# Enrollment summary. Bounces to PAYMENT without an enrollment id
CONFIRMATION = "confirmation"


STEPS = (AUTH, FACILITY, PRICING, PAYMENT, CONFIRMATION)

_STATE_FIELDS = {f.name for f in dc_fields(WorkflowState)}


def is_step_complete(state: WorkflowState, step: str) -> bool:
    if step == AUTH:
        return bool(state.isAuthenticated)
    if step == FACILITY:
        return bool(state.isAuthenticated)
    if step == PRICING:
        return state.selectedPlan is not None
    if step == PAYMENT:
        return state.paymentStatus == "success"
    if step == CONFIRMATION:
        record = state.enrollmentRecord
        return state.paymentStatus == "success" and bool(record is not None and record.id)
    return False


def can_proceed_to(state: WorkflowState, step: str) -> bool:
    """Every step strictly before `step` must be complete. Never cached."""
    if step not in STEPS:
        return False
    return all(is_step_complete(state, s) for s in STEPS[: STEPS.index(step)])


def apply_patch(state: WorkflowState, patch: Union[WorkflowState, Dict[str, Any], None]) -> WorkflowState:
    """
    Shallow merge. Nested objects (selectedPlan, enrollmentRecord) are replaced wholesale,
    and dicts coming back from storage are rebuilt into dataclasses.
    """
    if patch is None:
        return state
    if isinstance(patch, WorkflowState):
        patch = state_to_dict(patch)
    changes: Dict[str, Any] = {}
    for k, v in patch.items():
        if k not in _STATE_FIELDS:
            continue
        if k == "selectedPlan":
            v = plan_from_dict(v)
        elif k == "enrollmentRecord":
            v = enrollment_from_dict(v)
        elif k == "errorsByStep":
            v = dict(v) if isinstance(v, dict) else {}
        elif k == "currentStep" and v not in STEPS:
            log(event="workflow_unknown_step", requested=str(v)[:50], resolved=AUTH)
            v = AUTH
        changes[k] = v
    return replace(state, **changes)


def resolve_step(state: WorkflowState, step: str) -> str:
    if step == PAYMENT and state.selectedPlan is None:
        return PRICING
    if step == CONFIRMATION and not (state.enrollmentRecord and state.enrollmentRecord.id):
        return PAYMENT
    return step


class WorkflowSession:
    """
    Owns the live WorkflowState. All mutation goes through update(), which merges,
    clears the error of the step being left and schedules a debounced save.
    """

    def __init__(self, autosaver=None, persistence=None, supervisor=None,
                 error_log: Optional[ErrorLog] = None, initial: Optional[WorkflowState] = None):
        self.autosaver = autosaver
        self.persistence = persistence if persistence is not None else getattr(autosaver, "manager", None)
        self.supervisor = supervisor
        self.error_log = error_log or ErrorLog()
        self.state = initial or WorkflowState()

    def update(self, patch: Union[WorkflowState, Dict[str, Any]]) -> WorkflowState:
        prev = self.state
        new = apply_patch(prev, patch)
        if new.currentStep != prev.currentStep and prev.currentStep in new.errorsByStep:
            errors = dict(new.errorsByStep)
            errors.pop(prev.currentStep, None)
            new = replace(new, errorsByStep=errors)
        self.state = new

        if self.autosaver is not None:
            self.autosaver.schedule(new)
        if self.supervisor is not None and new.isAuthenticated != prev.isAuthenticated:
            self.supervisor.set_authenticated(new.isAuthenticated)
        return new

    def go_to(self, step: str) -> str:
        if step not in STEPS:
            raise ValueError(f"unknown step: {step}")
        target = resolve_step(self.state, step)
        if target != step:
            log(event="workflow_step_bounced", requested=step, resolved=target)
        self.update({"currentStep": target})
        return target

    def next_step(self) -> str:
        idx = STEPS.index(self.state.currentStep)
        if idx < len(STEPS) - 1:
            return self.go_to(STEPS[idx + 1])
        return self.state.currentStep

    def previous_step(self) -> str:
        idx = STEPS.index(self.state.currentStep)
        if idx > 0:
            return self.go_to(STEPS[idx - 1])
        return self.state.currentStep

    def is_step_complete(self, step: str) -> bool:
        return is_step_complete(self.state, step)

    def can_proceed_to(self, step: str) -> bool:
        return can_proceed_to(self.state, step)

    # errors are never persisted, so these skip the autosave
    def set_error(self, step: Optional[str], error: Any) -> str:
        step = step or self.state.currentStep
        if isinstance(error, str):
            message = error
        else:
            message = handle_error(error, step, self.error_log).userMessage
        errors = dict(self.state.errorsByStep)
        errors[step] = message
        self.state = replace(self.state, errorsByStep=errors)
        return message

    def clear_error(self, step: Optional[str] = None) -> None:
        step = step or self.state.currentStep
        if step in self.state.errorsByStep:
            errors = dict(self.state.errorsByStep)
            errors.pop(step)
            self.state = replace(self.state, errorsByStep=errors)

    def error_for(self, step: Optional[str] = None) -> Optional[str]:
        return self.state.errorsByStep.get(step or self.state.currentStep)

    def merge_recovered(self, partial: Dict[str, Any]) -> WorkflowState:
        self.state = apply_patch(self.state, partial)
        if self.supervisor is not None:
            self.supervisor.set_authenticated(self.state.isAuthenticated)
            # the timer restarts now, so the stored expiry has to move with it
            if self.supervisor.is_armed and self.persistence is not None:
                self.persistence.extend_expiry(self.supervisor.timeout_minutes)
        return self.state

    def reset(self) -> WorkflowState:
        if self.autosaver is not None:
            self.autosaver.cancel()
        if self.persistence is not None:
            self.persistence.clear()
        if self.supervisor is not None:
            self.supervisor.set_authenticated(False)
        self.state = WorkflowState()
        return self.state

    def step_name(self, step: Optional[str] = None) -> str:
        step = step or self.state.currentStep
        return STEP_NAMES.get(step, step)

    def dispose(self) -> None:
        if self.autosaver is not None:
            self.autosaver.flush()
        if self.supervisor is not None:
            self.supervisor.dispose()
