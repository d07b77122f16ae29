from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from enrollflow.observability.logging import log
from enrollflow.persistence.manager import PersistenceManager

STEP_NAMES = {
    "auth": "Phone Verification",
    "facility": "Facility Details",
    "pricing": "Plan Selection",
    "payment": "Payment",
    "confirmation": "Confirmation",
}


@dataclass
class RecoveryInfo:
    canRecover: bool
    ageMinutes: Optional[float] = None
    lastStep: Optional[str] = None


class RecoveryManager:
    """
    Decides whether a previous session can be resumed and hands the stored partial
    state to on_recovered. Never raises: failures go to on_failed and recover() returns None.
    """

    def __init__(
        self,
        persistence: PersistenceManager,
        on_recovered: Optional[Callable[[Dict[str, Any]], None]] = None,
        on_failed: Optional[Callable[[Exception], None]] = None,
    ):
        self.persistence = persistence
        self.on_recovered = on_recovered
        self.on_failed = on_failed

    def can_recover(self) -> bool:
        return self.persistence.has_valid_state()

    def recovery_info(self) -> RecoveryInfo:
        state = self.persistence.load()
        if state is None:
            return RecoveryInfo(canRecover=False)
        age = self.persistence.age_minutes()
        return RecoveryInfo(
            canRecover=True,
            ageMinutes=round(age, 1) if age is not None else None,
            lastStep=state.get("currentStep"),
        )

    def recover(self) -> Optional[Dict[str, Any]]:
        try:
            state = self.persistence.load()
            if state is None:
                return None
            if self.on_recovered is not None:
                self.on_recovered(state)
            log(event="state_recovered", lastStep=state.get("currentStep"))
            return state
        except Exception as e:
            try:
                log(event="state_recovery_failed", errorType=type(e).__name__, error=str(e)[:200])
            except Exception:
                pass
            if self.on_failed is not None:
                self.on_failed(e)
            return None

    def discard(self) -> None:
        self.persistence.clear()
        log(event="state_recovery_discarded")

    def prompt(self) -> Dict[str, Any]:
        info = self.recovery_info()
        last = info.lastStep or ""
        return {
            "show": info.canRecover,
            "ageMinutes": info.ageMinutes,
            "lastStep": info.lastStep,
            "lastStepName": STEP_NAMES.get(last, last),
        }
