"""
Secondary Registration Engine
-----------------------------
Best-effort dual write of a paid enrollment to the secondary platform.

One attempt = create remote enrollment -> attach payment -> generate credentials ->
(best effort) create phone login -> record account link locally.

Delivery is at-least-once: the receiver dedupes on (phoneNumber, paymentId). Attempts
are bounded per key by the AttemptLedger, which also survives repeated calls.
"""
from __future__ import annotations

import random
import time
from typing import Callable, List, Optional

from enrollflow.core.plans import extract_plan_duration
from enrollflow.observability.logging import log
import enrollflow.observability.metrics as metrics
from enrollflow.registration.client import SecondaryPlatformClient, generate_credentials
from enrollflow.registration.ledger import (
    AccountLinkStore,
    AttemptLedger,
    AttemptsExhausted,
    registration_key,
)
from enrollflow.registration.retry import RetryOutcome, backoff_delay_ms, is_retryable, retry
from enrollflow.settings import settings
from enrollflow.store.models import AccountLink, EnrollmentRecord, PaymentRecord, RegistrationResult
from enrollflow.store.slots import MemorySlotStore
from enrollflow.utils.time import Clock, SystemClock


class SecondaryRegistrationEngine:
    def __init__(
        self,
        client: Optional[SecondaryPlatformClient] = None,
        ledger: Optional[AttemptLedger] = None,
        links: Optional[AccountLinkStore] = None,
        *,
        max_attempts: Optional[int] = None,
        delay_ms: Optional[Callable[[int], int]] = None,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
        clock: Optional[Clock] = None,
    ):
        self.client = client or SecondaryPlatformClient()
        self.max_attempts = int(max_attempts or settings.REGISTRATION_MAX_ATTEMPTS)
        self.ledger = ledger or AttemptLedger(self.max_attempts)
        self.links = links or AccountLinkStore(MemorySlotStore())
        self.rng = rng
        self.delay_ms = delay_ms or (lambda attempt: backoff_delay_ms(attempt, rng=self.rng))
        self.sleep = sleep
        self.clock = clock or SystemClock()

    # -- single attempt --------------------------------------------------------

    def _attempt(self, enrollment: EnrollmentRecord, payment: PaymentRecord) -> RegistrationResult:
        phone = enrollment.phoneNumber
        secondary_id = self.client.create_enrollment({
            "phoneNumber": phone,
            "sport": enrollment.sport,
            "planId": enrollment.planId,
            "planDuration": extract_plan_duration(enrollment.planId),
            "amount": payment.amount,
            "currency": payment.currency,
            "paymentStatus": "success",
            "razorpayOrderId": payment.gatewayOrderId,
        })

        self.client.update_enrollment_payment({
            "enrollmentId": secondary_id,
            "paymentId": payment.gatewayPaymentId,
            "paymentStatus": "success",
            "razorpayPaymentId": payment.gatewayPaymentId,
            "sessionStartDate": enrollment.sessionStartDate,
            "courtLocation": enrollment.courtLocation,
        })

        credentials = generate_credentials(phone, secondary_id, self.rng)

        # Login account is optional: the enrollment is already recorded remotely
        try:
            self.client.create_phone_user(phone, secondary_id, credentials.temporaryPassword)
        except Exception as e:
            log(event="secondary_phone_user_failed", enrollmentId=secondary_id, error=str(e)[:200])

        self.links.add(AccountLink(
            primaryEnrollmentId=enrollment.id or payment.enrollmentId,
            secondaryEnrollmentId=secondary_id,
            phoneNumber=phone,
            linkedAt=self.clock.now_ms(),
        ))
        return RegistrationResult(success=True, enrollmentId=secondary_id, credentials=credentials)

    def _reserved_attempt(self, key: str, enrollment: EnrollmentRecord, payment: PaymentRecord) -> RegistrationResult:
        attempt_no = self.ledger.begin(key)
        metrics.increment_registration_attempt()
        log(event="registration_attempt", key=key, attempt=attempt_no, maxAttempts=self.max_attempts)
        result = self._attempt(enrollment, payment)
        self.ledger.clear_on_success(key)
        return result

    def _on_attempt(self, key: str, record: dict) -> None:
        self.ledger.record(key, record)
        if record.get("success"):
            metrics.increment_registration_success()
            metrics.record_registration_latency(record.get("durationMs", 0))
        else:
            metrics.increment_registration_failure()

    def _to_result(self, key: str, outcome: RetryOutcome) -> RegistrationResult:
        if outcome.success:
            result: RegistrationResult = outcome.value
            result.attempts = outcome.attempts
            log(event="registration_succeeded", key=key, attempts=outcome.attempts,
                secondaryEnrollmentId=result.enrollmentId)
            return result

        err = outcome.error
        if isinstance(err, AttemptsExhausted):
            return self._refused(key)

        if outcome.retryable and self.ledger.count(key) >= self.max_attempts:
            metrics.increment_registration_terminal()
            log(event="registration_exhausted", key=key, attempts=self.ledger.count(key), lastError=str(err)[:200])
            return RegistrationResult(success=False, error=str(err) or "Registration failed",
                                      retryable=False, terminal=True, attempts=outcome.attempts,
                                      lastError=str(err) or None)

        log(event="registration_failed", key=key, attempts=outcome.attempts,
            retryable=outcome.retryable, error=str(err)[:200])
        return RegistrationResult(success=False, error=str(err) or "Registration failed",
                                  retryable=outcome.retryable, terminal=False, attempts=outcome.attempts)

    def _refused(self, key: str) -> RegistrationResult:
        history = self.ledger.history(key)
        last_error = history[-1].get("error") if history else None
        metrics.increment_registration_terminal()
        log(event="registration_refused", key=key, attempts=self.ledger.count(key), lastError=last_error)
        return RegistrationResult(success=False, error=str(AttemptsExhausted(key, self.ledger.count(key))),
                                  retryable=False, terminal=True, attempts=0, lastError=last_error)

    def _remaining(self, key: str) -> int:
        return max(0, self.max_attempts - self.ledger.count(key))

    # -- public API ------------------------------------------------------------

    def register_once(self, enrollment: EnrollmentRecord, payment: PaymentRecord) -> RegistrationResult:
        key = registration_key(enrollment.phoneNumber, payment.id)
        if self._remaining(key) == 0:
            return self._refused(key)
        outcome = retry(
            lambda _n: self._reserved_attempt(key, enrollment, payment),
            max_attempts=1,
            is_retryable=is_retryable,
            sleep=self.sleep,
            on_attempt=lambda rec: self._on_attempt(key, rec),
        )
        return self._to_result(key, outcome)

    def register_with_retry(self, enrollment: EnrollmentRecord, payment: PaymentRecord) -> RegistrationResult:
        """
        Up to max_attempts sequential tries, minus any this key already used. Attempt 1
        is immediate; attempt n waits delay_ms(n) first. Stops early on a non-retryable error.
        """
        key = registration_key(enrollment.phoneNumber, payment.id)
        remaining = self._remaining(key)
        if remaining == 0:
            return self._refused(key)
        outcome = retry(
            lambda _n: self._reserved_attempt(key, enrollment, payment),
            max_attempts=remaining,
            delay_ms=self.delay_ms,
            is_retryable=is_retryable,
            sleep=self.sleep,
            on_attempt=lambda rec: self._on_attempt(key, rec),
        )
        return self._to_result(key, outcome)

    def attempt_count(self, phone: str, payment_id: str) -> int:
        return self.ledger.count(registration_key(phone, payment_id))

    def reset_attempts(self, phone: str, payment_id: str) -> None:
        self.ledger.reset(registration_key(phone, payment_id))

    def account_links(self, phone: str) -> List[AccountLink]:
        return self.links.links_for(phone)

    def health_check(self) -> bool:
        try:
            return bool(self.client.health_check())
        except Exception:
            return False
