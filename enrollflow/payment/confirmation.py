"""
Payment Confirmation Pipeline
-----------------------------
Turns a raw gateway callback into durable enrollment state.

  1. mark the payment session "processing"
  2. verify with the backend (failure -> session "failed", structured error, no retry here)
  3. build the immutable PaymentRecord, persist it, activate the enrollment
  4. derive ConfirmationData (start date + first sessions)
  5. secondary registration. Its failure NEVER fails the confirmation: the money
     has moved, so the result is flagged degraded instead.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from enrollflow.core.errors import INVALID_PAYMENT_DATA, PAYMENT_FAILED
from enrollflow.observability.logging import log
from enrollflow.payment.schemas import EnrollmentDraft, GatewayCallback, VerificationRequest
from enrollflow.payment.storage import PaymentStore, sanitize_for_logging
from enrollflow.payment.verification import PaymentVerifier
from enrollflow.settings import settings
from enrollflow.store.models import (
    CoachDetails,
    ConfirmationData,
    EnrollmentRecord,
    PaymentRecord,
    PricingPlan,
    RegistrationResult,
    SessionScheduleEntry,
)
from enrollflow.utils.time import Clock, SystemClock, next_monday_at, to_datetime, to_ms

SCHEDULE_PREVIEW_LIMIT = 8
SESSION_START = "06:00"
SESSION_END = "07:00"
DEFAULT_COURT_ID = "court_1"
DEFAULT_COACH_ID = "coach_rajesh"


@dataclass
class ConfirmationRequest:
    callback: GatewayCallback
    enrollment: EnrollmentRecord
    plan: PricingPlan


@dataclass
class ConfirmationResult:
    success: bool
    enrollmentId: Optional[str] = None
    paymentRecord: Optional[PaymentRecord] = None
    enrollment: Optional[EnrollmentRecord] = None
    confirmationData: Optional[ConfirmationData] = None
    registration: Optional[RegistrationResult] = None
    # paid and enrolled, but the secondary platform does not know about it yet
    degraded: bool = False
    error: Optional[str] = None
    errorCode: Optional[str] = None
    retryable: bool = False

    def state_patch(self) -> Dict[str, Any]:
        """Patch for WorkflowSession.update() reflecting this outcome."""
        if not self.success:
            return {"paymentStatus": "failed"}
        return {
            "paymentStatus": "success",
            "enrollmentRecord": self.enrollment,
            "currentStep": "confirmation",
        }


def validate_confirmation_request(request: Optional[ConfirmationRequest]) -> bool:
    if request is None or request.callback is None:
        return False
    cb = request.callback
    if not (cb.razorpay_order_id and cb.razorpay_payment_id and cb.razorpay_signature):
        return False
    enrollment = request.enrollment
    if enrollment is None or not enrollment.phoneNumber or not enrollment.sport:
        return False
    plan = request.plan
    if plan is None or not plan.id or not plan.duration:
        return False
    if not plan.sessions or plan.sessions <= 0:
        return False
    return True


def generate_session_schedule(start: datetime, total_sessions: int, enrollment_id: str = "",
                              limit: int = SCHEDULE_PREVIEW_LIMIT) -> List[SessionScheduleEntry]:
    """Mon/Wed/Fri cadence: step two days, a weekend landing rolls forward to Monday."""
    schedule: List[SessionScheduleEntry] = []
    day = start
    for i in range(min(int(total_sessions or 0), limit)):
        schedule.append(SessionScheduleEntry(
            id=f"session_{i + 1}",
            enrollmentId=enrollment_id,
            date=day,
            startTime=SESSION_START,
            endTime=SESSION_END,
            courtId=DEFAULT_COURT_ID,
            coachId=DEFAULT_COACH_ID,
        ))
        day = day + timedelta(days=2)
        if day.weekday() == 6:
            day = day + timedelta(days=1)
        elif day.weekday() == 5:
            day = day + timedelta(days=2)
    return schedule


def build_confirmation_data(enrollment: EnrollmentRecord, record: PaymentRecord, plan: PricingPlan,
                            now: datetime) -> ConfirmationData:
    start = to_datetime(enrollment.sessionStartDate) if enrollment.sessionStartDate else next_monday_at(now)
    enrollment_id = enrollment.id or record.enrollmentId
    return ConfirmationData(
        enrollmentId=enrollment_id,
        sessionStartDate=start,
        courtLocation=enrollment.courtLocation or settings.COURT_LOCATION,
        coachDetails=CoachDetails(name=settings.COACH_NAME, contact=settings.COACH_CONTACT),
        schedule=generate_session_schedule(start, plan.sessions, enrollment_id),
        paymentReference=record.gatewayPaymentId,
    )


def build_confirmation_message(data: ConfirmationData, sport: str = "football") -> str:
    return "\n".join([
        "Welcome to Playgram Sports!",
        f"Your {sport} coaching enrollment is confirmed.",
        "",
        f"Enrollment ID: {data.enrollmentId}",
        f"Start Date: {data.sessionStartDate.strftime('%d %b %Y, %I:%M %p')}",
        f"Location: {data.courtLocation}",
        f"Coach: {data.coachDetails.name}",
        "",
        f"Contact: {data.coachDetails.contact}",
    ])


class PaymentConfirmationPipeline:
    def __init__(
        self,
        verifier: PaymentVerifier,
        payment_store: PaymentStore,
        engine=None,
        *,
        clock: Optional[Clock] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_retries: Optional[int] = None,
    ):
        self.verifier = verifier
        self.payment_store = payment_store
        self.engine = engine
        self.clock = clock or SystemClock()
        self.sleep = sleep
        self.max_retries = int(max_retries if max_retries is not None else settings.CONFIRMATION_MAX_RETRIES)

    def _fail(self, order_id: str, message: str, code: str) -> ConfirmationResult:
        self.payment_store.update_session_status("failed", message)
        log(event="payment_confirmation_failed", orderId=order_id, errorCode=code, error=message[:200])
        return ConfirmationResult(success=False, error=message, errorCode=code, retryable=False)

    def confirm(self, request: ConfirmationRequest) -> ConfirmationResult:
        if not validate_confirmation_request(request):
            order_id = getattr(getattr(request, "callback", None), "razorpay_order_id", "")
            return self._fail(order_id, "Invalid payment confirmation data", INVALID_PAYMENT_DATA)

        cb, enrollment, plan = request.callback, request.enrollment, request.plan
        log(event="payment_confirmation_started", **sanitize_for_logging(cb.model_dump()))
        self.payment_store.update_session_status("processing")

        verification = VerificationRequest(
            order_id=cb.razorpay_order_id,
            payment_id=cb.razorpay_payment_id,
            signature=cb.razorpay_signature,
            enrollmentData=EnrollmentDraft(phoneNumber=enrollment.phoneNumber, sport=enrollment.sport, planId=plan.id),
            amount=plan.totalPrice,
        )
        try:
            verified = self.verifier.verify(verification)
        except Exception as e:
            return self._fail(cb.razorpay_order_id, str(e) or "Payment verification failed", PAYMENT_FAILED)
        if not verified.enrollmentId:
            return self._fail(cb.razorpay_order_id, "Verification response is missing enrollmentId", PAYMENT_FAILED)

        record_id = verified.paymentId or cb.razorpay_payment_id
        record = self.payment_store.get_record(record_id)
        if record is not None:
            # a payment is recorded once; re-confirming replays the stored record
            log(event="payment_record_reused", paymentId=record_id, enrollmentId=record.enrollmentId)
        else:
            now_ms = self.clock.now_ms()
            record = PaymentRecord(
                id=record_id,
                enrollmentId=verified.enrollmentId,
                gatewayOrderId=cb.razorpay_order_id,
                gatewayPaymentId=cb.razorpay_payment_id,
                amount=int(plan.totalPrice),
                currency=settings.PAYMENT_CURRENCY,
                status="captured",
                createdAt=now_ms,
                updatedAt=now_ms,
            )
            self.payment_store.store_record(record)

        paid_at = to_datetime(record.createdAt)
        active = replace(
            enrollment,
            id=record.enrollmentId,
            planId=enrollment.planId or plan.id,
            paymentId=record.gatewayPaymentId,
            status="active",
            enrollmentDate=record.createdAt,
            sessionStartDate=to_ms(next_monday_at(paid_at)),
            courtLocation=enrollment.courtLocation or settings.COURT_LOCATION,
        )
        self.payment_store.store_enrollment(active)

        data = build_confirmation_data(active, record, plan, paid_at)

        registration: Optional[RegistrationResult] = None
        if self.engine is not None:
            try:
                registration = self.engine.register_with_retry(active, record)
            except Exception as e:
                log(event="registration_unexpected_error", enrollmentId=active.id, errorType=type(e).__name__)
                registration = RegistrationResult(
                    success=False,
                    error=str(e) or "Secondary platform registration failed",
                    retryable=True,
                )
        degraded = registration is not None and not registration.success

        self.payment_store.update_session_status("success")
        log(
            event="payment_confirmation_complete",
            orderId=cb.razorpay_order_id,
            enrollmentId=active.id,
            secondaryPlatformSuccess=None if registration is None else registration.success,
            degraded=degraded,
        )
        return ConfirmationResult(
            success=True,
            enrollmentId=active.id,
            paymentRecord=record,
            enrollment=active,
            confirmationData=data,
            registration=registration,
            degraded=degraded,
        )

    def retry_confirmation(self, request: ConfirmationRequest, retry_count: int) -> ConfirmationResult:
        """User-initiated "try again". Linear backoff: 1s, 2s, 3s."""
        if retry_count >= self.max_retries:
            return ConfirmationResult(
                success=False,
                error="Maximum retry attempts reached for payment confirmation",
                errorCode=PAYMENT_FAILED,
            )
        log(event="payment_confirmation_retry", orderId=request.callback.razorpay_order_id, attempt=retry_count + 1)
        self.sleep(float(retry_count + 1))
        return self.confirm(request)
