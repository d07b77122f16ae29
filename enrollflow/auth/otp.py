"""
OTP gate in front of the auth step.

The SMS transport itself is external (OTPTransport). This module owns what the
workflow needs around it: phone validation, retrying the send step with backoff,
counting failed verifications and locking the number out after too many.
"""
from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Protocol

from enrollflow.core.errors import (
    AUTH_SERVICE_ERROR,
    INVALID_PHONE,
    OTP_ATTEMPTS_EXCEEDED,
    OTP_EXPIRED,
    OTP_INVALID,
    PHONE_LOCKED,
    EnrollmentError,
    categorize_error,
    create_error,
)
from enrollflow.observability.logging import log
from enrollflow.registration.retry import retry
from enrollflow.settings import settings
from enrollflow.utils.time import Clock, SystemClock, minutes_to_ms

OTP_LENGTH = 6
_DIGITS = re.compile(r"\D+")


class OTPTransport(Protocol):
    def send_otp(self, phone: str) -> str:
        """Send a code, return an opaque verification handle."""
        ...

    def verify_otp(self, handle: str, code: str) -> bool:
        ...


@dataclass
class AuthResult:
    success: bool
    verified: bool = False
    phoneNumber: Optional[str] = None
    error: Optional[EnrollmentError] = None
    lockoutUntil: Optional[int] = None
    attemptsRemaining: Optional[int] = None


@dataclass
class _PhoneState:
    handle: Optional[str] = None
    failures: int = 0
    lockedUntil: int = 0
    sends: list = field(default_factory=list)


def validate_phone(phone: str, country_code: str = "+91") -> Optional[str]:
    """Normalise to +<digits>. None when the number is not 10-15 digits overall."""
    raw = (phone or "").strip()
    if not raw:
        return None
    if raw.startswith("+"):
        digits = _DIGITS.sub("", raw)
    else:
        local = _DIGITS.sub("", raw)
        if not local:
            return None
        digits = _DIGITS.sub("", country_code or "") + local
    if not (10 <= len(digits) <= 15):
        return None
    return f"+{digits}"


class OTPGate:
    def __init__(
        self,
        transport: OTPTransport,
        *,
        clock: Optional[Clock] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_attempts: Optional[int] = None,
        lockout_minutes: Optional[float] = None,
        send_max_attempts: Optional[int] = None,
        send_base_delay_ms: Optional[int] = None,
    ):
        self.transport = transport
        self.clock = clock or SystemClock()
        self.sleep = sleep
        self.max_attempts = int(max_attempts or settings.OTP_MAX_ATTEMPTS)
        self.lockout_minutes = float(lockout_minutes if lockout_minutes is not None else settings.OTP_LOCKOUT_MINUTES)
        self.send_max_attempts = int(send_max_attempts or settings.OTP_SEND_MAX_ATTEMPTS)
        self.send_base_delay_ms = int(
            send_base_delay_ms if send_base_delay_ms is not None else settings.OTP_SEND_BASE_DELAY_MS
        )
        self._phones: Dict[str, _PhoneState] = {}

    def _state(self, phone: str) -> _PhoneState:
        return self._phones.setdefault(phone, _PhoneState())

    def lockout_until(self, phone: str) -> Optional[int]:
        st = self._phones.get(phone)
        if st is None or not st.lockedUntil:
            return None
        if self.clock.now_ms() >= st.lockedUntil:
            # lock served: start over with a clean counter
            st.lockedUntil = 0
            st.failures = 0
            return None
        return st.lockedUntil

    def is_locked(self, phone: str) -> bool:
        return self.lockout_until(phone) is not None

    def _locked_result(self, phone: str) -> AuthResult:
        until = self.lockout_until(phone)
        return AuthResult(
            success=False,
            phoneNumber=phone,
            error=create_error(PHONE_LOCKED, {"lockoutUntil": until}),
            lockoutUntil=until,
        )

    def send(self, phone: str, country_code: str = "+91") -> AuthResult:
        normalized = validate_phone(phone, country_code)
        if normalized is None:
            return AuthResult(success=False, error=create_error(INVALID_PHONE))
        if self.is_locked(normalized):
            return self._locked_result(normalized)

        outcome = retry(
            lambda _n: self.transport.send_otp(normalized),
            max_attempts=self.send_max_attempts,
            # first retry waits the base delay, then doubles
            delay_ms=lambda n: self.send_base_delay_ms * (2 ** (n - 2)),
            sleep=self.sleep,
        )
        if not outcome.success:
            err = categorize_error(outcome.error)
            if err.category != "auth":
                err = create_error(AUTH_SERVICE_ERROR, {"attempts": outcome.attempts, **err.context})
            log(event="otp_send_failed", phone=normalized, attempts=outcome.attempts, errorCode=err.code)
            return AuthResult(success=False, phoneNumber=normalized, error=err)

        st = self._state(normalized)
        st.handle = str(outcome.value)
        st.sends.append(self.clock.now_ms())
        log(event="otp_sent", phone=normalized, attempts=outcome.attempts)
        return AuthResult(success=True, phoneNumber=normalized,
                          attemptsRemaining=self.max_attempts - st.failures)

    def verify(self, phone: str, code: str, country_code: str = "+91") -> AuthResult:
        normalized = validate_phone(phone, country_code)
        if normalized is None:
            return AuthResult(success=False, error=create_error(INVALID_PHONE))
        if self.is_locked(normalized):
            return self._locked_result(normalized)

        st = self._state(normalized)
        if not st.handle:
            return AuthResult(success=False, phoneNumber=normalized, error=create_error(OTP_EXPIRED))

        code = (code or "").strip()
        if len(code) != OTP_LENGTH or not code.isdigit():
            return AuthResult(success=False, phoneNumber=normalized, error=create_error(OTP_INVALID),
                              attemptsRemaining=self.max_attempts - st.failures)

        try:
            ok = bool(self.transport.verify_otp(st.handle, code))
        except Exception as e:
            err = categorize_error(e)
            if err.category != "auth":
                err = create_error(AUTH_SERVICE_ERROR, err.context)
            log(event="otp_verify_error", phone=normalized, errorCode=err.code)
            return AuthResult(success=False, phoneNumber=normalized, error=err)

        if ok:
            st.handle = None
            st.failures = 0
            log(event="otp_verified", phone=normalized)
            return AuthResult(success=True, verified=True, phoneNumber=normalized)

        st.failures += 1
        if st.failures >= self.max_attempts:
            st.lockedUntil = self.clock.now_ms() + minutes_to_ms(self.lockout_minutes)
            st.handle = None
            log(event="otp_phone_locked", phone=normalized, lockedUntil=st.lockedUntil)
            return AuthResult(
                success=False,
                phoneNumber=normalized,
                error=create_error(OTP_ATTEMPTS_EXCEEDED, {"lockoutUntil": st.lockedUntil}),
                lockoutUntil=st.lockedUntil,
                attemptsRemaining=0,
            )

        remaining = self.max_attempts - st.failures
        return AuthResult(
            success=False,
            phoneNumber=normalized,
            error=create_error(OTP_INVALID, {"attemptsRemaining": remaining}),
            attemptsRemaining=remaining,
        )
