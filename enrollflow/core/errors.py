"""
Error taxonomy for the enrollment workflow.

Every failure a user can see is normalised into an EnrollmentError with a category
(validation / network / payment / auth / system), a stable code, a user-facing message
and a retryable flag. Pipeline boundaries return Ok / Err instead of raising.
"""
from __future__ import annotations

import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Generic, List, Optional, TypeVar, Union

import httpx

from enrollflow.observability.logging import log
from enrollflow.settings import settings

CATEGORIES = ("validation", "network", "payment", "auth", "system")

# Network
NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
NETWORK_UNAVAILABLE = "NETWORK_UNAVAILABLE"
API_ERROR = "API_ERROR"
CONNECTION_FAILED = "CONNECTION_FAILED"
# Auth
INVALID_PHONE = "INVALID_PHONE"
OTP_INVALID = "OTP_INVALID"
OTP_EXPIRED = "OTP_EXPIRED"
OTP_ATTEMPTS_EXCEEDED = "OTP_ATTEMPTS_EXCEEDED"
PHONE_LOCKED = "PHONE_LOCKED"
AUTH_SERVICE_ERROR = "AUTH_SERVICE_ERROR"
# Payment
PAYMENT_FAILED = "PAYMENT_FAILED"
PAYMENT_CANCELLED = "PAYMENT_CANCELLED"
PAYMENT_TIMEOUT = "PAYMENT_TIMEOUT"
INVALID_PAYMENT_DATA = "INVALID_PAYMENT_DATA"
PAYMENT_SERVICE_ERROR = "PAYMENT_SERVICE_ERROR"
INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
CARD_DECLINED = "CARD_DECLINED"
# Validation
REQUIRED_FIELD = "REQUIRED_FIELD"
INVALID_FORMAT = "INVALID_FORMAT"
INVALID_PLAN = "INVALID_PLAN"
INVALID_AMOUNT = "INVALID_AMOUNT"
# System
UNKNOWN_ERROR = "UNKNOWN_ERROR"
SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
SECONDARY_PLATFORM_ERROR = "SECONDARY_PLATFORM_ERROR"
DATA_CORRUPTION = "DATA_CORRUPTION"

# code -> (category, user message)
ERROR_CODES: Dict[str, tuple] = {
    NETWORK_TIMEOUT: ("network", "Request timed out. Please check your connection and try again."),
    NETWORK_UNAVAILABLE: ("network", "Unable to connect to our servers. Please check your internet connection."),
    API_ERROR: ("network", "Something went wrong on our end. Please try again in a moment."),
    CONNECTION_FAILED: ("network", "Connection failed. Please check your internet connection and try again."),
    INVALID_PHONE: ("auth", "Please enter a valid phone number."),
    OTP_INVALID: ("auth", "The verification code you entered is incorrect. Please try again."),
    OTP_EXPIRED: ("auth", "The verification code has expired. Please request a new one."),
    OTP_ATTEMPTS_EXCEEDED: ("auth", "Too many incorrect attempts. Please wait before trying again."),
    PHONE_LOCKED: ("auth", "This phone number is temporarily locked. Please try again later."),
    AUTH_SERVICE_ERROR: ("auth", "Authentication service is temporarily unavailable. Please try again."),
    PAYMENT_FAILED: ("payment", "Payment failed. Please try again or use a different payment method."),
    PAYMENT_CANCELLED: ("payment", "Payment was cancelled. You can try again when ready."),
    PAYMENT_TIMEOUT: ("payment", "Payment timed out. Please try again."),
    INVALID_PAYMENT_DATA: ("payment", "Invalid payment information. Please check your details."),
    PAYMENT_SERVICE_ERROR: ("payment", "Payment service is temporarily unavailable. Please try again."),
    INSUFFICIENT_FUNDS: ("payment", "Insufficient funds. Please try a different payment method."),
    CARD_DECLINED: ("payment", "Your card was declined. Please try a different payment method."),
    REQUIRED_FIELD: ("validation", "This field is required."),
    INVALID_FORMAT: ("validation", "Please enter a valid format."),
    INVALID_PLAN: ("validation", "Please select a valid pricing plan."),
    INVALID_AMOUNT: ("validation", "Invalid amount. Please try again."),
    UNKNOWN_ERROR: ("system", "An unexpected error occurred. Please try again."),
    SERVICE_UNAVAILABLE: ("system", "Service is temporarily unavailable. Please try again later."),
    SECONDARY_PLATFORM_ERROR: (
        "system",
        "Unable to complete registration. Your enrollment is saved and we will contact you.",
    ),
    DATA_CORRUPTION: ("system", "Data error occurred. Please start the enrollment process again."),
}

RETRYABLE_CODES = {
    NETWORK_TIMEOUT,
    NETWORK_UNAVAILABLE,
    API_ERROR,
    CONNECTION_FAILED,
    PAYMENT_TIMEOUT,
    PAYMENT_SERVICE_ERROR,
    AUTH_SERVICE_ERROR,
    SERVICE_UNAVAILABLE,
    SECONDARY_PLATFORM_ERROR,
}

# Provider auth codes -> taxonomy codes
_AUTH_CODE_MAP = {
    "auth/invalid-phone-number": INVALID_PHONE,
    "auth/invalid-verification-code": OTP_INVALID,
    "auth/code-expired": OTP_EXPIRED,
    "auth/too-many-requests": OTP_ATTEMPTS_EXCEEDED,
}

DISPLAY_TITLES = {
    "network": "Connection Error",
    "payment": "Payment Error",
    "auth": "Authentication Error",
    "validation": "Validation Error",
    "system": "System Error",
}


@dataclass
class EnrollmentError:
    category: str
    code: str
    message: str
    userMessage: str
    retryable: bool
    context: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))


def create_error(
    code: str,
    context: Optional[Dict[str, Any]] = None,
    custom_message: Optional[str] = None,
) -> EnrollmentError:
    category, default_msg = ERROR_CODES.get(code, ERROR_CODES[UNKNOWN_ERROR])
    if code not in ERROR_CODES:
        category = "system"
    return EnrollmentError(
        category=category,
        code=code,
        message=code,
        userMessage=custom_message or default_msg,
        retryable=code in RETRYABLE_CODES,
        context=dict(context or {}),
    )


def categorize_error(exc: Any) -> EnrollmentError:
    """Map an arbitrary exception (or error-like object) onto the taxonomy."""
    if isinstance(exc, EnrollmentError):
        return exc
    wrapped = getattr(exc, "error", None)
    if isinstance(wrapped, EnrollmentError):
        return wrapped

    detail = str(exc)[:300]
    name = type(exc).__name__
    code = getattr(exc, "code", None)

    if isinstance(exc, (httpx.TimeoutException, TimeoutError)) or name == "TimeoutError" or code == "TIMEOUT":
        return create_error(NETWORK_TIMEOUT, {"originalError": detail})
    if isinstance(exc, (httpx.TransportError, ConnectionError)) or name == "NetworkError" or code == "NETWORK_ERROR":
        return create_error(NETWORK_UNAVAILABLE, {"originalError": detail})

    if isinstance(code, str) and code.startswith("auth/"):
        return create_error(_AUTH_CODE_MAP.get(code, AUTH_SERVICE_ERROR), {"providerCode": code})
    if isinstance(code, str) and code in ERROR_CODES:
        return create_error(code, {"originalError": detail})

    if getattr(exc, "source", None) == "gateway":
        step = getattr(exc, "step", None)
        if step == "payment_failed":
            return create_error(PAYMENT_FAILED, {"gatewayError": detail})
        if step == "payment_cancelled":
            return create_error(PAYMENT_CANCELLED, {"gatewayError": detail})
        return create_error(PAYMENT_SERVICE_ERROR, {"gatewayError": detail})

    status = getattr(exc, "status", None)
    if status is None:
        response = getattr(exc, "response", None)
        status = getattr(response, "status_code", None)
    if isinstance(status, int):
        if 400 <= status < 500:
            return create_error(INVALID_PAYMENT_DATA, {"httpStatus": status})
        if status >= 500:
            return create_error(SERVICE_UNAVAILABLE, {"httpStatus": status})

    return create_error(UNKNOWN_ERROR, {"originalError": detail or name})


def get_retry_delay(attempt: int) -> int:
    """UI retry helper: 1s, 2s, 4s, 8s ... capped at 30s."""
    return min(1000 * (2 ** max(0, int(attempt) - 1)), 30000)


def format_error_for_display(err: EnrollmentError) -> Dict[str, Any]:
    return {
        "title": DISPLAY_TITLES.get(err.category, DISPLAY_TITLES["system"]),
        "message": err.userMessage,
        "canRetry": bool(err.retryable),
    }


class WorkflowError(Exception):
    """Raise an already-classified error through code that expects exceptions."""

    def __init__(self, error: EnrollmentError):
        super().__init__(error.message)
        self.error = error


T = TypeVar("T")


@dataclass
class Ok(Generic[T]):
    value: T
    ok: bool = True


@dataclass
class Err:
    error: EnrollmentError
    ok: bool = False


Result = Union[Ok, Err]


@dataclass
class ErrorLogEntry:
    id: str
    error: EnrollmentError
    step: str
    sessionId: str


class ErrorLog:
    """Last N classified errors for a session, in memory."""

    def __init__(self, session_id: Optional[str] = None, limit: Optional[int] = None):
        self.session_id = session_id or f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
        self.limit = int(limit or settings.ERROR_LOG_LIMIT)
        self._entries: Deque[ErrorLogEntry] = deque(maxlen=self.limit)

    def record(self, error: EnrollmentError, step: str) -> ErrorLogEntry:
        entry = ErrorLogEntry(
            id=f"error_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
            error=error,
            step=step,
            sessionId=self.session_id,
        )
        self._entries.append(entry)
        try:
            log(
                event="workflow_error",
                step=step,
                category=error.category,
                code=error.code,
                retryable=error.retryable,
                context=error.context,
            )
        except Exception:
            pass
        return entry

    def entries(self) -> List[ErrorLogEntry]:
        return list(self._entries)

    def by_category(self, category: str) -> List[ErrorLogEntry]:
        return [e for e in self._entries if e.error.category == category]

    def clear(self) -> None:
        self._entries.clear()


def handle_error(
    exc: Any,
    step: str,
    error_log: Optional[ErrorLog] = None,
    custom_message: Optional[str] = None,
) -> EnrollmentError:
    err = categorize_error(exc)
    if custom_message:
        err.userMessage = custom_message
    if error_log is not None:
        error_log.record(err, step)
    return err


def run_guarded(fn: Callable[[], T], step: str, error_log: Optional[ErrorLog] = None) -> Result:
    """
    Top-level backstop: any exception escaping fn becomes an Err.
    Already classified errors keep their category; anything else is reported as system.
    """
    try:
        return Ok(fn())
    except Exception as e:
        err = categorize_error(e)
        if err.code == UNKNOWN_ERROR:
            err.category = "system"
        if error_log is not None:
            error_log.record(err, step)
        else:
            try:
                log(event="workflow_unhandled_error", step=step, errorCode=err.code, errorType=type(e).__name__)
            except Exception:
                pass
        return Err(err)
