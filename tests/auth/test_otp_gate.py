import httpx
import pytest

from enrollflow.auth.otp import OTPGate, validate_phone
from enrollflow.utils.time import ManualClock

PHONE = "+919876543210"
MIN = 60 * 1000


class FakeTransport:
    def __init__(self, good_code="123456", send_errors=()):
        self.good_code = good_code
        self.send_errors = list(send_errors)
        self.sent = []

    def send_otp(self, phone):
        if self.send_errors:
            raise self.send_errors.pop(0)
        self.sent.append(phone)
        return f"handle_{len(self.sent)}"

    def verify_otp(self, handle, code):
        return code == self.good_code


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def sleeps():
    return []


def _gate(transport, clock, sleeps):
    return OTPGate(transport, clock=clock, sleep=sleeps.append, max_attempts=3, lockout_minutes=5,
                   send_max_attempts=3, send_base_delay_ms=1000)


@pytest.mark.parametrize("raw,cc,expected", [
    ("9876543210", "+91", PHONE),
    ("98765 43210", "+91", PHONE),
    ("+91 98765-43210", "+1", PHONE),
    ("12345", "+91", None),
    ("", "+91", None),
    ("abc", "+91", None),
    ("+1234567890123456", "+91", None),
])
def test_validate_phone(raw, cc, expected):
    assert validate_phone(raw, cc) == expected


def test_send_and_verify(clock, sleeps):
    transport = FakeTransport()
    gate = _gate(transport, clock, sleeps)

    sent = gate.send("9876543210")
    assert sent.success is True
    assert sent.phoneNumber == PHONE
    assert transport.sent == [PHONE]

    verified = gate.verify("9876543210", "123456")
    assert verified.success is True
    assert verified.verified is True


def test_send_retries_with_backoff(clock, sleeps):
    transport = FakeTransport(send_errors=[httpx.ConnectError("down"), httpx.ConnectError("down")])
    result = _gate(transport, clock, sleeps).send(PHONE)
    assert result.success is True
    assert sleeps == [1.0, 2.0]


def test_send_gives_up_as_auth_service_error(clock, sleeps):
    errors = [httpx.ConnectError("down")] * 3
    result = _gate(FakeTransport(send_errors=errors), clock, sleeps).send(PHONE)
    assert result.success is False
    assert result.error.code == "AUTH_SERVICE_ERROR"
    assert result.error.retryable is True


def test_invalid_phone(clock, sleeps):
    result = _gate(FakeTransport(), clock, sleeps).send("123")
    assert result.success is False
    assert result.error.code == "INVALID_PHONE"


def test_verify_without_send_is_expired(clock, sleeps):
    result = _gate(FakeTransport(), clock, sleeps).verify(PHONE, "123456")
    assert result.error.code == "OTP_EXPIRED"


def test_malformed_code_is_not_counted(clock, sleeps):
    gate = _gate(FakeTransport(), clock, sleeps)
    gate.send(PHONE)
    result = gate.verify(PHONE, "12ab")
    assert result.error.code == "OTP_INVALID"
    assert result.attemptsRemaining == 3


def test_lockout_after_three_wrong_codes(clock, sleeps):
    gate = _gate(FakeTransport(), clock, sleeps)
    gate.send(PHONE)

    first = gate.verify(PHONE, "000000")
    assert first.error.code == "OTP_INVALID"
    assert first.attemptsRemaining == 2
    gate.verify(PHONE, "000000")
    third = gate.verify(PHONE, "000000")
    assert third.error.code == "OTP_ATTEMPTS_EXCEEDED"
    assert third.lockoutUntil == clock.now_ms() + 5 * MIN
    assert gate.is_locked(PHONE) is True

    assert gate.send(PHONE).error.code == "PHONE_LOCKED"
    assert gate.verify(PHONE, "123456").error.code == "PHONE_LOCKED"

    clock.advance(5 * MIN)
    assert gate.is_locked(PHONE) is False
    assert gate.send(PHONE).success is True
    assert gate.verify(PHONE, "123456").verified is True


def test_success_resets_failure_count(clock, sleeps):
    gate = _gate(FakeTransport(), clock, sleeps)
    gate.send(PHONE)
    gate.verify(PHONE, "000000")
    gate.verify(PHONE, "000000")
    assert gate.verify(PHONE, "123456").verified is True

    gate.send(PHONE)
    assert gate.verify(PHONE, "000000").attemptsRemaining == 2


def test_transport_error_during_verify(clock, sleeps):
    transport = FakeTransport()
    gate = _gate(transport, clock, sleeps)
    gate.send(PHONE)

    def broken(handle, code):
        raise httpx.ReadTimeout("slow")

    transport.verify_otp = broken
    result = gate.verify(PHONE, "123456")
    assert result.success is False
    assert result.error.code == "AUTH_SERVICE_ERROR"
