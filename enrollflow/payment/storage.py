"""
Client-side payment bookkeeping on a slot store: the in-flight payment session,
immutable payment records, a short history and the enrollment draft.

Like the state envelope, this is advisory: every storage error is logged and swallowed.
"""
from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from enrollflow.observability.logging import log, mask_identifier
from enrollflow.settings import settings
from enrollflow.store.models import (
    EnrollmentRecord,
    PaymentRecord,
    enrollment_from_dict,
    payment_record_from_dict,
)
from enrollflow.store.slots import SlotStore
from enrollflow.utils.time import Clock, SystemClock, minutes_to_ms

K_SESSION = "enrollment_payment_session"
K_HISTORY = "enrollment_payment_history"
K_ENROLLMENT = "enrollment_data"
RECORD_PREFIX = "payment_record_"

SESSION_STATUSES = ("created", "processing", "success", "failed", "expired")

_REDACT_FIELDS = ("razorpay_signature", "signature", "key_secret", "phoneNumber", "contact")
_MASK_FIELDS = ("razorpay_payment_id", "razorpay_order_id")


def sanitize_for_logging(data: Any) -> Any:
    if not isinstance(data, dict):
        return data
    out = dict(data)
    for k in _REDACT_FIELDS:
        if out.get(k):
            out[k] = "***REDACTED***"
    for k in _MASK_FIELDS:
        if isinstance(out.get(k), str):
            out[k] = mask_identifier(out[k])
    return out


class PaymentStore:
    def __init__(self, store: SlotStore, clock: Optional[Clock] = None,
                 session_ttl_minutes: Optional[int] = None, history_limit: Optional[int] = None):
        self.store = store
        self.clock = clock or SystemClock()
        self.session_ttl_minutes = int(session_ttl_minutes or settings.PAYMENT_SESSION_TTL_MINUTES)
        self.history_limit = int(history_limit or settings.PAYMENT_HISTORY_LIMIT)

    def _write(self, key: str, value: Any) -> bool:
        try:
            self.store.set(key, json.dumps(value, ensure_ascii=False))
            return True
        except Exception as e:
            log(event="payment_store_write_failed", key=key, error=str(e)[:200])
            return False

    def _read(self, key: str) -> Any:
        try:
            raw = self.store.get(key)
            return json.loads(raw) if raw else None
        except Exception as e:
            log(event="payment_store_read_failed", key=key, error=str(e)[:200])
            return None

    def _delete(self, key: str) -> None:
        try:
            self.store.delete(key)
        except Exception as e:
            log(event="payment_store_delete_failed", key=key, error=str(e)[:200])

    # -- payment session ---------------------------------------------------

    def create_session(self, order_id: str, amount: int, plan_id: str, phone: str,
                       sport: str = "football", currency: Optional[str] = None) -> Dict[str, Any]:
        now = self.clock.now_ms()
        session = {
            "orderId": order_id,
            "amount": int(amount),
            "currency": currency or settings.PAYMENT_CURRENCY,
            "planId": plan_id,
            "userPhone": phone,
            "sport": sport,
            "timestamp": now,
            "expiresAt": now + minutes_to_ms(self.session_ttl_minutes),
            "attempts": 0,
            "status": "created",
        }
        self._write(K_SESSION, session)
        return session

    def get_session(self) -> Optional[Dict[str, Any]]:
        session = self._read(K_SESSION)
        if not isinstance(session, dict):
            return None
        if self.clock.now_ms() > int(session.get("expiresAt", 0) or 0):
            self.clear_session()
            return None
        return session

    def update_session_status(self, status: str, error: Optional[str] = None) -> Optional[Dict[str, Any]]:
        if status not in SESSION_STATUSES:
            raise ValueError(f"unknown payment session status: {status}")
        session = self.get_session()
        if session is None:
            return None
        now = self.clock.now_ms()
        session["status"] = status
        session["timestamp"] = now
        if status == "processing":
            session["attempts"] = int(session.get("attempts", 0)) + 1
        self._write(K_SESSION, session)

        self.add_history_entry({
            "id": f"history_{now}",
            "orderId": session.get("orderId"),
            "amount": session.get("amount"),
            "status": status if status in ("success", "failed") else "processing",
            "timestamp": now,
            "error": error,
        })
        log(event="payment_session_status", orderId=session.get("orderId"), status=status, error=error)
        return session

    def clear_session(self) -> None:
        self._delete(K_SESSION)

    # -- records -----------------------------------------------------------

    def store_record(self, record: PaymentRecord) -> bool:
        """Write-once. Returns False without touching storage if the id is already recorded."""
        if self.get_record(record.id) is not None:
            log(event="payment_record_exists", paymentId=record.id)
            return False
        ok = self._write(f"{RECORD_PREFIX}{record.id}", asdict(record))
        self.add_history_entry({
            "id": record.id,
            "orderId": record.gatewayOrderId,
            "paymentId": record.gatewayPaymentId,
            "amount": record.amount,
            "status": "success" if record.status == "captured" else "failed",
            "timestamp": record.createdAt,
        })
        return ok

    def get_record(self, record_id: str) -> Optional[PaymentRecord]:
        data = self._read(f"{RECORD_PREFIX}{record_id}")
        if not isinstance(data, dict):
            return None
        try:
            return payment_record_from_dict(data)
        except TypeError:
            return None

    # -- history -----------------------------------------------------------

    def add_history_entry(self, entry: Dict[str, Any]) -> None:
        history = self.history()
        history.append(entry)
        self._write(K_HISTORY, history[-self.history_limit:])

    def history(self) -> List[Dict[str, Any]]:
        data = self._read(K_HISTORY)
        return list(data) if isinstance(data, list) else []

    # -- enrollment draft --------------------------------------------------

    def store_enrollment(self, record: EnrollmentRecord) -> bool:
        return self._write(K_ENROLLMENT, asdict(record))

    def get_enrollment(self) -> Optional[EnrollmentRecord]:
        data = self._read(K_ENROLLMENT)
        return enrollment_from_dict(data) if isinstance(data, dict) else None

    def clear_enrollment_data(self) -> None:
        self._delete(K_ENROLLMENT)
        self._delete(K_SESSION)
        try:
            keys = self.store.keys(RECORD_PREFIX)
        except Exception as e:
            log(event="payment_store_scan_failed", error=str(e)[:200])
            keys = []
        for k in keys:
            self._delete(k)
