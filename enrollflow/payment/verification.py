"""
Payment verification collaborators.

HttpPaymentVerifier posts the gateway callback to a backend that checks the signature
and creates the primary enrollment. LocalSignatureVerifier checks the signature in
process with the gateway secret (HMAC-SHA256 over "order_id|payment_id").
"""
from __future__ import annotations

import hashlib
import hmac
import time
import uuid
from typing import Optional, Protocol

import httpx
from pydantic import ValidationError

from enrollflow.observability.logging import log
from enrollflow.payment.schemas import VerificationRequest, VerificationResponse
from enrollflow.settings import settings


class PaymentVerificationError(Exception):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class PaymentVerifier(Protocol):
    def verify(self, request: VerificationRequest) -> VerificationResponse:
        ...


def compute_signature(order_id: str, payment_id: str, secret: str) -> str:
    msg = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    if not (order_id and payment_id and signature and secret):
        return False
    return hmac.compare_digest(compute_signature(order_id, payment_id, secret), signature)


class LocalSignatureVerifier:
    def __init__(self, secret: Optional[str] = None):
        self.secret = secret if secret is not None else settings.PAYMENT_GATEWAY_SECRET

    def verify(self, request: VerificationRequest) -> VerificationResponse:
        if not self.secret:
            raise PaymentVerificationError("PAYMENT_GATEWAY_SECRET is not set")
        if not verify_signature(request.order_id, request.payment_id, request.signature, self.secret):
            raise PaymentVerificationError("Payment signature mismatch")
        return VerificationResponse(
            success=True,
            enrollmentId=f"enr_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}",
            paymentId=request.payment_id,
        )


class HttpPaymentVerifier:
    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None,
                 client: Optional[httpx.Client] = None):
        self.url = url if url is not None else settings.PAYMENT_VERIFY_URL
        self.timeout = float(timeout if timeout is not None else settings.PAYMENT_VERIFY_TIMEOUT_SEC)
        self._client = client

    def _post(self, payload: dict) -> httpx.Response:
        if self._client is not None:
            return self._client.post(self.url, json=payload, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(self.url, json=payload)

    def verify(self, request: VerificationRequest) -> VerificationResponse:
        if not self.url:
            raise PaymentVerificationError("PAYMENT_VERIFY_URL is not set")

        start = time.time()
        try:
            resp = self._post(request.model_dump())
        except httpx.HTTPError as e:
            log(event="payment_verify_transport_error", orderId=request.order_id, error=str(e)[:200])
            raise PaymentVerificationError(f"verification request failed: {type(e).__name__}") from e

        elapsed_ms = int((time.time() - start) * 1000)
        if not (200 <= resp.status_code < 300):
            log(
                event="payment_verify_non2xx",
                orderId=request.order_id,
                statusCode=int(resp.status_code),
                elapsedMs=elapsed_ms,
                responseText=(resp.text or "")[:300],
            )
            raise PaymentVerificationError(f"verification failed: HTTP {resp.status_code}", status=resp.status_code)

        try:
            result = VerificationResponse.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise PaymentVerificationError("verification response malformed") from e

        if not result.success:
            raise PaymentVerificationError(result.error or "Payment verification failed")

        log(event="payment_verified", orderId=request.order_id, paymentId=request.payment_id, elapsedMs=elapsed_ms)
        return result
