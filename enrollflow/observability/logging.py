import json
import time
from enrollflow.settings import settings

# Fields that must never reach stdout in clear text (if PII redaction enabled)
SENSITIVE_KEYS = {
    "phoneNumber",
    "phone",
    "signature",
    "razorpay_signature",
    "temporaryPassword",
    "password",
    "otp",
    "code",
}
# Identifiers that stay useful for support when partially masked
PARTIAL_KEYS = {
    "orderId",
    "paymentId",
    "razorpay_order_id",
    "razorpay_payment_id",
    "gatewayOrderId",
    "gatewayPaymentId",
}

def _redact_value(v):
    if isinstance(v, str) and len(v) > 0:
        return f"[REDACTED:{len(v)}chars]"
    if isinstance(v, dict):
        return {k: _redact_value(val) for k, val in v.items()}
    return v

def mask_identifier(v):
    """Keep the first 8 and last 4 characters of an identifier."""
    if not isinstance(v, str) or len(v) <= 12:
        return v
    return f"{v[:8]}***{v[-4:]}"

def _clean(k, v):
    if k in SENSITIVE_KEYS:
        return _redact_value(v)
    if k in PARTIAL_KEYS:
        return mask_identifier(v)
    if isinstance(v, dict):
        return {sk: _clean(sk, sv) for sk, sv in v.items()}
    return v

def log(event: str, **fields):
    payload = {"ts": int(time.time()), "event": event}

    if settings.ENABLE_PII_REDACTION:
        payload.update({k: _clean(k, v) for k, v in fields.items()})
    else:
        payload.update(fields)

    print(json.dumps(payload, ensure_ascii=False, default=str))
