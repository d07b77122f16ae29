"""
Persistence Envelope Codec
--------------------------
Wraps a partial workflow-state snapshot with createdAt / expiresAt / schemaVersion /
sessionId and turns it into a single string for a storage slot.

Contract:
- decode() never raises. It returns None on undecodable input, schema-version
  mismatch, or now > expiresAt, and calls on_invalid() so the caller can drop the slot.
- Times are wall-clock epoch milliseconds. A clock rolled backward extends perceived
  validity; that is a known limitation, not something this module corrects.

The optional XOR + base64 step is OBFUSCATION ONLY. It keeps casual readers of the
storage slot from seeing phone numbers in clear text. It is not encryption and must
not be relied on for confidentiality.
"""
from __future__ import annotations

import base64
import binascii
import json
from dataclasses import asdict
from typing import Any, Callable, Dict, Optional

from enrollflow.store.models import PersistedEnvelope
from enrollflow.utils.time import minutes_to_ms

REQUIRED_KEYS = ("state", "createdAt", "expiresAt", "schemaVersion", "sessionId")


class EnvelopeError(ValueError):
    pass


def _xor(data: bytes, key: bytes) -> bytes:
    return bytes(b ^ key[i % len(key)] for i, b in enumerate(data))


def obfuscate(text: str, key: str) -> str:
    if not key:
        return text
    raw = _xor(text.encode("utf-8"), key.encode("utf-8"))
    return base64.b64encode(raw).decode("ascii")


def deobfuscate(text: str, key: str) -> str:
    if not key:
        return text
    try:
        raw = base64.b64decode(text.encode("ascii"), validate=True)
        return _xor(raw, key.encode("utf-8")).decode("utf-8")
    except (binascii.Error, UnicodeError, ValueError) as e:
        raise EnvelopeError(f"cannot deobfuscate envelope: {e}") from e


def build_envelope(
    state: Dict[str, Any],
    ttl_minutes: float,
    *,
    schema_version: str,
    session_id: str,
    now_ms: int,
) -> PersistedEnvelope:
    return PersistedEnvelope(
        state=dict(state),
        createdAt=int(now_ms),
        expiresAt=int(now_ms) + minutes_to_ms(ttl_minutes),
        schemaVersion=str(schema_version),
        sessionId=str(session_id),
    )


def write_envelope(envelope: PersistedEnvelope, obfuscation_key: str = "") -> str:
    return obfuscate(json.dumps(asdict(envelope), ensure_ascii=False), obfuscation_key)


def read_envelope(raw: str, obfuscation_key: str = "") -> PersistedEnvelope:
    """Parse without validity checks. Raises EnvelopeError on malformed input."""
    text = deobfuscate(raw, obfuscation_key)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise EnvelopeError(f"envelope is not JSON: {e}") from e
    if not isinstance(data, dict) or any(k not in data for k in REQUIRED_KEYS):
        raise EnvelopeError("envelope is missing required keys")
    if not isinstance(data["state"], dict):
        raise EnvelopeError("envelope state is not an object")
    try:
        return PersistedEnvelope(
            state=data["state"],
            createdAt=int(data["createdAt"]),
            expiresAt=int(data["expiresAt"]),
            schemaVersion=str(data["schemaVersion"]),
            sessionId=str(data["sessionId"]),
        )
    except (TypeError, ValueError) as e:
        raise EnvelopeError(f"envelope has invalid timestamps: {e}") from e


def encode(
    state: Dict[str, Any],
    ttl_minutes: float,
    *,
    schema_version: str,
    session_id: str,
    now_ms: int,
    obfuscation_key: str = "",
) -> str:
    env = build_envelope(
        state, ttl_minutes, schema_version=schema_version, session_id=session_id, now_ms=now_ms
    )
    return write_envelope(env, obfuscation_key)


def validity_problem(envelope: PersistedEnvelope, *, schema_version: str, now_ms: int) -> Optional[str]:
    if envelope.schemaVersion != str(schema_version):
        return "schema_version_mismatch"
    if int(now_ms) > envelope.expiresAt:
        return "expired"
    return None


def decode(
    raw: Optional[str],
    *,
    schema_version: str,
    now_ms: int,
    obfuscation_key: str = "",
    on_invalid: Optional[Callable[[str], None]] = None,
) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    try:
        env = read_envelope(raw, obfuscation_key)
        problem = validity_problem(env, schema_version=schema_version, now_ms=now_ms)
    except EnvelopeError:
        problem = "undecodable"
        env = None
    if problem:
        if on_invalid is not None:
            on_invalid(problem)
        return None
    return env.state
