import json

from enrollflow.persistence.envelope import (
    EnvelopeError,
    decode,
    deobfuscate,
    encode,
    obfuscate,
    read_envelope,
)

NOW = 1_700_000_000_000
TEN_MIN = 10 * 60 * 1000


def _encode(state, key="", now=NOW):
    return encode(state, 10, schema_version="1.0.0", session_id="session_x", now_ms=now, obfuscation_key=key)


def test_roundtrip_within_ttl():
    raw = _encode({"currentStep": "pricing", "phoneNumber": "+919876543210"})
    state = decode(raw, schema_version="1.0.0", now_ms=NOW + TEN_MIN - 1)
    assert state == {"currentStep": "pricing", "phoneNumber": "+919876543210"}


def test_envelope_shape():
    env = read_envelope(_encode({"currentStep": "auth"}))
    assert env.createdAt == NOW
    assert env.expiresAt == NOW + TEN_MIN
    assert env.schemaVersion == "1.0.0"
    assert env.sessionId == "session_x"


def test_valid_exactly_at_expiry_then_expired():
    raw = _encode({"currentStep": "auth"})
    assert decode(raw, schema_version="1.0.0", now_ms=NOW + TEN_MIN) is not None

    reasons = []
    assert decode(raw, schema_version="1.0.0", now_ms=NOW + TEN_MIN + 1, on_invalid=reasons.append) is None
    assert reasons == ["expired"]


def test_schema_version_mismatch_is_invalid():
    reasons = []
    raw = _encode({"currentStep": "auth"})
    assert decode(raw, schema_version="2.0.0", now_ms=NOW, on_invalid=reasons.append) is None
    assert reasons == ["schema_version_mismatch"]


def test_garbage_never_raises():
    reasons = []
    assert decode("{not json", schema_version="1.0.0", now_ms=NOW, on_invalid=reasons.append) is None
    assert decode(json.dumps({"state": {}}), schema_version="1.0.0", now_ms=NOW, on_invalid=reasons.append) is None
    assert reasons == ["undecodable", "undecodable"]


def test_empty_slot_is_not_an_error():
    reasons = []
    assert decode(None, schema_version="1.0.0", now_ms=NOW, on_invalid=reasons.append) is None
    assert decode("", schema_version="1.0.0", now_ms=NOW, on_invalid=reasons.append) is None
    assert reasons == []


def test_obfuscation_hides_plain_text_and_roundtrips():
    raw = _encode({"phoneNumber": "+919876543210"}, key="k3y")
    assert "9876543210" not in raw
    state = decode(raw, schema_version="1.0.0", now_ms=NOW, obfuscation_key="k3y")
    assert state == {"phoneNumber": "+919876543210"}


def test_obfuscated_slot_read_without_key_is_undecodable():
    reasons = []
    raw = _encode({"phoneNumber": "+919876543210"}, key="k3y")
    assert decode(raw, schema_version="1.0.0", now_ms=NOW, on_invalid=reasons.append) is None
    assert reasons == ["undecodable"]


def test_deobfuscate_rejects_bad_base64():
    try:
        deobfuscate("***not-base64***", "key")
    except EnvelopeError:
        pass
    else:
        raise AssertionError("expected EnvelopeError")


def test_obfuscate_is_identity_without_key():
    assert obfuscate("hello", "") == "hello"
    assert deobfuscate(obfuscate("héllo", "abc"), "abc") == "héllo"
