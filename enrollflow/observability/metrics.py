"""
Registration Metrics
--------------------
Best-effort counters and latency samples for the secondary registration engine,
kept in the configured slot store. Every write swallows its own errors: metrics must
never break a registration.
"""
from __future__ import annotations

import json
import time
from typing import List, Optional

from enrollflow.store.slots import SlotStore, get_slot_store

K_REG_ATT = "metrics:registration:attempts"
K_REG_OK = "metrics:registration:success"
K_REG_FAIL = "metrics:registration:failed"
K_REG_TERMINAL = "metrics:registration:terminal"
K_REG_LAT = "metrics:registration:latencies"

_MAX_SAMPLES = 500

_store: Optional[SlotStore] = None


def configure(store: Optional[SlotStore]) -> None:
    global _store
    _store = store


def _get_store() -> SlotStore:
    global _store
    if _store is None:
        _store = get_slot_store()
    return _store


def _percentile(data: List[float], p: float) -> float:
    """Nearest-rank percentile on sorted data."""
    if not data:
        return 0.0
    d = sorted(data)
    k = max(1, int(round(p * len(d))))
    return float(d[k - 1])


def _incr(key: str) -> None:
    try:
        s = _get_store()
        s.set(key, str(int(s.get(key) or 0) + 1))
    except Exception:
        pass


def _count(key: str) -> int:
    try:
        return int(_get_store().get(key) or 0)
    except Exception:
        return 0


def increment_registration_attempt() -> None:
    _incr(K_REG_ATT)


def increment_registration_success() -> None:
    _incr(K_REG_OK)


def increment_registration_failure() -> None:
    _incr(K_REG_FAIL)


def increment_registration_terminal() -> None:
    _incr(K_REG_TERMINAL)


def record_registration_latency(ms: int) -> None:
    try:
        ms = int(ms)
        s = _get_store()
        samples = _read_latencies()
        samples.insert(0, ms)
        s.set(K_REG_LAT, json.dumps(samples[:_MAX_SAMPLES]))
    except Exception:
        return


def _read_latencies() -> List[int]:
    try:
        raw = _get_store().get(K_REG_LAT)
        data = json.loads(raw) if raw else []
        return [int(x) for x in data] if isinstance(data, list) else []
    except Exception:
        return []


def snapshot() -> dict:
    attempts = _count(K_REG_ATT)
    ok = _count(K_REG_OK)
    lat_s = [x / 1000.0 for x in _read_latencies()]
    rate = (ok / attempts) * 100.0 if attempts > 0 else 0.0
    return {
        "registration_attempts": attempts,
        "registration_success": ok,
        "registration_failed": _count(K_REG_FAIL),
        "registration_terminal": _count(K_REG_TERMINAL),
        "registration_success_rate": round(rate, 3),
        "p50_registration_latency": round(_percentile(lat_s, 0.50), 3),
        "p95_registration_latency": round(_percentile(lat_s, 0.95), 3),
        "snapshot_at": int(time.time()),
    }
