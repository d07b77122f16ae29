"""
Persistence Manager: owns exactly one storage slot holding the workflow envelope.

Persistence is a convenience, not a correctness requirement: every storage failure
(quota exceeded, backend down, corrupt slot) is logged and reported as a boolean / None.
"""
from __future__ import annotations

import uuid
from dataclasses import asdict, is_dataclass
from typing import Any, Dict, Iterable, Optional, Union

from enrollflow.observability.logging import log
from enrollflow.persistence import envelope as codec
from enrollflow.settings import settings
from enrollflow.store.models import WorkflowState, state_to_dict
from enrollflow.store.slots import SlotStore
from enrollflow.utils.time import Clock, SystemClock, minutes_to_ms
from enrollflow.utils.timers import Scheduler, TimerHandle

# Never written to storage: stale validation errors must not come back on resume.
ALWAYS_TRANSIENT = ("errorsByStep",)


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def new_session_id(now_ms: int) -> str:
    return f"session_{now_ms}_{uuid.uuid4().hex[:9]}"


class PersistenceManager:
    def __init__(
        self,
        store: SlotStore,
        *,
        key: Optional[str] = None,
        ttl_minutes: Optional[float] = None,
        schema_version: Optional[str] = None,
        obfuscation_key: Optional[str] = None,
        transient_keys: Iterable[str] = (),
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.key = key or settings.STATE_STORAGE_KEY
        self.ttl_minutes = float(ttl_minutes if ttl_minutes is not None else settings.STATE_TTL_MINUTES)
        self.schema_version = str(schema_version or settings.STATE_SCHEMA_VERSION)
        self.obfuscation_key = settings.STATE_OBFUSCATION_KEY if obfuscation_key is None else obfuscation_key
        self.transient_keys = set(ALWAYS_TRANSIENT) | set(transient_keys or ())
        self.clock = clock or SystemClock()
        self.session_id = new_session_id(self.clock.now_ms())

    # -- helpers -----------------------------------------------------------

    def sanitize(self, partial: Union[WorkflowState, Dict[str, Any]]) -> Dict[str, Any]:
        data = state_to_dict(partial) if isinstance(partial, WorkflowState) else dict(partial or {})
        for k in self.transient_keys:
            data.pop(k, None)
        return _jsonable(data)

    def _drop_invalid(self, reason: str) -> None:
        try:
            log(event="state_envelope_dropped", key=self.key, reason=reason)
        except Exception:
            pass
        self.clear()

    def _read(self) -> Optional[codec.PersistedEnvelope]:
        try:
            raw = self.store.get(self.key)
        except Exception as e:
            log(event="state_read_failed", key=self.key, error=str(e)[:200])
            return None
        if not raw:
            return None
        try:
            return codec.read_envelope(raw, self.obfuscation_key)
        except codec.EnvelopeError:
            self._drop_invalid("undecodable")
            return None

    # -- operations --------------------------------------------------------

    def save(self, partial: Union[WorkflowState, Dict[str, Any]]) -> bool:
        """Overwrite the whole envelope. Returns False instead of raising on storage errors."""
        try:
            raw = codec.encode(
                self.sanitize(partial),
                self.ttl_minutes,
                schema_version=self.schema_version,
                session_id=self.session_id,
                now_ms=self.clock.now_ms(),
                obfuscation_key=self.obfuscation_key,
            )
            self.store.set(self.key, raw)
            return True
        except Exception as e:
            log(event="state_save_failed", key=self.key, errorType=type(e).__name__, error=str(e)[:200])
            return False

    def load(self) -> Optional[Dict[str, Any]]:
        try:
            raw = self.store.get(self.key)
        except Exception as e:
            log(event="state_read_failed", key=self.key, error=str(e)[:200])
            return None
        return codec.decode(
            raw,
            schema_version=self.schema_version,
            now_ms=self.clock.now_ms(),
            obfuscation_key=self.obfuscation_key,
            on_invalid=self._drop_invalid,
        )

    def clear(self) -> None:
        try:
            self.store.delete(self.key)
        except Exception as e:
            log(event="state_clear_failed", key=self.key, error=str(e)[:200])

    def has_valid_state(self) -> bool:
        return self.load() is not None

    def extend_expiry(self, minutes: Optional[float] = None) -> bool:
        """
        Push expiresAt out to now + minutes (never shortens it).
        No-op returning False when nothing valid is stored.
        """
        minutes = self.ttl_minutes if minutes is None else float(minutes)
        env = self._read()
        if env is None:
            return False
        now = self.clock.now_ms()
        problem = codec.validity_problem(env, schema_version=self.schema_version, now_ms=now)
        if problem:
            self._drop_invalid(problem)
            return False
        env.expiresAt = max(env.expiresAt, now + minutes_to_ms(minutes))
        try:
            self.store.set(self.key, codec.write_envelope(env, self.obfuscation_key))
            return True
        except Exception as e:
            log(event="state_extend_failed", key=self.key, error=str(e)[:200])
            return False

    def age_minutes(self) -> Optional[float]:
        env = self._read()
        if env is None:
            return None
        return (self.clock.now_ms() - env.createdAt) / 60000.0

    def expires_at(self) -> Optional[int]:
        env = self._read()
        return env.expiresAt if env is not None else None


class AutoSaver:
    """
    Debounced saves: each schedule() re-arms the timer, so only the last snapshot in a
    burst of updates is written. flush() before teardown so a pending save is not lost.
    """

    def __init__(self, manager: PersistenceManager, scheduler: Scheduler, debounce_ms: Optional[int] = None):
        self.manager = manager
        self.scheduler = scheduler
        self.debounce_ms = int(debounce_ms if debounce_ms is not None else settings.AUTOSAVE_DEBOUNCE_MS)
        self._pending: Optional[Dict[str, Any]] = None
        self._handle: Optional[TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def schedule(self, state: Union[WorkflowState, Dict[str, Any]]) -> None:
        self._pending = state_to_dict(state) if isinstance(state, WorkflowState) else dict(state)
        if self._handle is not None:
            self._handle.cancel()
        self._handle = self.scheduler.call_later(self.debounce_ms, self._fire)

    def _fire(self) -> None:
        self._handle = None
        snapshot, self._pending = self._pending, None
        if snapshot is not None:
            self.manager.save(snapshot)

    def flush(self) -> Optional[bool]:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        snapshot, self._pending = self._pending, None
        if snapshot is None:
            return None
        return self.manager.save(snapshot)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._pending = None
