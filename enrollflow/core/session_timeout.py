"""
Session Timeout Supervisor
--------------------------
Two timers, armed only while the user is authenticated:
  - warning at (timeout - lead): starts a 1 Hz countdown and offers extend()
  - expiry at timeout: clears persisted state and calls on_timeout()

extend() re-arms both timers AND pushes the stored envelope's expiresAt forward, so the
in-memory timeout and the storage TTL never drift apart by more than the autosave debounce.
"""
from __future__ import annotations

from typing import Callable, Optional

from enrollflow.observability.logging import log
from enrollflow.settings import settings
from enrollflow.utils.time import minutes_to_ms
from enrollflow.utils.timers import Scheduler, TimerHandle


class SessionTimeoutSupervisor:
    def __init__(
        self,
        persistence,
        scheduler: Scheduler,
        *,
        timeout_minutes: Optional[float] = None,
        warning_lead_seconds: Optional[int] = None,
        on_warning: Optional[Callable[[int], None]] = None,
        on_tick: Optional[Callable[[int], None]] = None,
        on_timeout: Optional[Callable[[], None]] = None,
    ):
        self.persistence = persistence
        self.scheduler = scheduler
        self.timeout_minutes = float(
            timeout_minutes if timeout_minutes is not None else settings.SESSION_TIMEOUT_MINUTES
        )
        self.warning_lead_seconds = int(
            warning_lead_seconds if warning_lead_seconds is not None else settings.SESSION_WARNING_LEAD_SECONDS
        )
        self.on_warning = on_warning
        self.on_tick = on_tick
        self.on_timeout = on_timeout

        self.authenticated = False
        self.warning_active = False
        self.seconds_remaining: Optional[int] = None
        self._warning: Optional[TimerHandle] = None
        self._expiry: Optional[TimerHandle] = None
        self._tick: Optional[TimerHandle] = None

    @property
    def is_armed(self) -> bool:
        return self._expiry is not None

    def _cancel(self) -> None:
        for h in (self._warning, self._expiry, self._tick):
            if h is not None:
                h.cancel()
        self._warning = self._expiry = self._tick = None
        self.warning_active = False
        self.seconds_remaining = None

    def _arm(self) -> None:
        self._cancel()
        timeout_ms = minutes_to_ms(self.timeout_minutes)
        warning_ms = max(0, timeout_ms - self.warning_lead_seconds * 1000)
        self._warning = self.scheduler.call_later(warning_ms, self._fire_warning)
        self._expiry = self.scheduler.call_later(timeout_ms, self._fire_expiry)

    def _notify(self, cb, *args) -> None:
        if cb is None:
            return
        try:
            cb(*args)
        except Exception as e:
            log(event="session_timeout_callback_failed", callback=getattr(cb, "__name__", "cb"), error=str(e)[:200])

    def _fire_warning(self) -> None:
        self._warning = None
        self.warning_active = True
        self.seconds_remaining = self.warning_lead_seconds
        log(event="session_timeout_warning", secondsRemaining=self.seconds_remaining)
        self._notify(self.on_warning, self.seconds_remaining)
        self._tick = self.scheduler.call_later(1000, self._fire_tick)

    def _fire_tick(self) -> None:
        self._tick = None
        if self.seconds_remaining is None:
            return
        self.seconds_remaining = max(0, self.seconds_remaining - 1)
        self._notify(self.on_tick, self.seconds_remaining)
        if self.seconds_remaining > 0:
            self._tick = self.scheduler.call_later(1000, self._fire_tick)

    def _fire_expiry(self) -> None:
        self._expiry = None
        self._cancel()
        try:
            self.persistence.clear()
        except Exception as e:
            log(event="session_timeout_clear_failed", error=str(e)[:200])
        log(event="session_timeout_expired", timeoutMinutes=self.timeout_minutes)
        self._notify(self.on_timeout)

    # -- lifecycle -----------------------------------------------------------

    def set_authenticated(self, authenticated: bool) -> None:
        authenticated = bool(authenticated)
        was = self.authenticated
        self.authenticated = authenticated
        if not authenticated:
            self._cancel()
        elif not was or not self.is_armed:
            self._arm()

    def start(self) -> None:
        if self.authenticated:
            self._arm()

    def extend(self) -> bool:
        """'Continue session': re-arm timers and extend the stored envelope in lockstep."""
        if not self.authenticated:
            return False
        self._arm()
        extended = self.persistence.extend_expiry(self.timeout_minutes)
        log(event="session_extended", timeoutMinutes=self.timeout_minutes, storageExtended=bool(extended))
        return True

    def clear(self) -> None:
        self._cancel()

    def dispose(self) -> None:
        self._cancel()
