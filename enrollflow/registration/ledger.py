"""
Attempt ledger for secondary registration, keyed by (phoneNumber, paymentId).

The counter is bumped synchronously BEFORE the outbound call, so repeated confirmation
calls or re-renders cannot start more than MAX_ATTEMPTS attempts for one payment.
It only goes back to zero on success or an explicit operator reset.
"""
from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from enrollflow.observability.logging import log
from enrollflow.settings import settings
from enrollflow.store.models import AccountLink
from enrollflow.store.slots import SlotStore

LINK_PREFIX = "account_linking_"


class AttemptsExhausted(Exception):
    retryable = False

    def __init__(self, key: str, attempts: int):
        super().__init__("Maximum registration attempts exceeded")
        self.key = key
        self.attempts = attempts


def registration_key(phone: str, payment_id: str) -> str:
    return f"{phone}_{payment_id}"


class AttemptLedger:
    def __init__(self, max_attempts: Optional[int] = None):
        self.max_attempts = int(max_attempts or settings.REGISTRATION_MAX_ATTEMPTS)
        self._entries: Dict[str, Dict[str, Any]] = {}

    def _entry(self, key: str) -> Dict[str, Any]:
        return self._entries.setdefault(key, {"attempts": 0, "history": []})

    def begin(self, key: str) -> int:
        """Reserve the next attempt number or raise AttemptsExhausted."""
        entry = self._entry(key)
        if entry["attempts"] >= self.max_attempts:
            raise AttemptsExhausted(key, entry["attempts"])
        entry["attempts"] += 1
        return entry["attempts"]

    def record(self, key: str, record: Dict[str, Any]) -> None:
        if key in self._entries:
            self._entries[key]["history"].append(dict(record))

    def count(self, key: str) -> int:
        entry = self._entries.get(key)
        return int(entry["attempts"]) if entry else 0

    def history(self, key: str) -> List[Dict[str, Any]]:
        entry = self._entries.get(key)
        return list(entry["history"]) if entry else []

    def clear_on_success(self, key: str) -> None:
        self._entries.pop(key, None)

    def reset(self, key: str) -> None:
        """Operator override: allow a fresh round of attempts for this key."""
        if self._entries.pop(key, None) is not None:
            log(event="registration_attempts_reset", key=key)


class AccountLinkStore:
    def __init__(self, store: SlotStore):
        self.store = store

    def add(self, link: AccountLink) -> bool:
        key = f"{LINK_PREFIX}{link.phoneNumber}"
        try:
            links = self._read(key)
            links.append(asdict(link))
            self.store.set(key, json.dumps(links))
            return True
        except Exception as e:
            log(event="account_link_store_failed", error=str(e)[:200])
            return False

    def _read(self, key: str) -> List[Dict[str, Any]]:
        raw = self.store.get(key)
        data = json.loads(raw) if raw else []
        return data if isinstance(data, list) else []

    def links_for(self, phone: str) -> List[AccountLink]:
        try:
            rows = self._read(f"{LINK_PREFIX}{phone}")
        except Exception as e:
            log(event="account_link_read_failed", error=str(e)[:200])
            return []
        out = []
        for row in rows:
            try:
                out.append(AccountLink(**row))
            except TypeError:
                continue
        return out
