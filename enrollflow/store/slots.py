"""
String key-value storage slots.

The workflow treats storage as a TTL-less string map (browser local storage or
equivalent). Expiry lives inside the stored envelope, never in the backend.
"""
from __future__ import annotations

from typing import Dict, List, Optional, Protocol

from enrollflow.settings import settings


class StorageQuotaExceeded(Exception):
    pass


class SlotStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def keys(self, prefix: str = "") -> List[str]:
        ...


class MemorySlotStore:
    def __init__(self, quota_bytes: Optional[int] = None):
        self._data: Dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            used = sum(len(v) for k, v in self._data.items() if k != key)
            if used + len(value) > self.quota_bytes:
                raise StorageQuotaExceeded(f"quota of {self.quota_bytes} bytes exceeded writing {key}")
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> List[str]:
        return [k for k in self._data if k.startswith(prefix)]


class RedisSlotStore:
    def __init__(self, redis=None, namespace: str = "enrollflow:"):
        if redis is None:
            from enrollflow.store.redis_conn import get_redis
            redis = get_redis()
        self.r = redis
        self.namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self.namespace}{key}"

    def get(self, key: str) -> Optional[str]:
        raw = self.r.get(self._key(key))
        if isinstance(raw, (bytes, bytearray)):
            return raw.decode("utf-8")
        return raw

    def set(self, key: str, value: str) -> None:
        self.r.set(self._key(key), value)

    def delete(self, key: str) -> None:
        self.r.delete(self._key(key))

    def keys(self, prefix: str = "") -> List[str]:
        out = []
        for k in self.r.scan_iter(match=f"{self._key(prefix)}*"):
            if isinstance(k, (bytes, bytearray)):
                k = k.decode("utf-8")
            out.append(k[len(self.namespace):])
        return out


def get_slot_store() -> SlotStore:
    backend = (getattr(settings, "STORAGE_BACKEND", "memory") or "memory").lower()
    if backend == "redis":
        return RedisSlotStore()
    return MemorySlotStore()
