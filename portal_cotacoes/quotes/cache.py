from __future__ import annotations

import copy
import threading
import time
from typing import Any, Dict, Tuple


CacheKey = Tuple[str, str, str, str]


def cache_key(tenant_id: str, role: str, entity: str, subject: object) -> CacheKey:
    return (
        str(tenant_id or "").strip().lower(),
        str(role or "").strip().lower(),
        str(entity or "").strip().lower(),
        str(subject if subject is not None else "").strip().lower(),
    )


class KeyedTTLCache:
    """Read cache for list payloads, keyed by (tenant, role, entity, subject).

    Entries expire after ``ttl_seconds``. Writers call ``invalidate`` for the
    tenant (optionally one entity) once their change is committed.
    """

    def __init__(self, ttl_seconds: int = 60) -> None:
        self.ttl_seconds = max(0, int(ttl_seconds or 0))
        self._lock = threading.Lock()
        self._cache: Dict[CacheKey, Dict[str, Any]] = {}

    def get(self, key: CacheKey) -> Any | None:
        now = time.time()
        with self._lock:
            entry = self._cache.get(key)
            if not entry:
                return None
            if float(entry.get("expires_at") or 0) <= now:
                self._cache.pop(key, None)
                return None
            return copy.deepcopy(entry.get("payload"))

    def set(self, key: CacheKey, payload: Any) -> None:
        if self.ttl_seconds <= 0:
            return
        with self._lock:
            self._cache[key] = {
                "expires_at": time.time() + self.ttl_seconds,
                "payload": copy.deepcopy(payload),
            }

    def invalidate(self, tenant_id: str, entity: str | None = None) -> int:
        tenant_key = str(tenant_id or "").strip().lower()
        entity_key = str(entity or "").strip().lower() or None
        with self._lock:
            stale = [
                key
                for key in self._cache
                if key[0] == tenant_key and (entity_key is None or key[2] == entity_key)
            ]
            for key in stale:
                self._cache.pop(key, None)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
