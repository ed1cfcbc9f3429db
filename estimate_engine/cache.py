from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional


DEFAULT_TTL_SECONDS = 300.0


@dataclass
class _Entry:
    data: Any
    stored_at: float
    ttl: float


class CacheManager:
    """Process-local TTL cache.

    Entries expire lazily on read; there is no background sweep and no
    locking. The clock is injectable so tests can move time forward.
    """

    def __init__(self, default_ttl: float = DEFAULT_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}

    def _live(self, key: str) -> Optional[_Entry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at > entry.ttl:
            del self._entries[key]
            return None
        return entry

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._live(key)
        return entry.data if entry else default

    def set(self, key: str, data: Any, ttl: Optional[float] = None) -> None:
        self._entries[key] = _Entry(data=data, stored_at=self._clock(), ttl=self.default_ttl if ttl is None else ttl)

    def has(self, key: str) -> bool:
        return self._live(key) is not None

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def clear_pattern(self, pattern: str) -> int:
        rx = re.compile(pattern)
        doomed = [k for k in self._entries if rx.search(k)]
        for k in doomed:
            del self._entries[k]
        return len(doomed)

    def stats(self) -> Dict[str, Any]:
        keys: List[str] = list(self._entries)
        return {"size": len(keys), "keys": keys}


class cache_keys:
    @staticmethod
    def project_schedules(project_id: str, kind: Optional[str] = None) -> str:
        return f"project:{project_id}:schedules:{kind or 'all'}"

    @staticmethod
    def project_schedules_pattern(project_id: str) -> str:
        return f"^project:{re.escape(project_id)}:schedules:"
