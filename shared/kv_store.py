"""
Key-Value Store

The durable key-value backend the orchestrator persists into. Any backend
offering get / put / delete / list-by-prefix can be plugged in; the
in-memory implementation here is the default and keeps state for the
lifetime of the process only.
"""

import time
from threading import Lock
from typing import Callable, Dict, List, Optional, Protocol, Tuple


class KeyValueStore(Protocol):
    supports_expiry: bool

    def get(self, key: str) -> Optional[str]: ...

    def put(self, key: str, value: str, ttl: Optional[float] = None) -> None: ...

    def delete(self, key: str) -> None: ...

    def list(self, prefix: str) -> List[str]: ...


class InMemoryKeyValueStore:
    """
    Thread-safe in-memory store with optional native per-key expiry.

    Values are kept as strings, mirroring what a remote KV service would
    hold. With native_expiry disabled, ttl arguments are ignored and
    callers must evict stale entries themselves. Expired keys disappear
    from get() and list() and are dropped on the next access.
    """

    def __init__(self, clock: Callable[[], float] = time.time, native_expiry: bool = True):
        self.supports_expiry = native_expiry
        self._entries: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if self._expired(entry):
                del self._entries[key]
                return None
            return entry[0]

    def put(self, key: str, value: str, ttl: Optional[float] = None) -> None:
        expires_at = None
        if ttl is not None and self.supports_expiry:
            expires_at = self._clock() + ttl
        with self._lock:
            self._entries[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def list(self, prefix: str) -> List[str]:
        """
        List live keys starting with prefix.

        Args:
            prefix: Key prefix, e.g. "task:"

        Returns:
            Sorted list of matching keys
        """
        with self._lock:
            expired = [key for key, entry in self._entries.items() if self._expired(entry)]
            for key in expired:
                del self._entries[key]
            return sorted(key for key in self._entries if key.startswith(prefix))

    def _expired(self, entry: Tuple[str, Optional[float]]) -> bool:
        expires_at = entry[1]
        return expires_at is not None and self._clock() > expires_at
