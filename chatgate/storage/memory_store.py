"""In-process init registry."""

from __future__ import annotations

import threading

from chatgate.storage.kv import InitRegistry


class MemoryInitRegistry(InitRegistry):
    def __init__(self) -> None:
        self._keys: set[str] = set()
        self._lock = threading.Lock()

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    def add(self, key: str) -> None:
        with self._lock:
            self._keys.add(key)

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
