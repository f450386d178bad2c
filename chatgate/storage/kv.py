"""Registry abstraction for CA-RAG session bootstrap keys."""

from __future__ import annotations

from abc import ABC, abstractmethod


class InitRegistry(ABC):
    @abstractmethod
    def contains(self, key: str) -> bool:
        pass

    @abstractmethod
    def add(self, key: str) -> None:
        """Record a key whose /init call succeeded. Keys are never removed."""
        pass
