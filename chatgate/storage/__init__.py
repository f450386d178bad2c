"""Init registry backend selection helpers."""

from __future__ import annotations

from chatgate.config.settings import settings
from chatgate.storage.kv import InitRegistry
from chatgate.storage.memory_store import MemoryInitRegistry
from chatgate.storage.redis_store import RedisInitRegistry


def create_registry() -> InitRegistry:
    backend = settings.init_registry_backend.strip().lower()
    if backend == "redis":
        return RedisInitRegistry(redis_url=settings.redis_url, key_prefix=settings.redis_key_prefix)
    return MemoryInitRegistry()
