"""Redis-backed init registry, shared across gateway instances.

The client is synchronous; async callers go through `asyncio.to_thread`.
"""

from __future__ import annotations

try:
    import redis
except Exception:  # pragma: no cover - optional dependency
    redis = None

from chatgate.storage.kv import InitRegistry


class RedisInitRegistry(InitRegistry):
    def __init__(self, *, redis_url: str, key_prefix: str = "chatgate", client=None) -> None:
        if client is None:
            if redis is None:  # pragma: no cover - depends on optional package
                raise RuntimeError("redis package is not installed, cannot use RedisInitRegistry")
            client = redis.Redis.from_url(redis_url, decode_responses=False)
        self.client = client
        self.key_prefix = key_prefix.strip() or "chatgate"

    def _set_key(self) -> str:
        return f"{self.key_prefix}:ca_rag:initialized"

    def contains(self, key: str) -> bool:
        return bool(self.client.sismember(self._set_key(), key))

    def add(self, key: str) -> None:
        self.client.sadd(self._set_key(), key)
