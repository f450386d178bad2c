import asyncio
import threading

import httpx
import pytest

from chatgate.adapters import upstream
from chatgate.config.settings import settings
from chatgate.core.errors import ConfigError, InitializationFailedError, UpstreamError
from chatgate.core.session_init import SessionInitializer, conversation_init_key
from chatgate.storage.kv import InitRegistry
from chatgate.storage.memory_store import MemoryInitRegistry
from chatgate.storage.redis_store import RedisInitRegistry


@pytest.fixture(autouse=True)
def _backend(monkeypatch):
    monkeypatch.setattr(settings, "backend_address", "127.0.0.1:8000")
    monkeypatch.setattr(settings, "server_url", "")
    monkeypatch.setattr(settings, "env", "dev")


class RecordingPost:
    def __init__(self, fail_times: int = 0) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.fail_times = fail_times

    async def __call__(self, url, payload, headers):
        self.calls.append((url, payload))
        if self.fail_times > 0:
            self.fail_times -= 1
            raise UpstreamError("Error: init rejected")
        return httpx.Response(200, json={"status": "ok"})


def test_init_key_defaults_conversation_id():
    assert conversation_init_key("rag-1", "conv-9") == "rag-1-conv-9"
    assert conversation_init_key("rag-1", None) == "rag-1-default"
    assert conversation_init_key("rag-1", "") == "rag-1-default"


def test_same_conversation_initializes_once_and_new_conversation_again():
    post = RecordingPost()
    initializer = SessionInitializer(MemoryInitRegistry(), rag_uuid="rag-1", post_json=post)

    async def run_case() -> None:
        await initializer.ensure_initialized("conv-a")
        await initializer.ensure_initialized("conv-a")
        await initializer.ensure_initialized("conv-b")

    asyncio.run(run_case())
    assert len(post.calls) == 2
    assert post.calls[0] == ("http://127.0.0.1:8000/init", {"uuid": "rag-1"})
    assert initializer.registry.contains("rag-1-conv-a")
    assert initializer.registry.contains("rag-1-conv-b")


def test_failed_init_is_not_recorded_and_is_retried_next_call():
    post = RecordingPost(fail_times=1)
    registry = MemoryInitRegistry()
    initializer = SessionInitializer(registry, rag_uuid="rag-1", post_json=post)

    with pytest.raises(InitializationFailedError) as exc_info:
        asyncio.run(initializer.ensure_initialized("conv-a"))
    assert exc_info.value.status_code == 500
    assert len(registry) == 0

    asyncio.run(initializer.ensure_initialized("conv-a"))
    assert len(post.calls) == 2
    assert registry.contains("rag-1-conv-a")


def test_missing_rag_uuid_is_config_error(monkeypatch):
    monkeypatch.setattr(settings, "rag_uuid", "")
    post = RecordingPost()
    initializer = SessionInitializer(MemoryInitRegistry(), post_json=post)
    with pytest.raises(ConfigError):
        asyncio.run(initializer.ensure_initialized("conv-a"))
    assert post.calls == []


def test_rag_uuid_read_from_settings(monkeypatch):
    monkeypatch.setattr(settings, "rag_uuid", "rag-from-env")
    post = RecordingPost()
    initializer = SessionInitializer(MemoryInitRegistry(), post_json=post)
    asyncio.run(initializer.ensure_initialized(None))
    assert post.calls[0][1] == {"uuid": "rag-from-env"}
    assert initializer.registry.contains("rag-from-env-default")


def test_init_url_rejected_by_allow_list_fails_initialization(monkeypatch):
    monkeypatch.setattr(settings, "server_url", "http://evil.example.com")
    post = RecordingPost()
    initializer = SessionInitializer(MemoryInitRegistry(), rag_uuid="rag-1", post_json=post)
    with pytest.raises(InitializationFailedError):
        asyncio.run(initializer.ensure_initialized("conv-a"))
    assert post.calls == []


def test_default_transport_posts_to_init(monkeypatch):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(500, text="boom") if len(seen) == 1 else httpx.Response(200, json={})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

    async def fake_get_client():
        return client

    monkeypatch.setattr(upstream, "_get_upstream_async_client", fake_get_client)
    initializer = SessionInitializer(MemoryInitRegistry(), rag_uuid="rag-1")

    with pytest.raises(InitializationFailedError) as exc_info:
        asyncio.run(initializer.ensure_initialized("conv-a"))
    assert "boom" in exc_info.value.message

    asyncio.run(initializer.ensure_initialized("conv-a"))
    asyncio.run(initializer.ensure_initialized("conv-a"))
    assert len(seen) == 2
    assert str(seen[0].url) == "http://127.0.0.1:8000/init"


def test_redis_registry_uses_shared_set():
    class FakeRedis:
        def __init__(self) -> None:
            self.sets: dict[str, set] = {}

        def sismember(self, name, value):
            return value in self.sets.get(name, set())

        def sadd(self, name, value):
            self.sets.setdefault(name, set()).add(value)

    fake = FakeRedis()
    registry = RedisInitRegistry(redis_url="redis://unused", key_prefix="test", client=fake)
    assert registry.contains("rag-1-conv") is False
    registry.add("rag-1-conv")
    assert registry.contains("rag-1-conv") is True
    assert fake.sets == {"test:ca_rag:initialized": {"rag-1-conv"}}


def test_registry_calls_run_off_the_event_loop_thread():
    class ThreadRecordingRegistry(InitRegistry):
        def __init__(self) -> None:
            self.keys: set[str] = set()
            self.threads: list[int] = []

        def contains(self, key: str) -> bool:
            self.threads.append(threading.get_ident())
            return key in self.keys

        def add(self, key: str) -> None:
            self.threads.append(threading.get_ident())
            self.keys.add(key)

    registry = ThreadRecordingRegistry()
    initializer = SessionInitializer(registry, rag_uuid="rag-1", post_json=RecordingPost())
    loop_threads: list[int] = []

    async def run_case() -> None:
        loop_threads.append(threading.get_ident())
        await initializer.ensure_initialized("conv-a")

    asyncio.run(run_case())
    assert registry.keys == {"rag-1-conv-a"}
    assert len(registry.threads) == 2
    assert loop_threads[0] not in registry.threads
