"""
CA-RAG 会话初始化：每个 (rag_uuid, conversation) 只在首次成功后记录，之后不再调用 /init。

并发的首次调用可能同时看到「未初始化」并各自调用 /init；这里不加锁，
只保证成功记录之后不再重复调用。
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Mapping

from chatgate.adapters import upstream
from chatgate.config.endpoints import INIT_PATH
from chatgate.config.settings import settings
from chatgate.core.errors import ConfigError, InitializationFailedError, UpstreamError, UrlRejectedError
from chatgate.storage import create_registry
from chatgate.storage.kv import InitRegistry
from chatgate.util.logger import logger
from chatgate.util.masking import mask_for_log

DEFAULT_CONVERSATION_ID = "default"

InitCaller = Callable[[str, dict, Mapping[str, str]], Awaitable[object]]


def conversation_init_key(rag_uuid: str, conversation_id: str | None) -> str:
    return f"{rag_uuid}-{conversation_id or DEFAULT_CONVERSATION_ID}"


class SessionInitializer:
    def __init__(
        self,
        registry: InitRegistry,
        *,
        rag_uuid: str | None = None,
        post_json: InitCaller | None = None,
    ) -> None:
        self.registry = registry
        self._rag_uuid = rag_uuid
        self._post_json = post_json or upstream.forward_json

    @property
    def rag_uuid(self) -> str:
        value = self._rag_uuid if self._rag_uuid is not None else settings.rag_uuid
        return (value or "").strip()

    async def ensure_initialized(self, conversation_id: str | None) -> None:
        rag_uuid = self.rag_uuid
        if not rag_uuid:
            raise ConfigError("RAG uuid not configured")
        key = conversation_init_key(rag_uuid, conversation_id)
        if await asyncio.to_thread(self.registry.contains, key):
            return

        try:
            url = upstream.build_checked_url(INIT_PATH, allowed_paths={INIT_PATH})
            await self._post_json(url, {"uuid": rag_uuid}, {"Content-Type": "application/json"})
        except (UpstreamError, UrlRejectedError) as exc:
            logger.warning(
                "ca_rag init failed conversation=%s error=%s",
                mask_for_log(conversation_id or DEFAULT_CONVERSATION_ID),
                exc.message,
            )
            raise InitializationFailedError(f"Failed to initialize RAG session: {exc.message}") from exc

        await asyncio.to_thread(self.registry.add, key)
        logger.info("ca_rag session initialized conversation=%s", mask_for_log(conversation_id or DEFAULT_CONVERSATION_ID))


_session_initializer: SessionInitializer | None = None


def get_session_initializer() -> SessionInitializer:
    global _session_initializer
    if _session_initializer is None:
        _session_initializer = SessionInitializer(create_registry())
    return _session_initializer
