"""Backend endpoint catalogue."""

from __future__ import annotations

from enum import Enum

WEBSOCKET_PATH = "/websocket"
INIT_PATH = "/init"


class HttpEndpoint(str, Enum):
    CHAT_STREAM = "/chat/stream"
    CHAT = "/chat"
    GENERATE_STREAM = "/generate/stream"
    GENERATE = "/generate"
    # context-aware RAG，仅非流式
    CHAT_CA_RAG = "/call"

    @property
    def family(self) -> str:
        if self in (HttpEndpoint.CHAT, HttpEndpoint.CHAT_STREAM):
            return "chat"
        if self in (HttpEndpoint.GENERATE, HttpEndpoint.GENERATE_STREAM):
            return "generate"
        return "ca_rag"

    @property
    def is_streaming(self) -> bool:
        return self in (HttpEndpoint.CHAT_STREAM, HttpEndpoint.GENERATE_STREAM)


HTTP_ENDPOINT_LABELS: dict[HttpEndpoint, str] = {
    HttpEndpoint.CHAT_STREAM: "Chat Completions — Streaming",
    HttpEndpoint.CHAT: "Chat Completions — Non-Streaming",
    HttpEndpoint.GENERATE_STREAM: "Generate — Streaming",
    HttpEndpoint.GENERATE: "Generate — Non-Streaming",
    HttpEndpoint.CHAT_CA_RAG: "Context-Aware RAG — Non-Streaming (Experimental)",
}

ENDPOINT_PATHS: frozenset[str] = frozenset(item.value for item in HttpEndpoint)


def resolve_endpoint(raw: str) -> HttpEndpoint | None:
    try:
        return HttpEndpoint(raw)
    except ValueError:
        return None


def default_endpoint(label: str = "") -> HttpEndpoint:
    """Pick the default endpoint by its display label, falling back to chat streaming."""
    wanted = (label or "").strip()
    for endpoint, endpoint_label in HTTP_ENDPOINT_LABELS.items():
        if endpoint_label == wanted:
            return endpoint
    return HttpEndpoint.CHAT_STREAM
