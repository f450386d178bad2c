"""
上游响应正文抽取。后端各版本返回结构不固定，按有序探针列表依次尝试，
先命中者胜出；探针顺序即优先级，可单独测试。
"""

from __future__ import annotations

import json
from typing import Any, Callable

ContentProbe = Callable[[Any], Any]


def _field(name: str) -> ContentProbe:
    def _probe(parsed: Any) -> Any:
        if isinstance(parsed, dict):
            return parsed.get(name)
        return None

    _probe.__name__ = f"probe_{name}"
    return _probe


def _first_choice(parsed: Any) -> dict[str, Any] | None:
    if not isinstance(parsed, dict):
        return None
    choices = parsed.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    return first if isinstance(first, dict) else None


def probe_choice_message(parsed: Any) -> Any:
    choice = _first_choice(parsed)
    message = choice.get("message") if choice else None
    return message.get("content") if isinstance(message, dict) else None


def probe_choice_delta(parsed: Any) -> Any:
    choice = _first_choice(parsed)
    delta = choice.get("delta") if choice else None
    return delta.get("content") if isinstance(delta, dict) else None


probe_value = _field("value")
probe_output = _field("output")
probe_answer = _field("answer")
probe_result = _field("result")

# 流式 data: 行
STREAM_LINE_PROBES: tuple[ContentProbe, ...] = (
    probe_value,
    probe_output,
    probe_answer,
    probe_choice_message,
    probe_choice_delta,
)
# generate/stream 收尾时整段 JSON 兜底
STREAM_FALLBACK_PROBES: tuple[ContentProbe, ...] = (
    probe_value,
    probe_output,
    probe_answer,
    probe_choice_message,
)
GENERATE_PROBES: tuple[ContentProbe, ...] = (
    probe_value,
    probe_output,
    probe_answer,
    probe_choice_message,
)
CHAT_PROBES: tuple[ContentProbe, ...] = (
    probe_output,
    probe_answer,
    probe_value,
    probe_choice_message,
)
CA_RAG_PROBES: tuple[ContentProbe, ...] = (
    probe_result,
    probe_choice_message,
)

_FAMILY_PROBES: dict[str, tuple[ContentProbe, ...]] = {
    "generate": GENERATE_PROBES,
    "chat": CHAT_PROBES,
    "ca_rag": CA_RAG_PROBES,
}
# chat / ca_rag 探针全部落空时回退到解析后的对象本身
_FALLBACK_TO_PARSED = frozenset({"chat", "ca_rag"})


def first_match(parsed: Any, probes: tuple[ContentProbe, ...]) -> Any:
    """Return the first truthy probe result, or None."""
    for probe in probes:
        value = probe(parsed)
        if value:
            return value
    return None


def first_text(parsed: Any, probes: tuple[ContentProbe, ...]) -> str | None:
    """Return the first non-empty string probe result, or None."""
    for probe in probes:
        value = probe(parsed)
        if isinstance(value, str) and value:
            return value
    return None


def _printable(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def extract_response_body(body: str, family: str) -> str:
    """Flatten one non-streaming upstream body to the text handed to the browser. Never raises."""
    try:
        parsed = json.loads(body)
    except (json.JSONDecodeError, TypeError, ValueError):
        return body

    value = first_match(parsed, _FAMILY_PROBES.get(family, GENERATE_PROBES))
    if value:
        return _printable(value)
    if family in _FALLBACK_TO_PARSED and parsed:
        return _printable(parsed)
    return body
