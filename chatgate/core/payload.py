"""Upstream payload construction per endpoint family."""

from __future__ import annotations

import json
from typing import Any, Sequence

from chatgate.config.endpoints import HttpEndpoint
from chatgate.core.errors import InvalidJsonError, InvalidRequestError, ReservedFieldOverrideError
from chatgate.core.models import ChatMessage
from chatgate.util.logger import logger

RESERVED_FIELDS = frozenset({"messages", "stream", "input_message"})


def _last_user_content(messages: Sequence[ChatMessage]) -> str:
    last = messages[-1] if messages else None
    if last is None or last.role != "user" or not last.content:
        raise InvalidRequestError("User message not found.")
    return last.content


def parse_generation_parameters(raw: str) -> dict[str, Any]:
    """Parse client-supplied extra JSON; reject reserved keys before anything is merged."""
    if not raw or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidJsonError("Invalid additional JSON body format") from exc
    if not isinstance(parsed, dict):
        logger.debug("generation parameters ignored type=%s", type(parsed).__name__)
        return {}
    offending = sorted(key for key in parsed if key in RESERVED_FIELDS)
    if offending:
        raise ReservedFieldOverrideError(offending)
    return parsed


def build_chat_payload(messages: Sequence[ChatMessage], *, stream: bool) -> dict[str, Any]:
    return {
        "messages": [message.model_dump() for message in messages],
        "stream": stream,
    }


def build_generate_payload(messages: Sequence[ChatMessage]) -> dict[str, Any]:
    return {"input_message": _last_user_content(messages)}


def build_ca_rag_payload(messages: Sequence[ChatMessage]) -> dict[str, Any]:
    return {"state": {"chat": {"question": _last_user_content(messages)}}}


def build_upstream_payload(
    endpoint: HttpEndpoint,
    messages: Sequence[ChatMessage],
    extra_json: str = "",
) -> dict[str, Any]:
    family = endpoint.family
    if family == "generate":
        return build_generate_payload(messages)
    if family == "ca_rag":
        return build_ca_rag_payload(messages)

    extras = parse_generation_parameters(extra_json)
    payload = build_chat_payload(messages, stream=endpoint is HttpEndpoint.CHAT_STREAM)
    if extras:
        logger.debug("generation parameters merged keys=%s", sorted(extras))
        payload.update(extras)
    return payload
