"""Chat proxy route: validate, build payload, forward, translate the reply."""

from __future__ import annotations

import json
import logging
import time
from typing import Any, AsyncIterator

import pydantic
from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, Response, StreamingResponse

from chatgate.adapters import upstream
from chatgate.adapters.upstream import UpstreamBody
from chatgate.config.endpoints import HttpEndpoint, resolve_endpoint
from chatgate.config.settings import settings
from chatgate.core.errors import ChatGateError
from chatgate.core.extractors import extract_response_body
from chatgate.core.models import ChatApiRequest
from chatgate.core.payload import build_upstream_payload
from chatgate.core.session_init import get_session_initializer
from chatgate.core.stream import StreamVariant, transform_stream
from chatgate.observability.logging import log_event
from chatgate.util.logger import logger
from chatgate.util.masking import redact_headers_for_log

router = APIRouter()

_STREAM_VARIANTS: dict[HttpEndpoint, StreamVariant] = {
    HttpEndpoint.CHAT_STREAM: StreamVariant.CHAT,
    HttpEndpoint.GENERATE_STREAM: StreamVariant.GENERATE,
}


class UpstreamStreamingResponse(StreamingResponse):
    """StreamingResponse that releases the upstream body however the ASGI call ends.

    An async generator that never started skips its `finally`, so a client that
    disconnects before the first chunk would otherwise leave the upstream open.
    """

    def __init__(self, content: AsyncIterator[bytes], *, upstream_body: UpstreamBody, **kwargs: Any) -> None:
        super().__init__(content, **kwargs)
        self.upstream_body = upstream_body

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            aclose = getattr(self.body_iterator, "aclose", None)
            if callable(aclose):
                await aclose()
            await self.upstream_body.aclose()


def _error_response(exc: ChatGateError) -> PlainTextResponse:
    return PlainTextResponse(exc.message, status_code=exc.status_code)


def _invalid_endpoint_response() -> Response:
    valid = ", ".join(item.value for item in HttpEndpoint)
    return Response(
        content=json.dumps({"error": f"Invalid httpEndpoint. Must be one of: {valid}"}),
        status_code=400,
        media_type="application/json",
    )


def _log_chat_request_if_debug(request: Request, chat_request: ChatApiRequest) -> None:
    if not logger.isEnabledFor(logging.DEBUG):
        return
    logger.debug(
        "incoming chat request endpoint=%s messages=%d headers=%s steps=%s extra_params=%s",
        chat_request.httpEndpoint,
        len(chat_request.messages),
        redact_headers_for_log(dict(request.headers)),
        chat_request.additionalProps.enableIntermediateSteps,
        bool(chat_request.optionalGenerationParameters.strip()),
    )
    if settings.log_full_request_body:
        logger.debug("incoming chat request body:\n%s", chat_request.model_dump_json(indent=2))


async def _parse_chat_request(request: Request) -> ChatApiRequest | PlainTextResponse:
    try:
        raw = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return PlainTextResponse("Invalid request body.", status_code=400)
    if not isinstance(raw, dict):
        return PlainTextResponse("Invalid request body.", status_code=400)
    try:
        return ChatApiRequest.model_validate(raw)
    except pydantic.ValidationError as exc:
        logger.info("chat request rejected errors=%d", exc.error_count())
        return PlainTextResponse(f"Invalid request: {exc.errors()[0].get('msg', 'invalid')}", status_code=400)


async def execute_chat(chat_request: ChatApiRequest, request_headers: dict[str, str]) -> Response:
    endpoint = resolve_endpoint(chat_request.httpEndpoint)
    if endpoint is None:
        logger.info("chat request rejected invalid endpoint=%s", chat_request.httpEndpoint)
        return _invalid_endpoint_response()

    started = time.monotonic()
    try:
        payload = build_upstream_payload(
            endpoint,
            chat_request.messages,
            chat_request.optionalGenerationParameters,
        )
        url = upstream.build_checked_url(endpoint.value)
        forward_headers = upstream.build_forward_headers(request_headers)
        if endpoint is HttpEndpoint.CHAT_CA_RAG:
            await get_session_initializer().ensure_initialized(forward_headers["Conversation-Id"] or None)

        if endpoint.is_streaming:
            body = await upstream.open_stream(url, payload, forward_headers)
            log_event("chat_stream_opened", endpoint=endpoint.value)
            return UpstreamStreamingResponse(
                transform_stream(
                    body,
                    variant=_STREAM_VARIANTS[endpoint],
                    enable_intermediate_steps=chat_request.additionalProps.enableIntermediateSteps,
                ),
                upstream_body=body,
                media_type="text/plain; charset=utf-8",
                headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
            )

        upstream_response = await upstream.forward_json(url, payload, forward_headers)
    except ChatGateError as exc:
        logger.warning(
            "chat request failed endpoint=%s status=%s code=%s detail=%s",
            endpoint.value,
            exc.status_code,
            exc.code,
            exc.message[:300],
        )
        return _error_response(exc)

    text = extract_response_body(upstream_response.text, endpoint.family)
    log_event(
        "chat_completed",
        endpoint=endpoint.value,
        elapsed_ms=int((time.monotonic() - started) * 1000),
        response_chars=len(text),
    )
    return PlainTextResponse(text)


@router.post("/chat")
async def chat(request: Request) -> Response:
    parsed = await _parse_chat_request(request)
    if isinstance(parsed, Response):
        return parsed
    _log_chat_request_if_debug(request, parsed)
    return await execute_chat(parsed, dict(request.headers))
