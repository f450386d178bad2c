"""Reaction feedback proxy."""

from __future__ import annotations

import json

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from chatgate.adapters import upstream
from chatgate.config.settings import settings
from chatgate.core.errors import ChatGateError, UrlRejectedError
from chatgate.security.url_validation import validate_request_url
from chatgate.util.logger import logger

router = APIRouter()


def _resolve_feedback_url(client_url: str) -> str:
    feedback_path = settings.feedback_path
    if not client_url:
        return upstream.build_checked_url(feedback_path, allowed_paths={feedback_path})
    # 客户端给出的地址同样必须指向已配置后端
    upstream.require_backend_address()
    result = validate_request_url(client_url, allowed_paths={feedback_path})
    if not result.is_valid:
        raise UrlRejectedError(f"{result.error}: {client_url}")
    return client_url


@router.post("/feedback")
async def feedback(request: Request) -> Response:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return PlainTextResponse("Error: invalid JSON body", status_code=500)
    if not isinstance(body, dict):
        body = {}

    weave_call_id = body.get("weave_call_id")
    reaction_type = body.get("reaction_type")
    if not weave_call_id or not reaction_type:
        return PlainTextResponse("Missing required fields: weave_call_id, reaction_type", status_code=400)

    try:
        url = _resolve_feedback_url(str(body.get("backendURL") or "").strip())
    except ChatGateError as exc:
        logger.warning("feedback rejected code=%s detail=%s", exc.code, exc.message)
        return PlainTextResponse(exc.message, status_code=exc.status_code)

    payload = {"weave_call_id": weave_call_id, "reaction_type": reaction_type}
    client = await upstream._get_upstream_async_client()
    try:
        response = await client.post(url, json=payload)
    except httpx.HTTPError as exc:
        logger.warning("feedback upstream unreachable url=%s error=%s", url, exc)
        return PlainTextResponse(f"Error: {exc}", status_code=500)

    if not response.is_success:
        logger.info("feedback upstream error url=%s status=%s", url, response.status_code)
        return PlainTextResponse(f"Backend error: {response.text}", status_code=response.status_code)
    try:
        result = response.json()
    except ValueError as exc:
        return PlainTextResponse(f"Error: {exc}", status_code=500)
    logger.info("feedback forwarded reaction=%s", reaction_type)
    return JSONResponse(content=result)

