"""Live data-stream endpoint (ASR transcripts, sensor text, ingestion status)."""

from __future__ import annotations

import json

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from chatgate.core.data_stream import DataStreamHub, hub
from chatgate.util.logger import get_logger

router = APIRouter()
logger = get_logger("data_stream")


def get_hub() -> DataStreamHub:
    return hub


async def _json_body(request: Request) -> dict | None:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


@router.post("/update-data-stream")
async def publish_stream_text(request: Request) -> JSONResponse:
    body = await _json_body(request) or {}
    text = body.get("text")
    if not isinstance(text, str):
        return JSONResponse(status_code=400, content={"error": "Text must be a string."})
    finalized = bool(body.get("finalized"))
    get_hub().publish(
        text,
        stream_id=body.get("stream_id"),
        timestamp=body.get("timestamp"),
        finalized=finalized,
        uuid=body.get("uuid"),
    )
    if finalized:
        logger.info("data stream entry finalized stream=%s", body.get("stream_id") or "default")
    return JSONResponse(content={"success": True})


@router.get("/update-data-stream")
async def read_stream_text(stream: str | None = None, type: str | None = None) -> JSONResponse:
    current = get_hub()
    if type == "finalized":
        if stream is not None:
            return JSONResponse(content={"entries": current.finalized_entries(stream), "stream_id": stream})
        return JSONResponse(content={"entries": current.finalized_entries()})
    if stream is not None:
        return JSONResponse(content={"text": current.live_text(stream), "stream_id": stream})
    return JSONResponse(content=current.snapshot())


@router.patch("/update-data-stream")
async def update_ingestion_status(request: Request) -> JSONResponse:
    body = await _json_body(request) or {}
    uuid = body.get("uuid")
    pending = body.get("pending")
    if not uuid:
        return JSONResponse(status_code=400, content={"error": "UUID is required."})
    if not isinstance(pending, bool):
        return JSONResponse(status_code=400, content={"error": "Pending must be a boolean."})
    entry = get_hub().set_pending(str(uuid), pending)
    if entry is None:
        return JSONResponse(status_code=404, content={"error": "Entry not found."})
    return JSONResponse(content={"success": True, "entry": entry})
