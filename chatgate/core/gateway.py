"""FastAPI app entry."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from chatgate.adapters.chat.router import router as chat_router
from chatgate.adapters.data_stream.router import router as data_stream_router
from chatgate.adapters.feedback.router import router as feedback_router
from chatgate.adapters.upstream import close_upstream_async_client
from chatgate.config.settings import settings
from chatgate.util.logger import logger

app = FastAPI(title=settings.app_name)
app.include_router(chat_router, prefix="/api")
app.include_router(feedback_router, prefix="/api")
if settings.enable_data_stream_endpoint:
    app.include_router(data_stream_router, prefix="/api")

_BODY_METHODS = frozenset({"POST", "PUT", "PATCH"})


def _blocked_response(status_code: int, reason: str, detail: str | None = None) -> JSONResponse:
    detail_text = (detail or reason).strip() or reason
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "message": detail_text,
                "type": "chatgate_error",
                "code": reason,
            },
        },
    )


@app.middleware("http")
async def request_boundary_middleware(request: Request, call_next):
    limit = settings.max_request_body_bytes
    if limit > 0 and request.method.upper() in _BODY_METHODS:
        content_length_header = request.headers.get("content-length", "").strip()
        if content_length_header:
            try:
                content_length = int(content_length_header)
            except ValueError:
                logger.warning("boundary reject invalid content-length path=%s", request.url.path)
                return _blocked_response(status_code=400, reason="invalid_content_length")
            if content_length > limit:
                logger.warning(
                    "boundary reject oversize request content_length=%s max=%s path=%s",
                    content_length,
                    limit,
                    request.url.path,
                )
                return _blocked_response(status_code=413, reason="request_body_too_large")
        else:
            cached_body = await request.body()
            if len(cached_body) > limit:
                logger.warning(
                    "boundary reject oversize request actual_size=%s max=%s path=%s",
                    len(cached_body),
                    limit,
                    request.url.path,
                )
                return _blocked_response(status_code=413, reason="request_body_too_large")

    try:
        return await call_next(request)
    except Exception as exc:  # pragma: no cover - fail-safe
        logger.exception("gateway unhandled exception path=%s", request.url.path)
        return _blocked_response(
            status_code=500,
            reason="gateway_internal_error",
            detail=f"gateway internal error: {exc}",
        )


@app.get("/health")
def health() -> dict:
    logger.debug("health check")
    return {"status": "ok"}


@app.on_event("shutdown")
async def shutdown_cleanup() -> None:
    await close_upstream_async_client()
