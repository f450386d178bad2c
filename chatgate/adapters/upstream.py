"""
上游地址解析与 HTTP 转发。共享一个 httpx.AsyncClient，超时与连接数均由配置显式给出。
"""

from __future__ import annotations

import asyncio
import json
from contextlib import AsyncExitStack
from typing import Any, AsyncGenerator, Mapping

import httpx

from chatgate.config.settings import settings
from chatgate.core.errors import ConfigError, UpstreamError, UrlRejectedError
from chatgate.security.url_validation import build_http_base_url, validate_request_url
from chatgate.util.logger import logger

_upstream_async_client: httpx.AsyncClient | None = None
_upstream_client_lock: asyncio.Lock | None = None


def _upstream_http_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=max(10, int(settings.upstream_max_connections)),
        max_keepalive_connections=max(5, int(settings.upstream_max_keepalive_connections)),
    )


def _upstream_http_timeout() -> httpx.Timeout:
    timeout = float(settings.upstream_timeout_seconds)
    return httpx.Timeout(connect=timeout, read=timeout, write=timeout, pool=timeout)


async def _get_upstream_async_client() -> httpx.AsyncClient:
    global _upstream_async_client, _upstream_client_lock
    if _upstream_async_client is not None:
        return _upstream_async_client
    if _upstream_client_lock is None:
        _upstream_client_lock = asyncio.Lock()
    async with _upstream_client_lock:
        if _upstream_async_client is None:
            _upstream_async_client = httpx.AsyncClient(
                follow_redirects=False,
                http2=False,
                timeout=_upstream_http_timeout(),
                limits=_upstream_http_limits(),
            )
    return _upstream_async_client


async def close_upstream_async_client() -> None:
    global _upstream_async_client
    if _upstream_async_client is not None:
        await _upstream_async_client.aclose()
        _upstream_async_client = None


def resolve_server_url() -> str:
    explicit = settings.server_url.strip().rstrip("/")
    if explicit:
        return explicit
    if settings.backend_address.strip():
        return build_http_base_url(settings.backend_address)
    raise ConfigError("Server URL not configured")


def require_backend_address() -> str:
    # server_url 可单独配置，但白名单只认 backend_address
    backend_address = settings.backend_address.strip()
    if not backend_address:
        raise ConfigError("Backend address not configured")
    return backend_address


def build_checked_url(path: str, allowed_paths: set[str] | None = None) -> str:
    """Join the configured server URL with *path* and run it through the allow-list."""
    base_url = resolve_server_url()
    require_backend_address()
    url = f"{base_url}{path}"
    result = validate_request_url(url, allowed_paths=allowed_paths)
    if not result.is_valid:
        logger.warning("outbound url rejected url=%s error=%s", url, result.error)
        raise UrlRejectedError(f"{result.error}: {url}")
    return url


def build_forward_headers(headers: Mapping[str, str]) -> dict[str, str]:
    lowered = {key.lower(): value for key, value in headers.items()}
    return {
        "Content-Type": "application/json",
        "Conversation-Id": lowered.get("conversation-id", ""),
        "X-Timezone": lowered.get("x-timezone", "").strip() or settings.default_timezone,
        "User-Message-ID": lowered.get("user-message-id", ""),
    }


def _safe_error_detail(text: str) -> str:
    return (text or "").strip()[:2000]


async def forward_json(url: str, payload: dict[str, Any], headers: Mapping[str, str]) -> httpx.Response:
    """POST *payload*; non-2xx and transport failures become UpstreamError."""
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    logger.debug("forward_json start url=%s payload_bytes=%d", url, len(body))
    client = await _get_upstream_async_client()
    try:
        response = await client.post(url, content=body, headers=dict(headers))
    except httpx.HTTPError as exc:
        detail = (str(exc) or "").strip() or "connection_failed_or_timeout"
        logger.warning("forward_json http_error url=%s error=%s", url, detail)
        raise UpstreamError(f"Error: upstream_unreachable: {detail}") from exc
    logger.debug("forward_json done url=%s status=%s", url, response.status_code)
    if not response.is_success:
        raise UpstreamError(f"Error: {_safe_error_detail(response.text)}")
    return response


class UpstreamBody:
    """Raw upstream stream body.

    `aclose()` releases the connection whether or not iteration ever started;
    it is safe to call more than once.
    """

    def __init__(self, response: httpx.Response, exit_stack: AsyncExitStack, url: str) -> None:
        self._response = response
        self._exit_stack = exit_stack
        self._url = url
        self.closed = False

    async def __aiter__(self) -> AsyncGenerator[bytes, None]:
        try:
            async for chunk in self._response.aiter_bytes():
                if chunk:
                    yield chunk
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self.closed:
            return
        self.closed = True
        await self._exit_stack.aclose()
        logger.debug("forward_stream released url=%s", self._url)


async def open_stream(
    url: str,
    payload: dict[str, Any],
    headers: Mapping[str, str],
) -> UpstreamBody:
    """Connect and check the status before the first byte reaches the browser.

    The caller owns the returned body and must `aclose()` it on every exit path.
    """
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    logger.debug("forward_stream start url=%s payload_bytes=%d", url, len(body))
    client = await _get_upstream_async_client()
    exit_stack = AsyncExitStack()
    try:
        response = await exit_stack.enter_async_context(
            client.stream("POST", url, content=body, headers=dict(headers))
        )
    except httpx.HTTPError as exc:
        await exit_stack.aclose()
        detail = (str(exc) or "").strip() or "connection_failed_or_timeout"
        logger.warning("forward_stream http_error url=%s error=%s", url, detail)
        raise UpstreamError(f"Error: upstream_unreachable: {detail}") from exc

    logger.debug("forward_stream connected url=%s status=%s", url, response.status_code)
    if not response.is_success:
        try:
            raw = await response.aread()
        except httpx.HTTPError:
            raw = b""
        finally:
            await exit_stack.aclose()
        raise UpstreamError(f"Error: {_safe_error_detail(raw.decode('utf-8', errors='replace'))}")

    return UpstreamBody(response, exit_stack, url)
