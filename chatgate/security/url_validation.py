"""
出站 URL 白名单校验：协议、host、path、禁止内嵌凭据。
校验失败只返回结果，不抛异常；由调用方决定返回 403。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable
from urllib.parse import unquote, urljoin, urlsplit

from chatgate.config.endpoints import ENDPOINT_PATHS, WEBSOCKET_PATH
from chatgate.config.settings import settings
from chatgate.util.logger import logger

_PROD_SCHEMES = frozenset({"https", "wss"})
_DEV_SCHEMES = frozenset({"http", "https", "ws", "wss"})
_WEBSOCKET_SCHEMES = frozenset({"ws", "wss"})
_SCHEME_PREFIX_RE = re.compile(r"^(?:https?|wss?)://", re.IGNORECASE)
_WHITESPACE_RE = re.compile(r"[ \t\r\n\v\f]")
MAX_WEBSOCKET_URL_LENGTH = 2048


@dataclass(frozen=True, slots=True)
class ValidationResult:
    is_valid: bool
    error: str = ""


def is_production() -> bool:
    return settings.env.strip().lower() in {"production", "prod"}


def build_url_protocol(backend_address: str) -> tuple[str, str]:
    """Return (http_url, websocket_url) for an address given without protocol."""
    clean_address = _SCHEME_PREFIX_RE.sub("", backend_address.strip()).rstrip("/")
    if is_production():
        return f"https://{clean_address}", f"wss://{clean_address}"
    return f"http://{clean_address}", f"ws://{clean_address}"


def build_http_base_url(backend_address: str) -> str:
    http_url, _ = build_url_protocol(backend_address)
    return http_url


def build_websocket_base_url(backend_address: str) -> str:
    _, websocket_url = build_url_protocol(backend_address)
    return f"{websocket_url}{WEBSOCKET_PATH}"


def _resolved_path(raw_path: str) -> str:
    # 先解码再做 dot-segment 归一化，"/chat/../admin" -> "/admin"
    decoded = unquote(raw_path or "/")
    if "?" in decoded or "#" in decoded:
        return decoded
    if not decoded.startswith("/"):
        decoded = f"/{decoded}"
    return urlsplit(urljoin("http://resolve.invalid/", decoded)).path


def validate_request_url(url: str, allowed_paths: Iterable[str] | None = None) -> ValidationResult:
    """Validate a fully built outbound HTTP/WebSocket URL against the backend allow-list."""
    try:
        parsed = urlsplit(url)
        hostname = parsed.hostname
        parsed.port  # 端口非法时抛 ValueError
    except ValueError:
        return ValidationResult(False, "Invalid URL format")
    if not parsed.scheme or not hostname:
        return ValidationResult(False, "Invalid URL format")
    if parsed.username or parsed.password:
        return ValidationResult(False, "Embedded credentials are not allowed")

    backend_address = settings.backend_address.strip().lower()
    host = parsed.netloc.rsplit("@", 1)[-1].lower()
    if not backend_address or host != backend_address:
        return ValidationResult(False, "Base address does not match configured backend")

    scheme = parsed.scheme.lower()
    if is_production():
        if scheme not in _PROD_SCHEMES:
            return ValidationResult(False, "Invalid protocol. Only https: and wss: are allowed in production")
    elif scheme not in _DEV_SCHEMES:
        return ValidationResult(False, "Invalid protocol")

    allowed = set(allowed_paths) if allowed_paths is not None else {*ENDPOINT_PATHS, WEBSOCKET_PATH}
    if _resolved_path(parsed.path) not in allowed:
        return ValidationResult(False, "Path is not in the allowed list")
    return ValidationResult(True)


def validate_websocket_url(url: str) -> bool:
    result = validate_request_url(url)
    if not result.is_valid:
        logger.warning("websocket url validation failed error=%s url=%s", result.error, url)
    return result.is_valid


def is_valid_websocket_url(url: str) -> bool:
    """Stand-alone ws/wss sanity check, independent of the configured backend."""
    if _WHITESPACE_RE.search(url):
        logger.warning("websocket url rejected reason=whitespace_or_control_chars")
        return False
    try:
        parsed = urlsplit(url)
        parsed.port
    except ValueError:
        logger.warning("websocket url rejected reason=invalid_format")
        return False
    if parsed.scheme.lower() not in _WEBSOCKET_SCHEMES or not parsed.hostname:
        logger.warning("websocket url rejected reason=protocol_not_ws")
        return False
    if parsed.username or parsed.password:
        logger.warning("websocket url rejected reason=embedded_credentials")
        return False
    if len(url) > MAX_WEBSOCKET_URL_LENGTH:
        logger.warning("websocket url rejected reason=too_long length=%d", len(url))
        return False
    return True
