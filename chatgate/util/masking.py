"""Value masking for request logs."""

from __future__ import annotations

import re

_SECRET_HEADER_HINTS = ("authorization", "cookie", "key", "secret", "token")


def mask_for_log(value: str) -> str:
    """Return a partially-masked version of *value* safe for log output.

    Values of 10+ chars keep the first 3 and last 2 chars; shorter values
    keep progressively fewer. Whitespace runs are collapsed first.
    """
    normalized = re.sub(r"\s+", " ", value).strip()
    length = len(normalized)
    if length <= 0:
        return ""
    if length == 1:
        return "*"
    if length <= 4:
        return f"{normalized[:1]}{'*' * (length - 2)}{normalized[-1:]}"

    head = 3 if length >= 10 else 2
    tail = 2
    if head + tail >= length:
        head, tail = 1, 1
    return f"{normalized[:head]}{'*' * (length - head - tail)}{normalized[-tail:]}"


def redact_headers_for_log(headers: dict[str, str]) -> dict[str, str]:
    safe: dict[str, str] = {}
    for key, value in headers.items():
        lowered = key.lower()
        if any(hint in lowered for hint in _SECRET_HEADER_HINTS):
            safe[key] = "***"
        elif lowered in {"conversation-id", "user-message-id"}:
            safe[key] = mask_for_log(value)
        else:
            safe[key] = value
    return safe
