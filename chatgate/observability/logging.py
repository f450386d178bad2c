"""One-line structured events for request outcomes."""

from __future__ import annotations

import json
import logging

from chatgate.util.logger import logger


def log_event(event: str, *, level: int = logging.INFO, **fields: object) -> None:
    """Log ``event`` with its fields as compact JSON, e.g. ``event=chat_completed {"endpoint":"/chat"}``."""
    if not logger.isEnabledFor(level):
        return
    rendered = json.dumps(fields, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)
    logger.log(level, "event=%s %s", event, rendered)
