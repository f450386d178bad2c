"""
实时文本流中转：保存每个 stream 的最新 live 文本，以及待入库（finalized）条目的 pending 状态。
仅进程内存储，重启即丢失。
"""

from __future__ import annotations

import secrets
import string
import threading
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

DEFAULT_STREAM_ID = "default"
_ID_ALPHABET = string.ascii_lowercase + string.digits


@dataclass(slots=True)
class LiveText:
    text: str
    stream_id: str
    timestamp: Any
    finalized: bool = False


@dataclass(slots=True)
class FinalizedEntry:
    text: str
    stream_id: str
    timestamp: Any
    id: str
    uuid: str | None = None
    pending: bool = True


def _timestamp_sort_key(value: Any) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp() * 1000
        except ValueError:
            return 0.0
    return 0.0


def _entry_id(stream_id: str, timestamp: Any) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{stream_id}-{timestamp}-{suffix}"


@dataclass
class DataStreamHub:
    live: dict[str, LiveText] = field(default_factory=dict)
    finalized: list[FinalizedEntry] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def publish(
        self,
        text: str,
        *,
        stream_id: str | None = None,
        timestamp: Any = None,
        finalized: bool = False,
        uuid: str | None = None,
    ) -> None:
        sid = stream_id or DEFAULT_STREAM_ID
        ts = timestamp or int(time.time() * 1000)
        with self._lock:
            if not finalized:
                self.live[sid] = LiveText(text=text, stream_id=sid, timestamp=ts)
                return
            self.finalized.append(
                FinalizedEntry(text=text, stream_id=sid, timestamp=ts, id=_entry_id(sid, ts), uuid=uuid)
            )
            self.finalized.sort(key=lambda entry: (entry.stream_id, _timestamp_sort_key(entry.timestamp)))
            if sid in self.live:
                self.live[sid].text = ""

    def live_text(self, stream_id: str) -> str:
        with self._lock:
            current = self.live.get(stream_id)
            return current.text if current else ""

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "streams": list(self.live),
                "texts": {sid: asdict(item) for sid, item in self.live.items()},
            }

    def finalized_entries(self, stream_id: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            return [
                asdict(entry)
                for entry in self.finalized
                if stream_id is None or entry.stream_id == stream_id
            ]

    def set_pending(self, uuid: str, pending: bool) -> dict[str, Any] | None:
        with self._lock:
            for entry in self.finalized:
                if entry.uuid == uuid:
                    entry.pending = pending
                    return asdict(entry)
        return None


hub = DataStreamHub()
