"""
流式响应转换：逐块读取上游字节流，按行解析 `data: ` / `intermediate_data: ` /
`<intermediatestep>` 三种帧，输出浏览器直接消费的纯文本 + 中间步骤标记。

状态机只有 READING -> DRAINING -> CLOSED 三段；单行解析失败只丢弃该行，
任何退出路径都会关闭上游读取。
"""

from __future__ import annotations

import codecs
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncGenerator, AsyncIterator

import httpx

from chatgate.core.extractors import STREAM_FALLBACK_PROBES, STREAM_LINE_PROBES, first_text
from chatgate.core.models import IntermediateStepContent, IntermediateStepEvent
from chatgate.util.logger import logger

DATA_PREFIX = "data: "
INTERMEDIATE_PREFIX = "intermediate_data: "
STEP_OPEN_TAG = "<intermediatestep>"
STEP_CLOSE_TAG = "</intermediatestep>"
DONE_SENTINEL = "[DONE]"


class StreamVariant(str, Enum):
    CHAT = "chat"
    GENERATE = "generate"


class StreamPhase(str, Enum):
    READING = "reading"
    DRAINING = "draining"
    CLOSED = "closed"


class LineKind(str, Enum):
    CONTENT = "content"
    STEP = "step"
    PASSTHROUGH = "passthrough"
    DONE = "done"
    SKIP = "skip"


@dataclass(frozen=True, slots=True)
class LineResult:
    kind: LineKind
    text: str = ""
    step: dict[str, Any] = field(default_factory=dict)
    reason: str = ""


@dataclass(slots=True)
class StreamDecodeState:
    carryover_buffer: str = ""
    raw_accumulator: str = ""
    sequence_counter: int = 0
    final_answer_emitted: bool = False
    done_seen: bool = False
    phase: StreamPhase = StreamPhase.READING


def _skip(reason: str) -> LineResult:
    return LineResult(LineKind.SKIP, reason=reason)


def _parse_json(text: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except (json.JSONDecodeError, ValueError, RecursionError):
        return False, None


def parse_line(line: str, *, enable_intermediate_steps: bool) -> LineResult:
    """Classify one complete upstream line. Never raises."""
    if line.startswith(DATA_PREFIX):
        data = line[len(DATA_PREFIX):]
        if data.strip() == DONE_SENTINEL:
            return LineResult(LineKind.DONE)
        ok, parsed = _parse_json(data)
        if not ok:
            return _skip("data_invalid_json")
        content = first_text(parsed, STREAM_LINE_PROBES)
        if content is None:
            return _skip("data_without_content")
        return LineResult(LineKind.CONTENT, text=content)

    if STEP_OPEN_TAG in line and STEP_CLOSE_TAG in line:
        if enable_intermediate_steps:
            return LineResult(LineKind.PASSTHROUGH, text=line)
        return _skip("intermediate_steps_disabled")

    if line.startswith(INTERMEDIATE_PREFIX):
        if not enable_intermediate_steps:
            return _skip("intermediate_steps_disabled")
        ok, parsed = _parse_json(line[len(INTERMEDIATE_PREFIX):])
        if not ok:
            return _skip("intermediate_invalid_json")
        return LineResult(LineKind.STEP, step=parsed if isinstance(parsed, dict) else {})

    return _skip("unrecognized_line")


def _or_default(payload: dict[str, Any], key: str, default: Any) -> Any:
    value = payload.get(key)
    return value if value else default


def build_intermediate_step(payload: dict[str, Any], index: int) -> IntermediateStepEvent:
    return IntermediateStepEvent(
        id=_or_default(payload, "id", ""),
        status=_or_default(payload, "status", "in_progress"),
        error=_or_default(payload, "error", ""),
        parent_id=_or_default(payload, "parent_id", "default"),
        intermediate_parent_id=_or_default(payload, "intermediate_parent_id", "default"),
        content=IntermediateStepContent(
            name=_or_default(payload, "name", "Step"),
            payload=_or_default(payload, "payload", "No details"),
        ),
        time_stamp=_or_default(payload, "time_stamp", "default"),
        index=index,
    )


def format_intermediate_step(event: IntermediateStepEvent) -> str:
    body = json.dumps(event.model_dump(), ensure_ascii=False, separators=(",", ":"))
    return f"{STEP_OPEN_TAG}{body}{STEP_CLOSE_TAG}"


def fallback_answer(raw_text: str) -> str | None:
    """Recover a stream endpoint that answered with one complete JSON document."""
    ok, parsed = _parse_json(raw_text)
    if not ok:
        return None
    value = first_text(parsed, STREAM_FALLBACK_PROBES)
    if value is None:
        return None
    return value.strip() or None


def _render(result: LineResult, state: StreamDecodeState) -> str | None:
    if result.kind is LineKind.CONTENT:
        state.final_answer_emitted = True
        state.raw_accumulator = ""
        return result.text
    if result.kind is LineKind.PASSTHROUGH:
        return result.text
    if result.kind is LineKind.STEP:
        event = build_intermediate_step(result.step, state.sequence_counter)
        state.sequence_counter += 1
        return format_intermediate_step(event)
    return None


def _fallback_possible(variant: StreamVariant, state: StreamDecodeState) -> bool:
    # 只有 generate 且尚未输出正文时才需要保留原始全文
    return variant is StreamVariant.GENERATE and not state.final_answer_emitted


async def _release(upstream: AsyncIterator[bytes]) -> None:
    aclose = getattr(upstream, "aclose", None)
    if callable(aclose):
        await aclose()


async def transform_stream(
    upstream: AsyncIterator[bytes],
    *,
    variant: StreamVariant,
    enable_intermediate_steps: bool,
) -> AsyncGenerator[bytes, None]:
    state = StreamDecodeState()
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    transport_failed = False
    try:
        try:
            async for chunk in upstream:
                text = decoder.decode(chunk)
                state.carryover_buffer += text
                if _fallback_possible(variant, state):
                    state.raw_accumulator += text

                lines = state.carryover_buffer.split("\n")
                state.carryover_buffer = lines.pop()
                for raw_line in lines:
                    result = parse_line(raw_line.rstrip("\r"), enable_intermediate_steps=enable_intermediate_steps)
                    if result.kind is LineKind.DONE:
                        state.done_seen = True
                        logger.debug("stream done sentinel variant=%s steps=%d", variant.value, state.sequence_counter)
                        return
                    rendered = _render(result, state)
                    if rendered:
                        yield rendered.encode("utf-8")
        except (httpx.HTTPError, httpx.StreamError) as exc:
            transport_failed = True
            logger.warning("stream upstream interrupted variant=%s error=%s", variant.value, exc)

        state.phase = StreamPhase.DRAINING
        tail = decoder.decode(b"", final=True)
        if not transport_failed and _fallback_possible(variant, state):
            state.raw_accumulator += tail
            answer = fallback_answer(state.raw_accumulator)
            if answer:
                state.final_answer_emitted = True
                logger.debug("stream fallback answer recovered variant=%s chars=%d", variant.value, len(answer))
                yield answer.encode("utf-8")
    finally:
        state.phase = StreamPhase.CLOSED
        await _release(upstream)
