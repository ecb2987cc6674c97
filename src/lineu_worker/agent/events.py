"""Typed events decoded from the agent's stream-json output."""

import json
from typing import Annotated, Any, Dict, List, Literal, Union

from pydantic import BaseModel, Field


class TextEvent(BaseModel):
    kind: Literal["text"] = "text"
    text: str


class ToolUseEvent(BaseModel):
    kind: Literal["tool_use"] = "tool_use"
    tool_use_id: str | None = None
    name: str
    input: Any = None


class ToolResultEvent(BaseModel):
    kind: Literal["tool_result"] = "tool_result"
    tool_use_id: str | None = None
    output: str


class ResultEvent(BaseModel):
    """Terminal result of an agent turn. ``result`` is usually free text."""

    kind: Literal["result"] = "result"
    result: Any = None
    subtype: str | None = None
    is_error: bool = False
    duration_ms: int | None = None
    num_turns: int | None = None


class ErrorEvent(BaseModel):
    kind: Literal["error"] = "error"
    message: str


AgentEvent = Annotated[
    Union[TextEvent, ToolUseEvent, ToolResultEvent, ResultEvent, ErrorEvent],
    Field(discriminator="kind"),
]


def _content_blocks(envelope: Dict[str, Any]) -> List[Dict[str, Any]]:
    message = envelope.get("message")
    if not isinstance(message, dict):
        return []
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def _tool_output(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list) and all(isinstance(b, dict) and b.get("type") == "text" for b in content):
        return "\n".join(str(b.get("text", "")) for b in content)
    return json.dumps(content, ensure_ascii=False, default=str)


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def decode_event(raw: Any) -> List[AgentEvent]:
    """Map one decoded stream-json envelope to zero or more events.

    Envelopes of unknown type (``system`` init messages and the like) produce nothing.
    """
    if not isinstance(raw, dict):
        return []

    envelope_type = raw.get("type")
    events: List[AgentEvent] = []

    if envelope_type == "assistant":
        for block in _content_blocks(raw):
            if block.get("type") == "text" and isinstance(block.get("text"), str):
                events.append(TextEvent(text=block["text"]))
            elif block.get("type") == "tool_use":
                events.append(
                    ToolUseEvent(
                        tool_use_id=block.get("id"),
                        name=str(block.get("name", "unknown")),
                        input=block.get("input"),
                    )
                )
    elif envelope_type == "user":
        for block in _content_blocks(raw):
            if block.get("type") == "tool_result":
                events.append(
                    ToolResultEvent(
                        tool_use_id=block.get("tool_use_id"),
                        output=_tool_output(block.get("content")),
                    )
                )
    elif envelope_type == "result":
        events.append(
            ResultEvent(
                result=raw.get("result"),
                subtype=raw.get("subtype") if isinstance(raw.get("subtype"), str) else None,
                is_error=bool(raw.get("is_error", False)),
                duration_ms=_int_or_none(raw.get("duration_ms")),
                num_turns=_int_or_none(raw.get("num_turns")),
            )
        )
    elif envelope_type == "error":
        error = raw.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        events.append(ErrorEvent(message=str(error or raw.get("message") or "unknown error")))

    return events
