"""Harness message parsing and signatures.

The harness stream is a closed set of three message kinds. Anything else is
rejected at the boundary with ``ValueError``.
"""

from __future__ import annotations

import dataclasses
import json
from datetime import datetime, timezone
from typing import Any

from ..types import (
    AssistantMessage,
    HarnessMessage,
    ToolCallDescriptor,
    ToolResultMessage,
    UserMessage,
)
from .hashing import canonical_json, sha256

TOOL_RESULT_ROLES = ("toolResult", "tool")


def _text_of(content: Any) -> str:
    """Flatten string or block-list content to its text parts."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
        return "\n".join(parts)
    raise ValueError(f"Unsupported message content: {type(content).__name__}")


def _timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        # Epoch milliseconds
        return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    raise ValueError(f"Unsupported timestamp: {value!r}")


def _arguments(raw: Any) -> dict:
    if raw is None:
        return {}
    if isinstance(raw, str):
        return json.loads(raw) if raw.strip() else {}
    if isinstance(raw, dict):
        return dict(raw)
    raise ValueError(f"Tool call arguments must be an object, got {type(raw).__name__}")


def _tool_calls(raw: dict) -> list[ToolCallDescriptor]:
    calls: list[ToolCallDescriptor] = []
    content = raw.get("content")
    if isinstance(content, list):
        for block in content:
            if isinstance(block, dict) and block.get("type") == "toolCall":
                calls.append(ToolCallDescriptor(
                    id=block["id"],
                    name=block.get("name", ""),
                    arguments=_arguments(block.get("arguments")),
                ))
    # OpenAI-style function calls
    for call in raw.get("tool_calls") or []:
        fn = call.get("function", {})
        calls.append(ToolCallDescriptor(
            id=call["id"],
            name=fn.get("name", call.get("name", "")),
            arguments=_arguments(fn.get("arguments", call.get("arguments"))),
        ))
    return calls


def parse_message(raw: dict | HarnessMessage) -> HarnessMessage:
    """Build a typed message from harness JSON. Typed messages pass through."""
    if isinstance(raw, (UserMessage, AssistantMessage, ToolResultMessage)):
        return raw
    if not isinstance(raw, dict):
        raise ValueError(f"Unsupported message: {type(raw).__name__}")

    role = raw.get("role")
    if role == "user":
        return UserMessage(content=_text_of(raw.get("content")), timestamp=_timestamp(raw.get("timestamp")))
    if role == "assistant":
        return AssistantMessage(
            content=_text_of(raw.get("content")),
            tool_calls=_tool_calls(raw),
            model=raw.get("model", ""),
            provider=raw.get("provider", ""),
            stop_reason=raw.get("stopReason", raw.get("stop_reason", "")),
            timestamp=_timestamp(raw.get("timestamp")),
        )
    if role in TOOL_RESULT_ROLES:
        tool_call_id = raw.get("toolCallId", raw.get("tool_call_id"))
        if not tool_call_id:
            raise ValueError("Tool result message without a tool call id")
        args = raw.get("args", raw.get("input"))
        return ToolResultMessage(
            tool_call_id=tool_call_id,
            tool_name=raw.get("toolName", raw.get("name", "")),
            content=_text_of(raw.get("content")),
            is_error=bool(raw.get("isError", raw.get("is_error", False))),
            args=_arguments(args) if args is not None else None,
            timestamp=_timestamp(raw.get("timestamp")),
        )
    raise ValueError(f"Unknown message role: {role!r}")


def message_signature(message: HarnessMessage) -> str:
    """Stable fingerprint of one message, used for cursor continuation checks."""
    return sha256(canonical_json(dataclasses.asdict(message)))


def assistant_blocks(message: AssistantMessage) -> list[dict]:
    """Content blocks stored in the Chat turn, tool calls keep their native ids."""
    blocks: list[dict] = []
    if message.content:
        blocks.append({"type": "text", "text": message.content})
    for call in message.tool_calls:
        blocks.append({
            "type": "toolCall",
            "id": call.id,
            "name": call.name,
            "arguments": dict(call.arguments),
        })
    return blocks
