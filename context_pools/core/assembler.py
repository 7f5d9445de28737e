"""ContextAssembler: render pool state into the ordered model input.

Assembly order (top to bottom):
1. system prompt (locked)
2. <metadata-pool> listing, in insertion order
3. chat turns; tool results appear only as ``toolcall_ref`` lines
4. <active-content> blocks, in activation order

Rendering is a pure function of pool state. No timestamps or other
volatile values are emitted, so unchanged state renders byte-identically
and a mutation only changes output from the first affected block onward.
"""

from __future__ import annotations

from typing import Callable

from ..types import (
    INFRASTRUCTURE_TYPES,
    AssembledContext,
    AssemblerConfig,
    ContextBlock,
    MetadataEntry,
    ObjectType,
    Turn,
)
from .hashing import canonical_json
from .pool_manager import PoolManager

SECTIONS = ("system_prompt", "metadata", "chat", "active")


def render_metadata_line(entry: MetadataEntry, render_args: bool = True) -> str:
    f = entry.fields
    if entry.type == ObjectType.FILE:
        path = f.get("path") or "deleted"
        line = f"id={entry.id} type=file path={path} file_type={f.get('file_type')}"
        if f.get("deleted"):
            line += " [deleted]"
        elif f.get("unread"):
            line += " [unread]"
        else:
            line += f" char_count={f.get('char_count')}"
    elif entry.type == ObjectType.TOOLCALL:
        line = f"id={entry.id} type=toolcall tool={f.get('tool')}"
        if render_args:
            line += f" args={f.get('args_display')}"
        line += f" status={f.get('status')}"
    else:
        line = f"id={entry.id} type={entry.type.value}"
    if f.get("nickname"):
        line += f" nickname={f['nickname']}"
    return line


def render_tool_call(block: dict) -> str:
    return f"tool_call id={block.get('id')} name={block.get('name')} args={canonical_json(block.get('arguments') or {})}"


class ContextAssembler:
    def __init__(
        self,
        config: AssemblerConfig | None = None,
        token_counter: Callable[[str], int] | None = None,
    ) -> None:
        self.config = config or AssemblerConfig()
        self.token_counter = token_counter or (lambda text: (len(text) + 3) // 4)

    def assemble(self, pools: PoolManager) -> AssembledContext:
        blocks: list[ContextBlock] = []

        if pools.system_prompt:
            blocks.append(ContextBlock("system_prompt", "system", pools.system_prompt, pools.system_prompt_id))

        metadata = self.render_metadata(pools)
        if metadata is not None:
            blocks.append(ContextBlock("metadata", "user", metadata))

        for turn in pools.chat.turns:
            blocks.extend(self.render_turn(turn, pools))

        for object_id, obj_type, content in pools.active.items():
            if content is None or obj_type in INFRASTRUCTURE_TYPES:
                continue
            text = f'<active-content id="{object_id}" type="{obj_type.value}">\n{content}\n</active-content>'
            blocks.append(ContextBlock("active", "user", text, object_id))

        breakdown = {name: 0 for name in SECTIONS}
        for block in blocks:
            breakdown[block.section] += self.token_counter(block.text)

        return AssembledContext(
            blocks=blocks,
            total_tokens=sum(breakdown.values()),
            budget_breakdown=breakdown,
        )

    def render_metadata(self, pools: PoolManager) -> str | None:
        entries = pools.metadata.entries()
        if not entries and not self.config.include_empty_metadata:
            return None
        lines = ["<metadata-pool>"]
        lines.extend(render_metadata_line(e, self.config.render_tool_args) for e in entries)
        if not entries:
            lines.append("(empty)")
        lines.append("</metadata-pool>")
        return "\n".join(lines)

    def render_turn(self, turn: Turn, pools: PoolManager) -> list[ContextBlock]:
        out: list[ContextBlock] = []
        if turn.user:
            out.append(ContextBlock("chat", "user", turn.user))

        parts = []
        for block in turn.assistant:
            if block.get("type") == "text" and block.get("text"):
                parts.append(block["text"])
            elif block.get("type") == "toolCall":
                parts.append(render_tool_call(block))
        if parts:
            out.append(ContextBlock("chat", "assistant", "\n".join(parts)))

        for toolcall_id in turn.toolcall_ids:
            summary = pools.chat.summary(toolcall_id)
            text = f"toolcall_ref id={toolcall_id} tool={summary.tool} status={summary.status}"
            out.append(ContextBlock("chat", "tool", text, toolcall_id))
        return out
