"""The three per-session pools: metadata listing, chat history, active content."""

from __future__ import annotations

import copy
from collections import OrderedDict

from ..types import (
    FileObject,
    MetadataEntry,
    ObjectType,
    ToolcallSummary,
    Turn,
    VersionedObject,
)
from .hashing import METADATA_VIEW_FIELDS


def entry_from_object(obj: VersionedObject) -> MetadataEntry:
    """Project an object version onto its fixed metadata field list."""
    fields = {
        name: getattr(obj, name, None)
        for name in METADATA_VIEW_FIELDS[obj.type]
        if name not in ("id", "type")
    }
    if isinstance(obj, FileObject):
        fields["deleted"] = obj.path is None
        fields["unread"] = obj.content is None and obj.path is not None
    return MetadataEntry(id=obj.id, type=obj.type, fields=fields, view_hash=obj.metadata_view_hash)


class MetadataPool:
    """Insertion-ordered listing, one entry per known object.

    Entries are never removed or reordered; a newer version of a known
    object replaces its entry in place.
    """

    def __init__(self) -> None:
        self._entries: dict[str, MetadataEntry] = {}

    def upsert(self, entry: MetadataEntry) -> bool:
        """Add or refresh an entry. Returns True if the listing changed."""
        existing = self._entries.get(entry.id)
        if existing is not None and existing.fields == entry.fields and existing.type == entry.type:
            return False
        self._entries[entry.id] = entry
        return True

    def get(self, object_id: str) -> MetadataEntry | None:
        return self._entries.get(object_id)

    def find_by_nickname(self, nickname: str) -> str | None:
        for entry in self._entries.values():
            if entry.fields.get("nickname") == nickname:
                return entry.id
        return None

    def find_by_path(self, path: str) -> str | None:
        for entry in self._entries.values():
            if entry.type == ObjectType.FILE and entry.fields.get("path") == path:
                return entry.id
        return None

    def entries(self) -> list[MetadataEntry]:
        return list(self._entries.values())

    def ids(self) -> list[str]:
        return list(self._entries)

    def copy(self) -> MetadataPool:
        clone = MetadataPool()
        clone._entries = dict(self._entries)
        return clone

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, object_id: object) -> bool:
        return object_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class ChatPool:
    """The Chat document's turn sequence plus summaries used for tool references."""

    def __init__(self) -> None:
        self._turns: list[Turn] = []
        self._summaries: dict[str, ToolcallSummary] = {}

    @property
    def turns(self) -> list[Turn]:
        return self._turns

    @property
    def current_turn_index(self) -> int:
        """Index of the in-progress turn; -1 before the first user message."""
        return len(self._turns) - 1

    def set_turns(self, turns: list[Turn]) -> None:
        self._turns = copy.deepcopy(turns)

    def with_user_turn(self, text: str, meta: dict | None = None) -> list[Turn]:
        """Turn list with a new user turn appended. The pool is not modified."""
        turns = list(self._turns)
        turns.append(Turn(user=text, assistant_meta=dict(meta or {})))
        return turns

    def with_assistant(self, blocks: list[dict], meta: dict) -> list[Turn]:
        """Turn list with assistant blocks appended to the current turn.

        An assistant message before any user message opens an empty user turn.
        """
        turns = list(self._turns)
        if not turns:
            turns.append(Turn(user=""))
        turn = turns[-1] = copy.deepcopy(turns[-1])
        turn.assistant.extend(copy.deepcopy(blocks))
        turn.assistant_meta.update(meta)
        for block in blocks:
            if block.get("type") == "toolCall" and block.get("id") and block["id"] not in turn.toolcall_ids:
                turn.toolcall_ids.append(block["id"])
        return turns

    def register_toolcall(self, summary: ToolcallSummary) -> None:
        self._summaries[summary.id] = summary

    def summary(self, toolcall_id: str) -> ToolcallSummary:
        """Registered summary, or a pending one while the result is outstanding."""
        known = self._summaries.get(toolcall_id)
        if known is not None:
            return known
        call = self.find_tool_call(toolcall_id) or {}
        return ToolcallSummary(id=toolcall_id, tool=call.get("name") or "unknown", status="pending")

    def turn_of(self, toolcall_id: str) -> int | None:
        for idx, turn in enumerate(self._turns):
            if toolcall_id in turn.toolcall_ids:
                return idx
        return None

    def find_tool_call(self, toolcall_id: str) -> dict | None:
        """The assistant toolCall block carrying ``toolcall_id``, newest turn first."""
        for turn in reversed(self._turns):
            for block in turn.assistant:
                if block.get("type") == "toolCall" and block.get("id") == toolcall_id:
                    return block
        return None

    def copy(self) -> ChatPool:
        """Shares Turn objects; turns are replaced, never edited in place."""
        clone = ChatPool()
        clone._turns = list(self._turns)
        clone._summaries = dict(self._summaries)
        return clone

    def clear(self) -> None:
        self._turns = []
        self._summaries.clear()


class ActivePool:
    """Object id -> current content, in activation order.

    Re-activating an id refreshes its content without moving it, so the
    rendered order only changes at the point of mutation.
    """

    def __init__(self) -> None:
        self._content: OrderedDict[str, str | None] = OrderedDict()
        self._types: dict[str, ObjectType] = {}

    def activate(self, object_id: str, content: str | None, obj_type: ObjectType) -> None:
        self._content[object_id] = content
        self._types[object_id] = obj_type

    def deactivate(self, object_id: str) -> bool:
        self._types.pop(object_id, None)
        return self._content.pop(object_id, _MISSING) is not _MISSING

    def is_active(self, object_id: str) -> bool:
        return object_id in self._content

    def content(self, object_id: str) -> str | None:
        return self._content.get(object_id)

    def type_of(self, object_id: str) -> ObjectType | None:
        return self._types.get(object_id)

    def ids(self) -> list[str]:
        return list(self._content)

    def items(self) -> list[tuple[str, ObjectType, str | None]]:
        return [(oid, self._types[oid], content) for oid, content in self._content.items()]

    def copy(self) -> ActivePool:
        clone = ActivePool()
        clone._content = OrderedDict(self._content)
        clone._types = dict(self._types)
        return clone

    def clear(self) -> None:
        self._content.clear()
        self._types.clear()

    def __len__(self) -> int:
        return len(self._content)


_MISSING = object()
