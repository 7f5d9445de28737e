"""Canonical hashing for versioned objects.

Three hashes per version:

- ``content_hash``: SHA-256 of ``content`` alone, ``None`` when content is ``None``.
- ``metadata_view_hash``: SHA-256 over a fixed, per-type field list used by the
  metadata listing, so renderers can detect metadata-only changes.
- ``object_hash``: SHA-256 of the whole document minus timestamps and the
  three hash fields, so structurally equal documents hash equally no matter
  when they were written.

All functions here are pure.
"""

from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Any, Mapping

from ..types import ObjectType

HASH_FIELDS = frozenset({"content_hash", "metadata_view_hash", "object_hash"})
TIMESTAMP_FIELDS = frozenset({"timestamp", "created_at", "updated_at", "valid_from", "tx_time"})

METADATA_VIEW_FIELDS: dict[ObjectType, tuple[str, ...]] = {
    ObjectType.FILE: ("id", "type", "path", "file_type", "char_count", "nickname"),
    ObjectType.TOOLCALL: ("id", "type", "tool", "args_display", "status", "nickname"),
    ObjectType.CHAT: ("id", "type", "session_ref", "turn_count"),
    ObjectType.SESSION: ("id", "type", "harness", "session_id"),
    ObjectType.SYSTEM_PROMPT: ("id", "type", "session_ref"),
}


def _default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def canonical_json(value: Any) -> str:
    """Key-sorted, whitespace-free JSON used as hash input."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=_default)


def sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def compute_content_hash(content: str | None) -> str | None:
    if content is None:
        return None
    return sha256(content)


def compute_metadata_view_hash(obj_type: ObjectType | str, fields: Mapping[str, Any]) -> str:
    obj_type = ObjectType(obj_type)
    values = [fields.get(name) for name in METADATA_VIEW_FIELDS[obj_type]]
    return sha256(canonical_json(values))


def compute_object_hash(doc: Mapping[str, Any]) -> str:
    body = {
        k: v for k, v in doc.items()
        if k not in HASH_FIELDS and k not in TIMESTAMP_FIELDS
    }
    return sha256(canonical_json(body))
