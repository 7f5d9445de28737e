"""Object construction, document (de)serialisation, sealing and commit."""

from __future__ import annotations

import copy
import dataclasses
import logging
import os
from datetime import datetime, timezone
from pathlib import PurePath
from typing import Any

from ..types import (
    OBJECT_CLASSES,
    ChatObject,
    CommitResult,
    FileObject,
    HashMismatch,
    ObjectType,
    Provenance,
    SessionObject,
    SystemPromptObject,
    ToolcallObject,
    Turn,
    VersionedObject,
)
from .hashing import (
    canonical_json,
    compute_content_hash,
    compute_metadata_view_hash,
    compute_object_hash,
)
from .store import VersionedStore

logger = logging.getLogger(__name__)


def file_object_id(path: str) -> str:
    return f"file:{path}"


def chat_object_id(session_id: str) -> str:
    return f"chat:{session_id}"


def session_object_id(session_id: str) -> str:
    return f"session:{session_id}"


def system_prompt_object_id(session_id: str) -> str:
    return f"system_prompt:{session_id}"


def dt_to_str(dt: datetime) -> str:
    """Fixed-width UTC ISO form; lexical order equals time order."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def str_to_dt(s: str) -> datetime:
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def normalize_path(path: str, root: str = ".") -> str:
    """Absolute, normalised path; relative paths are taken from ``root``."""
    return os.path.normpath(os.path.join(os.path.abspath(root), os.path.expanduser(path)))


def file_type_from_path(path: str) -> str:
    suffix = PurePath(path).suffix.lower()
    return suffix[1:] if suffix else "unknown"


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

def object_to_document(obj: VersionedObject) -> dict[str, Any]:
    """Plain JSON-ready dict. Timestamps become ISO strings."""
    doc = dataclasses.asdict(obj)
    doc["type"] = obj.type.value
    doc["timestamp"] = dt_to_str(obj.timestamp) if obj.timestamp else None
    return doc


def document_to_object(doc: dict[str, Any]) -> VersionedObject:
    """Inverse of object_to_document. Unknown keys are ignored."""
    obj_type = ObjectType(doc["type"])
    cls = OBJECT_CLASSES[obj_type]
    names = {f.name for f in dataclasses.fields(cls)}
    kwargs = {k: v for k, v in doc.items() if k in names}
    kwargs["type"] = obj_type

    prov = doc.get("provenance") or {}
    kwargs["provenance"] = Provenance(
        origin=prov.get("origin", ""),
        generator=prov.get("generator", "system"),
        parent_refs=list(prov.get("parent_refs", [])),
    )
    ts = doc.get("timestamp")
    kwargs["timestamp"] = str_to_dt(ts) if isinstance(ts, str) else ts

    if obj_type == ObjectType.CHAT:
        kwargs["turns"] = [
            Turn(
                user=t.get("user", ""),
                assistant=list(t.get("assistant", [])),
                toolcall_ids=list(t.get("toolcall_ids", [])),
                assistant_meta=dict(t.get("assistant_meta", {})),
            )
            for t in doc.get("turns", [])
        ]
    return cls(**kwargs)


def hashable_document(obj: VersionedObject) -> dict[str, Any]:
    doc = object_to_document(obj)
    doc.pop("timestamp", None)
    return doc


# ---------------------------------------------------------------------------
# Hash sealing
# ---------------------------------------------------------------------------

def seal(obj: VersionedObject) -> VersionedObject:
    """Fill in all three hashes in place and return the object."""
    doc = hashable_document(obj)
    obj.content_hash = compute_content_hash(obj.content)
    obj.metadata_view_hash = compute_metadata_view_hash(obj.type, doc)
    obj.object_hash = compute_object_hash(doc)
    return obj


def verify(obj: VersionedObject) -> None:
    """Recompute hashes and raise HashMismatch on any disagreement."""
    doc = hashable_document(obj)
    checks = (
        ("content_hash", obj.content_hash, compute_content_hash(obj.content)),
        ("metadata_view_hash", obj.metadata_view_hash, compute_metadata_view_hash(obj.type, doc)),
        ("object_hash", obj.object_hash, compute_object_hash(doc)),
    )
    for name, stored, computed in checks:
        if stored != computed:
            logger.error("Integrity alarm for %s: %s stored=%s computed=%s", obj.id, name, stored, computed)
            raise HashMismatch(obj.id, name, stored, computed)


def commit_object(store: VersionedStore, obj: VersionedObject) -> CommitResult:
    """Seal and write ``obj`` unless the current version already has its object_hash.

    The stored version is verified before it is reused, so a tampered
    current version raises HashMismatch instead of being taken as committed.
    """
    seal(obj)
    latest = store.get(obj.id)
    if latest is not None and latest.object_hash == obj.object_hash:
        verify(latest)
        logger.debug("Skipping unchanged version of %s", obj.id)
        return CommitResult(object=latest, written=False)
    receipt = store.put(obj)
    obj.timestamp = receipt.timestamp
    logger.debug("Committed %s v%d", obj.id, receipt.version)
    return CommitResult(object=obj, written=True, receipt=receipt)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def build_file_object(
    path: str,
    content: str | None,
    *,
    object_id: str | None = None,
    origin: str = "",
    generator: str = "tool",
    nickname: str | None = None,
) -> FileObject:
    return FileObject(
        id=object_id or file_object_id(path),
        content=content,
        nickname=nickname,
        provenance=Provenance(origin=origin or path, generator=generator),
        path=path,
        file_type=file_type_from_path(path),
        char_count=len(content) if content is not None else 0,
    )


def build_file_tombstone(previous: FileObject, origin: str = "watcher") -> FileObject:
    """Deletion version: same id, null content and null path."""
    return FileObject(
        id=previous.id,
        content=None,
        nickname=previous.nickname,
        provenance=Provenance(origin=origin, generator="system"),
        path=None,
        file_type=previous.file_type,
        char_count=0,
    )


def build_toolcall_object(
    toolcall_id: str,
    tool: str,
    args: dict,
    output: str,
    *,
    is_error: bool,
    chat_ref: str,
    file_refs: list[str] | None = None,
) -> ToolcallObject:
    return ToolcallObject(
        id=toolcall_id,
        content=output,
        provenance=Provenance(origin=tool, generator="tool", parent_refs=[chat_ref]),
        tool=tool,
        args=dict(args),
        args_display=canonical_json(args),
        status="fail" if is_error else "ok",
        chat_ref=chat_ref,
        file_refs=list(file_refs or []),
    )


def build_chat_object(session_id: str, turns: list[Turn], toolcall_refs: list[str]) -> ChatObject:
    # Chat content is the canonical JSON of the turn list so content_hash tracks it.
    return ChatObject(
        id=chat_object_id(session_id),
        content=canonical_json([dataclasses.asdict(t) for t in turns]),
        provenance=Provenance(origin=session_id, generator="system"),
        turns=copy.deepcopy(turns),
        session_ref=session_object_id(session_id),
        turn_count=len(turns),
        toolcall_refs=list(toolcall_refs),
    )


def build_system_prompt_object(session_id: str, prompt: str) -> SystemPromptObject:
    return SystemPromptObject(
        id=system_prompt_object_id(session_id),
        content=prompt,
        provenance=Provenance(origin=session_id, generator="human"),
        session_ref=session_object_id(session_id),
    )


def build_session_object(
    session_id: str,
    *,
    harness: str,
    object_ids: list[str],
    active_set: list[str],
    pinned_set: list[str],
    manual_set: list[str],
    cursor_position: int,
    cursor_signature: str | None,
    cursor_generation: int,
    toolcall_history: list[dict] | None = None,
) -> SessionObject:
    active = set(active_set)
    return SessionObject(
        id=session_object_id(session_id),
        content="session-state",
        provenance=Provenance(origin=session_id, generator="system"),
        harness=harness,
        session_id=session_id,
        chat_ref=chat_object_id(session_id),
        system_prompt_ref=system_prompt_object_id(session_id),
        object_ids=list(object_ids),
        active_set=list(active_set),
        inactive_set=[oid for oid in object_ids if oid not in active],
        pinned_set=list(pinned_set),
        manual_set=list(manual_set),
        toolcall_history=[dict(rec) for rec in toolcall_history or []],
        cursor_position=cursor_position,
        cursor_signature=cursor_signature,
        cursor_generation=cursor_generation,
    )


def describe_object(obj: VersionedObject) -> dict[str, Any]:
    """JSON-ready summary of one version, without content."""
    return {
        "id": obj.id,
        "type": obj.type.value,
        "nickname": obj.nickname,
        "locked": obj.locked,
        "has_content": obj.content is not None,
        "char_count": len(obj.content) if obj.content is not None else 0,
        "content_hash": obj.content_hash,
        "metadata_view_hash": obj.metadata_view_hash,
        "object_hash": obj.object_hash,
        "timestamp": dt_to_str(obj.timestamp) if obj.timestamp else None,
    }
