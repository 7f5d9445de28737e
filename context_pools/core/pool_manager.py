"""Pool manager: activation state machine over the three pools of one session.

Owns the metadata, chat and active pools plus the pinned and manually
activated sets, and persists a Session object version after every
mutation. Local precondition failures come back as ``PoolOpResult`` values;
store failures raise and leave the in-memory pools as they were.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Callable

from ..types import (
    INFRASTRUCTURE_TYPES,
    CommitResult,
    EvictionConfig,
    FileObject,
    ObjectType,
    OpStatus,
    PoolOpResult,
    SessionObject,
    ToolcallObject,
    ToolcallRecord,
    ToolcallSummary,
    Turn,
    VersionedObject,
)
from .eviction import compute_evictions
from .objects import (
    build_session_object,
    chat_object_id,
    commit_object,
    file_object_id,
    normalize_path,
    session_object_id,
    system_prompt_object_id,
    verify,
)
from .pools import ActivePool, ChatPool, MetadataPool, entry_from_object
from .store import VersionedStore

logger = logging.getLogger(__name__)

StubLoader = Callable[[FileObject], "FileObject | None"]


class PoolManager:
    """Per-session pools and activation rules. Never shared across sessions."""

    def __init__(
        self,
        store: VersionedStore,
        session_id: str,
        *,
        harness: str = "generic",
        eviction: EvictionConfig | None = None,
        verify_hashes: bool = True,
        workspace_root: str = ".",
        stub_loader: StubLoader | None = None,
    ) -> None:
        self._store = store
        self.session_id = session_id
        self.harness = harness
        self._eviction = eviction or EvictionConfig()
        self._verify_hashes = verify_hashes
        self._workspace_root = workspace_root
        self.stub_loader = stub_loader

        self.metadata = MetadataPool()
        self.chat = ChatPool()
        self.active = ActivePool()
        self.pinned: set[str] = set()
        self.manual: set[str] = set()
        self._history: list[ToolcallRecord] = []
        self.system_prompt: str | None = None

        self.cursor_position = 0
        self.cursor_signature: str | None = None
        self.cursor_generation = 0

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @property
    def chat_id(self) -> str:
        return chat_object_id(self.session_id)

    @property
    def session_object_id(self) -> str:
        return session_object_id(self.session_id)

    @property
    def system_prompt_id(self) -> str:
        return system_prompt_object_id(self.session_id)

    @property
    def infrastructure_ids(self) -> frozenset[str]:
        return frozenset({self.chat_id, self.session_object_id, self.system_prompt_id})

    @property
    def toolcall_history(self) -> list[ToolcallRecord]:
        return list(self._history)

    def resolve(self, ref: str) -> str | None:
        """Map an id, nickname or file path to a known object id."""
        if ref in self.infrastructure_ids or ref in self.metadata:
            return ref
        by_nickname = self.metadata.find_by_nickname(ref)
        if by_nickname is not None:
            return by_nickname
        path = normalize_path(ref, self._workspace_root)
        by_path = self.metadata.find_by_path(path)
        if by_path is not None:
            return by_path
        # Deleted files stay reachable by their former path.
        entry = self.metadata.get(file_object_id(path))
        return entry.id if entry is not None and entry.fields.get("path") is None else None

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def snapshot(self) -> dict:
        """Copies of the pool containers, for rollback.

        Entries, turns and content strings are shared; mutations replace
        them rather than editing them in place.
        """
        return {
            "metadata": self.metadata.copy(),
            "chat": self.chat.copy(),
            "active": self.active.copy(),
            "pinned": set(self.pinned),
            "manual": set(self.manual),
            "history": list(self._history),
            "cursor": (self.cursor_position, self.cursor_signature, self.cursor_generation),
        }

    def rollback(self, snap: dict) -> None:
        self.metadata = snap["metadata"]
        self.chat = snap["chat"]
        self.active = snap["active"]
        self.pinned = snap["pinned"]
        self.manual = snap["manual"]
        self._history = snap["history"]
        self.cursor_position, self.cursor_signature, self.cursor_generation = snap["cursor"]

    # ------------------------------------------------------------------
    # Registration (used by ingestion and the file indexer)
    # ------------------------------------------------------------------

    def register(self, obj: VersionedObject) -> bool:
        """Add or refresh the metadata entry for ``obj``.

        An already active object gets its content refreshed in place.
        Returns True if the metadata listing changed.
        """
        if obj.type in INFRASTRUCTURE_TYPES:
            return False
        changed = self.metadata.upsert(entry_from_object(obj))
        if isinstance(obj, ToolcallObject):
            self.chat.register_toolcall(ToolcallSummary(
                id=obj.id, tool=obj.tool, args_display=obj.args_display, status=obj.status,
            ))
        if self.active.is_active(obj.id):
            self.active.activate(obj.id, obj.content, obj.type)
        return changed

    def record_toolcall(self, toolcall_id: str, turn_index: int) -> bool:
        """Append to the toolcall history. Returns False if already recorded."""
        if any(rec.id == toolcall_id for rec in self._history):
            return False
        self._history.append(ToolcallRecord(id=toolcall_id, turn_index=turn_index))
        return True

    def auto_activate(self, obj: VersionedObject) -> None:
        """Activation by policy rather than by request; no sweep exemption."""
        self.active.activate(obj.id, obj.content, obj.type)

    def set_turns(self, turns: list[Turn]) -> None:
        self.chat.set_turns(turns)

    def set_cursor(self, position: int, signature: str | None, generation: int) -> None:
        self.cursor_position = position
        self.cursor_signature = signature
        self.cursor_generation = generation

    # ------------------------------------------------------------------
    # Pool operations
    # ------------------------------------------------------------------

    def activate(self, ref: str) -> PoolOpResult:
        object_id = self.resolve(ref)
        if object_id is None:
            return PoolOpResult(False, OpStatus.NOT_FOUND, ref, f"Object not found: {ref}")
        if object_id in self.infrastructure_ids:
            return PoolOpResult(
                False, OpStatus.INFRASTRUCTURE, object_id,
                f"{object_id} is always rendered in its fixed position",
            )

        obj = self._load(object_id)
        if obj is None:
            return PoolOpResult(False, OpStatus.NOT_FOUND, object_id, f"Object not found: {object_id}")

        if isinstance(obj, FileObject) and obj.content is None and obj.path is not None and self.stub_loader:
            upgraded = self.stub_loader(obj)
            if upgraded is not None:
                obj = upgraded
                self.register(obj)

        snap = self.snapshot()
        self.active.activate(object_id, obj.content, obj.type)
        if obj.type == ObjectType.TOOLCALL:
            self.manual.add(object_id)
        self._persist_or_rollback(snap)

        if obj.content is None:
            logger.info("Activated %s with null content", object_id)
            return PoolOpResult(
                True, OpStatus.NULL_CONTENT, object_id,
                f"{object_id} is active but its current version has no content",
            )
        logger.debug("Activated %s", object_id)
        return PoolOpResult(True, OpStatus.ACTIVATED, object_id, f"Activated {object_id}")

    def deactivate(self, ref: str) -> PoolOpResult:
        object_id = self.resolve(ref)
        if object_id is None:
            return PoolOpResult(False, OpStatus.NOT_FOUND, ref, f"Object not found: {ref}")
        if object_id in self.infrastructure_ids or self._is_locked(object_id):
            logger.info("Denied deactivation of locked object %s", object_id)
            return PoolOpResult(
                False, OpStatus.LOCKED, object_id,
                f"Cannot deactivate locked object: {object_id}",
            )
        if not self.active.is_active(object_id):
            return PoolOpResult(True, OpStatus.NOT_ACTIVE, object_id, f"{object_id} is not active")

        snap = self.snapshot()
        self.active.deactivate(object_id)
        self.manual.discard(object_id)
        self._persist_or_rollback(snap)
        logger.debug("Deactivated %s", object_id)
        return PoolOpResult(True, OpStatus.DEACTIVATED, object_id, f"Deactivated {object_id}")

    def pin(self, ref: str) -> PoolOpResult:
        object_id = self.resolve(ref)
        if object_id is None:
            return PoolOpResult(False, OpStatus.NOT_FOUND, ref, f"Object not found: {ref}")
        if object_id in self.infrastructure_ids:
            return PoolOpResult(
                False, OpStatus.INFRASTRUCTURE, object_id,
                f"{object_id} is never evicted and cannot be pinned",
            )
        if object_id not in self.pinned:
            snap = self.snapshot()
            self.pinned.add(object_id)
            self._persist_or_rollback(snap)
        return PoolOpResult(True, OpStatus.PINNED, object_id, f"Pinned {object_id}")

    def unpin(self, ref: str) -> PoolOpResult:
        object_id = self.resolve(ref)
        if object_id is None:
            return PoolOpResult(False, OpStatus.NOT_FOUND, ref, f"Object not found: {ref}")
        if object_id in self.infrastructure_ids:
            return PoolOpResult(False, OpStatus.INFRASTRUCTURE, object_id, f"{object_id} cannot be pinned")
        if object_id not in self.pinned:
            return PoolOpResult(True, OpStatus.NOT_PINNED, object_id, f"{object_id} is not pinned")
        snap = self.snapshot()
        self.pinned.discard(object_id)
        self._persist_or_rollback(snap)
        return PoolOpResult(True, OpStatus.UNPINNED, object_id, f"Unpinned {object_id}")

    def set_nickname(self, ref: str, nickname: str) -> PoolOpResult:
        """Write a new version carrying ``nickname``. Nicknames are unique per session."""
        object_id = self.resolve(ref)
        if object_id is None:
            return PoolOpResult(False, OpStatus.NOT_FOUND, ref, f"Object not found: {ref}")
        if object_id in self.infrastructure_ids:
            return PoolOpResult(False, OpStatus.INFRASTRUCTURE, object_id, f"{object_id} cannot be renamed")
        holder = self.metadata.find_by_nickname(nickname)
        if holder is not None and holder != object_id:
            return PoolOpResult(False, OpStatus.FAILED, object_id, f"Nickname '{nickname}' is taken by {holder}")

        obj = self._load(object_id)
        if obj is None:
            return PoolOpResult(False, OpStatus.NOT_FOUND, object_id, f"Object not found: {object_id}")
        renamed = dataclasses.replace(obj, nickname=nickname)
        result = commit_object(self._store, renamed)
        self.register(result.object)
        return PoolOpResult(True, OpStatus.RENAMED, object_id, f"{object_id} is now '{nickname}'")

    # ------------------------------------------------------------------
    # Eviction
    # ------------------------------------------------------------------

    def sweep(self) -> list[str]:
        """Auto-deactivate toolcalls outside the recency window. In-memory only."""
        if not self._eviction.enabled:
            return []
        evicted = compute_evictions(
            self._history,
            self.chat.current_turn_index,
            self.active.ids(),
            pinned=self.pinned,
            exempt=self.manual,
            recent_toolcalls=self._eviction.recent_toolcalls,
            recent_turns=self._eviction.recent_turns,
        )
        for object_id in evicted:
            self.active.deactivate(object_id)
        if evicted:
            logger.debug("Evicted %d toolcall(s): %s", len(evicted), ", ".join(evicted))
        return evicted

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def session_object(self) -> SessionObject:
        return build_session_object(
            self.session_id,
            harness=self.harness,
            object_ids=self.metadata.ids(),
            active_set=self.active.ids(),
            pinned_set=sorted(self.pinned),
            manual_set=sorted(self.manual),
            toolcall_history=[{"id": rec.id, "turn_index": rec.turn_index} for rec in self._history],
            cursor_position=self.cursor_position,
            cursor_signature=self.cursor_signature,
            cursor_generation=self.cursor_generation,
        )

    def persist(self) -> CommitResult:
        """Write the Session object if it differs from the stored version."""
        return commit_object(self._store, self.session_object())

    def restore(self, session: SessionObject) -> None:
        """Rebuild all pools from a stored Session object and the current versions it names."""
        self.metadata.clear()
        self.chat.clear()
        self.active.clear()
        self._history = []

        self.harness = session.harness or self.harness
        self.set_cursor(session.cursor_position, session.cursor_signature, session.cursor_generation)

        prompt = self._load(session.system_prompt_ref or self.system_prompt_id)
        self.system_prompt = prompt.content if prompt is not None else None

        chat = self._load(session.chat_ref or self.chat_id)
        if chat is not None:
            self.chat.set_turns(chat.turns)

        for object_id in session.object_ids:
            obj = self._load(object_id)
            if obj is None:
                logger.warning("Session %s lists unknown object %s", self.session_id, object_id)
                continue
            self.register(obj)

        for rec in session.toolcall_history:
            if rec["id"] in self.metadata:
                self.record_toolcall(rec["id"], rec["turn_index"])

        self.pinned = set(session.pinned_set)
        self.manual = set(session.manual_set)
        for object_id in session.active_set:
            obj = self._load(object_id)
            if obj is not None:
                self.active.activate(object_id, obj.content, obj.type)

        logger.info(
            "Restored session %s: %d objects, %d active, %d turns",
            self.session_id, len(self.metadata), len(self.active), len(self.chat.turns),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _load(self, object_id: str) -> VersionedObject | None:
        obj = self._store.get(object_id)
        if obj is not None and self._verify_hashes:
            verify(obj)
        return obj

    def _is_locked(self, object_id: str) -> bool:
        obj = self._store.get(object_id)
        return obj is not None and obj.locked

    def _persist_or_rollback(self, snap: dict) -> None:
        try:
            self.persist()
        except Exception:
            self.rollback(snap)
            raise
