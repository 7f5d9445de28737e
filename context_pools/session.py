"""SessionContext: one session's pools, cursor and tool surface.

One instance per harness session; nothing here is process-global. Every
public mutation (ingestion, tool calls, watcher notifications) runs
through the session's FIFO mutation queue.

Usage:
    ctx = SessionContext("abc123", config=load_config())
    assembled = ctx.ingest(messages)
    prompt = assembled.to_messages()
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Sequence

from .config import load_config
from .core.assembler import ContextAssembler
from .core.file_indexer import FileIndexer
from .core.ingestion import EventIngestor
from .core.mutation_queue import SessionMutationQueue
from .core.objects import (
    build_chat_object,
    build_system_prompt_object,
    commit_object,
)
from .core.pool_manager import PoolManager
from .core.store import VersionedStore
from .host_tools import HostTools, LocalHostTools
from .storage import create_store
from .token_counter import create_token_counter
from .types import (
    AssembledContext,
    ContextPoolsConfig,
    FileObject,
    HarnessMessage,
    ObjectType,
    OpStatus,
    PoolOpResult,
    SessionObject,
    StoreUnavailable,
    VersionedObject,
)

logger = logging.getLogger(__name__)


class SessionContext:
    """Explicit per-session pipeline: ``ingest(messages) -> AssembledContext``."""

    def __init__(
        self,
        session_id: str,
        *,
        config: ContextPoolsConfig | None = None,
        config_path: str | None = None,
        store: VersionedStore | None = None,
        host: HostTools | None = None,
        token_counter: Callable[[str], int] | None = None,
    ) -> None:
        self.session_id = session_id
        self.config = config or load_config(config_path)
        self._owns_store = store is None
        self.store = store if store is not None else create_store(self.config.storage)
        self.host = host if host is not None else LocalHostTools(self.config.workspace_root)
        self.queue = SessionMutationQueue(session_id)

        self.pools = PoolManager(
            self.store,
            session_id,
            harness=self.config.harness,
            eviction=self.config.eviction,
            verify_hashes=self.config.ingestion.verify_hashes,
            workspace_root=self.config.workspace_root,
        )
        self.indexer = FileIndexer(
            self.store,
            self.pools,
            self.host,
            workspace_root=self.config.workspace_root,
            rename_window_seconds=self.config.watcher.rename_window_seconds,
        )
        self.pools.stub_loader = self.indexer.upgrade_stub
        self.assembler = ContextAssembler(
            self.config.assembler,
            token_counter or create_token_counter(self.config.token_counter),
        )

        self.resumed = self._open()
        self.ingestor = EventIngestor(self.store, self.pools, self.indexer, self.config.ingestion)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _open(self) -> bool:
        existing = self.store.get(self.pools.session_object_id)
        if isinstance(existing, SessionObject):
            self.pools.restore(existing)
            if self.config.watcher.reconcile_on_resume:
                self.reconcile()
            return True

        prompt = build_system_prompt_object(self.session_id, self.config.system_prompt)
        commit_object(self.store, prompt)
        commit_object(self.store, build_chat_object(self.session_id, [], []))
        self.pools.system_prompt = prompt.content
        self.pools.persist()
        logger.info("Started session %s (harness=%s)", self.session_id, self.config.harness)
        return False

    def close(self) -> None:
        with self.queue.turn():
            try:
                self.pools.persist()
            except StoreUnavailable as e:
                logger.error("Failed to persist session %s on close: %s", self.session_id, e)
            if self._owns_store:
                self.store.close()

    # ------------------------------------------------------------------
    # Ingestion & assembly
    # ------------------------------------------------------------------

    def ingest(
        self,
        messages: Sequence[dict | HarnessMessage],
        cancel: threading.Event | None = None,
    ) -> AssembledContext:
        """Consume new messages and return the assembled context."""
        with self.queue.turn():
            report = self.ingestor.ingest(messages, cancel=cancel)
            assembled = self._assemble()
        assembled.ingest_report = report
        return assembled

    def assemble(self) -> AssembledContext:
        with self.queue.turn():
            return self._assemble()

    def _assemble(self) -> AssembledContext:
        if self.pools.sweep():
            try:
                self.pools.persist()
            except StoreUnavailable as e:
                logger.warning("Could not persist eviction sweep: %s", e)
        return self.assembler.assemble(self.pools)

    # ------------------------------------------------------------------
    # Pool operations
    # ------------------------------------------------------------------

    def activate(self, ref: str) -> PoolOpResult:
        with self.queue.turn():
            return self.pools.activate(ref)

    def deactivate(self, ref: str) -> PoolOpResult:
        with self.queue.turn():
            return self.pools.deactivate(ref)

    def pin(self, ref: str) -> PoolOpResult:
        with self.queue.turn():
            return self.pools.pin(ref)

    def unpin(self, ref: str) -> PoolOpResult:
        with self.queue.turn():
            return self.pools.unpin(ref)

    def set_nickname(self, ref: str, nickname: str) -> PoolOpResult:
        with self.queue.turn():
            result = self.pools.set_nickname(ref, nickname)
            if result.ok:
                self.pools.persist()
            return result

    # ------------------------------------------------------------------
    # Tool surface
    # ------------------------------------------------------------------

    def read(self, path: str) -> PoolOpResult:
        """Index ``path`` from disk and activate it. Returns a confirmation, not content."""
        with self.queue.turn():
            file = self.indexer.from_disk(path, origin="read")
            if file is None:
                return PoolOpResult(False, OpStatus.FAILED, path, f"Cannot read {path}")
            self.indexer.index([file])
            result = self.pools.activate(file.id)
            if not result.ok:
                return result
            return PoolOpResult(True, OpStatus.READ, file.id, f"read ok id={file.id} char_count={file.char_count}")

    def write(self, path: str, content: str) -> PoolOpResult:
        with self.queue.turn():
            abs_path = self.indexer.abs_path(path)
            try:
                self.host.write_file(abs_path, content)
            except OSError as e:
                logger.warning("write %s failed: %s", abs_path, e)
                return PoolOpResult(False, OpStatus.FAILED, path, str(e))
            file = self.indexer.file_version(abs_path, content, origin="write", generator="agent")
            return self._indexed(file)

    def edit(self, path: str, old: str, new: str) -> PoolOpResult:
        with self.queue.turn():
            abs_path = self.indexer.abs_path(path)
            try:
                updated = self.host.edit_file(abs_path, old, new)
            except (OSError, ValueError) as e:
                logger.warning("edit %s failed: %s", abs_path, e)
                return PoolOpResult(False, OpStatus.FAILED, path, str(e))
            file = self.indexer.file_version(abs_path, updated, origin="edit", generator="agent")
            return self._indexed(file)

    def ls(self, path: str = ".") -> str:
        return self._discover("ls", {"path": path}, lambda: self.host.ls(self.indexer.abs_path(path)))

    def find(self, pattern: str, path: str = ".") -> str:
        return self._discover(
            "find", {"pattern": pattern, "path": path},
            lambda: self.host.find(pattern, self.indexer.abs_path(path)),
        )

    def grep(self, pattern: str, path: str = ".") -> str:
        return self._discover(
            "grep", {"pattern": pattern, "path": path},
            lambda: self.host.grep(pattern, self.indexer.abs_path(path)),
        )

    def _indexed(self, file: FileObject) -> PoolOpResult:
        self.indexer.index([file])
        self.pools.persist()
        return PoolOpResult(True, OpStatus.INDEXED, file.id, f"indexed {file.id} char_count={file.char_count}")

    def _discover(self, tool: str, args: dict, run: Callable[[], str]) -> str:
        """Run a host discovery tool and add stubs for the paths it reports."""
        with self.queue.turn():
            output = run()
            paths = self.indexer.discovered_paths(tool, args, output)
            stubs = self.indexer.stubs_for(paths, origin=tool)
            if stubs:
                self.indexer.index(stubs)
                self.pools.persist()
                logger.debug("%s indexed %d new path(s)", tool, len(stubs))
            return output

    # ------------------------------------------------------------------
    # Watcher notifications
    # ------------------------------------------------------------------

    def on_file_changed(self, path: str) -> VersionedObject | None:
        """New version from disk. A tracked file that is gone gets a deletion version."""
        with self.queue.turn():
            abs_path = self.indexer.abs_path(path)
            object_id = self.pools.metadata.find_by_path(abs_path)
            if object_id is None:
                return None
            try:
                content = self.host.read_file(abs_path)
            except FileNotFoundError:
                return self._delete(abs_path)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning("Could not read %s: %s", abs_path, e)
                return None
            file = self.indexer.file_version(abs_path, content, origin="watcher", object_id=object_id)
            [committed] = self.indexer.index([file])
            self.pools.persist()
            return committed

    def on_file_deleted(self, path: str) -> VersionedObject | None:
        with self.queue.turn():
            committed = self._delete(path)
            if committed is not None:
                self.indexer.note_unlink(committed.id)
            return committed

    def _delete(self, path: str) -> VersionedObject | None:
        tombstone = self.indexer.tombstone(path)
        if tombstone is None:
            return None
        [committed] = self.indexer.index([tombstone])
        self.pools.active.deactivate(committed.id)
        self.pools.persist()
        logger.info("Tracked file deleted: %s (%s)", path, committed.id)
        return committed

    def on_file_added(self, path: str) -> VersionedObject | None:
        """A new path appeared. Within the rename window it continues a just-deleted object."""
        with self.queue.turn():
            abs_path = self.indexer.abs_path(path)
            if self.pools.metadata.find_by_path(abs_path) is not None:
                return self.on_file_changed(path)
            object_id = self.indexer.take_rename_candidate()
            if object_id is None:
                return None
            file = self.indexer.from_disk(abs_path, origin="watcher", object_id=object_id)
            if file is None:
                return None
            [committed] = self.indexer.index([file])
            self.pools.persist()
            logger.info("Detected rename of %s to %s", object_id, abs_path)
            return committed

    def reconcile(self) -> list[str]:
        """Bring tracked files in line with disk after a gap in notifications.

        Returns the ids that received a new version.
        """
        with self.queue.turn():
            changed: list[str] = []
            for entry in self.pools.metadata.entries():
                if entry.type != ObjectType.FILE or not entry.fields.get("path") or entry.fields.get("unread"):
                    continue
                path = entry.fields["path"]
                current = self.store.get(entry.id)
                try:
                    content = self.host.read_file(path)
                except FileNotFoundError:
                    tombstone = self.indexer.tombstone(path)
                    if tombstone is not None:
                        self.indexer.index([tombstone])
                        self.pools.active.deactivate(entry.id)
                        changed.append(entry.id)
                    continue
                except (OSError, UnicodeDecodeError) as e:
                    logger.warning("Could not reconcile %s: %s", path, e)
                    continue
                if current is None or current.content != content:
                    self.indexer.index([self.indexer.file_version(path, content, origin="reconcile", object_id=entry.id)])
                    changed.append(entry.id)
            if changed:
                self.pools.persist()
                logger.info("Reconciled %d file(s) with disk", len(changed))
            return changed

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def get(self, ref: str) -> VersionedObject | None:
        object_id = self.pools.resolve(ref) or ref
        return self.store.get(object_id)

    def history(self, ref: str) -> list[VersionedObject]:
        object_id = self.pools.resolve(ref) or ref
        return self.store.history(object_id)

    def status(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "harness": self.pools.harness,
            "resumed": self.resumed,
            "cursor": self.ingestor.cursor.position,
            "generation": self.ingestor.cursor.generation,
            "turns": len(self.pools.chat.turns),
            "objects": len(self.pools.metadata),
            "active": self.pools.active.ids(),
            "pinned": sorted(self.pools.pinned),
        }
