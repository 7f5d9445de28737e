"""Event ingestion: harness messages -> object versions -> pool updates.

Each message becomes a ``Translation``: the versions to write (files, then
the toolcall, then the chat) and an ``apply`` step that updates the pools
from the committed versions. The Session object carrying the advanced
cursor is written last. Only then does the in-memory cursor move, so a
failure anywhere leaves the cursor on the failed message and the pools as
they were before it.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Sequence

from ..types import (
    AssistantMessage,
    FileObject,
    HarnessMessage,
    IngestionConfig,
    IngestReport,
    StoreUnavailable,
    ToolResultMessage,
    Turn,
    UserMessage,
    VersionedObject,
)
from .cursor import MessageCursor
from .file_indexer import FileIndexer
from .messages import assistant_blocks, parse_message
from .objects import build_chat_object, build_toolcall_object, commit_object
from .pool_manager import PoolManager
from .store import VersionedStore

logger = logging.getLogger(__name__)

PATH_ARG_KEYS = ("path", "file_path", "filename")


def path_argument(args: dict) -> str | None:
    for key in PATH_ARG_KEYS:
        value = args.get(key)
        if isinstance(value, str) and value:
            return value
    return None


@dataclass
class Translation:
    writes: list[VersionedObject] = field(default_factory=list)
    apply: Callable[[list[VersionedObject]], None] = lambda committed: None


class EventIngestor:
    """Consumes the harness message sequence for one session."""

    def __init__(
        self,
        store: VersionedStore,
        pools: PoolManager,
        indexer: FileIndexer,
        config: IngestionConfig | None = None,
    ) -> None:
        self._store = store
        self._pools = pools
        self._indexer = indexer
        self._config = config or IngestionConfig()
        self.cursor = MessageCursor(
            position=pools.cursor_position,
            signature=pools.cursor_signature,
            generation=pools.cursor_generation,
        )

    def ingest(
        self,
        messages: Sequence[dict | HarnessMessage],
        cancel: threading.Event | None = None,
    ) -> IngestReport:
        parsed = [parse_message(m) for m in messages]
        report = IngestReport(generation=self.cursor.generation, cursor=self.cursor.position)

        if not self.cursor.check(parsed):
            report.invalidated = True
            report.generation = self.cursor.generation
            report.cursor = self.cursor.position
            self._pools.set_cursor(self.cursor.position, self.cursor.signature, self.cursor.generation)
            try:
                self._pools.persist()
            except StoreUnavailable as e:
                logger.warning("Could not persist reset cursor: %s", e)
                report.error = str(e)
            return report

        for message in self.cursor.pending(parsed):
            if cancel is not None and cancel.is_set():
                logger.info("Ingestion cancelled at message %d", self.cursor.position)
                report.cancelled = True
                break
            try:
                evicted = self._consume(message)
            except StoreUnavailable as e:
                logger.warning("Store unavailable at message %d: %s", self.cursor.position, e)
                report.error = str(e)
                break
            report.evicted.extend(evicted)
            report.processed += 1

        report.cursor = self.cursor.position
        report.generation = self.cursor.generation
        if report.processed:
            logger.debug("Ingested %d message(s), cursor at %d", report.processed, report.cursor)
        return report

    def _consume(self, message: HarnessMessage) -> list[str]:
        snap = self._pools.snapshot()
        try:
            translation = self.translate(message)
            committed = [commit_object(self._store, obj).object for obj in translation.writes]
            translation.apply(committed)
            evicted = self._pools.sweep()
            position, signature = self.cursor.advanced(message)
            self._pools.set_cursor(position, signature, self.cursor.generation)
            self._pools.persist()
        except Exception:
            self._pools.rollback(snap)
            raise
        self.cursor.advance(message)
        return evicted

    # ------------------------------------------------------------------
    # Translation
    # ------------------------------------------------------------------

    def translate(self, message: HarnessMessage) -> Translation:
        if isinstance(message, UserMessage):
            return self._chat_translation(self._pools.chat.with_user_turn(message.content))
        if isinstance(message, AssistantMessage):
            meta = {
                key: value for key, value in (
                    ("model", message.model),
                    ("provider", message.provider),
                    ("stop_reason", message.stop_reason),
                ) if value
            }
            return self._chat_translation(self._pools.chat.with_assistant(assistant_blocks(message), meta))
        if isinstance(message, ToolResultMessage):
            return self._tool_result_translation(message)
        raise ValueError(f"Unsupported message: {type(message).__name__}")

    def _toolcall_refs(self, extra: str | None = None) -> list[str]:
        refs = [rec.id for rec in self._pools.toolcall_history]
        if extra is not None and extra not in refs:
            refs.append(extra)
        return refs

    def _chat_translation(self, turns: list[Turn]) -> Translation:
        chat = build_chat_object(self._pools.session_id, turns, self._toolcall_refs())

        def apply(committed: list[VersionedObject]) -> None:
            self._pools.set_turns(turns)

        return Translation(writes=[chat], apply=apply)

    def _tool_result_translation(self, message: ToolResultMessage) -> Translation:
        pools = self._pools
        cfg = self._config
        toolcall_id = message.tool_call_id

        call = pools.chat.find_tool_call(toolcall_id) or {}
        args = message.args if message.args is not None else dict(call.get("arguments") or {})
        tool = message.tool_name or call.get("name", "") or "unknown"

        turns = pools.chat.turns
        turn_index = pools.chat.turn_of(toolcall_id)
        if turn_index is None:
            # Result without a preceding tool-call block: attach to the current turn.
            turns = pools.chat.with_assistant([], {})
            turns[-1].toolcall_ids.append(toolcall_id)
            turn_index = len(turns) - 1

        files: list[FileObject] = []
        read_result = False
        path = path_argument(args)
        if not message.is_error:
            if tool in cfg.read_tools and path:
                files.append(self._indexer.file_version(path, message.content, origin=toolcall_id))
                read_result = True
            elif tool in cfg.write_tools and path:
                written = args.get("content")
                if isinstance(written, str) and tool == "write":
                    files.append(self._indexer.file_version(path, written, origin=toolcall_id, generator="agent"))
                else:
                    refreshed = self._indexer.from_disk(path, origin=toolcall_id)
                    if refreshed is not None:
                        files.append(refreshed)
            elif tool in cfg.discovery_tools:
                found = self._indexer.discovered_paths(tool, args, message.content)
                files.extend(self._indexer.stubs_for(found, origin=toolcall_id))

        toolcall = build_toolcall_object(
            toolcall_id,
            tool,
            args,
            message.content,
            is_error=message.is_error,
            chat_ref=pools.chat_id,
            file_refs=[f.id for f in files],
        )
        chat = build_chat_object(pools.session_id, turns, self._toolcall_refs(toolcall_id))
        absorbed = read_result and cfg.absorb_read_results

        def apply(committed: list[VersionedObject]) -> None:
            committed_files = committed[:len(files)]
            committed_toolcall = committed[len(files)]
            pools.set_turns(turns)
            for obj in committed_files:
                pools.register(obj)
            if read_result:
                pools.auto_activate(committed_files[0])
            pools.register(committed_toolcall)
            first_seen = pools.record_toolcall(toolcall_id, turn_index)
            if first_seen and not absorbed:
                pools.auto_activate(committed_toolcall)

        return Translation(writes=[*files, toolcall, chat], apply=apply)

