"""File objects from reads, writes, discovery output and watcher notifications.

Builders return unsealed File versions; callers decide when to commit. Ids
follow the object, not the path: a renamed file keeps its original id and
is found again through the ``path`` field of its metadata entry.
"""

from __future__ import annotations

import logging
import os
import time
from collections import deque
from typing import Callable, Iterable

from ..host_tools import HostTools
from ..types import FileObject, VersionedObject
from .objects import (
    build_file_object,
    build_file_tombstone,
    commit_object,
    file_object_id,
    normalize_path,
)
from .pool_manager import PoolManager
from .store import VersionedStore

logger = logging.getLogger(__name__)

MAX_RECENT_UNLINKS = 20


class FileIndexer:
    def __init__(
        self,
        store: VersionedStore,
        pools: PoolManager,
        host: HostTools | None = None,
        *,
        workspace_root: str = ".",
        rename_window_seconds: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._pools = pools
        self._host = host
        self._root = workspace_root
        self._rename_window = rename_window_seconds
        self._clock = clock
        self._recent_unlinks: deque[tuple[str, float]] = deque(maxlen=MAX_RECENT_UNLINKS)

    # -- identity --

    def abs_path(self, path: str) -> str:
        return normalize_path(path, self._root)

    def object_id_for(self, abs_path: str) -> str:
        """Tracked id for ``abs_path``, else a path-derived id no other live file holds.

        A renamed file keeps the id derived from its old path, so a new file
        appearing there gets a suffixed id instead.
        """
        known = self._pools.metadata.find_by_path(abs_path)
        if known is not None:
            return known
        base = file_object_id(abs_path)
        candidate, n = base, 1
        while self._held_elsewhere(candidate, abs_path):
            candidate = f"{base}#{n}"
            n += 1
        return candidate

    def _held_elsewhere(self, object_id: str, abs_path: str) -> bool:
        entry = self._pools.metadata.get(object_id)
        if entry is not None:
            return entry.fields.get("path") not in (None, abs_path)
        current = self._store.get(object_id)
        return isinstance(current, FileObject) and current.path not in (None, abs_path)

    # -- builders --

    def file_version(
        self,
        path: str,
        content: str | None,
        *,
        origin: str = "",
        generator: str = "tool",
        object_id: str | None = None,
    ) -> FileObject:
        """Next File version for ``path``; the current nickname carries over."""
        abs_path = self.abs_path(path)
        object_id = object_id or self.object_id_for(abs_path)
        current = self._store.get(object_id)
        return build_file_object(
            abs_path,
            content,
            object_id=object_id,
            origin=origin or abs_path,
            generator=generator,
            nickname=current.nickname if current is not None else None,
        )

    def from_disk(self, path: str, *, origin: str = "", object_id: str | None = None) -> FileObject | None:
        """File version with on-disk content. None if there is no host or the read fails."""
        if self._host is None:
            return None
        abs_path = self.abs_path(path)
        try:
            content = self._host.read_file(abs_path)
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read %s: %s", abs_path, e)
            return None
        return self.file_version(abs_path, content, origin=origin, object_id=object_id)

    def stubs_for(self, paths: Iterable[str], *, origin: str) -> list[FileObject]:
        """Content-less versions for paths not yet in the metadata pool.

        A path already known to the store from an earlier session yields its
        current version instead of a stub, so content is never discarded.
        """
        out: list[FileObject] = []
        seen: set[str] = set()
        for path in paths:
            abs_path = self.abs_path(path)
            object_id = self.object_id_for(abs_path)
            if object_id in seen or object_id in self._pools.metadata:
                continue
            seen.add(object_id)
            current = self._store.get(object_id)
            if isinstance(current, FileObject) and current.path is not None:
                out.append(current)
            else:
                out.append(build_file_object(abs_path, None, object_id=object_id, origin=origin))
        return out

    def tombstone(self, path: str) -> FileObject | None:
        """Deletion version for a tracked path. None if the path is not tracked."""
        object_id = self._pools.metadata.find_by_path(self.abs_path(path))
        if object_id is None:
            return None
        current = self._store.get(object_id)
        if not isinstance(current, FileObject):
            return None
        return build_file_tombstone(current)

    # -- discovery output --

    def discovered_paths(self, tool: str, args: dict, output: str) -> list[str]:
        """Absolute file paths mentioned in ``ls``/``find``/``grep`` output."""
        base = self.abs_path(str(args.get("path") or "."))
        paths: list[str] = []
        for raw in output.splitlines():
            line = raw.strip()
            if not line or line.endswith("/"):
                continue
            if tool == "grep":
                if os.path.isfile(base):
                    paths.append(base)
                    continue
                line = line.split(":", 1)[0].strip()
                if not line:
                    continue
            paths.append(normalize_path(line, base))
        return list(dict.fromkeys(paths))

    # -- commit --

    def index(self, objects: Iterable[VersionedObject]) -> list[VersionedObject]:
        """Commit each version and refresh its metadata entry."""
        committed = []
        for obj in objects:
            result = commit_object(self._store, obj)
            self._pools.register(result.object)
            committed.append(result.object)
        return committed

    def upgrade_stub(self, stub: FileObject) -> FileObject | None:
        """Replace a discovery stub with on-disk content. Used on activation."""
        upgraded = self.from_disk(stub.path, origin=stub.path, object_id=stub.id)
        if upgraded is None:
            return None
        result = commit_object(self._store, upgraded)
        logger.debug("Upgraded stub %s (%d chars)", stub.id, upgraded.char_count)
        return result.object

    # -- rename detection --

    def note_unlink(self, object_id: str) -> None:
        self._recent_unlinks.append((object_id, self._clock()))

    def take_rename_candidate(self) -> str | None:
        """Most recent unlinked id still inside the rename window, consumed."""
        now = self._clock()
        for idx in range(len(self._recent_unlinks) - 1, -1, -1):
            object_id, ts = self._recent_unlinks[idx]
            if now - ts <= self._rename_window:
                del self._recent_unlinks[idx]
                return object_id
        return None
