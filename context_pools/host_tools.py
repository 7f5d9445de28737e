"""Host tool boundary: the native file tools the delegated surface forwards to.

``HostTools`` is what a harness supplies. ``LocalHostTools`` is a plain
filesystem implementation used by the CLI, the MCP server and tests.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import re
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

MAX_GREP_MATCHES = 200


class HostTools(Protocol):
    def read_file(self, path: str) -> str: ...

    def write_file(self, path: str, content: str) -> None: ...

    def edit_file(self, path: str, old: str, new: str) -> str: ...

    def ls(self, path: str) -> str: ...

    def find(self, pattern: str, path: str) -> str: ...

    def grep(self, pattern: str, path: str) -> str: ...


class LocalHostTools:
    """Filesystem tools rooted at ``root``. Outputs are newline-separated paths."""

    def __init__(self, root: str | Path = ".") -> None:
        self.root = Path(root).resolve()

    def _abs(self, path: str) -> Path:
        p = Path(path).expanduser()
        return p if p.is_absolute() else self.root / p

    def read_file(self, path: str) -> str:
        return self._abs(path).read_text(encoding="utf-8")

    def write_file(self, path: str, content: str) -> None:
        target = self._abs(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    def edit_file(self, path: str, old: str, new: str) -> str:
        """Replace exactly one occurrence of ``old``. Returns the new content."""
        target = self._abs(path)
        text = target.read_text(encoding="utf-8")
        count = text.count(old)
        if count != 1:
            raise ValueError(f"expected exactly one match for edit in {path}, found {count}")
        updated = text.replace(old, new, 1)
        target.write_text(updated, encoding="utf-8")
        return updated

    def ls(self, path: str = ".") -> str:
        base = self._abs(path)
        lines = []
        for child in sorted(base.iterdir(), key=lambda p: p.name):
            lines.append(child.name + ("/" if child.is_dir() else ""))
        return "\n".join(lines)

    def find(self, pattern: str, path: str = ".") -> str:
        base = self._abs(path)
        found = []
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for name in sorted(filenames):
                if fnmatch.fnmatch(name, pattern):
                    found.append(os.path.relpath(os.path.join(dirpath, name), base))
        return "\n".join(found)

    def grep(self, pattern: str, path: str = ".") -> str:
        """``relpath:lineno:text`` lines for regex matches under ``path``."""
        regex = re.compile(pattern)
        base = self._abs(path)
        files = [base] if base.is_file() else sorted(p for p in base.rglob("*") if p.is_file())
        out: list[str] = []
        for file_path in files:
            hidden = file_path.relative_to(base).parts if base.is_dir() else ()
            if any(part.startswith(".") for part in hidden):
                continue
            try:
                lines = file_path.read_text(encoding="utf-8").splitlines()
            except (UnicodeDecodeError, OSError):
                continue
            rel = os.path.relpath(file_path, base if base.is_dir() else base.parent)
            for lineno, line in enumerate(lines, 1):
                if regex.search(line):
                    out.append(f"{rel}:{lineno}:{line}")
                    if len(out) >= MAX_GREP_MATCHES:
                        logger.debug("grep truncated at %d matches", MAX_GREP_MATCHES)
                        return "\n".join(out)
        return "\n".join(out)
