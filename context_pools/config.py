"""Configuration loading, validation, and defaults."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from .types import (
    AssemblerConfig,
    ContextPoolsConfig,
    EvictionConfig,
    IngestionConfig,
    StorageConfig,
    WatcherConfig,
)

CONFIG_FILENAMES = [
    "context-pools.yaml",
    "context-pools.yml",
    "context-pools.json",
]

STORAGE_BACKENDS = ("memory", "sqlite", "xtdb")


def _discover_config() -> Path | None:
    """Search CWD then parent dirs up to home for a config file."""
    cwd = Path.cwd()
    home = Path.home()
    search = cwd
    while True:
        for name in CONFIG_FILENAMES:
            candidate = search / name
            if candidate.is_file():
                return candidate
        if search == home or search == search.parent:
            break
        search = search.parent
    return None


def _build_config(raw: dict[str, Any]) -> ContextPoolsConfig:
    """Build a ContextPoolsConfig from a raw dict."""
    storage_raw = raw.get("storage", {})
    storage = StorageConfig(
        backend=storage_raw.get("backend", "sqlite"),
        sqlite_path=storage_raw.get("sqlite_path", ".contextpools/store.db"),
        xtdb_url=storage_raw.get("xtdb_url", "http://127.0.0.1:3000"),
        timeout_seconds=float(storage_raw.get("timeout_seconds", 10.0)),
    )

    eviction_raw = raw.get("eviction", {})
    eviction = EvictionConfig(
        enabled=eviction_raw.get("enabled", True),
        recent_toolcalls=eviction_raw.get("recent_toolcalls", 5),
        recent_turns=eviction_raw.get("recent_turns", 3),
    )

    ingestion_raw = raw.get("ingestion", {})
    defaults = IngestionConfig()
    ingestion = IngestionConfig(
        verify_hashes=ingestion_raw.get("verify_hashes", True),
        absorb_read_results=ingestion_raw.get("absorb_read_results", True),
        read_tools=ingestion_raw.get("read_tools", defaults.read_tools),
        write_tools=ingestion_raw.get("write_tools", defaults.write_tools),
        discovery_tools=ingestion_raw.get("discovery_tools", defaults.discovery_tools),
    )

    assembly_raw = raw.get("assembly", {})
    assembler = AssemblerConfig(
        include_empty_metadata=assembly_raw.get("include_empty_metadata", True),
        render_tool_args=assembly_raw.get("render_tool_args", True),
    )

    watcher_raw = raw.get("watcher", {})
    watcher = WatcherConfig(
        rename_window_seconds=float(watcher_raw.get("rename_window_seconds", 2.0)),
        reconcile_on_resume=watcher_raw.get("reconcile_on_resume", False),
    )

    return ContextPoolsConfig(
        version=str(raw.get("version", "0.1")),
        harness=raw.get("harness", "generic"),
        workspace_root=raw.get("workspace_root", "."),
        system_prompt=raw.get("system_prompt", ""),
        token_counter=raw.get("token_counter", "estimate"),
        storage=storage,
        eviction=eviction,
        ingestion=ingestion,
        assembler=assembler,
        watcher=watcher,
    )


def validate_config(config: ContextPoolsConfig) -> list[str]:
    """Validate a config. Returns list of error strings (empty = valid)."""
    errors: list[str] = []

    if config.storage.backend not in STORAGE_BACKENDS:
        errors.append(
            f"Unknown storage backend '{config.storage.backend}' "
            f"(expected one of: {', '.join(STORAGE_BACKENDS)})"
        )

    if config.storage.timeout_seconds <= 0:
        errors.append("storage.timeout_seconds must be > 0")

    if config.eviction.recent_toolcalls < 1:
        errors.append("eviction.recent_toolcalls must be >= 1")

    if config.eviction.recent_turns < 0:
        errors.append("eviction.recent_turns must be >= 0")

    if config.watcher.rename_window_seconds < 0:
        errors.append("watcher.rename_window_seconds must be >= 0")

    overlap = set(config.ingestion.read_tools) & set(config.ingestion.discovery_tools)
    if overlap:
        errors.append(
            f"Tools cannot be both read and discovery tools: {', '.join(sorted(overlap))}"
        )

    return errors


def load_config(
    config_path: str | Path | None = None,
    config_dict: dict | None = None,
) -> ContextPoolsConfig:
    """Load config from dict, explicit path, or auto-discover."""
    if config_dict is not None:
        return _build_config(config_dict)

    if config_path is not None:
        path = Path(config_path)
    else:
        path = _discover_config()

    if path is None:
        return _build_config({})

    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    text = path.read_text()
    if path.suffix == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text) or {}

    return _build_config(raw)
