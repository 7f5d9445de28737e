from ..core.store import VersionedStore
from ..types import StorageConfig
from .memory import InMemoryStore
from .sqlite import SQLiteStore
from .xtdb import XTDBStore

__all__ = ["InMemoryStore", "SQLiteStore", "XTDBStore", "create_store"]


def create_store(config: StorageConfig) -> VersionedStore:
    """Instantiate the configured backend."""
    if config.backend == "memory":
        return InMemoryStore()
    if config.backend == "sqlite":
        return SQLiteStore(config.sqlite_path, timeout=config.timeout_seconds)
    if config.backend == "xtdb":
        return XTDBStore(config.xtdb_url, timeout=config.timeout_seconds)
    raise ValueError(f"Unknown storage backend: {config.backend}")
