"""context-pools: versioned, activatable context objects for LLM coding agents."""

from .config import load_config
from .session import SessionContext
from .types import (
    AssembledContext,
    ContextPoolsConfig,
    IngestReport,
    ObjectType,
    OpStatus,
    PoolOpResult,
)

__version__ = "0.1.0"

__all__ = [
    "SessionContext",
    "load_config",
    "AssembledContext",
    "ContextPoolsConfig",
    "IngestReport",
    "ObjectType",
    "OpStatus",
    "PoolOpResult",
]
