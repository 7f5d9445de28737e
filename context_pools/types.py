"""All dataclasses, enums, errors and type aliases for context-pools."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union


# ---------------------------------------------------------------------------
# Versioned objects
# ---------------------------------------------------------------------------

class ObjectType(str, Enum):
    FILE = "file"
    TOOLCALL = "toolcall"
    CHAT = "chat"
    SESSION = "session"
    SYSTEM_PROMPT = "system_prompt"


# Rendered in fixed positions, never members of the session sets.
INFRASTRUCTURE_TYPES = frozenset({ObjectType.CHAT, ObjectType.SESSION, ObjectType.SYSTEM_PROMPT})


@dataclass
class Provenance:
    origin: str = ""
    generator: str = "system"  # "human", "agent", "tool", "system"
    parent_refs: list[str] = field(default_factory=list)


@dataclass
class VersionedObject:
    """Common envelope shared by every object version."""
    id: str
    type: ObjectType = ObjectType.FILE
    content: str | None = None
    locked: bool = False
    nickname: str | None = None
    provenance: Provenance = field(default_factory=Provenance)
    content_hash: str | None = None
    metadata_view_hash: str = ""
    object_hash: str = ""
    timestamp: datetime | None = None  # valid time, assigned by the store on put


@dataclass
class FileObject(VersionedObject):
    type: ObjectType = ObjectType.FILE
    path: str | None = None
    file_type: str = "unknown"
    char_count: int = 0


@dataclass
class ToolcallObject(VersionedObject):
    type: ObjectType = ObjectType.TOOLCALL
    tool: str = ""
    args: dict = field(default_factory=dict)
    args_display: str = ""
    status: str = "ok"  # "ok" or "fail"
    chat_ref: str = ""
    file_refs: list[str] = field(default_factory=list)


@dataclass
class Turn:
    """One user turn plus everything the assistant did in response."""
    user: str = ""
    assistant: list[dict] = field(default_factory=list)  # text / toolCall blocks
    toolcall_ids: list[str] = field(default_factory=list)
    assistant_meta: dict = field(default_factory=dict)


@dataclass
class ChatObject(VersionedObject):
    type: ObjectType = ObjectType.CHAT
    locked: bool = True
    turns: list[Turn] = field(default_factory=list)
    session_ref: str = ""
    turn_count: int = 0
    toolcall_refs: list[str] = field(default_factory=list)


@dataclass
class SessionObject(VersionedObject):
    type: ObjectType = ObjectType.SESSION
    locked: bool = True
    harness: str = "generic"
    session_id: str = ""
    chat_ref: str = ""
    system_prompt_ref: str = ""
    object_ids: list[str] = field(default_factory=list)  # metadata pool order
    active_set: list[str] = field(default_factory=list)
    inactive_set: list[str] = field(default_factory=list)
    pinned_set: list[str] = field(default_factory=list)
    manual_set: list[str] = field(default_factory=list)  # explicitly activated toolcalls
    toolcall_history: list[dict] = field(default_factory=list)  # {"id", "turn_index"} in result order
    cursor_position: int = 0
    cursor_signature: str | None = None
    cursor_generation: int = 0


@dataclass
class SystemPromptObject(VersionedObject):
    type: ObjectType = ObjectType.SYSTEM_PROMPT
    locked: bool = True
    session_ref: str = ""


OBJECT_CLASSES: dict[ObjectType, type[VersionedObject]] = {
    ObjectType.FILE: FileObject,
    ObjectType.TOOLCALL: ToolcallObject,
    ObjectType.CHAT: ChatObject,
    ObjectType.SESSION: SessionObject,
    ObjectType.SYSTEM_PROMPT: SystemPromptObject,
}


@dataclass
class PutReceipt:
    """Store acknowledgement of a committed version."""
    id: str
    version: int
    timestamp: datetime
    tx_id: int | None = None


@dataclass
class CommitResult:
    object: VersionedObject
    written: bool
    receipt: PutReceipt | None = None


# ---------------------------------------------------------------------------
# Harness messages (closed variant)
# ---------------------------------------------------------------------------

@dataclass
class ToolCallDescriptor:
    id: str  # provider-native, never re-minted
    name: str
    arguments: dict = field(default_factory=dict)


@dataclass
class UserMessage:
    content: str
    timestamp: datetime | None = None
    role: str = "user"


@dataclass
class AssistantMessage:
    content: str = ""
    tool_calls: list[ToolCallDescriptor] = field(default_factory=list)
    model: str = ""
    provider: str = ""
    stop_reason: str = ""
    timestamp: datetime | None = None
    role: str = "assistant"


@dataclass
class ToolResultMessage:
    tool_call_id: str
    tool_name: str
    content: str = ""
    is_error: bool = False
    args: dict | None = None  # harnesses that echo the call input
    timestamp: datetime | None = None
    role: str = "toolResult"


HarnessMessage = Union[UserMessage, AssistantMessage, ToolResultMessage]


# ---------------------------------------------------------------------------
# Pools
# ---------------------------------------------------------------------------

@dataclass
class MetadataEntry:
    """Lightweight per-object listing line in the metadata pool."""
    id: str
    type: ObjectType
    fields: dict[str, Any] = field(default_factory=dict)
    view_hash: str = ""


@dataclass
class ToolcallSummary:
    """What the chat render shows in place of a tool result."""
    id: str
    tool: str = "unknown"
    args_display: str = ""
    status: str = "ok"


@dataclass(frozen=True)
class ToolcallRecord:
    id: str
    turn_index: int


class OpStatus(str, Enum):
    ACTIVATED = "activated"
    NULL_CONTENT = "null_content"
    DEACTIVATED = "deactivated"
    NOT_ACTIVE = "not_active"
    PINNED = "pinned"
    UNPINNED = "unpinned"
    NOT_PINNED = "not_pinned"
    RENAMED = "renamed"
    NOT_FOUND = "not_found"
    LOCKED = "locked"
    INFRASTRUCTURE = "infrastructure"
    READ = "read"
    INDEXED = "indexed"
    FAILED = "failed"


@dataclass
class PoolOpResult:
    """Explicit outcome of a pool operation. Preconditions are never raised."""
    ok: bool
    status: OpStatus
    id: str
    message: str = ""

    def to_dict(self) -> dict:
        return {"ok": self.ok, "status": self.status.value, "id": self.id, "message": self.message}


# ---------------------------------------------------------------------------
# Ingestion & Assembly
# ---------------------------------------------------------------------------

class CursorState(str, Enum):
    VALID = "valid"
    INVALIDATED = "invalidated"


@dataclass
class IngestReport:
    processed: int = 0
    invalidated: bool = False
    cancelled: bool = False
    generation: int = 0
    cursor: int = 0
    evicted: list[str] = field(default_factory=list)
    error: str = ""


@dataclass
class ContextBlock:
    section: str  # "system_prompt", "metadata", "chat", "active"
    role: str     # "system", "user", "assistant", "tool"
    text: str
    object_id: str | None = None


@dataclass
class AssembledContext:
    blocks: list[ContextBlock] = field(default_factory=list)
    total_tokens: int = 0
    budget_breakdown: dict[str, int] = field(default_factory=dict)
    ingest_report: IngestReport | None = None

    def render(self) -> str:
        return "\n\n".join(b.text for b in self.blocks)

    def to_messages(self) -> list[dict]:
        return [{"role": b.role, "content": b.text} for b in self.blocks]

    def section(self, name: str) -> list[ContextBlock]:
        return [b for b in self.blocks if b.section == name]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ContextPoolsError(Exception):
    pass


class NotFound(ContextPoolsError):
    def __init__(self, object_id: str):
        super().__init__(f"Object not found: {object_id}")
        self.object_id = object_id


class LockedObjectError(ContextPoolsError):
    def __init__(self, object_id: str):
        super().__init__(f"Object is locked: {object_id}")
        self.object_id = object_id


class InvalidCursorState(ContextPoolsError):
    pass


class HashMismatch(ContextPoolsError):
    """Stored hash disagrees with the recomputed one. Never repaired."""

    def __init__(self, object_id: str, field_name: str, stored: str | None, computed: str | None):
        super().__init__(
            f"Hash mismatch on {object_id}.{field_name}: stored={stored} computed={computed}"
        )
        self.object_id = object_id
        self.field_name = field_name
        self.stored = stored
        self.computed = computed


class StoreUnavailable(ContextPoolsError):
    def __init__(self, message: str, backend: str, status_code: int | None = None):
        super().__init__(message)
        self.backend = backend
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass
class StorageConfig:
    backend: str = "sqlite"  # "memory", "sqlite" or "xtdb"
    sqlite_path: str = ".contextpools/store.db"
    xtdb_url: str = "http://127.0.0.1:3000"
    timeout_seconds: float = 10.0


@dataclass
class EvictionConfig:
    enabled: bool = True
    recent_toolcalls: int = 5  # kept from the in-progress turn
    recent_turns: int = 3      # completed turns kept whole


@dataclass
class IngestionConfig:
    verify_hashes: bool = True
    absorb_read_results: bool = True
    read_tools: list[str] = field(default_factory=lambda: ["read"])
    write_tools: list[str] = field(default_factory=lambda: ["write", "edit"])
    discovery_tools: list[str] = field(default_factory=lambda: ["ls", "find", "grep"])


@dataclass
class AssemblerConfig:
    include_empty_metadata: bool = True
    render_tool_args: bool = True


@dataclass
class WatcherConfig:
    rename_window_seconds: float = 2.0
    reconcile_on_resume: bool = False


@dataclass
class ContextPoolsConfig:
    version: str = "0.1"
    harness: str = "generic"
    workspace_root: str = "."
    system_prompt: str = ""
    token_counter: str = "estimate"
    storage: StorageConfig = field(default_factory=StorageConfig)
    eviction: EvictionConfig = field(default_factory=EvictionConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    assembler: AssemblerConfig = field(default_factory=AssemblerConfig)
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
