"""MCP server exposing a context-pools session as agent tools."""

from __future__ import annotations

import json
import logging
import os

from mcp.server.fastmcp import FastMCP

from ..core.objects import describe_object

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "context-pools",
    instructions=(
        "Versioned context pools: read files into the active pool, deactivate what "
        "you no longer need, pin what must survive eviction."
    ),
)

# Lazy session, one per server process
_session = None


def _get_session():
    """Get or create the session served by this process."""
    global _session
    if _session is None:
        from ..session import SessionContext
        config_path = os.environ.get("CONTEXT_POOLS_CONFIG")
        session_id = os.environ.get("CONTEXT_POOLS_SESSION", "mcp")
        _session = SessionContext(session_id, config_path=config_path)
    return _session


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------

@mcp.tool()
def read(path: str) -> str:
    """Index a file and load it into the active pool.

    The file content will appear in your context on the next turn; this
    call only returns a confirmation.

    Args:
        path: File path, absolute or relative to the workspace root.
    """
    return json.dumps(_get_session().read(path).to_dict())


@mcp.tool()
def activate(id_or_nickname: str) -> str:
    """Load an object's current content into the active pool.

    Args:
        id_or_nickname: Object id (e.g. ``file:/abs/path`` or a toolcall id), nickname, or file path.
    """
    return json.dumps(_get_session().activate(id_or_nickname).to_dict())


@mcp.tool()
def deactivate(id_or_nickname: str) -> str:
    """Collapse an object back to its metadata line. Locked objects are refused."""
    return json.dumps(_get_session().deactivate(id_or_nickname).to_dict())


@mcp.tool()
def pin(id_or_nickname: str) -> str:
    """Exempt an object from automatic eviction."""
    return json.dumps(_get_session().pin(id_or_nickname).to_dict())


@mcp.tool()
def unpin(id_or_nickname: str) -> str:
    """Remove the eviction exemption set by ``pin``."""
    return json.dumps(_get_session().unpin(id_or_nickname).to_dict())


@mcp.tool()
def set_nickname(id_or_nickname: str, nickname: str) -> str:
    """Give an object a short name usable in activate/deactivate."""
    return json.dumps(_get_session().set_nickname(id_or_nickname, nickname).to_dict())


@mcp.tool()
def write(path: str, content: str) -> str:
    """Write a file and record the new version."""
    return json.dumps(_get_session().write(path, content).to_dict())


@mcp.tool()
def edit(path: str, old_text: str, new_text: str) -> str:
    """Replace exactly one occurrence of ``old_text`` in a file and record the new version."""
    return json.dumps(_get_session().edit(path, old_text, new_text).to_dict())


@mcp.tool()
def ls(path: str = ".") -> str:
    """List a directory. Listed files are added to the metadata pool as unread."""
    return _get_session().ls(path)


@mcp.tool()
def find(pattern: str, path: str = ".") -> str:
    """Find files by glob pattern. Matches are added to the metadata pool as unread."""
    return _get_session().find(pattern, path)


@mcp.tool()
def grep(pattern: str, path: str = ".") -> str:
    """Search file contents by regex. Matching files are added to the metadata pool as unread."""
    return _get_session().grep(pattern, path)


@mcp.tool()
def ingest_messages(messages: list[dict]) -> str:
    """Feed the harness message sequence and return the ingestion report.

    Pass the full sequence each time; only messages after the cursor are processed.

    Returns:
        JSON with processed count, cursor, generation, evictions and total tokens.
    """
    session = _get_session()
    assembled = session.ingest(messages)
    report = assembled.ingest_report
    return json.dumps({
        "processed": report.processed,
        "invalidated": report.invalidated,
        "cancelled": report.cancelled,
        "cursor": report.cursor,
        "generation": report.generation,
        "evicted": report.evicted,
        "error": report.error,
        "total_tokens": assembled.total_tokens,
    }, indent=2)


@mcp.tool()
def assemble_context() -> str:
    """Render the current pools as ordered role/content messages."""
    assembled = _get_session().assemble()
    return json.dumps({
        "messages": assembled.to_messages(),
        "total_tokens": assembled.total_tokens,
        "budget_breakdown": assembled.budget_breakdown,
    }, indent=2)


@mcp.tool()
def object_history(id_or_nickname: str) -> str:
    """List every stored version of an object, oldest first."""
    versions = _get_session().history(id_or_nickname)
    return json.dumps([describe_object(v) for v in versions], indent=2)


@mcp.tool()
def session_status() -> str:
    """Show cursor position, pool sizes and the active and pinned sets."""
    return json.dumps(_get_session().status(), indent=2)


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------

@mcp.resource("contextpools://metadata")
def metadata_pool() -> str:
    """The metadata listing as the model sees it."""
    session = _get_session()
    return session.assembler.render_metadata(session.pools) or ""


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def serve():
    """Start the MCP server (stdio transport)."""
    mcp.run()


if __name__ == "__main__":
    serve()
