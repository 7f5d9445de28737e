"""CLI: context-pools status, show, history, assemble, ingest, config validate."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from ..config import load_config, validate_config
from ..core.objects import describe_object, session_object_id
from ..storage import create_store
from ..types import SessionObject


def _get_store(config_path: str | None = None):
    config = load_config(config_path)
    return create_store(config.storage), config


def _load_session_object(store, session_id: str) -> SessionObject | None:
    obj = store.get(session_object_id(session_id))
    return obj if isinstance(obj, SessionObject) else None


def cmd_status(args):
    """Show a stored session's cursor and pool membership."""
    store, config = _get_store(args.config)
    try:
        session = _load_session_object(store, args.session)
        if session is None:
            print(f"No stored session: {args.session}")
            sys.exit(1)

        print(f"Session:    {session.session_id}")
        print(f"Harness:    {session.harness}")
        print(f"Storage:    {config.storage.backend}")
        print(f"Cursor:     {session.cursor_position} (generation {session.cursor_generation})")
        print(f"Objects:    {len(session.object_ids)}")
        print(f"Active:     {len(session.active_set)}")
        print(f"Pinned:     {len(session.pinned_set)}")
        print()

        print(f"{'Object':<50} {'Type':<10} {'State':<10}")
        print("-" * 72)
        active = set(session.active_set)
        pinned = set(session.pinned_set)
        for object_id in session.object_ids:
            obj = store.get(object_id)
            obj_type = obj.type.value if obj is not None else "?"
            state = "active" if object_id in active else "inactive"
            if object_id in pinned:
                state += "*"
            print(f"{object_id:<50} {obj_type:<10} {state:<10}")
    finally:
        store.close()


def cmd_show(args):
    """Print the current (or as-of) version of an object."""
    store, _ = _get_store(args.config)
    try:
        if args.version is not None:
            obj = store.get_version(args.id, args.version)
        else:
            obj = store.get(args.id)
        if obj is None:
            print(f"Object not found: {args.id}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(describe_object(obj), indent=2))
        if args.content:
            print()
            print(obj.content if obj.content is not None else "(null content)")
    finally:
        store.close()


def cmd_history(args):
    """List all versions of an object, oldest first."""
    store, _ = _get_store(args.config)
    try:
        versions = store.history(args.id)
        if not versions:
            print(f"Object not found: {args.id}", file=sys.stderr)
            sys.exit(1)
        print(f"{'#':>3} {'Timestamp':<34} {'Chars':>8} {'Object hash':<16}")
        print("-" * 64)
        for idx, v in enumerate(versions):
            info = describe_object(v)
            chars = str(info["char_count"]) if info["has_content"] else "null"
            print(f"{idx:>3} {info['timestamp'] or '':<34} {chars:>8} {v.object_hash[:16]:<16}")
    finally:
        store.close()


def cmd_assemble(args):
    """Render a stored session's context as the model would see it."""
    from ..session import SessionContext

    config = load_config(args.config)
    store = create_store(config.storage)
    if _load_session_object(store, args.session) is None:
        print(f"No stored session: {args.session}")
        store.close()
        sys.exit(1)

    ctx = SessionContext(args.session, config=config, store=store)
    try:
        assembled = ctx.assemble()
        if args.json:
            print(json.dumps({
                "messages": assembled.to_messages(),
                "budget_breakdown": assembled.budget_breakdown,
            }, indent=2))
        else:
            print(assembled.render())
            print()
            print(f"Total tokens: {assembled.total_tokens:,}")
    finally:
        ctx.close()
        store.close()


def cmd_ingest(args):
    """Feed a JSON message sequence into a session."""
    from ..session import SessionContext

    with open(args.input) as f:
        messages = json.load(f)

    config = load_config(args.config)
    ctx = SessionContext(args.session, config=config)
    try:
        report = ctx.ingest(messages).ingest_report
    finally:
        ctx.close()
    print(f"Processed:  {report.processed}")
    print(f"Cursor:     {report.cursor} (generation {report.generation})")
    if report.invalidated:
        print("Sequence was replaced; cursor reset to its end.")
    if report.evicted:
        print(f"Evicted:    {', '.join(report.evicted)}")
    if report.error:
        print(f"Error:      {report.error}", file=sys.stderr)
        sys.exit(1)


def cmd_config_validate(args):
    """Validate config file."""
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    else:
        print("Config is valid.")
        print(f"  Harness: {config.harness}")
        print(f"  Storage: {config.storage.backend}")
        print(f"  Eviction: last {config.eviction.recent_toolcalls} toolcalls, {config.eviction.recent_turns} turns")
        print(f"  Token counter: {config.token_counter}")


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="context-pools",
        description="Versioned context pools for LLM coding agents",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING)")

    subparsers = parser.add_subparsers(dest="command")

    # status
    status_parser = subparsers.add_parser("status", help="Show a session's cursor and pools")
    status_parser.add_argument("session", help="Session id")

    # show
    show_parser = subparsers.add_parser("show", help="Show an object version")
    show_parser.add_argument("id", help="Object id")
    show_parser.add_argument("--version", "-v", type=int, help="Version index (default: latest)")
    show_parser.add_argument("--content", action="store_true", help="Also print content")

    # history
    history_parser = subparsers.add_parser("history", help="List all versions of an object")
    history_parser.add_argument("id", help="Object id")

    # assemble
    assemble_parser = subparsers.add_parser("assemble", help="Render a session's context")
    assemble_parser.add_argument("session", help="Session id")
    assemble_parser.add_argument("--json", action="store_true", help="Emit role/content messages as JSON")

    # ingest
    ingest_parser = subparsers.add_parser("ingest", help="Ingest a JSON message sequence")
    ingest_parser.add_argument("session", help="Session id")
    ingest_parser.add_argument("--input", "-i", required=True, help="JSON file with a list of messages")

    # config validate
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "status":
        cmd_status(args)
    elif args.command == "show":
        cmd_show(args)
    elif args.command == "history":
        cmd_history(args)
    elif args.command == "assemble":
        cmd_assemble(args)
    elif args.command == "ingest":
        cmd_ingest(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: context-pools config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
