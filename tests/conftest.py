"""Shared fixtures for context-pools tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from context_pools.config import load_config
from context_pools.host_tools import LocalHostTools
from context_pools.session import SessionContext
from context_pools.storage.memory import InMemoryStore
from context_pools.types import ContextPoolsConfig, StoreUnavailable


class TickingClock:
    """Deterministic clock: each call returns one second later than the last."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + timedelta(seconds=1)
        return current


class Msg:
    """Harness-shaped message dicts."""

    @staticmethod
    def user(text: str) -> dict:
        return {"role": "user", "content": text}

    @staticmethod
    def assistant(text: str = "", calls: list[tuple[str, str, dict]] | None = None) -> dict:
        content: list[dict] = []
        if text:
            content.append({"type": "text", "text": text})
        for call_id, name, args in calls or []:
            content.append({"type": "toolCall", "id": call_id, "name": name, "arguments": args})
        return {"role": "assistant", "content": content, "model": "test-model", "provider": "test"}

    @staticmethod
    def result(call_id: str, name: str, text: str, is_error: bool = False) -> dict:
        return {
            "role": "toolResult",
            "toolCallId": call_id,
            "toolName": name,
            "content": [{"type": "text", "text": text}],
            "isError": is_error,
        }


@pytest.fixture
def ts() -> datetime:
    return datetime(2026, 1, 15, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(ts) -> TickingClock:
    return TickingClock(ts)


@pytest.fixture
def store(clock) -> InMemoryStore:
    return InMemoryStore(clock=clock)


@pytest.fixture
def msg() -> type[Msg]:
    return Msg


@pytest.fixture
def workspace(tmp_path) -> Path:
    root = tmp_path / "workspace"
    root.mkdir()
    return root


@pytest.fixture
def config(workspace) -> ContextPoolsConfig:
    return load_config(config_dict={
        "workspace_root": str(workspace),
        "system_prompt": "You are a coding agent.",
        "storage": {"backend": "memory"},
    })


@pytest.fixture
def session(config, store, workspace) -> SessionContext:
    ctx = SessionContext("s1", config=config, store=store, host=LocalHostTools(workspace))
    yield ctx
    ctx.close()


@pytest.fixture
def tmp_sqlite_db(tmp_path) -> Path:
    return tmp_path / "store.db"


class FlakyStore(InMemoryStore):
    """InMemoryStore whose writes can be switched off."""

    def __init__(self, clock=None) -> None:
        super().__init__(clock=clock)
        self.down = False

    def put(self, obj):
        if self.down:
            raise StoreUnavailable("store offline", backend="memory")
        return super().put(obj)


@pytest.fixture
def flaky_store(clock) -> FlakyStore:
    return FlakyStore(clock=clock)
