"""Behavioural contract shared by the local store backends."""

import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from context_pools.core.objects import build_file_object, build_file_tombstone, build_toolcall_object, seal
from context_pools.storage import InMemoryStore, SQLiteStore, create_store
from context_pools.types import StorageConfig, StoreUnavailable


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, clock, tmp_sqlite_db):
    if request.param == "memory":
        s = InMemoryStore(clock=clock)
    else:
        s = SQLiteStore(tmp_sqlite_db, clock=clock)
    yield s
    s.close()


def _file(content, path="/w/a.py"):
    return seal(build_file_object(path, content))


class TestPutGet:
    def test_unknown_id(self, any_store):
        assert any_store.get("file:/nope") is None
        assert any_store.history("file:/nope") == []
        assert any_store.get_version("file:/nope", 0) is None

    def test_put_then_get(self, any_store, ts):
        receipt = any_store.put(_file("x = 1"))
        assert receipt.version == 0
        assert receipt.timestamp == ts
        got = any_store.get("file:/w/a.py")
        assert got.content == "x = 1"
        assert got.timestamp == ts

    def test_current_is_latest(self, any_store):
        any_store.put(_file("v1"))
        any_store.put(_file("v2"))
        assert any_store.get("file:/w/a.py").content == "v2"

    def test_returned_objects_are_copies(self, any_store):
        any_store.put(_file("v1"))
        got = any_store.get("file:/w/a.py")
        got.content = "mutated"
        assert any_store.get("file:/w/a.py").content == "v1"


class TestHistory:
    def test_oldest_first_strictly_increasing(self, any_store):
        for i in range(4):
            any_store.put(_file(f"v{i}"))
        versions = any_store.history("file:/w/a.py")
        assert [v.content for v in versions] == ["v0", "v1", "v2", "v3"]
        times = [v.timestamp for v in versions]
        assert all(a < b for a, b in zip(times, times[1:]))

    def test_stalled_clock_still_increases(self, tmp_sqlite_db, ts):
        for s in (InMemoryStore(clock=lambda: ts), SQLiteStore(tmp_sqlite_db, clock=lambda: ts)):
            s.put(_file("v0"))
            s.put(_file("v1"))
            first, second = s.history("file:/w/a.py")
            assert second.timestamp > first.timestamp
            s.close()

    def test_get_version(self, any_store):
        for i in range(3):
            any_store.put(_file(f"v{i}"))
        assert any_store.get_version("file:/w/a.py", 1).content == "v1"
        assert any_store.get_version("file:/w/a.py", -1).content == "v2"
        assert any_store.get_version("file:/w/a.py", 5) is None

    def test_tombstone_keeps_history(self, any_store):
        any_store.put(_file("alive"))
        tomb = seal(build_file_tombstone(_file("alive")))
        any_store.put(tomb)
        assert any_store.get("file:/w/a.py").content is None
        assert [v.content for v in any_store.history("file:/w/a.py")] == ["alive", None]


class TestAsOf:
    def test_interval_containment(self, any_store, ts):
        any_store.put(_file("v0"))  # ts
        any_store.put(_file("v1"))  # ts + 1s
        oid = "file:/w/a.py"
        assert any_store.get_as_of(oid, ts - timedelta(seconds=1)) is None
        assert any_store.get_as_of(oid, ts).content == "v0"
        assert any_store.get_as_of(oid, ts + timedelta(milliseconds=500)).content == "v0"
        assert any_store.get_as_of(oid, ts + timedelta(seconds=1)).content == "v1"
        assert any_store.get_as_of(oid, ts + timedelta(days=1)).content == "v1"

    def test_naive_datetime_treated_as_utc(self, any_store, ts):
        any_store.put(_file("v0"))
        assert any_store.get_as_of("file:/w/a.py", ts.replace(tzinfo=None)).content == "v0"


class TestQuery:
    def test_matches_current_version_only(self, any_store):
        any_store.put(_file("x", path="/w/a.py"))
        any_store.put(_file("y", path="/w/b.md"))
        any_store.put(seal(build_toolcall_object("c1", "ls", {}, "", is_error=False, chat_ref="chat:s")))

        assert any_store.query({"type": "file"}) == {"file:/w/a.py", "file:/w/b.md"}
        assert any_store.query({"type": "file", "file_type": "md"}) == {"file:/w/b.md"}
        assert any_store.query({"tool": "ls"}) == {"c1"}

        any_store.put(seal(build_file_tombstone(_file("y", path="/w/b.md"))))
        assert any_store.query({"path": "/w/b.md"}) == set()


class TestSQLitePersistence:
    def test_reopen(self, tmp_sqlite_db, clock):
        s = SQLiteStore(tmp_sqlite_db, clock=clock)
        s.put(_file("v0"))
        s.put(_file("v1"))
        s.close()

        reopened = SQLiteStore(tmp_sqlite_db, clock=clock)
        assert [v.content for v in reopened.history("file:/w/a.py")] == ["v0", "v1"]
        assert reopened.put(_file("v2")).version == 2
        reopened.close()


class TestSQLiteErrors:
    @pytest.fixture
    def broken_store(self, tmp_sqlite_db, clock):
        s = SQLiteStore(tmp_sqlite_db, clock=clock)
        s.put(_file("v0"))
        other = sqlite3.connect(str(tmp_sqlite_db))
        other.execute("DROP TABLE versions")
        other.commit()
        other.close()
        yield s
        s.close()

    @pytest.mark.parametrize("call", [
        lambda s: s.get("file:/w/a.py"),
        lambda s: s.get_as_of("file:/w/a.py", datetime.now(timezone.utc)),
        lambda s: s.history("file:/w/a.py"),
        lambda s: s.get_version("file:/w/a.py", 0),
        lambda s: s.query({"type": "file"}),
        lambda s: s.put(_file("v1")),
    ])
    def test_operational_errors_become_store_unavailable(self, broken_store, call):
        with pytest.raises(StoreUnavailable) as exc:
            call(broken_store)
        assert exc.value.backend == "sqlite"

    def test_unopenable_database(self, tmp_path):
        (tmp_path / "dir.db").mkdir()
        with pytest.raises(StoreUnavailable):
            SQLiteStore(tmp_path / "dir.db")


class TestCreateStore:
    def test_memory(self):
        assert isinstance(create_store(StorageConfig(backend="memory")), InMemoryStore)

    def test_sqlite(self, tmp_sqlite_db):
        s = create_store(StorageConfig(backend="sqlite", sqlite_path=str(tmp_sqlite_db)))
        assert isinstance(s, SQLiteStore)
        s.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_store(StorageConfig(backend="postgres"))
