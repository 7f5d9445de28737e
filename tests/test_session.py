"""End-to-end tests for SessionContext: tools, watcher events and resume."""

import threading
import time

from context_pools.core.hashing import compute_content_hash
from context_pools.host_tools import LocalHostTools
from context_pools.session import SessionContext
from context_pools.types import FileObject, OpStatus


class FakeMonotonic:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestEndToEnd:
    def test_read_foo_txt(self, session, workspace, msg):
        assembled = session.ingest([
            msg.user("read foo.txt"),
            msg.assistant("", calls=[("toolu_1", "read", {"path": "foo.txt"})]),
            msg.result("toolu_1", "read", "hello world"),
        ])

        file_id = f"file:{workspace / 'foo.txt'}"
        stored = session.store.get(file_id)
        assert isinstance(stored, FileObject)
        assert stored.content_hash == compute_content_hash("hello world")
        assert file_id in session.pools.metadata
        assert session.pools.active.content(file_id) == "hello world"

        blocks = assembled.blocks
        assert blocks[0].section == "system_prompt"
        assert blocks[0].text == "You are a coding agent."
        assert blocks[1].section == "metadata"
        assert "foo.txt" in blocks[1].text

        chat = assembled.section("chat")
        assert chat[0].text == "read foo.txt"
        assert chat[-1].text == "toolcall_ref id=toolu_1 tool=read status=ok"
        assert all("hello world" not in b.text for b in chat)

        assert blocks[-1].section == "active"
        assert "hello world" in blocks[-1].text
        assert blocks[-1].text.startswith(f'<active-content id="{file_id}" type="file">')


class TestToolSurface:
    def test_read_returns_confirmation_not_content(self, session, workspace):
        (workspace / "notes.md").write_text("secret body")
        result = session.read("notes.md")
        assert result.ok
        assert result.status == OpStatus.READ
        assert "secret body" not in result.message
        assert "char_count=11" in result.message
        assert session.pools.active.content(result.id) == "secret body"

    def test_read_missing(self, session):
        result = session.read("missing.txt")
        assert not result.ok
        assert result.status == OpStatus.FAILED

    def test_activate_deactivate_roundtrip(self, session, workspace):
        (workspace / "a.py").write_text("a = 1\n")
        file_id = session.read("a.py").id

        assert session.deactivate("a.py").status == OpStatus.DEACTIVATED
        assembled = session.assemble()
        assert "a = 1" not in assembled.render()
        assert file_id in assembled.section("metadata")[0].text

        assert session.activate(file_id).status == OpStatus.ACTIVATED
        assert "a = 1" in session.assemble().render()

    def test_activate_unknown(self, session):
        result = session.activate("nope.py")
        assert not result.ok
        assert result.status == OpStatus.NOT_FOUND

    def test_nickname(self, session, workspace):
        (workspace / "main.py").write_text("print('hi')\n")
        file_id = session.read("main.py").id
        assert session.set_nickname(file_id, "entry").status == OpStatus.RENAMED
        assert session.deactivate("entry").ok
        assert session.activate("entry").status == OpStatus.ACTIVATED
        assert "nickname=entry" in session.assemble().section("metadata")[0].text

    def test_write_and_edit(self, session, workspace):
        result = session.write("pkg/mod.py", "x = 1\n")
        assert result.status == OpStatus.INDEXED
        assert (workspace / "pkg" / "mod.py").read_text() == "x = 1\n"

        result = session.edit("pkg/mod.py", "x = 1", "x = 2")
        assert result.status == OpStatus.INDEXED
        versions = session.history("pkg/mod.py")
        assert [v.content for v in versions] == ["x = 1\n", "x = 2\n"]
        assert versions[-1].provenance.generator == "agent"

    def test_edit_failure(self, session, workspace):
        (workspace / "a.py").write_text("x = 1\nx = 1\n")
        result = session.edit("a.py", "x = 1", "x = 2")
        assert not result.ok
        assert result.status == OpStatus.FAILED

    def test_ls_creates_stubs(self, session, workspace):
        (workspace / "a.py").write_text("a")
        (workspace / "sub").mkdir()
        output = session.ls()
        assert output == "a.py\nsub/"
        entry = session.pools.metadata.get(f"file:{workspace / 'a.py'}")
        assert entry.fields["unread"] is True
        assert f"file:{workspace / 'sub'}" not in session.pools.metadata

    def test_find_and_grep(self, session, workspace):
        (workspace / "src").mkdir()
        (workspace / "src" / "app.py").write_text("import os\n# TODO: tidy\n")
        (workspace / "README.md").write_text("TODO list\n")

        assert session.find("*.py") == "src/app.py"
        assert f"file:{workspace / 'src' / 'app.py'}" in session.pools.metadata

        output = session.grep("TODO")
        assert "README.md:1:TODO list" in output
        assert f"file:{workspace / 'README.md'}" in session.pools.metadata

    def test_stub_upgraded_on_activate(self, session, workspace):
        (workspace / "lazy.py").write_text("lazy = True\n")
        session.ls()
        result = session.activate("lazy.py")
        assert result.status == OpStatus.ACTIVATED
        assert session.pools.active.content(result.id) == "lazy = True\n"
        assert "[unread]" not in session.assemble().section("metadata")[0].text

    def test_pin_survives_eviction(self, session, msg):
        messages = [msg.user("turn 0")]
        for i in range(3):
            messages.append(msg.assistant("", calls=[(f"t0_{i}", "ls", {"path": "."})]))
            messages.append(msg.result(f"t0_{i}", "ls", f"out {i}"))
        session.ingest(messages)
        assert session.pin("t0_0").status == OpStatus.PINNED

        for turn in range(1, 5):
            messages.append(msg.user(f"turn {turn}"))
        session.ingest(messages)

        assert session.pools.active.is_active("t0_0")
        assert not session.pools.active.is_active("t0_1")
        assert not session.pools.active.is_active("t0_2")


class TestWatcher:
    def test_change_creates_version(self, session, workspace):
        path = workspace / "a.py"
        path.write_text("v1")
        file_id = session.read("a.py").id
        path.write_text("v2")
        committed = session.on_file_changed(str(path))
        assert committed.content == "v2"
        assert session.pools.active.content(file_id) == "v2"

    def test_change_on_vanished_file_writes_tombstone(self, session, workspace):
        path = workspace / "a.py"
        path.write_text("v1")
        file_id = session.read("a.py").id
        path.unlink()

        committed = session.on_file_changed(str(path))
        assert committed.id == file_id
        assert committed.path is None
        assert not session.pools.active.is_active(file_id)
        assert [v.content for v in session.store.history(file_id)] == ["v1", None]

    def test_add_sees_mutations_queued_before_it(self, session, workspace):
        path = workspace / "late.py"
        path.write_text("late")
        results = []
        with session.queue.turn():
            worker = threading.Thread(target=lambda: results.append(session.on_file_added(str(path))))
            worker.start()
            while session.queue.pending < 2:
                time.sleep(0.001)
            file_id = session.read("late.py").id
        worker.join(timeout=5)
        assert results[0].id == file_id

    def test_untracked_change_ignored(self, session, workspace):
        (workspace / "other.py").write_text("x")
        assert session.on_file_changed(str(workspace / "other.py")) is None

    def test_deletion_tombstone_keeps_history(self, session, workspace):
        path = workspace / "gone.txt"
        path.write_text("soon gone")
        file_id = session.read("gone.txt").id
        path.unlink()

        tombstone = session.on_file_deleted(str(path))
        assert tombstone.id == file_id
        assert tombstone.content is None
        assert tombstone.path is None
        assert not session.pools.active.is_active(file_id)
        assert [v.content for v in session.store.history(file_id)] == ["soon gone", None]
        assert "[deleted]" in session.assemble().section("metadata")[0].text

    def test_rename_keeps_id(self, config, store, workspace):
        ctx = SessionContext("s1", config=config, store=store, host=LocalHostTools(workspace))
        ctx.indexer._clock = FakeMonotonic()
        old = workspace / "old.py"
        old.write_text("body")
        file_id = ctx.read("old.py").id

        new = workspace / "new.py"
        old.rename(new)
        ctx.on_file_deleted(str(old))
        renamed = ctx.on_file_added(str(new))

        assert renamed.id == file_id
        assert renamed.path == str(new)
        assert ctx.pools.resolve("new.py") == file_id
        ctx.close()

    def test_new_file_at_renamed_path_gets_own_id(self, config, store, workspace):
        ctx = SessionContext("s1", config=config, store=store, host=LocalHostTools(workspace))
        ctx.indexer._clock = FakeMonotonic()
        old = workspace / "old.py"
        old.write_text("body")
        file_id = ctx.read("old.py").id
        new = workspace / "new.py"
        old.rename(new)
        ctx.on_file_deleted(str(old))
        ctx.on_file_added(str(new))

        fresh = ctx.write("old.py", "fresh")
        assert fresh.ok
        assert fresh.id != file_id
        assert ctx.pools.resolve("new.py") == file_id
        assert ctx.pools.resolve("old.py") == fresh.id
        assert store.get(file_id).path == str(new)
        assert [v.content for v in store.history(fresh.id)] == ["fresh"]
        ctx.close()

    def test_renamed_file_not_resolved_by_old_path(self, config, store, workspace):
        ctx = SessionContext("s1", config=config, store=store, host=LocalHostTools(workspace))
        ctx.indexer._clock = FakeMonotonic()
        old = workspace / "old.py"
        old.write_text("body")
        ctx.read("old.py")
        old.rename(workspace / "new.py")
        ctx.on_file_deleted(str(old))
        ctx.on_file_added(str(workspace / "new.py"))
        assert ctx.pools.resolve("old.py") is None
        ctx.close()

    def test_add_outside_rename_window(self, config, store, workspace):
        ctx = SessionContext("s1", config=config, store=store, host=LocalHostTools(workspace))
        clock = FakeMonotonic()
        ctx.indexer._clock = clock
        old = workspace / "old.py"
        old.write_text("body")
        ctx.read("old.py")
        old.unlink()
        ctx.on_file_deleted(str(old))

        clock.now += 60
        (workspace / "fresh.py").write_text("new")
        assert ctx.on_file_added(str(workspace / "fresh.py")) is None
        ctx.close()

    def test_reconcile(self, session, workspace):
        (workspace / "a.py").write_text("v1")
        (workspace / "b.py").write_text("b")
        a_id = session.read("a.py").id
        b_id = session.read("b.py").id
        (workspace / "a.py").write_text("v2")
        (workspace / "b.py").unlink()

        changed = session.reconcile()
        assert set(changed) == {a_id, b_id}
        assert session.store.get(a_id).content == "v2"
        assert session.store.get(b_id).path is None


class TestResume:
    def test_resume_restores_pools(self, config, store, workspace, msg):
        (workspace / "keep.py").write_text("keep")
        first = SessionContext("s1", config=config, store=store, host=LocalHostTools(workspace))
        first.ingest([
            msg.user("read foo.txt"),
            msg.assistant("", calls=[("toolu_1", "read", {"path": "foo.txt"})]),
            msg.result("toolu_1", "read", "hello world"),
        ])
        keep_id = first.read("keep.py").id
        first.pin(keep_id)
        rendered = first.assemble().render()
        status = first.status()
        first.close()

        second = SessionContext("s1", config=config, store=store, host=LocalHostTools(workspace))
        assert second.resumed is True
        assert second.assemble().render() == rendered
        assert second.pools.pinned == {keep_id}
        assert second.status()["cursor"] == status["cursor"] == 3
        report = second.ingest([
            msg.user("read foo.txt"),
            msg.assistant("", calls=[("toolu_1", "read", {"path": "foo.txt"})]),
            msg.result("toolu_1", "read", "hello world"),
            msg.user("next"),
        ]).ingest_report
        assert report.processed == 1
        second.close()

    def test_resume_keeps_result_arrival_order(self, config, store, workspace, msg):
        first = SessionContext("s1", config=config, store=store, host=LocalHostTools(workspace))
        first.ingest([
            msg.user("list twice"),
            msg.assistant("", calls=[("c1", "ls", {"path": "."}), ("c2", "ls", {"path": "src"})]),
            msg.result("c2", "ls", "b.py"),
            msg.result("c1", "ls", "a.py"),
        ])
        order = [rec.id for rec in first.pools.toolcall_history]
        assert order == ["c2", "c1"]
        first.close()

        second = SessionContext("s1", config=config, store=store, host=LocalHostTools(workspace))
        assert [rec.id for rec in second.pools.toolcall_history] == order
        assert [rec.turn_index for rec in second.pools.toolcall_history] == [0, 0]
        second.close()

    def test_sessions_are_independent(self, config, store, workspace):
        (workspace / "a.py").write_text("a")
        one = SessionContext("one", config=config, store=store, host=LocalHostTools(workspace))
        two = SessionContext("two", config=config, store=store, host=LocalHostTools(workspace))
        one.read("a.py")
        assert len(one.pools.active) == 1
        assert len(two.pools.active) == 0
        one.close()
        two.close()


class TestInspection:
    def test_status(self, session, workspace):
        (workspace / "a.py").write_text("a")
        session.read("a.py")
        status = session.status()
        assert status["session_id"] == "s1"
        assert status["resumed"] is False
        assert status["objects"] == 1
        assert status["active"] == [f"file:{workspace / 'a.py'}"]

    def test_get_by_path(self, session, workspace):
        (workspace / "a.py").write_text("a")
        session.read("a.py")
        assert session.get("a.py").content == "a"
        assert session.get("unknown") is None
