"""Tests for the context-pools CLI."""

import json

import pytest
import yaml

from context_pools.cli.main import main
from context_pools.config import load_config
from context_pools.host_tools import LocalHostTools
from context_pools.session import SessionContext


@pytest.fixture
def config_file(tmp_path, workspace):
    path = tmp_path / "context-pools.yaml"
    path.write_text(yaml.dump({
        "workspace_root": str(workspace),
        "system_prompt": "You are a coding agent.",
        "storage": {"backend": "sqlite", "sqlite_path": str(tmp_path / "store.db")},
    }))
    return path


@pytest.fixture
def stored_session(config_file, workspace):
    (workspace / "foo.txt").write_text("hello world")
    ctx = SessionContext("s1", config=load_config(config_file), host=LocalHostTools(workspace))
    file_id = ctx.read("foo.txt").id
    ctx.close()
    return file_id


class TestCLI:
    def test_no_command(self, capsys):
        with pytest.raises(SystemExit) as exc:
            main([])
        assert exc.value.code == 1

    def test_config_validate(self, config_file, capsys):
        main(["-c", str(config_file), "config", "validate"])
        assert "Config is valid." in capsys.readouterr().out

    def test_config_validate_errors(self, tmp_path, capsys):
        bad = tmp_path / "bad.yaml"
        bad.write_text(yaml.dump({"storage": {"backend": "redis"}}))
        with pytest.raises(SystemExit):
            main(["-c", str(bad), "config", "validate"])
        assert "redis" in capsys.readouterr().out

    def test_status(self, config_file, stored_session, capsys):
        main(["-c", str(config_file), "status", "s1"])
        out = capsys.readouterr().out
        assert "Session:    s1" in out
        assert stored_session in out
        assert "active" in out

    def test_status_unknown_session(self, config_file, capsys):
        with pytest.raises(SystemExit):
            main(["-c", str(config_file), "status", "nobody"])

    def test_show_and_history(self, config_file, stored_session, capsys):
        main(["-c", str(config_file), "show", stored_session, "--content"])
        out = capsys.readouterr().out
        assert '"char_count": 11' in out
        assert "hello world" in out

        main(["-c", str(config_file), "history", stored_session])
        out = capsys.readouterr().out
        assert "  0 " in out

    def test_show_missing(self, config_file, capsys):
        with pytest.raises(SystemExit):
            main(["-c", str(config_file), "show", "file:/nope"])
        assert "Object not found" in capsys.readouterr().err

    def test_assemble_json(self, config_file, stored_session, capsys):
        main(["-c", str(config_file), "assemble", "s1", "--json"])
        data = json.loads(capsys.readouterr().out)
        assert data["messages"][0]["role"] == "system"
        assert "hello world" in data["messages"][-1]["content"]

    def test_ingest(self, config_file, tmp_path, msg, capsys):
        messages = tmp_path / "messages.json"
        messages.write_text(json.dumps([
            msg.user("read foo.txt"),
            msg.assistant("", calls=[("toolu_1", "read", {"path": "foo.txt"})]),
            msg.result("toolu_1", "read", "hello world"),
        ]))
        main(["-c", str(config_file), "ingest", "s2", "--input", str(messages)])
        out = capsys.readouterr().out
        assert "Processed:  3" in out
        assert "Cursor:     3 (generation 0)" in out
