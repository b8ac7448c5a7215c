import json
import sys

import pytest

from mcp_host.cli import main

from conftest import ECHO_SERVER


@pytest.fixture
def run(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for name in ("MCP_HOST_RUNTIME_DIR", "MCP_HOST_LOG_LEVEL", "MCP_HOST_HTTP_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    store_path = str(tmp_path / "store.json")

    def _run(*argv):
        return main(["--store", store_path, *argv])

    return _run


def test_add_list_remove(run, capsys):
    assert run("add", "echo", "--command", sys.executable, "--args", str(ECHO_SERVER)) == 0
    assert run("add", "docs", "--url", "https://example.com/mcp", "--header", "Authorization=Bearer t") == 0

    assert run("list") == 0
    out = capsys.readouterr().out
    assert "Configured MCP servers (2)" in out
    assert "https://example.com/mcp" in out
    assert str(ECHO_SERVER) in out

    assert run("remove", "docs") == 0
    assert run("remove", "docs") == 1
    run("list")
    assert "Configured MCP servers (1)" in capsys.readouterr().out


def test_add_validates_arguments(run, capsys):
    assert run("add", "x") == 2
    assert run("add", "x", "--command", "node", "--url", "https://a") == 2
    assert run("add", "x", "--command", "node", "--env", "NOEQUALS") == 2
    assert "KEY=VALUE" in capsys.readouterr().out


def test_import_file(run, tmp_path, capsys):
    snippet = tmp_path / "claude.json"
    snippet.write_text(json.dumps({"mcpServers": {"a": {"command": "npx -y pkg"}, "b": {"url": "https://b"}}}))

    assert run("import", str(snippet)) == 0
    assert "Imported 2 server(s)" in capsys.readouterr().out
    assert run("import", str(snippet)) == 0
    assert "Imported 0 server(s)" in capsys.readouterr().out


def test_import_bad_json(run, tmp_path, capsys):
    snippet = tmp_path / "bad.json"
    snippet.write_text("{nope")
    assert run("import", str(snippet)) == 1


def test_probe_enable_disable(run, capsys):
    run("add", "echo", "--command", sys.executable, "--args", str(ECHO_SERVER))
    capsys.readouterr()

    assert run("probe", "echo") == 0
    result = json.loads(capsys.readouterr().out)
    assert [t["name"] for t in result["tools"]] == ["echo", "exit"]

    assert run("enable", "echo") == 0
    run("list")
    assert "✓ echo" in capsys.readouterr().out

    assert run("disable", "echo") == 0
    run("list")
    assert "○ echo" in capsys.readouterr().out


def test_enable_failure_leaves_server_disabled(run, capsys):
    run("add", "bad", "--command", sys.executable, "--args", str(ECHO_SERVER), "--fail-init")
    assert run("enable", "bad") == 1
    run("list")
    assert "○ bad" in capsys.readouterr().out


def test_reconcile_reports_failures(run, capsys):
    run("add", "good", "--enabled", "--command", sys.executable, "--args", str(ECHO_SERVER))
    run("add", "bad", "--enabled", "--command", sys.executable, "--args", str(ECHO_SERVER), "--fail-init")
    capsys.readouterr()

    assert run("reconcile") == 1
    out = capsys.readouterr().out
    assert "disabled:" in out


def test_unknown_server(run, capsys):
    assert run("probe", "missing") == 1
    assert "Server not found" in capsys.readouterr().out


def test_mcp_switch(run, capsys):
    assert run("mcp") == 0
    assert "MCP is off" in capsys.readouterr().out

    assert run("mcp", "on") == 0
    assert "MCP is on" in capsys.readouterr().out
    assert run("mcp", "status") == 0
    assert "MCP is on" in capsys.readouterr().out

    assert run("mcp", "off") == 0
    assert "MCP is off" in capsys.readouterr().out


def test_invalid_settings_exit_with_usage_error(run, monkeypatch, capsys):
    monkeypatch.setenv("MCP_HOST_HTTP_TIMEOUT", "-1")
    assert run("list") == 2
    assert "Invalid MCP_HOST_* settings" in capsys.readouterr().out
