import json

import pytest

from mcp_host.config import HTTP, STDIO, ServerConfig
from mcp_host.importer import (
    is_same_server,
    parse_server_configs,
    split_command_line,
    strip_json_comments,
)


def test_mcp_servers_wrapper():
    configs = parse_server_configs({"mcpServers": {
        "fs": {"command": "npx", "args": ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"],
               "env": {"DEBUG": "1", "UNSET": None}},
    }})
    assert len(configs) == 1
    fs = configs[0]
    assert (fs.name, fs.type, fs.command) == ("fs", STDIO, "npx")
    assert fs.args == ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"]
    assert fs.env == {"DEBUG": "1"}
    assert fs.enabled is False
    assert fs.id == ""


def test_servers_wrapper_and_http_detection():
    configs = parse_server_configs({"servers": {
        "remote": {"url": "https://example.com/mcp", "headers": {"Authorization": "Bearer t"}},
        "typed": {"type": "http", "url": "https://other/mcp"},
    }})
    assert [c.type for c in configs] == [HTTP, HTTP]
    assert configs[0].headers == {"Authorization": "Bearer t"}


def test_single_server_object():
    configs = parse_server_configs('{"name": "solo", "command": "uvx", "args": ["mcp-server-time"]}')
    assert [(c.name, c.command, c.args) for c in configs] == [("solo", "uvx", ["mcp-server-time"])]


def test_whole_command_line_is_split():
    configs = parse_server_configs({"mcpServers": {"x": {"command": "npx -y '@scope/pkg name'"}}})
    assert configs[0].command == "npx"
    assert configs[0].args == ["-y", "@scope/pkg name"]


def test_invalid_entries_are_skipped():
    configs = parse_server_configs({"mcpServers": {
        "no-command": {"args": ["x"]},
        "empty-http": {"type": "http"},
        "ok": {"command": "node", "args": ["server.js"]},
    }})
    assert [c.name for c in configs] == ["ok"]
    assert parse_server_configs({"command": "x"}) == []
    assert parse_server_configs("[1, 2]") == []


def test_comments_are_stripped():
    text = """
    {
      // line comment
      "mcpServers": {
        /* block
           comment */
        "web": {"url": "https://example.com/a//b"}
      }
    }
    """
    configs = parse_server_configs(text)
    assert configs[0].url == "https://example.com/a//b"
    assert json.loads(strip_json_comments('{"a": "/* keep */"} // drop')) == {"a": "/* keep */"}


def test_invalid_json_raises_value_error():
    with pytest.raises(ValueError):
        parse_server_configs("{not json")


def test_split_command_line_empty():
    assert split_command_line("") == ("", [])


def test_split_command_line_unbalanced_quotes_falls_back_to_whitespace():
    assert split_command_line('npx -y "@scope/pkg') == ("npx", ["-y", '"@scope/pkg'])


def test_non_object_entries_are_skipped():
    configs = parse_server_configs({"mcpServers": {
        "null": None,
        "text": "npx -y pkg",
        "list": ["node", "server.js"],
        "number": 3,
        "ok": {"command": "node", "args": ["server.js"]},
    }})
    assert [c.name for c in configs] == ["ok"]


def test_unbalanced_command_line_still_imports():
    configs = parse_server_configs({"mcpServers": {"x": {"command": "uvx 'mcp-server-time"}}})
    assert (configs[0].command, configs[0].args) == ("uvx", ["'mcp-server-time"])


def test_is_same_server():
    a = ServerConfig(name="x", command="npx", args=["pkg"])
    assert is_same_server(a, ServerConfig(name="x", command="npx", args=["pkg"], id="other"))
    assert not is_same_server(a, ServerConfig(name="x", command="npx", args=["pkg2"]))
    assert not is_same_server(a, ServerConfig(name="y", command="npx", args=["pkg"]))

    h = ServerConfig(name="h", type=HTTP, url="https://a")
    assert is_same_server(h, ServerConfig(name="h", type=HTTP, url="https://a"))
    assert not is_same_server(h, ServerConfig(name="h", type=HTTP, url="https://b"))
