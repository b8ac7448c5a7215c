import json

import pytest

from mcp_host.server import StdioToolServer, ToolHandler


class Upper(ToolHandler):
    name = "upper"
    description = "Upper-cases text"
    parameters = {"text": {"type": "string"}}

    def handle(self, params):
        return params["text"].upper()


@pytest.fixture
def server():
    server = StdioToolServer("test", "9")
    server.register(Upper())
    return server


def replies(capsysbinary):
    out = capsysbinary.readouterr().out.decode("utf-8")
    return [json.loads(line) for line in out.splitlines()]


def test_initialize_advertises_only_what_exists(server, capsysbinary):
    server.handle_message({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {"protocolVersion": "x"}})
    server.add_prompt("p")
    server.handle_message({"jsonrpc": "2.0", "id": 2, "method": "initialize"})

    first, second = replies(capsysbinary)
    assert first["result"]["protocolVersion"] == "x"
    assert first["result"]["capabilities"] == {"tools": {}}
    assert second["result"]["capabilities"] == {"tools": {}, "prompts": {}}
    assert second["result"]["serverInfo"] == {"name": "test", "version": "9"}


def test_tools_list_and_call(server, capsysbinary):
    server.handle_message({"id": 1, "method": "tools/list"})
    server.handle_message({"id": 2, "method": "tools/call", "params": {"name": "upper", "arguments": {"text": "ab"}}})

    listing, call = replies(capsysbinary)
    assert listing["result"]["tools"][0]["inputSchema"]["properties"] == {"text": {"type": "string"}}
    assert call["result"] == {"content": [{"type": "text", "text": "AB"}], "isError": False}


def test_error_codes(server, capsysbinary):
    server.handle_message({"id": 1, "method": "tools/call", "params": {"name": "nope"}})
    server.handle_message({"id": 2, "method": "no/such"})
    server.handle_message({"id": 3, "method": "resources/read", "params": {"uri": "x://y"}})

    codes = [r["error"]["code"] for r in replies(capsysbinary)]
    assert codes == [-32603, -32601, -32603]


def test_notifications_and_junk_get_no_reply(server, capsysbinary):
    server.handle_message({"method": "notifications/initialized"})
    server.handle_message([1, 2])
    server.handle_message({"id": 1, "result": {}})
    assert replies(capsysbinary) == []


def test_register_requires_name():
    class Nameless(ToolHandler):
        def handle(self, params):
            return None

    with pytest.raises(ValueError):
        StdioToolServer().register(Nameless())
