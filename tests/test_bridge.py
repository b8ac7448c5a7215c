import json

import pytest

from mcp_host.bridge import collect_langchain_tools, mcp_to_langchain_tool, result_to_text

from conftest import echo_config


def test_result_to_text():
    assert result_to_text("plain") == "plain"
    assert result_to_text({"content": [{"type": "text", "text": "a"}, {"type": "image"}, {"type": "text", "text": "b"}]}) == "a\nb"
    assert json.loads(result_to_text({"value": 1})) == {"value": 1}


@pytest.mark.asyncio
async def test_collect_and_invoke_tools(registry):
    await registry.start(echo_config("srv"))

    tools = collect_langchain_tools(registry)
    assert sorted(t.name for t in tools) == ["echo", "exit"]

    echo = next(t for t in tools if t.name == "echo")
    assert "Echoes back" in echo.description
    output = await echo.ainvoke({"message": "hello"})
    assert json.loads(output) == {"echoed": "hello", "length": 5}


@pytest.mark.asyncio
async def test_prefixed_names(registry):
    await registry.start(echo_config("srv"))
    names = sorted(t.name for t in collect_langchain_tools(registry, prefix_with_server=True))
    assert names == ["srv__echo", "srv__exit"]


@pytest.mark.asyncio
async def test_tool_reports_errors_as_text(registry):
    tool = mcp_to_langchain_tool(registry, "gone", {"name": "echo", "inputSchema": {"type": "object"}})
    output = await tool.ainvoke({})
    assert output.startswith("Error calling gone/echo")
