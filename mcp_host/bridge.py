"""
Bridge between running MCP sessions and LangChain.

Converts the cached tool schemas of live sessions into LangChain
StructuredTools an agent can call directly.

Usage:
    from mcp_host.bridge import mcp_to_langchain_tool, collect_langchain_tools

    # Single tool
    lc_tool = mcp_to_langchain_tool(registry, server_id, tool_schema)

    # All tools from all running servers
    tools = collect_langchain_tools(registry)
"""

from __future__ import annotations

import json
from typing import Any

from langchain_core.tools import StructuredTool

from mcp_host.errors import McpHostError
from mcp_host.manager import SessionRegistry


def result_to_text(result: Any) -> str:
    """Flatten a tools/call result into the text an LLM sees."""
    if isinstance(result, str):
        return result
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        texts = [
            item.get("text", "")
            for item in result["content"]
            if isinstance(item, dict) and item.get("type") == "text"
        ]
        if texts:
            return "\n".join(texts)
    return json.dumps(result, indent=2, ensure_ascii=False)


def mcp_to_langchain_tool(
    registry: SessionRegistry,
    server_id: str,
    tool_schema: dict,
    name_prefix: str | None = None,
) -> StructuredTool:
    """
    Create a LangChain StructuredTool that proxies calls to an MCP session.

    The returned tool is async: invoking it sends tools/call through the
    registry, so it always targets whichever session is live for server_id.

    Args:
        registry: The SessionRegistry owning the session
        server_id: Which server the tool lives on
        tool_schema: The tool as returned by tools/list
        name_prefix: Optional prefix for the LangChain tool name
    """
    tool_name = tool_schema["name"]
    description = tool_schema.get("description") or f"MCP tool: {server_id}/{tool_name}"
    args_schema = tool_schema.get("inputSchema") or {"type": "object", "properties": {}}

    async def _call_mcp(**kwargs: Any) -> str:
        """Proxy call to MCP tool server."""
        try:
            result = await registry.call(server_id, tool_name, kwargs)
        except McpHostError as e:
            return f"Error calling {server_id}/{tool_name}: {e}"
        return result_to_text(result)

    return StructuredTool.from_function(
        coroutine=_call_mcp,
        name=f"{name_prefix}__{tool_name}" if name_prefix else tool_name,
        description=description,
        args_schema=args_schema,
    )


def collect_langchain_tools(
    registry: SessionRegistry,
    prefix_with_server: bool = False,
) -> list[StructuredTool]:
    """
    Wrap every cached tool of every running session.

    With prefix_with_server, tool names become "<server_id>__<tool>" so
    equally named tools from different servers do not collide.
    """
    tools = []
    for server_id in registry.running_ids():
        for tool_schema in registry.list_tools(server_id):
            tools.append(mcp_to_langchain_tool(
                registry,
                server_id,
                tool_schema,
                name_prefix=server_id if prefix_with_server else None,
            ))
    return tools
