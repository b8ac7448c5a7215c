"""
Minimal MCP tool server over stdio.

Reads framed JSON-RPC requests from stdin and writes one response line per
request to stdout. Notifications are consumed silently. It is small on
purpose: the reference servers built on it drive the host's transport
tests end to end.

    class Shout(ToolHandler):
        name = "shout"
        description = "Upper-cases its input"
        parameters = {"text": {"type": "string"}}

        def handle(self, params):
            return params["text"].upper()

    server = StdioToolServer("shouter")
    server.register(Shout())
    server.run()
"""

from __future__ import annotations

import json
import logging
import sys
from abc import ABC, abstractmethod
from typing import Any, Callable

from mcp_host.errors import FrameError
from mcp_host.framing import MessageFramer, serialize

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-06-18"

PARSE_ERROR = -32700
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


class MethodNotFound(LookupError):
    pass


class ToolHandler(ABC):
    """One callable tool. Set name, description and parameters; implement handle()."""

    name: str = ""
    description: str = ""
    # JSON Schema "properties" of the tool's single object argument
    parameters: dict[str, dict] = {}

    @abstractmethod
    def handle(self, params: dict[str, Any]) -> Any:
        """Run the tool. A non-string result is sent back JSON-encoded."""
        ...

    def get_schema(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": {"type": "object", "properties": self.parameters},
        }


class StdioToolServer:
    """
    Line-oriented MCP server.

    Supported requests: initialize, ping, tools/list, tools/call,
    resources/list, resources/read, prompts/list. Anything else is
    answered with METHOD_NOT_FOUND.
    """

    def __init__(self, name: str = "stdio-tool-server", version: str = "1.0.0"):
        self.name = name
        self.version = version
        self.tools: dict[str, ToolHandler] = {}
        self.resources: dict[str, str] = {}
        self.prompts: list[dict] = []
        self._methods: dict[str, Callable[[dict], Any]] = {
            "initialize": self._initialize,
            "ping": lambda params: {},
            "tools/list": lambda params: {"tools": [t.get_schema() for t in self.tools.values()]},
            "tools/call": self._call_tool,
            "resources/list": lambda params: {
                "resources": [{"uri": uri, "name": uri} for uri in self.resources]
            },
            "resources/read": self._read_resource,
            "prompts/list": lambda params: {"prompts": list(self.prompts)},
        }

    def register(self, handler: ToolHandler) -> None:
        if not handler.name:
            raise ValueError(f"{type(handler).__name__} does not set a tool name")
        self.tools[handler.name] = handler
        logger.info(f"Registered tool: {handler.name}")

    def add_resource(self, uri: str, text: str) -> None:
        self.resources[uri] = text

    def add_prompt(self, name: str, description: str = "") -> None:
        self.prompts.append({"name": name, "description": description})

    def run(self) -> None:
        """Serve until stdin reaches EOF."""
        logger.info(f"{self.name} serving tools {sorted(self.tools)}")
        framer = MessageFramer()
        for raw in sys.stdin.buffer:
            framer.append(raw)
            while True:
                try:
                    message = framer.read_next()
                except FrameError as e:
                    self._send({"jsonrpc": "2.0", "id": None,
                                "error": {"code": PARSE_ERROR, "message": str(e)}})
                    continue
                if message is None:
                    break
                self.handle_message(message)

    def handle_message(self, message: Any) -> None:
        if not isinstance(message, dict) or "method" not in message:
            return
        if message.get("id") is None:
            logger.debug(f"Notification: {message['method']}")
            return

        reply: dict[str, Any] = {"jsonrpc": "2.0", "id": message["id"]}
        try:
            method = self._methods.get(message["method"])
            if method is None:
                raise MethodNotFound(f"Unknown method: '{message['method']}'")
            reply["result"] = method(message.get("params") or {})
        except MethodNotFound as e:
            reply["error"] = {"code": METHOD_NOT_FOUND, "message": str(e)}
        except Exception as e:
            reply["error"] = {"code": INTERNAL_ERROR, "message": str(e)}
        self._send(reply)

    def _initialize(self, params: dict) -> dict:
        capabilities: dict[str, dict] = {"tools": {}}
        if self.resources:
            capabilities["resources"] = {}
        if self.prompts:
            capabilities["prompts"] = {}
        return {
            "protocolVersion": params.get("protocolVersion", PROTOCOL_VERSION),
            "capabilities": capabilities,
            "serverInfo": {"name": self.name, "version": self.version},
        }

    def _call_tool(self, params: dict) -> dict:
        name = params.get("name", "")
        tool = self.tools.get(name)
        if tool is None:
            raise ValueError(f"Unknown tool: '{name}'. Available: {sorted(self.tools)}")
        result = tool.handle(params.get("arguments") or {})
        text = result if isinstance(result, str) else json.dumps(result)
        return {"content": [{"type": "text", "text": text}], "isError": False}

    def _read_resource(self, params: dict) -> dict:
        uri = params.get("uri", "")
        if uri not in self.resources:
            raise ValueError(f"Unknown resource: {uri}")
        return {"contents": [{"uri": uri, "text": self.resources[uri]}]}

    def _send(self, payload: dict) -> None:
        sys.stdout.buffer.write(serialize(payload).encode("utf-8"))
        sys.stdout.buffer.flush()
