"""
MCP client handle bound to one transport.

The client owns the request/response bookkeeping for a session:

    client = McpClient(StdioTransport.from_config("python", ["server.py"]))
    await client.connect()                  # spawn + initialize handshake
    snapshot = await client.discover()      # tools/resources/prompts
    result = await client.call_tool("echo", {"message": "hi"})
    await client.close()

Responses are matched to requests by id. When the transport closes, every
request still waiting fails with NotConnectedError at its own call site.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

from mcp_host import __version__
from mcp_host.cache import CapabilitySnapshot
from mcp_host.errors import HandshakeError, McpHostError, NotConnectedError, RpcError, TransportError
from mcp_host.transport import EventKind, JsonRpcRequest, JsonRpcResponse, Transport, classify

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-06-18"

METHOD_NOT_FOUND = -32601

CloseCallback = Callable[["McpClient"], Awaitable[None] | None]
NotificationHandler = Callable[[dict[str, Any]], Awaitable[None] | None]


class McpClient:
    """Request/response session over a Transport."""

    def __init__(
        self,
        transport: Transport,
        client_name: str = "mcp-host",
        client_version: str = __version__,
    ):
        self.transport = transport
        self.client_info = {"name": client_name, "version": client_version}
        self.server_info: dict[str, Any] = {}
        self.server_capabilities: dict[str, Any] = {}
        self.protocol_version: str | None = None
        self._pending: dict[int, asyncio.Future] = {}
        self._request_id = 0
        self._pump: asyncio.Task | None = None
        self._closed = False
        self._close_callbacks: list[CloseCallback] = []
        self._notification_handlers: dict[str, list[NotificationHandler]] = {}

    @property
    def closed(self) -> bool:
        return self._closed

    def add_close_callback(self, callback: CloseCallback) -> None:
        """Run callback(client) once, when the transport reports closure."""
        self._close_callbacks.append(callback)

    def on_notification(self, method: str, handler: NotificationHandler) -> None:
        """Call handler(params) for each server notification of this method."""
        self._notification_handlers.setdefault(method, []).append(handler)

    async def connect(self) -> None:
        """
        Start the transport and perform the initialize handshake.

        Transport start failures (SpawnError) propagate unchanged; anything
        that goes wrong after the peer is up is a HandshakeError.
        """
        await self.transport.start()
        self._pump = asyncio.create_task(self._run_pump())

        try:
            result = await self.request("initialize", {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": self.client_info,
            })
            if not isinstance(result, dict):
                raise HandshakeError(f"Unexpected initialize result: {result!r}")
            await self.notify("notifications/initialized")
        except HandshakeError:
            raise
        except McpHostError as e:
            raise HandshakeError(f"Initialization failed: {e}") from e

        self.server_capabilities = result.get("capabilities") or {}
        self.server_info = result.get("serverInfo") or {}
        self.protocol_version = result.get("protocolVersion")
        logger.info(
            f"Initialized {self.server_info.get('name', '?')} "
            f"(protocol {self.protocol_version})"
        )

    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send a request and wait for its response's result."""
        if self._closed or not self.transport.is_alive():
            raise NotConnectedError(f"Cannot send '{method}': session is closed")

        self._request_id += 1
        request_id = self._request_id
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            await self.transport.send(JsonRpcRequest(method, params or {}, request_id).to_dict())
            response = JsonRpcResponse.from_dict(await future)
        finally:
            self._pending.pop(request_id, None)

        if response.is_error:
            error = response.error
            if not isinstance(error, dict):
                error = {"code": -32603, "message": str(error)}
            raise RpcError(error.get("code", -32603), error.get("message", ""), error.get("data"))
        return response.result

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        if self._closed:
            raise NotConnectedError(f"Cannot send '{method}': session is closed")
        await self.transport.send(JsonRpcRequest(method, params or {}).to_dict())

    async def close(self) -> None:
        """Close the transport and wait until the close has been processed."""
        await self.transport.close()
        if self._pump is not None:
            await asyncio.gather(self._pump, return_exceptions=True)
        else:
            self._closed = True

    # -- discovery -------------------------------------------------------

    async def _list(self, method: str, key: str, capability: str) -> list[dict[str, Any]]:
        if self.server_capabilities and capability not in self.server_capabilities:
            return []
        try:
            result = await self.request(method)
        except RpcError as e:
            logger.info(f"{method} not supported by {self.server_info.get('name', '?')}: {e}")
            return []
        if not isinstance(result, dict):
            return []
        return list(result.get(key) or [])

    async def list_tools(self) -> list[dict[str, Any]]:
        return await self._list("tools/list", "tools", "tools")

    async def list_resources(self) -> list[dict[str, Any]]:
        return await self._list("resources/list", "resources", "resources")

    async def list_resource_templates(self) -> list[dict[str, Any]]:
        return await self._list("resources/templates/list", "resourceTemplates", "resources")

    async def list_prompts(self) -> list[dict[str, Any]]:
        return await self._list("prompts/list", "prompts", "prompts")

    async def discover(self) -> CapabilitySnapshot:
        return CapabilitySnapshot(
            tools=await self.list_tools(),
            resources=await self.list_resources(),
            resource_templates=await self.list_resource_templates(),
            prompts=await self.list_prompts(),
        )

    # -- use -------------------------------------------------------------

    async def call_tool(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        return await self.request("tools/call", {"name": name, "arguments": arguments or {}})

    async def read_resource(self, uri: str) -> Any:
        return await self.request("resources/read", {"uri": uri})

    async def get_prompt(self, name: str, arguments: dict[str, Any] | None = None) -> Any:
        return await self.request("prompts/get", {"name": name, "arguments": arguments or {}})

    async def ping(self) -> Any:
        return await self.request("ping")

    # -- inbound ---------------------------------------------------------

    async def _run_pump(self) -> None:
        async for event in self.transport.events():
            if event.kind is EventKind.MESSAGE:
                items = event.message if isinstance(event.message, list) else [event.message]
                for item in items:
                    await self._dispatch(item)
            elif event.kind is EventKind.ERROR:
                logger.warning(f"Transport error: {event.error}")
        await self._handle_closed()

    async def _dispatch(self, message: Any) -> None:
        kind = classify(message)
        if kind == "response":
            future = self._pending.get(message.get("id"))
            if future is None or future.done():
                logger.debug(f"Response for unknown request id {message.get('id')!r}")
                return
            future.set_result(message)
        elif kind == "request":
            await self._answer_server_request(message)
        elif kind == "notification":
            for handler in self._notification_handlers.get(message["method"], []):
                await self._invoke(handler, message.get("params") or {})
        else:
            logger.warning(f"Ignoring message that is not JSON-RPC: {str(message)[:200]}")

    async def _answer_server_request(self, message: dict[str, Any]) -> None:
        if message["method"] == "ping":
            reply = {"jsonrpc": "2.0", "id": message["id"], "result": {}}
        else:
            reply = {
                "jsonrpc": "2.0",
                "id": message["id"],
                "error": {"code": METHOD_NOT_FOUND, "message": f"Method not found: {message['method']}"},
            }
        try:
            await self.transport.send(reply)
        except TransportError as e:
            logger.warning(f"Could not answer server request {message['method']}: {e}")

    async def _handle_closed(self) -> None:
        self._closed = True
        for request_id, future in list(self._pending.items()):
            if not future.done():
                future.set_exception(
                    NotConnectedError(f"Session closed before response to request {request_id}")
                )
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            await self._invoke(callback, self)

    @staticmethod
    async def _invoke(callback: Callable[..., Any], arg: Any) -> None:
        try:
            result = callback(arg)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception(f"Callback {callback!r} failed")
