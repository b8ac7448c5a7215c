"""
Error types for the tool-server host.

Every error carries a short string code so callers (CLI, UI adapters)
can report failures without matching on class names.
"""

from __future__ import annotations


class McpHostError(Exception):
    """Base error for everything raised by mcp_host."""

    code: str = "MCP_HOST_ERROR"

    def __init__(self, message: str, *, code: str | None = None):
        super().__init__(message)
        if code is not None:
            self.code = code


class FrameError(McpHostError):
    """One stdio line could not be parsed as JSON. The line is dropped."""

    code = "FRAME_ERROR"

    def __init__(self, message: str, line: str):
        super().__init__(message)
        self.line = line


class TransportError(McpHostError):
    """A transport failed to move bytes to or from its peer."""

    code = "TRANSPORT_ERROR"


class SpawnError(TransportError):
    """The child process could not be created."""

    code = "SPAWN_ERROR"


class NotConnectedError(TransportError):
    """send/close on a transport that has no live peer."""

    code = "NOT_CONNECTED"


class HandshakeError(McpHostError):
    """The peer is up but the protocol initialization failed."""

    code = "HANDSHAKE_ERROR"


class RpcError(McpHostError):
    """The peer answered a request with a JSON-RPC error object."""

    code = "RPC_ERROR"

    def __init__(self, rpc_code: int, message: str, data=None):
        super().__init__(f"[{rpc_code}] {message}")
        self.rpc_code = rpc_code
        self.rpc_message = message
        self.data = data


class StartError(McpHostError):
    """A session could not be started. ``__cause__`` holds the reason."""

    code = "START_ERROR"

    def __init__(self, server_id: str, message: str):
        super().__init__(f"Failed to start {server_id}: {message}")
        self.server_id = server_id
        self.reason = message
