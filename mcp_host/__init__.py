"""
mcp-host — transport and lifecycle layer for MCP tool servers.

Architecture:
    ┌──────────────┐  reconcile  ┌─────────────────┐  start/stop  ┌────────────────┐
    │ ConfigStore  │ ──────────▶ │ Reconciliation  │ ───────────▶ │ SessionRegistry│
    │ (JSON doc)   │ ◀────────── │ Controller      │              │  id → Session  │
    └──────────────┘  disable    └─────────────────┘              └───────┬────────┘
                                                                          │
                                  McpClient ── StdioTransport ── child process (stdio)
                                            └─ HttpTransport  ── HTTP endpoint

Each tool server is either a child process that speaks newline-delimited
JSON-RPC over stdin/stdout (the MCP stdio transport) or an HTTP endpoint.
The registry keeps at most one live session per server id; the controller
keeps those sessions in line with the persisted config list and disables
servers that fail to start.

The LangChain bridge is imported lazily so the core works without it.
"""

__version__ = "0.1.0"

from mcp_host.cache import CapabilityCache, CapabilitySnapshot
from mcp_host.client import McpClient
from mcp_host.config import ConfigStore, HostSettings, JsonFileStore, MemoryStore, ServerConfig
from mcp_host.controller import ProbeResult, ReconcileReport, ReconciliationController
from mcp_host.errors import (
    FrameError,
    HandshakeError,
    McpHostError,
    NotConnectedError,
    RpcError,
    SpawnError,
    StartError,
    TransportError,
)
from mcp_host.framing import MessageFramer, serialize
from mcp_host.launch import BundledRuntimes, LaunchSpec, LaunchStrategy, build_launch_spec
from mcp_host.manager import SessionRegistry
from mcp_host.transport import EventKind, HttpTransport, StdioTransport, TransportEvent


# The bridge needs langchain-core; import it only when called
def mcp_to_langchain_tool(*args, **kwargs):
    from mcp_host.bridge import mcp_to_langchain_tool as _impl
    return _impl(*args, **kwargs)


def collect_langchain_tools(*args, **kwargs):
    from mcp_host.bridge import collect_langchain_tools as _impl
    return _impl(*args, **kwargs)


__all__ = [
    "BundledRuntimes",
    "CapabilityCache",
    "CapabilitySnapshot",
    "ConfigStore",
    "EventKind",
    "FrameError",
    "HandshakeError",
    "HostSettings",
    "HttpTransport",
    "JsonFileStore",
    "LaunchSpec",
    "LaunchStrategy",
    "McpClient",
    "McpHostError",
    "MemoryStore",
    "MessageFramer",
    "NotConnectedError",
    "ProbeResult",
    "ReconcileReport",
    "ReconciliationController",
    "RpcError",
    "ServerConfig",
    "SessionRegistry",
    "SpawnError",
    "StartError",
    "StdioTransport",
    "TransportError",
    "TransportEvent",
    "build_launch_spec",
    "collect_langchain_tools",
    "mcp_to_langchain_tool",
    "serialize",
]
