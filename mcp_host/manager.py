"""
Session Registry — owns the live sessions of MCP tool servers.

The registry is the only place that creates or destroys sessions. It
guarantees at most one live session per server id, even when several
callers start/stop the same server concurrently.

Usage:
    registry = SessionRegistry(resolver=BundledRuntimes(runtime_dir))

    client = await registry.start(config)   # idempotent
    result = await registry.call(config.id, "echo", {"message": "hi"})
    registry.is_running(config.id)          # True
    await registry.stop(config.id)          # never raises

    await registry.stop_all()
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from mcp_host.cache import CapabilityCache, CapabilitySnapshot
from mcp_host.client import McpClient
from mcp_host.config import ServerConfig
from mcp_host.errors import NotConnectedError, StartError
from mcp_host.launch import RuntimeResolver
from mcp_host.transport import HttpTransport, StdioTransport, Transport

logger = logging.getLogger(__name__)

UnexpectedExitHandler = Callable[[str], Awaitable[None]]


@dataclass
class Session:
    """Runtime binding of a server id to its live transport and client."""
    server_id: str
    name: str
    transport: Transport
    client: McpClient
    created_at: float = field(default_factory=time.time)
    closing: bool = False


def build_transport(
    config: ServerConfig,
    resolver: RuntimeResolver | None = None,
    http_timeout: float = 30.0,
) -> Transport:
    """Create the (unstarted) transport a config asks for."""
    if config.is_http:
        if not config.url:
            raise ValueError(f"HTTP server {config.name} has no url")
        return HttpTransport(config.url, config.headers, timeout=http_timeout)
    return StdioTransport.from_config(
        config.command,
        config.args,
        env=config.env,
        cwd=config.cwd,
        resolver=resolver,
        name=config.name,
    )


class SessionRegistry:
    """
    Manages the lifecycle of MCP tool server sessions.

    Responsibilities:
    - Build the right transport for a config and run the handshake
    - Share one in-flight start between concurrent callers of one id
    - Route tool calls to the correct session
    - Keep the capability cache in step with session lifetimes
    - Report sessions whose transport died on its own
    """

    def __init__(
        self,
        resolver: RuntimeResolver | None = None,
        cache: CapabilityCache | None = None,
        on_unexpected_exit: UnexpectedExitHandler | None = None,
        http_timeout: float = 30.0,
    ):
        self.resolver = resolver
        self.cache = cache if cache is not None else CapabilityCache()
        self.on_unexpected_exit = on_unexpected_exit
        self.http_timeout = http_timeout
        self._sessions: dict[str, Session] = {}
        self._starting: dict[str, asyncio.Task] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock(self, server_id: str) -> asyncio.Lock:
        lock = self._locks.get(server_id)
        if lock is None:
            lock = self._locks[server_id] = asyncio.Lock()
        return lock

    async def start(self, config: ServerConfig) -> McpClient:
        """
        Return the live client for config.id, starting a session if needed.

        A healthy session is returned unchanged. A second call while a start
        is in flight awaits that same attempt. Raises StartError on failure.
        """
        server_id = config.id
        session = self._live_session(server_id)
        if session is not None:
            return session.client

        task = self._starting.get(server_id)
        if task is None:
            task = asyncio.ensure_future(self._start_session(config))
            self._starting[server_id] = task
            task.add_done_callback(lambda t: self._forget_start(server_id, t))
        return await asyncio.shield(task)

    def _live_session(self, server_id: str) -> Session | None:
        session = self._sessions.get(server_id)
        if session is None or session.closing or not session.transport.is_alive():
            return None
        return session

    def _forget_start(self, server_id: str, task: asyncio.Task) -> None:
        if self._starting.get(server_id) is task:
            del self._starting[server_id]
        if not task.cancelled():
            # Mark the outcome as observed; callers get it through shield().
            task.exception()

    async def _start_session(self, config: ServerConfig) -> McpClient:
        server_id = config.id
        async with self._lock(server_id):
            session = self._live_session(server_id)
            if session is not None:
                return session.client

            stale = self._sessions.pop(server_id, None)
            if stale is not None:
                self.cache.invalidate(server_id)
                stale.closing = True
                await self._close_quietly(server_id, stale.client)

            logger.info(f"Starting MCP server: {config.name} ({server_id})")
            try:
                transport = build_transport(config, self.resolver, self.http_timeout)
            except Exception as e:
                raise StartError(server_id, str(e)) from e

            client = McpClient(transport)
            try:
                await client.connect()
                snapshot = await client.discover()
            except asyncio.CancelledError:
                await self._close_quietly(server_id, client)
                raise
            except Exception as e:
                logger.error(f"Failed to start {config.name}: {e}")
                await self._close_quietly(server_id, client)
                raise StartError(server_id, str(e)) from e

            if client.closed:
                raise StartError(server_id, "server exited during initialization")

            session = Session(server_id, config.name, transport, client)
            client.add_close_callback(lambda _client: self._on_client_closed(session))
            self._sessions[server_id] = session
            self.cache.put(server_id, snapshot)
            logger.info(f"Started {config.name}: tools={snapshot.tool_names()}")
            return client

    async def _on_client_closed(self, session: Session) -> None:
        if session.closing or self._sessions.get(session.server_id) is not session:
            return
        del self._sessions[session.server_id]
        self.cache.invalidate(session.server_id)
        logger.warning(f"MCP server {session.name} ({session.server_id}) exited unexpectedly")
        if self.on_unexpected_exit is not None:
            await self.on_unexpected_exit(session.server_id)

    async def stop(self, server_id: str) -> None:
        """
        Stop a session. No-op when none exists; never raises.

        An in-flight start is awaited first so it cannot leave a process
        behind. The transport is closed before the session is removed.
        """
        task = self._starting.get(server_id)
        if task is not None:
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
                logger.info(f"Start of {server_id} was cancelled while stopping")
            except Exception as e:
                logger.info(f"Start of {server_id} failed while stopping: {e}")

        async with self._lock(server_id):
            session = self._sessions.get(server_id)
            if session is None:
                return
            session.closing = True
            logger.info(f"Stopping MCP server: {session.name} ({server_id})")
            await self._close_quietly(server_id, session.client)
            if self._sessions.get(server_id) is session:
                del self._sessions[server_id]
            self.cache.invalidate(server_id)

    async def _close_quietly(self, server_id: str, client: McpClient) -> None:
        try:
            await client.close()
        except Exception:
            logger.exception(f"Error while closing {server_id}; process was killed")

    async def stop_all(self) -> None:
        """Stop all running servers."""
        for server_id in list(self._sessions.keys()) + list(self._starting.keys()):
            await self.stop(server_id)

    def is_running(self, server_id: str) -> bool:
        """Check if a specific server has a live, non-closing session."""
        return self._live_session(server_id) is not None

    def get_client(self, server_id: str) -> McpClient | None:
        session = self._live_session(server_id)
        return session.client if session else None

    def get_session(self, server_id: str) -> Session | None:
        return self._sessions.get(server_id)

    def running_ids(self) -> list[str]:
        return [sid for sid in self._sessions if self.is_running(sid)]

    def list_servers(self) -> dict[str, bool]:
        """All known sessions and their running status."""
        return {sid: self.is_running(sid) for sid in self._sessions}

    def capabilities(self, server_id: str) -> CapabilitySnapshot | None:
        return self.cache.get(server_id)

    def list_tools(self, server_id: str) -> list[dict]:
        """List discovered tools for a server."""
        snapshot = self.cache.get(server_id)
        return snapshot.tools if snapshot else []

    async def call(
        self,
        server_id: str,
        tool_name: str,
        arguments: dict[str, Any],
    ) -> Any:
        """
        Call a tool on a running server.

        Raises NotConnectedError if the server has no live session, and
        RpcError if the server answers with an error.
        """
        client = self.get_client(server_id)
        if client is None:
            raise NotConnectedError(f"Server {server_id} is not running")
        return await client.call_tool(tool_name, arguments)
