"""
Transport layer for MCP tool communication.

Implements:
  - StdioTransport: newline-delimited JSON-RPC over a child process's pipes
  - HttpTransport: one HTTP POST per message (JSON or SSE response bodies)

Both deliver inbound traffic through an explicit event channel:

    await transport.start()
    async for event in transport.events():
        if event.kind is EventKind.MESSAGE: ...
        elif event.kind is EventKind.ERROR: ...
        # EventKind.CLOSE is always the last event; iteration stops after it.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import os
import signal
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator

import httpx

from mcp_host.errors import NotConnectedError, SpawnError, TransportError
from mcp_host.framing import MessageFramer, serialize
from mcp_host.launch import LaunchSpec, RuntimeResolver, build_launch_spec

logger = logging.getLogger(__name__)

JSONRPC_VERSION = "2.0"
READ_CHUNK_SIZE = 64 * 1024
# Seconds the pipe readers get to drain after the child has exited
READER_GRACE = 1.0
EXIT_POLL_INTERVAL = 0.05
# Each server leads its own process group so close() can kill the whole tree
NEW_SESSION = os.name == "posix"


@dataclass
class JsonRpcRequest:
    """JSON-RPC 2.0 request, or a notification when id is None."""
    method: str
    params: dict[str, Any] = field(default_factory=dict)
    id: int | str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": self.method}
        if self.params:
            data["params"] = self.params
        if self.id is not None:
            data["id"] = self.id
        return data


@dataclass
class JsonRpcResponse:
    """JSON-RPC 2.0 response."""
    id: int | str | None
    result: Any = None
    error: Any = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JsonRpcResponse":
        return cls(
            id=data.get("id"),
            result=data.get("result"),
            error=data.get("error"),
        )

    @property
    def is_error(self) -> bool:
        return self.error is not None


def classify(message: Any) -> str:
    """Return "request", "response", "notification" or "invalid"."""
    if not isinstance(message, dict):
        return "invalid"
    if "method" in message:
        return "request" if message.get("id") is not None else "notification"
    if "id" in message and ("result" in message or "error" in message):
        return "response"
    return "invalid"


class EventKind(enum.Enum):
    MESSAGE = "message"
    ERROR = "error"
    CLOSE = "close"


@dataclass
class TransportEvent:
    kind: EventKind
    message: Any = None
    error: BaseException | None = None


class Transport(ABC):
    """
    Abstract transport for MCP communication.

    Subclasses push inbound traffic with _emit_message/_emit_error and call
    _emit_close exactly once when the peer is gone.
    """

    def __init__(self) -> None:
        self._events: asyncio.Queue[TransportEvent] = asyncio.Queue()
        self._close_emitted = False

    @abstractmethod
    async def start(self) -> None:
        """Start the transport (e.g., launch subprocess)."""
        ...

    @abstractmethod
    async def send(self, message: Any) -> None:
        """Send one protocol message."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Stop the transport. Idempotent."""
        ...

    @abstractmethod
    def is_alive(self) -> bool:
        """Check if the transport is active."""
        ...

    @property
    def closed(self) -> bool:
        return self._close_emitted

    async def events(self) -> AsyncIterator[TransportEvent]:
        """Inbound events in arrival order. Ends after the CLOSE event."""
        while True:
            event = await self._events.get()
            yield event
            if event.kind is EventKind.CLOSE:
                return

    def _emit_message(self, message: Any) -> None:
        if self._close_emitted:
            return
        self._events.put_nowait(TransportEvent(EventKind.MESSAGE, message=message))

    def _emit_error(self, error: BaseException) -> None:
        if self._close_emitted:
            return
        self._events.put_nowait(TransportEvent(EventKind.ERROR, error=error))

    def _emit_close(self) -> None:
        if self._close_emitted:
            return
        self._close_emitted = True
        self._events.put_nowait(TransportEvent(EventKind.CLOSE))


class StdioTransport(Transport):
    """
    JSON-RPC over stdin/stdout pipes to a subprocess.

    This is MCP's native local transport. The tool server runs as
    a child process owned by this transport for its whole life. We write
    messages to its stdin and frame its stdout into messages. One line =
    one message. close() kills the process group outright; CLOSE follows
    the child's exit, not the end of its output pipes.
    """

    def __init__(self, spec: LaunchSpec, name: str | None = None):
        super().__init__()
        self.spec = spec
        self.name = name or spec.executable
        self._process: asyncio.subprocess.Process | None = None
        self._framer = MessageFramer()
        self._reader: asyncio.Task | None = None
        self._stderr_reader: asyncio.Task | None = None
        self._watcher: asyncio.Task | None = None
        self._closing = False

    @classmethod
    def from_config(
        cls,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
        resolver: RuntimeResolver | None = None,
        name: str | None = None,
    ) -> "StdioTransport":
        return cls(build_launch_spec(command, args, env, cwd, resolver), name=name or command)

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    async def start(self) -> None:
        """Launch the tool server subprocess."""
        if self._process is not None:
            raise TransportError(f"Transport for {self.name} already started")
        if self._closing:
            raise NotConnectedError(f"Transport for {self.name} is closed")

        logger.info(f"Starting stdio transport: {' '.join(self.spec.argv)}")
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.spec.executable,
                *self.spec.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self.spec.cwd,
                env=self.spec.env,
                start_new_session=NEW_SESSION,
            )
        except OSError as e:
            error = SpawnError(f"Failed to spawn {self.spec.executable}: {e}")
            self._emit_error(error)
            raise error from e

        logger.info(f"Child process spawned for {self.name}: pid={self._process.pid}")
        self._reader = asyncio.create_task(self._read_stdout())
        self._stderr_reader = asyncio.create_task(self._read_stderr())
        self._watcher = asyncio.create_task(self._watch_exit())

    def is_alive(self) -> bool:
        """Check if the subprocess is running and not being torn down."""
        return (
            self._process is not None
            and self._process.returncode is None
            and not self._closing
            and not self.closed
        )

    async def send(self, message: Any) -> None:
        """Serialize a message and write it to the child's stdin."""
        if not self.is_alive() or self._process.stdin is None:
            raise NotConnectedError(f"Transport for {self.name} is not running")

        data = serialize(message).encode("utf-8")
        try:
            self._process.stdin.write(data)
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise NotConnectedError(f"Tool server {self.name} closed its input: {e}") from e

    async def close(self) -> None:
        """
        Kill the server's process tree and wait until CLOSE has been emitted.

        Completion is bounded: it waits for the child to exit, not for its
        pipes to reach EOF, so a grandchild holding stdout cannot block it.
        """
        if self._process is None:
            self._closing = True
            return
        if not self._closing:
            self._closing = True
            if self._process.returncode is None:
                self._kill_tree()
        if self._watcher is not None:
            await asyncio.gather(self._watcher, return_exceptions=True)
        self._framer.clear()

    def _kill_tree(self) -> None:
        process = self._process
        if NEW_SESSION:
            try:
                os.killpg(process.pid, signal.SIGKILL)
                return
            except (ProcessLookupError, PermissionError):
                pass
        try:
            process.kill()
        except ProcessLookupError:
            pass

    async def _wait_exited(self) -> int:
        # wait() can also wait for the pipes to close; returncode is set as
        # soon as the child itself has been reaped.
        process = self._process
        waiter = asyncio.ensure_future(process.wait())
        while not waiter.done() and process.returncode is None:
            await asyncio.wait({waiter}, timeout=EXIT_POLL_INTERVAL)
        if not waiter.done():
            waiter.cancel()
        return process.returncode

    async def _watch_exit(self) -> None:
        process = self._process
        returncode = await self._wait_exited()
        if self._closing:
            logger.info(f"Stdio transport for {self.name} stopped")
        else:
            logger.warning(f"Tool server {self.name} exited with code {returncode}")

        readers = [t for t in (self._reader, self._stderr_reader) if t is not None]
        _, pending = await asyncio.wait(readers, timeout=READER_GRACE)
        if pending:
            # Something that outlived the child still holds its pipes.
            logger.warning(f"Pipes of {self.name} still open after exit; killing its process group")
            if NEW_SESSION:
                try:
                    os.killpg(process.pid, signal.SIGKILL)
                except (ProcessLookupError, PermissionError):
                    pass
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if process.stdin is not None:
            process.stdin.close()
        self._emit_close()

    async def _read_stdout(self) -> None:
        stream = self._process.stdout
        try:
            while True:
                chunk = await stream.read(READ_CHUNK_SIZE)
                if not chunk:
                    return
                self._framer.append(chunk)
                for message in self._framer.drain():
                    if self._closing:
                        break
                    logger.debug(f"[{self.name}] <- {str(message)[:200]}")
                    self._emit_message(message)
        except Exception as e:
            logger.error(f"Error reading from {self.name}: {e}")
            self._emit_error(TransportError(f"Read from {self.name} failed: {e}"))

    async def _read_stderr(self) -> None:
        stream = self._process.stderr
        while True:
            line = await stream.readline()
            if not line:
                return
            logger.debug(f"[{self.name} stderr]: {line.decode('utf-8', 'replace').rstrip()}")


def _parse_sse(body: str) -> list[Any]:
    """Collect the JSON payloads of every `data:` event in an SSE body."""
    messages = []
    data_lines: list[str] = []
    for raw in body.splitlines() + [""]:
        if not raw:
            if data_lines:
                payload = "\n".join(data_lines)
                data_lines = []
                try:
                    messages.append(json.loads(payload))
                except json.JSONDecodeError:
                    logger.warning(f"Dropped malformed SSE event: {payload[:200]!r}")
            continue
        if raw.startswith("data:"):
            data_lines.append(raw[5:].lstrip(" "))
    return messages


class HttpTransport(Transport):
    """
    MCP over HTTP: each outbound message is one POST.

    Framing is HTTP's job. Responses arrive either as a JSON body (a single
    message or a batch array) or as a text/event-stream body. The server's
    Mcp-Session-Id header is echoed on every later request.
    """

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__()
        self.url = url
        self.headers = dict(headers or {})
        self.timeout = timeout
        self.session_id: str | None = None
        self._client = client
        self._owns_client = client is None
        self._started = False

    async def start(self) -> None:
        if self._started:
            raise TransportError(f"Transport for {self.url} already started")
        if self.closed:
            raise NotConnectedError(f"Transport for {self.url} is closed")
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        self._started = True
        logger.info(f"HTTP transport ready: {self.url}")

    def is_alive(self) -> bool:
        return self._started and not self.closed

    async def send(self, message: Any) -> None:
        if not self.is_alive():
            raise NotConnectedError(f"Transport for {self.url} is not connected")

        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            **self.headers,
        }
        if self.session_id:
            headers["Mcp-Session-Id"] = self.session_id

        try:
            response = await self._client.post(
                self.url,
                content=serialize(message).encode("utf-8"),
                headers=headers,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            error = TransportError(f"HTTP request to {self.url} failed: {e}")
            self._emit_error(error)
            raise error from e

        session_id = response.headers.get("mcp-session-id")
        if session_id:
            self.session_id = session_id

        if response.status_code == 202 or not response.content:
            return

        content_type = response.headers.get("content-type", "")
        if "text/event-stream" in content_type:
            messages = _parse_sse(response.text)
        else:
            try:
                payload = response.json()
            except ValueError as e:
                error = TransportError(f"Invalid JSON from {self.url}: {e}")
                self._emit_error(error)
                raise error from e
            messages = payload if isinstance(payload, list) else [payload]

        for item in messages:
            self._emit_message(item)

    async def close(self) -> None:
        if self.closed:
            return
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._emit_close()
        logger.info(f"HTTP transport closed: {self.url}")
