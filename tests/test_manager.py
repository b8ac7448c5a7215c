import asyncio
import os
import sys

import pytest

from mcp_host.cache import CapabilityCache
from mcp_host.config import ServerConfig
from mcp_host.errors import HandshakeError, NotConnectedError, SpawnError, StartError
from mcp_host.manager import SessionRegistry, build_transport
from mcp_host.transport import HttpTransport, StdioTransport

from conftest import echo_config, wait_until


def pids(path) -> list[str]:
    return path.read_text().split() if path.exists() else []


@pytest.mark.asyncio
async def test_start_discovers_and_caches(registry):
    config = echo_config("a")
    client = await registry.start(config)

    assert registry.is_running("a")
    assert registry.get_client("a") is client
    assert registry.list_tools("a")[0]["name"] == "echo"
    assert registry.capabilities("a").prompts[0]["name"] == "summarize"
    assert registry.running_ids() == ["a"]
    assert registry.list_servers() == {"a": True}


@pytest.mark.asyncio
async def test_start_is_idempotent(registry, tmp_path):
    pid_file = tmp_path / "pids"
    config = echo_config("a", "--pid-file", str(pid_file))
    first = await registry.start(config)
    second = await registry.start(config)

    assert first is second
    assert len(pids(pid_file)) == 1


@pytest.mark.asyncio
async def test_concurrent_starts_share_one_process(registry, tmp_path):
    pid_file = tmp_path / "pids"
    config = echo_config("a", "--pid-file", str(pid_file))

    clients = await asyncio.gather(*(registry.start(config) for _ in range(5)))

    assert all(c is clients[0] for c in clients)
    assert len(pids(pid_file)) == 1
    assert registry.is_running("a")


@pytest.mark.asyncio
async def test_stop_then_start_never_returns_stopped_session(registry):
    config = echo_config("a")
    old = await registry.start(config)
    old_pid = registry.get_session("a").transport.pid

    _, new = await asyncio.gather(registry.stop("a"), registry.start(config))

    assert new is not old
    assert old.closed
    assert registry.get_session("a").transport.pid != old_pid
    assert registry.is_running("a")


@pytest.mark.asyncio
async def test_stop_kills_process_and_clears_cache(registry):
    await registry.start(echo_config("a"))
    transport = registry.get_session("a").transport

    await registry.stop("a")

    assert not registry.is_running("a")
    assert registry.get_session("a") is None
    assert transport.returncode is not None
    assert "a" not in registry.cache


@pytest.mark.asyncio
async def test_stop_unknown_and_repeated_is_noop(registry):
    await registry.stop("missing")
    await registry.start(echo_config("a"))
    await registry.stop("a")
    await registry.stop("a")
    assert not registry.is_running("a")


@pytest.mark.asyncio
async def test_stop_during_start_leaves_nothing_running(registry, tmp_path):
    pid_file = tmp_path / "pids"
    config = echo_config("a", "--pid-file", str(pid_file))

    start = asyncio.ensure_future(registry.start(config))
    await asyncio.sleep(0)
    await registry.stop("a")

    client = await start
    assert client.closed
    assert not registry.is_running("a")
    assert len(pids(pid_file)) == 1


@pytest.mark.asyncio
async def test_failed_handshake_is_start_error(registry):
    with pytest.raises(StartError) as exc_info:
        await registry.start(echo_config("bad", "--fail-init"))

    assert isinstance(exc_info.value.__cause__, HandshakeError)
    assert exc_info.value.server_id == "bad"
    assert not registry.is_running("bad")
    assert registry.get_session("bad") is None


@pytest.mark.asyncio
async def test_spawn_failure_is_start_error(registry):
    config = ServerConfig(id="x", name="x", command="no-such-command-on-path-xyz")
    with pytest.raises(StartError) as exc_info:
        await registry.start(config)
    assert isinstance(exc_info.value.__cause__, SpawnError)
    assert not registry.is_running("x")


@pytest.mark.asyncio
async def test_concurrent_failed_starts_share_the_failure(registry, tmp_path):
    pid_file = tmp_path / "pids"
    config = echo_config("bad", "--pid-file", str(pid_file), "--fail-init")

    results = await asyncio.gather(registry.start(config), registry.start(config), return_exceptions=True)

    assert all(isinstance(r, StartError) for r in results)
    assert len(pids(pid_file)) == 1


@pytest.mark.asyncio
async def test_unexpected_exit_removes_session_and_reports():
    exited = []

    async def on_exit(server_id):
        exited.append(server_id)

    registry = SessionRegistry(on_unexpected_exit=on_exit)
    client = await registry.start(echo_config("a"))

    with pytest.raises(NotConnectedError):
        await client.call_tool("exit", {"code": 9})

    await wait_until(lambda: exited == ["a"])
    assert not registry.is_running("a")
    assert registry.get_session("a") is None
    assert "a" not in registry.cache

    # A fresh start gets a new session.
    fresh = await registry.start(echo_config("a"))
    assert fresh is not client
    await registry.stop_all()


@pytest.mark.asyncio
async def test_explicit_stop_is_not_reported_as_unexpected():
    exited = []

    async def on_exit(server_id):
        exited.append(server_id)

    registry = SessionRegistry(on_unexpected_exit=on_exit)
    await registry.start(echo_config("a"))
    await registry.stop("a")
    await asyncio.sleep(0.05)
    assert exited == []


@pytest.mark.asyncio
async def test_call_routes_to_session(registry):
    await registry.start(echo_config("a"))
    result = await registry.call("a", "echo", {"message": "hi"})
    assert '"echoed": "hi"' in result["content"][0]["text"]

    with pytest.raises(NotConnectedError):
        await registry.call("missing", "echo", {})


@pytest.mark.asyncio
async def test_stop_all(registry):
    await asyncio.gather(registry.start(echo_config("a")), registry.start(echo_config("b")))
    assert sorted(registry.running_ids()) == ["a", "b"]
    await registry.stop_all()
    assert registry.running_ids() == []


@pytest.mark.asyncio
async def test_shared_cache_is_injectable():
    cache = CapabilityCache()
    registry = SessionRegistry(cache=cache)
    await registry.start(echo_config("a"))
    assert cache.get("a").tool_names() == ["echo", "exit"]
    await registry.stop_all()
    assert len(cache) == 0


def test_build_transport_kinds():
    http = build_transport(ServerConfig(name="h", type="http", url="http://x/mcp", headers={"A": "1"}))
    assert isinstance(http, HttpTransport)
    assert http.headers == {"A": "1"}

    stdio = build_transport(ServerConfig(name="s", command=sys.executable, args=["x.py"]))
    assert isinstance(stdio, StdioTransport)
    assert stdio.spec.argv == [sys.executable, "x.py"]

    with pytest.raises(ValueError):
        build_transport(ServerConfig(name="h", type="http"))


@pytest.mark.asyncio
async def test_stop_after_cancelled_start_does_not_raise(registry):
    start = asyncio.ensure_future(registry.start(echo_config("a")))
    await asyncio.sleep(0)
    registry._starting["a"].cancel()

    await registry.stop("a")

    with pytest.raises(asyncio.CancelledError):
        await start
    assert not registry.is_running("a")


def process_gone(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    return False


@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform == "win32", reason="os.kill probing is POSIX only")
async def test_cancelled_start_leaves_no_process(registry, tmp_path):
    pid_file = tmp_path / "pids"
    start = asyncio.ensure_future(registry.start(echo_config("a", "--pid-file", str(pid_file))))
    await asyncio.sleep(0)
    task = registry._starting["a"]
    await wait_until(lambda: pids(pid_file))
    task.cancel()

    await registry.stop("a")
    await asyncio.gather(start, return_exceptions=True)

    pid = int(pids(pid_file)[0])
    await wait_until(lambda: process_gone(pid))
    assert not registry.is_running("a")
