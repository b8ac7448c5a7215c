import asyncio
import sys
import time
from pathlib import Path

import pytest
import pytest_asyncio

from mcp_host.config import ConfigStore, MemoryStore, ServerConfig
from mcp_host.manager import SessionRegistry

ROOT = Path(__file__).resolve().parents[1]
ECHO_SERVER = ROOT / "mcp_host" / "servers" / "echo.py"


class FakeResolver:
    """RuntimeResolver that maps logical runtimes to fixed paths."""

    def __init__(self, runtimes=None, launchers=None):
        self.runtimes = dict(runtimes or {})
        self.launchers = dict(launchers or {})

    def runtime_path(self, name):
        path = self.runtimes.get(name)
        return Path(path) if path else None

    def launcher_path(self, name):
        path = self.launchers.get(name)
        return Path(path) if path else None


def echo_config(server_id: str, *extra_args: str, enabled: bool = True, **kwargs) -> ServerConfig:
    return ServerConfig(
        id=server_id,
        name=f"echo-{server_id}",
        enabled=enabled,
        command=sys.executable,
        args=[str(ECHO_SERVER), *extra_args],
        **kwargs,
    )


async def wait_until(predicate, timeout: float = 10.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.02)


async def collect_events(transport, timeout: float = 10.0) -> list:
    events = []

    async def _run():
        async for event in transport.events():
            events.append(event)

    await asyncio.wait_for(_run(), timeout)
    return events


@pytest.fixture
def store() -> ConfigStore:
    return ConfigStore(MemoryStore())


@pytest_asyncio.fixture
async def registry():
    registry = SessionRegistry()
    yield registry
    await registry.stop_all()
