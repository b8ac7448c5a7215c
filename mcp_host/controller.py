"""
Reconciliation Controller — drives live sessions toward the configured list.

The persisted ServerConfig list is the desired state; the SessionRegistry
holds the actual state. A server that fails to start is switched to
enabled = false and persisted, so it is not retried on every pass, and the
rest of the pass carries on.

Usage:
    controller = ReconciliationController(ConfigStore(kv), SessionRegistry())
    report = await controller.reconcile_all()
    await controller.set_enabled(server_id, True)   # raises StartError on failure
    result = await controller.probe(server_id)      # never raises
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable

from mcp_host.client import McpClient
from mcp_host.config import ConfigStore, ServerConfig
from mcp_host.errors import McpHostError, StartError
from mcp_host.manager import SessionRegistry, build_transport

logger = logging.getLogger(__name__)

FailureReporter = Callable[[ServerConfig, str], None]


@dataclass
class ReconcileReport:
    """Outcome of one reconcile_all() pass."""
    started: list[str] = field(default_factory=list)
    stopped: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class ProbeResult:
    """Outcome of a throwaway connect → discover → close cycle."""
    ok: bool
    tools: list[dict] = field(default_factory=list)
    resources: list[dict] = field(default_factory=list)
    resource_templates: list[dict] = field(default_factory=list)
    prompts: list[dict] = field(default_factory=list)
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if not self.ok:
            return {"ok": False, "error": self.error}
        return {
            "ok": True,
            "tools": self.tools,
            "resources": self.resources,
            "resourceTemplates": self.resource_templates,
            "prompts": self.prompts,
        }


class ReconciliationController:
    """
    Authoritative entry point for enabling, disabling and probing servers.

    Wires itself into the registry so that a server exiting on its own is
    marked disabled and will not be restarted by the next pass.
    """

    def __init__(
        self,
        store: ConfigStore,
        registry: SessionRegistry,
        on_failure: FailureReporter | None = None,
    ):
        self.store = store
        self.registry = registry
        self.on_failure = on_failure
        registry.on_unexpected_exit = self._handle_unexpected_exit

    def _mark_disabled(self, server_id: str) -> None:
        try:
            self.store.set_enabled(server_id, False)
        except KeyError:
            logger.warning(f"Cannot disable {server_id}: not in the config store")
        except (OSError, ValueError) as e:
            logger.error(f"Failed to persist disabled flag for {server_id}: {e}")

    def _report(self, config: ServerConfig, message: str) -> None:
        logger.error(f"Failed to initialize MCP server {config.name}: {message}")
        if self.on_failure is not None:
            try:
                self.on_failure(config, message)
            except Exception:
                logger.exception("Failure reporter raised")

    async def _handle_unexpected_exit(self, server_id: str) -> None:
        self._mark_disabled(server_id)

    async def reconcile_all(self, configs: list[ServerConfig] | None = None) -> ReconcileReport:
        """
        Start every enabled server without a session and stop disabled ones.

        One server failing never aborts the pass over the rest.
        """
        if configs is None:
            configs = self.store.load()
        report = ReconcileReport()

        for config in configs:
            if not config.enabled:
                if self.registry.get_session(config.id) is not None:
                    await self.registry.stop(config.id)
                    report.stopped.append(config.id)
                continue

            if self.registry.is_running(config.id):
                continue

            try:
                await self.registry.start(config)
            except StartError as e:
                config.enabled = False
                self._mark_disabled(config.id)
                report.failed[config.id] = e.reason
                self._report(config, e.reason)
                continue
            report.started.append(config.id)

        logger.info(
            f"Reconciled {len(configs)} servers: started={len(report.started)} "
            f"stopped={len(report.stopped)} failed={len(report.failed)}"
        )
        return report

    async def set_enabled(self, server_id: str, enabled: bool) -> None:
        """
        Persist the flag and bring the session in line with it.

        Enabling a server that fails to start reverts the persisted flag to
        False, stops any half-started session and re-raises the StartError.
        """
        config = self.store.set_enabled(server_id, enabled)
        if not enabled:
            await self.registry.stop(server_id)
            return

        try:
            await self.registry.start(config)
        except StartError as e:
            self._mark_disabled(server_id)
            await self.registry.stop(server_id)
            self._report(config, e.reason)
            raise

    async def probe(self, target: str | ServerConfig) -> ProbeResult:
        """
        Test a server without touching the registry or persisted state.

        Returns ProbeResult(ok=False, error=...) instead of raising.
        """
        config = target if isinstance(target, ServerConfig) else self.store.get(target)
        if config is None:
            return ProbeResult(ok=False, error=f"Unknown server: {target}")

        client: McpClient | None = None
        try:
            transport = build_transport(config, self.registry.resolver, self.registry.http_timeout)
            client = McpClient(transport)
            await client.connect()
            snapshot = await client.discover()
        except (McpHostError, OSError, ValueError) as e:
            logger.info(f"Probe of {config.name} failed: {e}")
            return ProbeResult(ok=False, error=str(e))
        finally:
            if client is not None:
                try:
                    await client.close()
                except Exception:
                    logger.exception(f"Error closing probe session for {config.name}")

        return ProbeResult(
            ok=True,
            tools=snapshot.tools,
            resources=snapshot.resources,
            resource_templates=snapshot.resource_templates,
            prompts=snapshot.prompts,
        )

    @property
    def mcp_enabled(self) -> bool:
        """Global switch over every aggregation below; persisted in the store."""
        return self.store.load_mcp_enabled()

    def set_mcp_enabled(self, enabled: bool) -> None:
        self.store.save_mcp_enabled(enabled)

    def toggle_mcp(self) -> bool:
        enabled = not self.mcp_enabled
        self.store.save_mcp_enabled(enabled)
        return enabled

    async def _enabled_clients(
        self,
        skip_stop_disabled: bool,
    ) -> AsyncIterator[tuple[ServerConfig, McpClient]]:
        """
        Yield (config, client) for every enabled server that starts.

        Disabled servers are stopped unless skip_stop_disabled is set, which
        lets a caller filter servers without touching shared sessions. A
        server that cannot start is logged and left out.
        """
        if not self.mcp_enabled:
            return
        for config in self.store.load():
            if not config.enabled:
                if not skip_stop_disabled and self.registry.get_session(config.id) is not None:
                    await self.registry.stop(config.id)
                continue
            try:
                client = await self.registry.start(config)
            except StartError as e:
                logger.warning(f"Skipping {config.name}: {e.reason}")
                continue
            yield config, client

    async def get_tools(self, skip_stop_disabled: bool = False) -> dict[str, tuple[str, dict]]:
        """Tool name → (server_id, tool schema) over every enabled server."""
        tools: dict[str, tuple[str, dict]] = {}
        async for config, _client in self._enabled_clients(skip_stop_disabled):
            for tool in self.registry.list_tools(config.id):
                tools[tool.get("name", "")] = (config.id, tool)
        return tools

    async def _collect(
        self,
        method: str,
        skip_stop_disabled: bool,
    ) -> list[tuple[ServerConfig, list[dict]]]:
        result = []
        async for config, client in self._enabled_clients(skip_stop_disabled):
            try:
                items = await getattr(client, method)()
            except McpHostError as e:
                logger.warning(f"{method} failed for {config.name}: {e}")
                continue
            result.append((config, items))
        return result

    async def get_resources(self, skip_stop_disabled: bool = False) -> list[tuple[ServerConfig, list[dict]]]:
        """(config, resources) for every enabled server that answers."""
        return await self._collect("list_resources", skip_stop_disabled)

    async def get_resource_templates(
        self,
        skip_stop_disabled: bool = False,
    ) -> list[tuple[ServerConfig, list[dict]]]:
        return await self._collect("list_resource_templates", skip_stop_disabled)

    async def get_prompts(self, skip_stop_disabled: bool = False) -> list[tuple[ServerConfig, list[dict]]]:
        return await self._collect("list_prompts", skip_stop_disabled)

    async def _client_for(self, server_id: str) -> McpClient:
        config = self.store.get(server_id)
        if config is None:
            raise KeyError(f"Unknown server: {server_id}")
        return await self.registry.start(config)

    async def read_resource(self, server_id: str, uri: str) -> Any:
        client = await self._client_for(server_id)
        return await client.read_resource(uri)

    async def get_prompt(
        self,
        server_id: str,
        name: str,
        arguments: dict[str, Any] | None = None,
    ) -> Any:
        client = await self._client_for(server_id)
        return await client.get_prompt(name, arguments)
