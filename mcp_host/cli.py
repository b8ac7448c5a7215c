"""
mcp-host — manage and test configured MCP tool servers from a shell.

Usage:
    # Show configured servers
    mcp-host list

    # Add a stdio server and an HTTP server
    mcp-host add echo --command python --args -m mcp_host.servers.echo
    mcp-host add docs --url https://example.com/mcp --header Authorization="Bearer x"

    # Import a Claude Desktop style {"mcpServers": {...}} file
    mcp-host import ~/claude_desktop_config.json

    # Try a server without changing anything
    mcp-host probe echo

    # Enable/disable (enable verifies the server starts)
    mcp-host enable echo
    mcp-host disable echo

    # Start every enabled server; --hold keeps them running until Ctrl+C
    mcp-host reconcile --hold

    # Global switch for tool/resource/prompt aggregation
    mcp-host mcp on
    mcp-host mcp status
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from pydantic import ValidationError

from mcp_host.config import HTTP, STDIO, ConfigStore, HostSettings, JsonFileStore, ServerConfig
from mcp_host.controller import ReconciliationController
from mcp_host.errors import StartError
from mcp_host.launch import BundledRuntimes
from mcp_host.manager import SessionRegistry

logger = logging.getLogger(__name__)


def _pairs(values: list[str] | None) -> dict[str, str]:
    result = {}
    for item in values or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(f"Expected KEY=VALUE, got '{item}'")
        result[key] = value
    return result


def _find(store: ConfigStore, ref: str) -> ServerConfig | None:
    configs = store.load()
    return next((c for c in configs if c.id == ref), None) or \
        next((c for c in configs if c.name == ref), None)


def _build(settings: HostSettings) -> tuple[ConfigStore, ReconciliationController]:
    store = ConfigStore(JsonFileStore(settings.store_path))
    registry = SessionRegistry(
        resolver=BundledRuntimes(settings.runtime_dir),
        http_timeout=settings.http_timeout,
    )
    return store, ReconciliationController(store, registry)


def cmd_list(store: ConfigStore, args) -> int:
    configs = store.load()
    print(f"Configured MCP servers ({len(configs)}):")
    for config in configs:
        status = "✓" if config.enabled else "○"
        target = config.url if config.is_http else " ".join([config.command, *config.args])
        print(f"  {status} {config.name:<24} {config.type:<6} {target}  [{config.id}]")
    return 0


def cmd_add(store: ConfigStore, args) -> int:
    if bool(args.command) == bool(args.url):
        print("✗ Give exactly one of --command or --url")
        return 2
    try:
        env, headers = _pairs(args.env), _pairs(args.header)
    except ValueError as e:
        print(f"✗ {e}")
        return 2
    config = ServerConfig(
        name=args.name,
        type=HTTP if args.url else STDIO,
        enabled=args.enabled,
        command=args.command or "",
        args=list(args.args or []),
        env=env,
        cwd=args.cwd,
        url=args.url or "",
        headers=headers,
    )
    config = store.add(config)
    print(f"✓ Added: {config.name} ({config.id})")
    return 0


def cmd_import(store: ConfigStore, args) -> int:
    if args.file == "-":
        text = sys.stdin.read()
    else:
        with open(args.file, "r", encoding="utf-8") as f:
            text = f.read()
    try:
        added = store.import_configs(text)
    except ValueError as e:
        print(f"✗ Could not parse {args.file}: {e}")
        return 1
    print(f"✓ Imported {len(added)} server(s)")
    for config in added:
        print(f"    - {config.name} ({config.id})")
    return 0


def cmd_remove(store: ConfigStore, args) -> int:
    config = _find(store, args.server)
    if config is None or not store.remove(config.id):
        print(f"✗ Server not found: {args.server}")
        return 1
    print(f"✓ Removed: {config.name}")
    return 0


def cmd_mcp(controller: ReconciliationController, args) -> int:
    if args.state == "on":
        controller.set_mcp_enabled(True)
    elif args.state == "off":
        controller.set_mcp_enabled(False)
    print(f"MCP is {'on' if controller.mcp_enabled else 'off'}")
    return 0


async def _toggle(controller: ReconciliationController, server_id: str, enabled: bool) -> int:
    try:
        await controller.set_enabled(server_id, enabled)
    except StartError as e:
        print(f"✗ {e}")
        return 1
    finally:
        await controller.registry.stop_all()
    print(f"✓ {'Enabled' if enabled else 'Disabled'}: {server_id}")
    return 0


async def _probe(controller: ReconciliationController, server_id: str) -> int:
    result = await controller.probe(server_id)
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
    return 0 if result.ok else 1


async def _reconcile(controller: ReconciliationController, hold: bool) -> int:
    try:
        report = await controller.reconcile_all()
        print(f"Started: {report.started or 'none'}")
        print(f"Stopped: {report.stopped or 'none'}")
        for server_id, message in report.failed.items():
            print(f"✗ {server_id} disabled: {message}")
        if hold and controller.registry.running_ids():
            print("Servers running. Press Ctrl+C to stop.")
            await asyncio.Event().wait()
        return 0 if report.ok else 1
    finally:
        await controller.registry.stop_all()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp-host",
        description="Manage configured MCP tool servers.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--store", type=str, default=None, help="Path of the JSON config store")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    sub = parser.add_subparsers(dest="action", required=True)

    sub.add_parser("list", help="List configured servers")

    add = sub.add_parser("add", help="Add a server")
    add.add_argument("name")
    add.add_argument("--command", help="Logical command (npx, node, python, uvx, or any executable)")
    add.add_argument("--args", nargs=argparse.REMAINDER, help="Arguments for the command")
    add.add_argument("--env", action="append", help="KEY=VALUE environment override")
    add.add_argument("--cwd", help="Working directory")
    add.add_argument("--url", help="HTTP endpoint")
    add.add_argument("--header", action="append", help="KEY=VALUE HTTP header")
    add.add_argument("--enabled", action="store_true", help="Mark enabled immediately")

    imp = sub.add_parser("import", help="Import servers from a JSON snippet file ('-' for stdin)")
    imp.add_argument("file")

    for action in ("remove", "enable", "disable", "probe"):
        cmd = sub.add_parser(action, help=f"{action.capitalize()} a server (id or name)")
        cmd.add_argument("server")

    mcp = sub.add_parser("mcp", help="Show or set the global MCP switch")
    mcp.add_argument("state", nargs="?", choices=["on", "off", "status"], default="status")

    rec = sub.add_parser("reconcile", help="Start enabled servers, stop disabled ones")
    rec.add_argument("--hold", action="store_true", help="Keep servers running until Ctrl+C")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = HostSettings()
    except ValidationError as e:
        print(f"✗ Invalid MCP_HOST_* settings: {e}")
        return 2
    if args.store:
        settings.store_path = JsonFileStore(args.store).path
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else settings.log_level,
        format="%(levelname)s: %(message)s",
    )

    store, controller = _build(settings)

    if args.action == "list":
        return cmd_list(store, args)
    if args.action == "add":
        return cmd_add(store, args)
    if args.action == "import":
        return cmd_import(store, args)
    if args.action == "remove":
        return cmd_remove(store, args)
    if args.action == "mcp":
        return cmd_mcp(controller, args)
    if args.action == "reconcile":
        try:
            return asyncio.run(_reconcile(controller, args.hold))
        except KeyboardInterrupt:
            print("\nMCP servers stopped.")
            return 0

    config = _find(store, args.server)
    if config is None:
        print(f"✗ Server not found: {args.server}")
        return 1
    if args.action == "probe":
        return asyncio.run(_probe(controller, config.id))
    return asyncio.run(_toggle(controller, config.id, args.action == "enable"))


if __name__ == "__main__":
    sys.exit(main())
