"""
Import server definitions from config snippets other MCP clients use.

Accepted shapes:
    {"mcpServers": {"name": {...}}}     (Claude Desktop / VS Code)
    {"servers": {"name": {...}}}
    {"name": "...", "command": "...", ...}  (a single server)

JS-style // and /* */ comments are stripped before parsing.
"""

from __future__ import annotations

import json
import re
import shlex
from typing import Any

from mcp_host.config import HTTP, STDIO, ServerConfig

_COMMENT_RE = re.compile(r'\\"|"(?:\\"|[^"])*"|(//[^\n]*|/\*[\s\S]*?\*/)')


def strip_json_comments(text: str) -> str:
    """Remove // and /* */ comments that sit outside string literals."""
    return _COMMENT_RE.sub(lambda m: "" if m.group(1) else m.group(0), text or "")


def split_command_line(command_line: str) -> tuple[str, list[str]]:
    """Split "npx -y @scope/pkg" into ("npx", ["-y", "@scope/pkg"])."""
    try:
        parts = shlex.split(command_line or "")
    except ValueError:
        # Unbalanced quotes: keep the text, split on whitespace
        parts = (command_line or "").split()
    if not parts:
        return "", []
    return parts[0], parts[1:]


def _string_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {str(k): v if isinstance(v, str) else str(v) for k, v in value.items() if v is not None}


def _normalize(raw: dict[str, Any]) -> ServerConfig | None:
    name = str(raw.get("name") or "").strip()
    if not name:
        return None

    if raw.get("type") == HTTP or raw.get("url"):
        url = str(raw.get("url") or "").strip()
        if not url:
            return None
        return ServerConfig(name=name, type=HTTP, url=url, headers=_string_map(raw.get("headers")))

    command = raw.get("command")
    args = raw.get("args") if isinstance(raw.get("args"), list) else []
    if isinstance(command, str) and not args:
        command, args = split_command_line(command)
    command = str(command or "").strip()
    if not command:
        return None

    cwd = raw.get("cwd")
    return ServerConfig(
        name=name,
        type=STDIO,
        command=command,
        args=[str(a) for a in args],
        env=_string_map(raw.get("env")),
        cwd=cwd if isinstance(cwd, str) else None,
    )


def parse_server_configs(source: str | dict[str, Any]) -> list[ServerConfig]:
    """
    Parse a pasted snippet into disabled ServerConfig entries (no ids yet).

    Entries that are not objects, or lack a name or a command/url, are
    skipped.
    """
    data = json.loads(strip_json_comments(source)) if isinstance(source, str) else source
    if not isinstance(data, dict):
        return []

    for wrapper in ("mcpServers", "servers"):
        servers = data.get(wrapper)
        if isinstance(servers, dict) and servers:
            raw = [{"name": name, **cfg} for name, cfg in servers.items() if isinstance(cfg, dict)]
            return [c for c in (_normalize(r) for r in raw) if c is not None]

    config = _normalize(data)
    return [config] if config else []


def is_same_server(a: ServerConfig, b: ServerConfig) -> bool:
    """Same type and name, and the same url or the same command line."""
    if a.type != b.type or a.name != b.name:
        return False
    if a.type == HTTP:
        return a.url == b.url
    return a.command == b.command and list(a.args) == list(b.args)
