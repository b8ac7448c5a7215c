"""
Server configuration document and its persistence.

The whole list of ServerConfig entries is stored as one JSON document
under a single key of a key-value store. Every change reads the list,
mutates it and writes the whole list back (last writer wins).

    store = ConfigStore(JsonFileStore(settings.store_path))
    store.add(ServerConfig(name="echo", command="python", args=["echo.py"]))
    for config in store.load():
        ...
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Protocol

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

SERVERS_KEY = "mcp_servers"
ENABLED_KEY = "mcp_enabled"

STDIO = "stdio"
HTTP = "http"


@dataclass
class ServerConfig:
    """One configured tool server (stdio process or HTTP endpoint)."""
    name: str
    type: str = STDIO
    id: str = ""
    enabled: bool = False
    command: str = ""
    args: list[str] = field(default_factory=list)
    env: dict[str, str] = field(default_factory=dict)
    cwd: str | None = None
    url: str = ""
    headers: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_http(self) -> bool:
        return self.type == HTTP

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "enabled": self.enabled,
        }
        if self.is_http:
            data["url"] = self.url
            data["headers"] = dict(self.headers)
        else:
            data["command"] = self.command
            data["args"] = list(self.args)
            data["env"] = dict(self.env)
            if self.cwd:
                data["cwd"] = self.cwd
        data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ServerConfig":
        metadata = dict(data.get("metadata") or {})
        # Older documents kept marketplace provenance in a top-level "store" block.
        if "store" in data and "store" not in metadata:
            metadata["store"] = data["store"]
        server_type = HTTP if data.get("type") == HTTP else STDIO
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            type=server_type,
            enabled=bool(data.get("enabled", False)),
            command=str(data.get("command") or ""),
            args=[str(a) for a in data.get("args") or []],
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
            cwd=data.get("cwd") or None,
            url=str(data.get("url") or ""),
            headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
            metadata=metadata,
        )


class KeyValueStore(Protocol):
    """Atomic-per-key store the host persists its document into."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """dict-backed KeyValueStore."""

    def __init__(self, data: dict[str, Any] | None = None):
        self.data: dict[str, Any] = dict(data or {})

    def get(self, key: str, default: Any = None) -> Any:
        return json.loads(json.dumps(self.data[key])) if key in self.data else default

    def set(self, key: str, value: Any) -> None:
        self.data[key] = json.loads(json.dumps(value))

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class JsonFileStore:
    """
    KeyValueStore backed by one JSON file.

    Writes go to a temp file in the same directory and are renamed into
    place, so readers never see a half-written document.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Store file {self.path} does not hold a JSON object")
        return data

    def _write(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".store-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        data = self._read()
        data[key] = value
        self._write(data)

    def delete(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)


class ConfigStore:
    """Ordered list of ServerConfig, persisted as a whole."""

    def __init__(self, kv: KeyValueStore, key: str = SERVERS_KEY, enabled_key: str = ENABLED_KEY):
        self.kv = kv
        self.key = key
        self.enabled_key = enabled_key

    def load_mcp_enabled(self) -> bool:
        """The global MCP switch. Off until explicitly turned on."""
        return bool(self.kv.get(self.enabled_key, False))

    def save_mcp_enabled(self, enabled: bool) -> None:
        self.kv.set(self.enabled_key, bool(enabled))

    def load(self) -> list[ServerConfig]:
        raw = self.kv.get(self.key) or []
        return [ServerConfig.from_dict(item) for item in raw if isinstance(item, dict)]

    def save(self, configs: list[ServerConfig]) -> None:
        self.kv.set(self.key, [c.to_dict() for c in configs])

    def get(self, server_id: str) -> ServerConfig | None:
        return next((c for c in self.load() if c.id == server_id), None)

    def add(self, config: ServerConfig) -> ServerConfig:
        configs = self.load()
        if not config.id:
            config = replace(config, id=str(uuid.uuid4()))
        if any(c.id == config.id for c in configs):
            raise ValueError(f"Server already exists: {config.id}")
        configs.append(config)
        self.save(configs)
        logger.info(f"Added server {config.name} ({config.id})")
        return config

    def update(self, server_id: str, **changes: Any) -> ServerConfig:
        configs = self.load()
        for index, config in enumerate(configs):
            if config.id == server_id:
                configs[index] = replace(config, **changes)
                self.save(configs)
                return configs[index]
        raise KeyError(f"Unknown server: {server_id}")

    def set_enabled(self, server_id: str, enabled: bool) -> ServerConfig:
        return self.update(server_id, enabled=enabled)

    def remove(self, server_id: str) -> bool:
        configs = self.load()
        kept = [c for c in configs if c.id != server_id]
        if len(kept) == len(configs):
            return False
        self.save(kept)
        logger.info(f"Removed server {server_id}")
        return True

    def import_configs(self, source: Any) -> list[ServerConfig]:
        """Add every server in a pasted config snippet that is not already present."""
        from mcp_host.importer import is_same_server, parse_server_configs

        existing = self.load()
        added = []
        for candidate in parse_server_configs(source):
            if any(is_same_server(c, candidate) for c in existing + added):
                logger.info(f"Skipping duplicate server {candidate.name}")
                continue
            added.append(replace(candidate, id=str(uuid.uuid4())))
        if added:
            self.save(existing + added)
        return added


class HostSettings(BaseSettings):
    """
    Process-level settings from MCP_HOST_* environment variables (or .env).

    MCP_HOST_STORE         JSON config store path
    MCP_HOST_RUNTIME_DIR   root of the bundled runtimes (node, npm, uv, python)
    MCP_HOST_LOG_LEVEL     logging level name
    MCP_HOST_HTTP_TIMEOUT  seconds per HTTP request
    """

    model_config = SettingsConfigDict(
        env_prefix="MCP_HOST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    store_path: Path = Field(
        default=Path("~/.mcp_host/store.json"),
        validation_alias=AliasChoices("MCP_HOST_STORE", "store_path"),
        validate_default=True,
    )
    runtime_dir: Path | None = None
    log_level: str = "INFO"
    http_timeout: float = Field(default=30.0, gt=0)

    @field_validator("store_path", "runtime_dir")
    @classmethod
    def _expand_user(cls, value: Path | None) -> Path | None:
        return value.expanduser() if value is not None else None

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level: {value}")
        return level
