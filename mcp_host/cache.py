"""Per-server snapshot of the last successfully discovered capabilities."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class CapabilitySnapshot:
    """Tools/resources/prompts as advertised by one live session."""
    tools: list[dict[str, Any]] = field(default_factory=list)
    resources: list[dict[str, Any]] = field(default_factory=list)
    resource_templates: list[dict[str, Any]] = field(default_factory=list)
    prompts: list[dict[str, Any]] = field(default_factory=list)

    def tool_names(self) -> list[str]:
        return [t.get("name", "") for t in self.tools]


class CapabilityCache:
    """
    server_id → CapabilitySnapshot.

    A snapshot is only valid for the session that produced it, so the
    registry invalidates the entry whenever that session goes away.
    """

    def __init__(self):
        self._snapshots: dict[str, CapabilitySnapshot] = {}

    def put(self, server_id: str, snapshot: CapabilitySnapshot) -> None:
        self._snapshots[server_id] = snapshot

    def get(self, server_id: str) -> CapabilitySnapshot | None:
        return self._snapshots.get(server_id)

    def invalidate(self, server_id: str) -> None:
        self._snapshots.pop(server_id, None)

    def clear(self) -> None:
        self._snapshots.clear()

    def __contains__(self, server_id: str) -> bool:
        return server_id in self._snapshots

    def __len__(self) -> int:
        return len(self._snapshots)
