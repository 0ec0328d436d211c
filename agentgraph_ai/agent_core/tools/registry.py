from __future__ import annotations

"""Tool registry.

The registry maps a tool name to a single ``Tool``. Tools arrive from several
sources (user code, skills, MCP servers, built-ins) and names can collide.

Conflict handling
-----------------

- ``first-wins`` (default): the tool from the higher-priority source is kept,
  with source priority ``user > skill > mcp > builtin``. Equal priority keeps
  the tool registered first.
- ``error``: any collision raises ``ToolConflictError``.

Sources can be excluded with patterns: ``"mcp"`` (whole type),
``"mcp:github"`` (exact source) or ``"mcp:*"``.
"""

import logging
from collections.abc import Mapping
from typing import Any, Dict, Iterable, Iterator, Literal

from ..errors import ToolConflictError
from ..schemas.domain import ToolSourceType
from .base import Tool, ToolSource

logger = logging.getLogger(__name__)

SOURCE_PRIORITY = (ToolSourceType.user, ToolSourceType.skill, ToolSourceType.mcp, ToolSourceType.builtin)

ConflictStrategy = Literal["first-wins", "error"]


class ToolRegistry(Mapping):
    """
    In-memory mapping of tool names to tools.

    The registry is a read-only ``Mapping`` for consumers (the agent loop and the
    approval gate accept any ``Mapping[str, Tool]``); mutation goes through
    ``register`` / ``register_all`` / ``clear``.
    """

    def __init__(
        self,
        *,
        conflict_strategy: ConflictStrategy = "first-wins",
        exclude_sources: Iterable[str] = (),
    ) -> None:
        self._tools: Dict[str, Tool] = {}
        self._strategy = conflict_strategy
        self._exclude = tuple(exclude_sources)

    def __getitem__(self, name: str) -> Tool:
        return self._tools[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def _is_excluded(self, source: ToolSource) -> bool:
        for pattern in self._exclude:
            if pattern == source.full or pattern == source.type.value:
                return True
            if pattern.endswith(":*") and pattern[:-2] == source.type.value:
                return True
        return False

    def register(self, tool: Tool) -> bool:
        """
        Register a tool.

        Args:
            tool: The tool to add.

        Returns:
            True if the tool is now the registered implementation for its name.

        Raises:
            ToolConflictError: On a name collision under the ``error`` strategy.
        """
        if self._is_excluded(tool.source):
            logger.debug("Tool %s skipped: source %s excluded", tool.name, tool.source.full)
            return False

        existing = self._tools.get(tool.name)
        if existing is None:
            self._tools[tool.name] = tool
            return True

        if self._strategy == "error":
            raise ToolConflictError(
                f"Tool name conflict: {tool.name} from {tool.source.full} conflicts with {existing.source.full}"
            )

        if SOURCE_PRIORITY.index(tool.source.type) < SOURCE_PRIORITY.index(existing.source.type):
            logger.warning(
                "Tool %s replaced due to higher priority: %s -> %s",
                tool.name,
                existing.source.full,
                tool.source.full,
            )
            self._tools[tool.name] = tool
            return True

        logger.warning(
            "Tool %s registration skipped due to conflict: kept %s, skipped %s",
            tool.name,
            existing.source.full,
            tool.source.full,
        )
        return False

    def register_all(self, tools: Iterable[Tool]) -> dict[str, int]:
        """Register tools in name order. Returns ``{"registered": n, "skipped": m}``."""
        registered = skipped = 0
        for tool in sorted(tools, key=lambda t: t.name):
            if self.register(tool):
                registered += 1
            else:
                skipped += 1
        return {"registered": registered, "skipped": skipped}

    def all(self) -> list[Tool]:
        return list(self._tools.values())

    def to_schemas(self) -> list[Dict[str, Any]]:
        return [tool.to_schema() for tool in self._tools.values()]

    def clear(self) -> None:
        self._tools.clear()
