# registry.py
# Name -> tool lookup table shared by every request in a session.
#
# The registry is read-only once built. Validation runs before execution
# so a tool's execute() only ever sees a parsed input model.

import logging
from typing import TYPE_CHECKING, Any

from codebot.models import ToolResult

if TYPE_CHECKING:
    from codebot.tools import Tool

logger = logging.getLogger(__name__)


class ToolNotFoundError(Exception):
    """Raised when a tool name is absent from the registry."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        listed = ", ".join(available) if available else "(none)"
        super().__init__(f"Tool {name!r} not found. Available tools: {listed}")


class ToolValidationError(Exception):
    """Raised when tool input does not satisfy the tool's input model."""


class ToolRegistry:
    def __init__(self, tools: "list[Tool] | None" = None) -> None:
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: "Tool") -> None:
        if tool.name in self._tools:
            raise ValueError(f"Tool {tool.name!r} is already registered.")
        self._tools[tool.name] = tool
        logger.debug("Registered tool %s", tool.name)

    def get(self, name: str) -> "Tool":
        try:
            return self._tools[name]
        except KeyError:
            raise ToolNotFoundError(name, self.names()) from None

    def names(self) -> list[str]:
        return list(self._tools)

    def descriptions(self) -> list[dict[str, str]]:
        """{name, description} for every tool, in registration order."""
        return [{"name": t.name, "description": t.description} for t in self._tools.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    async def execute(self, name: str, tool_input: dict[str, Any]) -> ToolResult:
        """
        Validate then run one tool call.

        Raises ToolNotFoundError or ToolValidationError before anything
        runs. Exceptions from the tool itself propagate to the caller.
        """
        tool = self.get(name)
        params = tool.validate(tool_input)
        logger.info("Executing tool %s", name)
        result = await tool.execute(params)
        logger.debug("Tool %s finished: succeeded=%s", name, result.succeeded)
        return result
