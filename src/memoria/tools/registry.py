"""Registry of agent-callable tools with JSON-schema parameter specs."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


def _empty_object_schema() -> dict[str, object]:
    return {"type": "object", "properties": {}}


@dataclass(slots=True)
class ToolDef:
    name: str
    description: str
    handler: ToolHandler
    parameters: dict[str, object] = field(default_factory=_empty_object_schema)

    @property
    def required(self) -> list[str]:
        names = self.parameters.get("required", [])
        return [str(name) for name in names] if isinstance(names, list) else []

    def schema(self) -> dict[str, object]:
        return {"name": self.name, "description": self.description, "parameters": self.parameters}


class ToolRegistry:
    """Tools keyed by name. ``call`` never raises for bad input; it returns
    ``{"error": ...}`` so the model can correct itself on the next step."""

    def __init__(self) -> None:
        self._tools: dict[str, ToolDef] = {}

    def register(
        self,
        name: str,
        description: str,
        handler: ToolHandler,
        parameters: dict[str, object] | None = None,
    ) -> None:
        if name in self._tools:
            raise ValueError(f"tool '{name}' is already registered")
        self._tools[name] = ToolDef(
            name, description, handler, parameters or _empty_object_schema()
        )

    def get(self, name: str) -> ToolDef | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return sorted(self._tools)

    def schemas(self) -> list[dict[str, object]]:
        return [tool.schema() for tool in self._tools.values()]

    async def call(self, name: str, args: dict[str, Any]) -> dict[str, Any]:
        tool = self._tools.get(name)
        if tool is None:
            return {"error": f"unknown tool '{name}'"}
        missing = [arg for arg in tool.required if args.get(arg) is None]
        if missing:
            return {"error": f"{', '.join(missing)} is required"}
        logger.debug("Calling tool %s", name)
        return await tool.handler(args)
