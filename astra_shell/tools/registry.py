"""Tool registry, base tool class and the uniform result envelope."""

import json
from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, model_validator

from astra_shell.exceptions import ToolError, ToolExecutionError, ToolNotFoundError
from astra_shell.logging import get_logger

log = get_logger(__name__)


class ToolResult(BaseModel):
    """Result from tool execution.

    `data` is present only on success, `error` only on failure.
    """

    success: bool = True
    data: Any = None
    error: str | None = None
    error_details: str | None = None

    @model_validator(mode="after")
    def _normalize_envelope(self) -> "ToolResult":
        """Keep the success/failure shape consistent."""
        if self.success:
            self.error = None
            self.error_details = None
            return self
        self.data = None
        if not (self.error or "").strip():
            self.error = "Tool execution failed"
        return self

    @classmethod
    def ok(cls, data: Any = None) -> "ToolResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, details: str | None = None) -> "ToolResult":
        return cls(success=False, error=error, error_details=details)

    def to_payload(self) -> dict[str, Any]:
        """Return the envelope as a dict holding only the fields that apply."""
        if self.success:
            return {"success": True, "data": self.data}
        payload: dict[str, Any] = {"success": False, "error": self.error}
        if self.error_details:
            payload["errorDetails"] = self.error_details
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), ensure_ascii=False, default=str)


class Tool(ABC):
    """Base class for all tools."""

    name: str = ""
    description: str = ""
    parameters: dict[str, Any] = {}
    timeout_seconds: float = 30.0

    @abstractmethod
    async def execute(self, **kwargs: Any) -> ToolResult:
        """Execute the tool.

        Args:
            **kwargs: Tool-specific arguments

        Returns:
            ToolResult with success status and data or error
        """
        pass

    def get_definition(self) -> dict[str, Any]:
        """Get the tool definition shown to the model."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }

    def validate_arguments(self, arguments: dict[str, Any]) -> None:
        """Check required arguments against the parameter schema.

        Raises:
            ToolExecutionError if a required argument is missing
        """
        required = self.parameters.get("required", [])
        for field in required:
            if field not in arguments:
                raise ToolExecutionError(
                    self.name,
                    f"Missing required argument: {field}",
                )


class ToolRegistry:
    """Name -> tool mapping, read-only once frozen."""

    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        self._frozen = False
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Args:
            tool: Tool instance to register

        Raises:
            ToolError if the registry is frozen or the name is taken
        """
        if self._frozen:
            raise ToolError("Tool registry is frozen")
        if not tool.name:
            raise ValueError("Tool must have a name")
        if tool.name in self._tools:
            raise ToolError(f"Tool already registered: {tool.name}")

        log.debug("Registering tool", tool=tool.name)
        self._tools[tool.name] = tool

    def freeze(self) -> "ToolRegistry":
        """Disallow further registration."""
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def has_tool(self, name: str) -> bool:
        """Return whether a tool name is registered (case-sensitive)."""
        return name in self._tools

    def get(self, name: str) -> Tool:
        """Get a tool by name.

        Raises:
            ToolNotFoundError if not found
        """
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return tool

    def list_tools(self) -> list[str]:
        """List registered tool names in registration order."""
        return list(self._tools)

    def get_definitions(self) -> list[dict[str, Any]]:
        """Get all tool definitions."""
        return [tool.get_definition() for tool in self._tools.values()]

    def describe(self) -> str:
        """Render tool definitions as prompt text, one tool per line."""
        lines = []
        for definition in self.get_definitions():
            schema = json.dumps(definition["parameters"], ensure_ascii=False, sort_keys=True)
            lines.append(f"- {definition['name']}: {definition['description']} | parameters={schema}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
