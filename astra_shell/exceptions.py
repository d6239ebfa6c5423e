"""Custom exceptions for AstraShell."""


class AstraShellError(Exception):
    """Base exception for AstraShell."""

    pass


class ConfigurationError(AstraShellError):
    """Configuration-related errors."""

    pass


class LLMError(AstraShellError):
    """Model backend errors."""

    pass


class LLMAPIError(LLMError):
    """Model backend transport errors (unreachable, timeout, bad status)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ToolError(AstraShellError):
    """Tool errors."""

    pass


class ToolExecutionError(ToolError):
    """Tool execution failed."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(f"Tool '{tool_name}' failed: {message}")
        self.tool_name = tool_name


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class ConversationError(AstraShellError):
    """Conversation ordering invariant violated."""

    pass


class PlanError(AstraShellError):
    """Invalid plan definition."""

    pass
