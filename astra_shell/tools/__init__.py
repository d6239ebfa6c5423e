"""Tools package for AstraShell."""

from astra_shell.config import get_config
from astra_shell.logging import get_logger
from astra_shell.tools.dispatcher import ToolDispatcher
from astra_shell.tools.files import ReadFileTool, WriteFileTool
from astra_shell.tools.registry import Tool, ToolRegistry, ToolResult
from astra_shell.tools.run_command import RunCommandTool
from astra_shell.tools.stat import StatTool
from astra_shell.tools.tool_call import ToolCallRequest, extract
from astra_shell.tools.web_search import WebSearchTool

log = get_logger(__name__)

BUILTIN_TOOLS: dict[str, type[Tool]] = {
    "ReadFile": ReadFileTool,
    "WriteFile": WriteFileTool,
    "WebSearch": WebSearchTool,
    "Stat": StatTool,
    "RunCommand": RunCommandTool,
}


def build_tool_registry(enabled: list[str] | None = None) -> ToolRegistry:
    """Instantiate enabled built-in tools into a frozen registry."""
    names = enabled if enabled is not None else get_config().tools.enabled
    registry = ToolRegistry()
    for name in names:
        tool_cls = BUILTIN_TOOLS.get(name)
        if tool_cls is None:
            log.warning("Ignoring unknown tool in config", tool=name)
            continue
        registry.register(tool_cls())
    return registry.freeze()


__all__ = [
    "BUILTIN_TOOLS",
    "ReadFileTool",
    "RunCommandTool",
    "StatTool",
    "Tool",
    "ToolCallRequest",
    "ToolDispatcher",
    "ToolRegistry",
    "ToolResult",
    "WebSearchTool",
    "WriteFileTool",
    "build_tool_registry",
    "extract",
]
